"""
Action dispatch - delivers an automation's action to each recipient in turn

Recipients are processed sequentially. A failure (gateway error or exception) for
one recipient is recorded and never stops the remaining recipients.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ...email_service import EmailNotConfiguredError, send_automation_email
from ...models_automation import Automation
from ...services import twilio_service
from ...services.chatwoot_service import ChatwootGateway
from .filters import Recipient
from .schemas import ActionType
from .templating import build_message

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class Channel(Protocol):
    async def deliver(
        self, automation: Automation, recipient: Recipient, text: str
    ) -> DeliveryOutcome: ...


class OutcomeRecorder(Protocol):
    def record(self, recipient: Recipient, outcome: DeliveryOutcome): ...


class MessageChannel:
    """WhatsApp message through the messaging bridge"""

    def __init__(self, gateway: ChatwootGateway):
        self.gateway = gateway

    async def deliver(self, automation: Automation, recipient: Recipient, text: str) -> DeliveryOutcome:
        if not recipient.phone:
            return DeliveryOutcome(success=False, error="Recipient has no phone number")

        result = await self.gateway.send_message(recipient.phone, text, recipient.name)
        if result.success:
            return DeliveryOutcome(success=True, message_id=result.message_id or result.conversation_id)
        return DeliveryOutcome(success=False, error=result.error or "Messaging bridge send failed")


class EmailChannel:
    async def deliver(self, automation: Automation, recipient: Recipient, text: str) -> DeliveryOutcome:
        if not recipient.email:
            return DeliveryOutcome(success=False, error="Recipient has no email address")

        subject = (automation.action_config or {}).get("subject") or automation.name
        try:
            response = await send_automation_email(recipient.email, subject, text)
        except EmailNotConfiguredError as e:
            return DeliveryOutcome(success=False, error=str(e))
        message_id = response.get("id") if hasattr(response, "get") else None
        return DeliveryOutcome(success=True, message_id=message_id)


class SmsChannel:
    async def deliver(self, automation: Automation, recipient: Recipient, text: str) -> DeliveryOutcome:
        success, message_sid, error = await twilio_service.send_sms(recipient.phone, text)
        return DeliveryOutcome(success=success, message_id=message_sid, error=error)


class ActionDispatcher:
    """Routes an automation's action type to its delivery channel"""

    def __init__(self, channels: dict[ActionType, Channel]):
        self.channels = channels

    @classmethod
    def default(cls, gateway: ChatwootGateway) -> "ActionDispatcher":
        return cls(
            {
                ActionType.MESSAGE: MessageChannel(gateway),
                ActionType.EMAIL: EmailChannel(),
                ActionType.SMS: SmsChannel(),
            }
        )

    def channel_for(self, action_type: ActionType) -> Channel:
        channel = self.channels.get(action_type)
        if channel is None:
            raise ValueError(f"No delivery channel for action type {action_type.value!r}")
        return channel

    async def dispatch(
        self,
        automation: Automation,
        action_type: ActionType,
        recipients: list[Recipient],
        recorder: OutcomeRecorder,
    ) -> list[dict]:
        """Deliver to every recipient; exactly one recorded outcome per recipient"""
        channel = self.channel_for(action_type)
        results = []

        for recipient in recipients:
            try:
                text = build_message(automation.action_config, recipient)
                outcome = await channel.deliver(automation, recipient, text)
            except Exception as e:
                logger.error(f"❌ Error sending to {recipient.phone}: {e}")
                outcome = DeliveryOutcome(success=False, error=str(e) or e.__class__.__name__)

            recorder.record(recipient, outcome)
            if outcome.success:
                logger.debug(f"✅ Automation {automation.id} delivered to {recipient.phone}")
            else:
                logger.warning(
                    f"⚠️ Automation {automation.id} failed for {recipient.phone}: {outcome.error}"
                )

            results.append(
                {
                    "success": outcome.success,
                    "recipient": recipient.phone,
                    "name": recipient.name,
                    "messageId": outcome.message_id,
                    "error": outcome.error,
                }
            )

        return results
