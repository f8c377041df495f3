"""
Twilio SMS Service
Sends automation SMS through the clinic's Twilio account
"""

import logging
from typing import Optional

import httpx

from .. import config
from ..shared.validators import to_e164

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"


def is_configured() -> bool:
    return bool(
        config.TWILIO_ACCOUNT_SID
        and config.TWILIO_AUTH_TOKEN
        and (config.TWILIO_FROM_NUMBER or config.TWILIO_MESSAGING_SERVICE_SID)
    )


async def send_sms(
    to_phone: Optional[str],
    message_body: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[bool, Optional[str], Optional[str]]:
    """
    Send SMS via Twilio

    Args:
        to_phone: Recipient phone number (normalized to E.164)
        message_body: SMS message content
        transport: Optional httpx transport (tests)

    Returns:
        Tuple of (success, message_sid, error_message)
    """
    formatted_phone = to_e164(to_phone)
    if not formatted_phone:
        return False, None, "No phone number provided"

    if not is_configured():
        logger.warning("⚠️ Twilio credentials not configured - SMS not sent")
        return False, None, "SMS channel not configured"

    account_sid = config.TWILIO_ACCOUNT_SID
    data = {"To": formatted_phone, "Body": message_body}
    if config.TWILIO_MESSAGING_SERVICE_SID:
        data["MessagingServiceSid"] = config.TWILIO_MESSAGING_SERVICE_SID
    else:
        data["From"] = config.TWILIO_FROM_NUMBER

    try:
        logger.info(f"📱 Sending SMS to {formatted_phone}")
        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post(
                f"{TWILIO_API_URL}/Accounts/{account_sid}/Messages.json",
                auth=(account_sid, config.TWILIO_AUTH_TOKEN),
                data=data,
                timeout=10.0,
            )

        if response.status_code in [200, 201]:
            message_sid = response.json().get("sid")
            logger.info(f"✅ SMS sent to {formatted_phone} (SID: {message_sid})")
            return True, message_sid, None

        error_data = response.json()
        error_message = error_data.get("message", "Unknown error")
        error_code = error_data.get("code")
        logger.error(f"❌ Twilio API error [{error_code}]: {error_message}")
        return False, None, f"[{error_code}] {error_message}" if error_code else error_message

    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Twilio API error: {str(e)}")
        return False, None, str(e)
