"""
Chatwoot Messaging Bridge
Delivers WhatsApp messages through the clinic's Chatwoot inbox:
find or create the contact, find or create a conversation, post an outgoing message.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .. import config
from ..cache import Cache
from ..shared.validators import normalize_br_phone

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_NAME = "Paciente (Via Automação)"


@dataclass
class GatewayResult:
    """Outcome of one send through the messaging bridge"""

    success: bool
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    error: Optional[str] = None


class ChatwootGateway:
    """Messaging bridge capability: send_message(phone, message, display_name)"""

    def __init__(
        self,
        cache: Cache,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        account_id: Optional[str] = None,
        inbox_id: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cache = cache
        self.base_url = (base_url or config.CHATWOOT_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else config.CHATWOOT_API_TOKEN
        self.account_id = str(account_id or config.CHATWOOT_ACCOUNT_ID)
        self.inbox_id = str(inbox_id or config.CHATWOOT_INBOX_ID)
        self.timeout = timeout or config.CHATWOOT_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1/accounts/{self.account_id}",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "api_access_token": self.api_token or "",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _contact_key(phone: str) -> str:
        return f"chatwoot:contact:{phone}"

    def _conversation_key(self, contact_id: str) -> str:
        return f"chatwoot:conversation:{self.inbox_id}:{contact_id}"

    async def send_message(
        self, phone: Optional[str], message: str, display_name: Optional[str] = None
    ) -> GatewayResult:
        """Send one outgoing message; failures are reported in the result, not raised"""
        if not self.api_token:
            logger.error("❌ CHATWOOT_API_TOKEN not configured")
            return GatewayResult(success=False, error="Messaging bridge not configured")

        clean_phone = normalize_br_phone(phone)
        if not clean_phone:
            return GatewayResult(success=False, error="No phone number provided")

        contact_id = None
        try:
            async with self._client() as client:
                contact_id = await self._find_or_create_contact(client, clean_phone, display_name)
                conversation_id = await self._find_or_create_conversation(client, contact_id)

                logger.info(f"💬 Sending message via Chatwoot to {clean_phone} (conversation {conversation_id})")
                response = await client.post(
                    f"/conversations/{conversation_id}/messages",
                    json={"content": message, "message_type": "outgoing", "private": False},
                )
                response.raise_for_status()
                message_id = response.json().get("id")

            return GatewayResult(
                success=True,
                message_id=str(message_id if message_id is not None else conversation_id),
                conversation_id=str(conversation_id),
            )

        except httpx.HTTPStatusError as e:
            self._invalidate(clean_phone, contact_id)
            error = f"Chatwoot API error {e.response.status_code}: {e.response.text[:200]}"
            logger.error(f"❌ {error}")
            return GatewayResult(success=False, error=error)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            self._invalidate(clean_phone, contact_id)
            logger.error(f"❌ Chatwoot send failed for {clean_phone}: {e}")
            return GatewayResult(success=False, error=str(e) or e.__class__.__name__)

    def _invalidate(self, clean_phone: str, contact_id: Optional[str]) -> None:
        self.cache.delete(self._contact_key(clean_phone))
        if contact_id:
            self.cache.delete(self._conversation_key(contact_id))

    async def _find_contact(self, client: httpx.AsyncClient, clean_phone: str) -> Optional[str]:
        response = await client.get("/contacts/search", params={"q": clean_phone})
        response.raise_for_status()
        payload = response.json().get("payload") or []
        return str(payload[0]["id"]) if payload else None

    async def _find_or_create_contact(
        self, client: httpx.AsyncClient, clean_phone: str, display_name: Optional[str]
    ) -> str:
        cache_key = self._contact_key(clean_phone)
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        contact_id = await self._find_contact(client, clean_phone)
        if not contact_id:
            response = await client.post(
                "/contacts",
                json={"name": display_name or DEFAULT_CONTACT_NAME, "phone_number": f"+{clean_phone}"},
            )
            if response.status_code == 422:
                # Created concurrently (duplicate phone) - search again
                contact_id = await self._find_contact(client, clean_phone)
                if not contact_id:
                    response.raise_for_status()
            else:
                response.raise_for_status()
                contact_id = str(response.json()["payload"]["contact"]["id"])
            logger.info(f"👤 Chatwoot contact {contact_id} ready for {clean_phone}")

        self.cache.set(cache_key, contact_id)
        return contact_id

    async def _find_or_create_conversation(self, client: httpx.AsyncClient, contact_id: str) -> str:
        cache_key = self._conversation_key(contact_id)
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        response = await client.get(f"/contacts/{contact_id}/conversations")
        response.raise_for_status()
        conversations = response.json().get("payload") or []
        existing = next(
            (c for c in conversations if str(c.get("inbox_id")) == self.inbox_id), None
        )

        if existing:
            conversation_id = str(existing["id"])
        else:
            response = await client.post(
                "/conversations",
                json={
                    "source_id": contact_id,
                    "inbox_id": self.inbox_id,
                    "contact_id": contact_id,
                    "status": "open",
                },
            )
            response.raise_for_status()
            conversation_id = str(response.json()["id"])

        self.cache.set(cache_key, conversation_id)
        return conversation_id
