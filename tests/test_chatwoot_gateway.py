"""
Test Chatwoot Messaging Bridge

HTTP flow against a mocked Chatwoot API and cache reuse/invalidation.
"""

import json

import httpx

from clinic_automation.cache import Cache
from clinic_automation.services.chatwoot_service import ChatwootGateway

ACCOUNT_PREFIX = "/api/v1/accounts/1"


class FakeChatwoot:
    """Minimal Chatwoot API: empty search, contact/conversation creation, messages."""

    def __init__(self, message_status: int = 200, existing_contact: bool = False):
        self.requests: list[tuple[str, str, dict]] = []
        self.message_status = message_status
        self.existing_contact = existing_contact

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix(ACCOUNT_PREFIX)
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, path, body))

        if request.method == "GET" and path == "/contacts/search":
            payload = [{"id": 42}] if self.existing_contact else []
            return httpx.Response(200, json={"payload": payload})
        if request.method == "POST" and path == "/contacts":
            return httpx.Response(200, json={"payload": {"contact": {"id": 42}}})
        if request.method == "GET" and path == "/contacts/42/conversations":
            return httpx.Response(200, json={"payload": [{"id": 3, "inbox_id": 99}]})
        if request.method == "POST" and path == "/conversations":
            return httpx.Response(200, json={"id": 7})
        if request.method == "POST" and path == "/conversations/7/messages":
            if self.message_status != 200:
                return httpx.Response(self.message_status, json={"error": "boom"})
            return httpx.Response(200, json={"id": 555})
        return httpx.Response(404, json={"error": "not found"})

    @property
    def paths(self) -> list[str]:
        return [f"{method} {path}" for method, path, _ in self.requests]


def make_gateway(api: FakeChatwoot, cache: Cache = None, api_token: str = "token") -> ChatwootGateway:
    return ChatwootGateway(
        cache or Cache(),
        base_url="https://chat.example.com",
        api_token=api_token,
        account_id="1",
        inbox_id="1",
        transport=httpx.MockTransport(api),
    )


class TestSendMessage:
    async def test_creates_contact_and_conversation(self):
        api = FakeChatwoot()

        result = await make_gateway(api).send_message("(11) 99999-8888", "Oi Maria", "Maria")

        assert result.success is True
        assert result.message_id == "555"
        assert result.conversation_id == "7"
        assert api.paths == [
            "GET /contacts/search",
            "POST /contacts",
            "GET /contacts/42/conversations",
            "POST /conversations",
            "POST /conversations/7/messages",
        ]
        _, _, contact_body = api.requests[1]
        assert contact_body == {"name": "Maria", "phone_number": "+5511999998888"}
        _, _, message_body = api.requests[-1]
        assert message_body == {"content": "Oi Maria", "message_type": "outgoing", "private": False}

    async def test_sends_api_token_header(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("api_access_token"))
            return FakeChatwoot()(request)

        gateway = ChatwootGateway(
            Cache(),
            base_url="https://chat.example.com",
            api_token="secret-token",
            account_id="1",
            inbox_id="1",
            transport=httpx.MockTransport(handler),
        )
        await gateway.send_message("11999998888", "Oi")

        assert set(seen) == {"secret-token"}

    async def test_default_contact_name(self):
        api = FakeChatwoot()

        await make_gateway(api).send_message("11999998888", "Oi")

        assert api.requests[1][2]["name"] == "Paciente (Via Automação)"

    async def test_cached_ids_are_reused(self):
        api = FakeChatwoot(existing_contact=True)
        gateway = make_gateway(api)

        await gateway.send_message("11999998888", "Primeira")
        api.requests.clear()
        result = await gateway.send_message("11999998888", "Segunda")

        assert result.success is True
        assert api.paths == ["POST /conversations/7/messages"]

    async def test_api_error_is_a_failed_result_and_invalidates_cache(self):
        api = FakeChatwoot(message_status=500)
        cache = Cache()
        gateway = make_gateway(api, cache=cache)

        result = await gateway.send_message("11999998888", "Oi")

        assert result.success is False
        assert "500" in result.error
        assert cache.get("chatwoot:contact:5511999998888") is None
        assert cache.get("chatwoot:conversation:1:42") is None

    async def test_network_error_is_a_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = ChatwootGateway(
            Cache(),
            base_url="https://chat.example.com",
            api_token="token",
            transport=httpx.MockTransport(handler),
        )

        result = await gateway.send_message("11999998888", "Oi")

        assert result.success is False
        assert "connection refused" in result.error

    async def test_not_configured(self):
        api = FakeChatwoot()

        result = await make_gateway(api, api_token="").send_message("11999998888", "Oi")

        assert result.success is False
        assert result.error == "Messaging bridge not configured"
        assert api.requests == []

    async def test_missing_phone(self):
        api = FakeChatwoot()

        result = await make_gateway(api).send_message("", "Oi")

        assert result.success is False
        assert result.error == "No phone number provided"
