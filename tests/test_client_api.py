"""Tests for the client HTTP adapter against a mocked transport."""

import json

import httpx
import pytest

from bubblechat.client.api import (
    GENERIC_ERROR_MESSAGE,
    NETWORK_ERROR_MESSAGE,
    ChatApiClient,
    ChatAuthError,
    ChatClientError,
    DeviceTokenCache,
)
from bubblechat.client.config import ClientSettings
from bubblechat.client.storage import APP_KEY, JsonFileStorage, MemoryStorage


def make_client(handler, storage=None, device_tokens=None):
    return ChatApiClient(
        storage=storage or MemoryStorage({APP_KEY: "old-key"}),
        device_tokens=device_tokens,
        settings=ClientSettings(BASE_URL="http://backend.test"),
        transport=httpx.MockTransport(handler),
    )


class TestChatApiClient:

    async def test_sends_credentials_and_device_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["fcm"] = request.headers.get("X-FCM-Token")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"threadId": "t1", "replies": ["hey"], "messages": []})

        client = make_client(handler, device_tokens=DeviceTokenCache(lambda: "device-1"))
        data = await client.send_turn("maya", "hi")
        await client.aclose()

        assert data["replies"] == ["hey"]
        assert seen == {
            "auth": "Bearer old-key",
            "fcm": "device-1",
            "body": {"personaId": "maya", "text": "hi"},
        }

    async def test_rotated_token_is_stored(self):
        storage = MemoryStorage({APP_KEY: "old-key"})

        def handler(request):
            return httpx.Response(200, json={"thread": None, "messages": [], "total": 0, "new_token": "fresh"})

        async with make_client(handler, storage=storage) as client:
            await client.get_messages("maya")

        assert await storage.get(APP_KEY) == "fresh"

    async def test_401_clears_stored_token(self):
        storage = MemoryStorage({APP_KEY: "old-key"})

        def handler(request):
            return httpx.Response(401, json={"error": "Could not validate credentials"})

        async with make_client(handler, storage=storage) as client:
            with pytest.raises(ChatAuthError):
                await client.list_personas()

        assert await storage.get(APP_KEY) is None

    async def test_missing_token_fails_before_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        async with make_client(handler, storage=MemoryStorage()) as client:
            with pytest.raises(ChatAuthError):
                await client.send_turn("maya", "hi")

        assert calls == []

    async def test_retryable_server_message_is_passed_through(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Try again in a bit!", "retryable": True})

        async with make_client(handler) as client:
            with pytest.raises(ChatClientError) as exc_info:
                await client.send_turn("maya", "hi")

        assert exc_info.value.message == "Try again in a bit!"
        assert exc_info.value.status_code == 500

    async def test_other_errors_are_generic(self):
        def handler(request):
            return httpx.Response(400, json={"error": "personaId: Field required"})

        async with make_client(handler) as client:
            with pytest.raises(ChatClientError) as exc_info:
                await client.send_turn("maya", "hi")

        assert exc_info.value.message == GENERIC_ERROR_MESSAGE

    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ChatClientError) as exc_info:
                await client.send_turn("maya", "hi")

        assert exc_info.value.message == NETWORK_ERROR_MESSAGE

    async def test_register_stores_app_key(self):
        storage = MemoryStorage()
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"success": True, "app_key": "new-key", "phone": "+1555"})

        async with make_client(handler, storage=storage, device_tokens=DeviceTokenCache(lambda: "dev")) as client:
            await client.register("+1555", city="Pune")

        assert await storage.get(APP_KEY) == "new-key"
        assert seen["body"] == {"phone": "+1555", "fcm_token": "dev", "city": "Pune"}
        assert seen["auth"] is None


class TestDeviceTokenCache:

    async def test_provider_called_once_until_cleared(self):
        calls = []

        async def provider():
            calls.append(1)
            return f"token-{len(calls)}"

        cache = DeviceTokenCache(provider)
        assert await cache.get() == "token-1"
        assert await cache.get() == "token-1"

        cache.clear()
        assert await cache.get() == "token-2"
        assert len(calls) == 2

    async def test_without_provider(self):
        cache = DeviceTokenCache()
        assert await cache.get() is None
        cache.set("manual")
        assert await cache.get() == "manual"


class TestJsonFileStorage:

    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "store.json"
        first = JsonFileStorage(path)
        await first.set("a", "1")
        await first.set("b", "2")
        await first.remove("a")

        second = JsonFileStorage(path)
        assert await second.get("a") is None
        assert await second.get("b") == "2"

    async def test_missing_file_reads_empty(self, tmp_path):
        assert await JsonFileStorage(tmp_path / "nope.json").get("x") is None
