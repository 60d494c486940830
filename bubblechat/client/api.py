"""
client/api.py
-------------
HTTP adapter between the client store and the BubbleChat backend.

Every authenticated call:
  - sends Authorization: Bearer <app_key> from storage,
  - sends X-FCM-Token when the DeviceTokenCache has a device token,
  - stores any new_token found in the response body (the only way a rotated
    credential reaches the client),
  - removes the stored app_key on 401 so the app falls back to registration.

Failures surface as ChatClientError with a message safe to show in the
conversation.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import structlog

from bubblechat.client.config import ClientSettings, get_client_settings
from bubblechat.client.storage import APP_KEY, Storage

logger = structlog.get_logger(__name__)

NETWORK_ERROR_MESSAGE = "I can't reach the server right now. Check your connection and try again?"
GENERIC_ERROR_MESSAGE = "Something went wrong on my side. Give it a moment and try again?"
AUTH_ERROR_MESSAGE = "Your session has ended. Please sign in again."

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class ChatClientError(Exception):
    """A request failed; str(exc) is fit for display."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ChatAuthError(ChatClientError):
    def __init__(self, message: str = AUTH_ERROR_MESSAGE) -> None:
        super().__init__(message, status_code=401)


class DeviceTokenCache:
    """
    Holds the device push token for X-FCM-Token headers.

    The provider is asked at most once until clear() is called, e.g. after
    the platform reports a token refresh.
    """

    def __init__(self, provider: Optional[TokenProvider] = None) -> None:
        self._provider = provider
        self._token: Optional[str] = None
        self._resolved = False

    async def get(self) -> Optional[str]:
        if self._resolved:
            return self._token
        token = None
        if self._provider is not None:
            token = self._provider()
            if inspect.isawaitable(token):
                token = await token
        self._token = token or None
        self._resolved = True
        return self._token

    def set(self, token: Optional[str]) -> None:
        self._token = token or None
        self._resolved = True

    def clear(self) -> None:
        self._token = None
        self._resolved = False


class ChatApiClient:

    def __init__(
        self,
        storage: Storage,
        device_tokens: Optional[DeviceTokenCache] = None,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_client_settings()
        self.storage = storage
        self.device_tokens = device_tokens or DeviceTokenCache()
        self._client = httpx.AsyncClient(
            base_url=self.settings.BASE_URL,
            timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def register(
        self,
        phone: str,
        gender: Optional[str] = None,
        age: Optional[int] = None,
        city: Optional[str] = None,
    ) -> str:
        """Register this device and store the returned app_key."""
        payload: dict[str, Any] = {"phone": phone}
        fcm_token = await self.device_tokens.get()
        if fcm_token:
            payload["fcm_token"] = fcm_token
        for key, value in (("gender", gender), ("age", age), ("city", city)):
            if value is not None:
                payload[key] = value

        data = await self._request("POST", "/register", json=payload, authenticated=False)
        app_key = data["app_key"]
        await self.storage.set(APP_KEY, app_key)
        return app_key

    async def reissue_api_key(self) -> str:
        data = await self._request("POST", "/reissue-api-key")
        await self.storage.set(APP_KEY, data["app_key"])
        return data["app_key"]

    async def send_turn(self, persona_id: str, text: str) -> dict:
        """Returns {threadId, replies, messages}."""
        return await self._request("POST", "/chat", json={"personaId": persona_id, "text": text})

    async def get_messages(self, persona_id: str, page: int = 0, page_size: Optional[int] = None) -> dict:
        """Returns {thread, messages, total}; page 0 is the oldest page."""
        body = {
            "personaId": persona_id,
            "page": page,
            "pageSize": page_size or self.settings.PAGE_SIZE,
        }
        return await self._request("POST", "/messages", json=body)

    async def list_personas(self, persona_id: Optional[str] = None) -> list[dict]:
        if persona_id:
            data = await self._request("POST", "/personas", json={"id": persona_id})
        else:
            data = await self._request("GET", "/personas")
        return data.get("data", [])

    async def report(
        self,
        message_id: str,
        reason: str,
        additional_info: Optional[str] = None,
    ) -> dict:
        body: dict[str, Any] = {"messageId": message_id, "reason": reason}
        if additional_info:
            body["additionalInfo"] = additional_info
        return await self._request("POST", "/reports", json=body)

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _headers(self, authenticated: bool) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if authenticated:
            app_key = await self.storage.get(APP_KEY)
            if not app_key:
                raise ChatAuthError("You're not registered yet. Please sign in first.")
            headers["Authorization"] = f"Bearer {app_key}"
        fcm_token = await self.device_tokens.get()
        if fcm_token:
            headers["X-FCM-Token"] = fcm_token
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        authenticated: bool = True,
    ) -> dict:
        headers = await self._headers(authenticated)
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Request timed out", path=path, error=str(exc))
            raise ChatClientError(NETWORK_ERROR_MESSAGE) from exc
        except httpx.TransportError as exc:
            logger.warning("Request failed to send", path=path, error=str(exc))
            raise ChatClientError(NETWORK_ERROR_MESSAGE) from exc

        if response.status_code == 401:
            logger.warning("Credential rejected, clearing app_key", path=path)
            await self.storage.remove(APP_KEY)
            raise ChatAuthError()

        data = self._decode(response)
        if response.is_error:
            logger.warning("Request failed", path=path, status=response.status_code)
            raise ChatClientError(self._error_message(data), response.status_code)

        new_token = data.get("new_token")
        if new_token:
            await self.storage.set(APP_KEY, new_token)
            logger.debug("Stored rotated credential", path=path)
        return data

    @staticmethod
    def _decode(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_message(data: dict) -> str:
        """
        Retryable upstream failures carry an already-friendly message; any
        other error body is for developers and is not shown verbatim.
        """
        if data.get("retryable") and isinstance(data.get("error"), str):
            return data["error"]
        return GENERIC_ERROR_MESSAGE
