"""
client/store.py
---------------
Client-side chat state: one Chat per persona, persisted to device storage.

Per-chat state machine:

    NOT_STARTED ──send──▶ LOCAL_ONLY ──load_from_server──▶ RECONCILED
         │                    ▲                                 │
         └──load_from_server──┼─────────────────────────────────┘
                              └──────────── send ───────────────┘

Sends are optimistic: the user's text is appended (and persisted) before
the network call, and a failed call appends an error bubble instead of a
reply. Loading from the server (on open / foreground) merges server history
with local state via reconcile.reconcile().

History pages are fetched backwards: load_from_server lands on the newest
page, load_older() merges in the page before the oldest one held. A merge
only swaps provisional copies for their confirmed ones and slots older
messages in by timestamp, so the message the user is looking at stays put.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import structlog

from bubblechat.client.api import ChatApiClient, ChatClientError
from bubblechat.client.config import ClientSettings, get_client_settings
from bubblechat.client.reconcile import ChatMessage, merge_page, reconcile
from bubblechat.client.storage import CHATS_KEY, Storage

logger = structlog.get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChatStatus(str, Enum):
    not_started = "not_started"
    local_only = "local_only"
    reconciled = "reconciled"


@dataclass
class Chat:
    id: str
    persona_id: str
    messages: list[ChatMessage] = field(default_factory=list)
    status: ChatStatus = ChatStatus.not_started
    thread_id: Optional[str] = None
    total: int = 0
    oldest_page: Optional[int] = None

    @property
    def has_older(self) -> bool:
        return bool(self.oldest_page)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "persona_id": self.persona_id,
            "messages": [m.to_dict() for m in self.messages],
            "status": self.status.value,
            "thread_id": self.thread_id,
            "total": self.total,
            "oldest_page": self.oldest_page,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chat":
        return cls(
            id=data["id"],
            persona_id=data["persona_id"],
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            status=ChatStatus(data.get("status", ChatStatus.not_started.value)),
            thread_id=data.get("thread_id"),
            total=int(data.get("total", 0)),
            oldest_page=data.get("oldest_page"),
        )


@dataclass
class OlderPage:
    added: int
    anchor_id: Optional[str]
    has_more: bool


class ChatStore:

    def __init__(
        self,
        api: ChatApiClient,
        storage: Storage,
        settings: Optional[ClientSettings] = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.api = api
        self.storage = storage
        self.settings = settings or get_client_settings()
        self._clock = clock
        self.chats: dict[str, Chat] = {}
        self.personas: list[dict] = []

    @staticmethod
    def chat_id_for(persona_id: str) -> str:
        return f"chat_{persona_id}"

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        return self.chats.get(chat_id)

    # ── Persistence ───────────────────────────────────────────────────────────

    async def hydrate(self) -> None:
        """Load persisted chats; unreadable state is discarded, not fatal."""
        raw = await self.storage.get(CHATS_KEY)
        if not raw:
            return
        try:
            data = json.loads(raw)
            self.chats = {chat_id: Chat.from_dict(chat) for chat_id, chat in data.items()}
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding unreadable chat state", error=str(exc))
            self.chats = {}
            return
        logger.debug("Chats hydrated", chats=len(self.chats))

    async def _persist(self) -> None:
        payload = {chat_id: chat.to_dict() for chat_id, chat in self.chats.items()}
        await self.storage.set(CHATS_KEY, json.dumps(payload, ensure_ascii=False))

    # ── Actions ───────────────────────────────────────────────────────────────

    async def refresh_personas(self) -> list[dict]:
        self.personas = await self.api.list_personas()
        return self.personas

    async def start_chat(self, persona_id: str) -> str:
        """Create the chat for persona_id with a local greeting, if absent."""
        chat_id = self.chat_id_for(persona_id)
        if chat_id in self.chats:
            return chat_id

        persona = next((p for p in self.personas if p.get("id") == persona_id), None)
        greeting = (persona or {}).get("default_message") or self.settings.GREETING
        self.chats[chat_id] = Chat(
            id=chat_id,
            persona_id=persona_id,
            messages=[ChatMessage.local("bot", greeting, self._clock())],
        )
        await self._persist()
        return chat_id

    async def send_user_message(self, chat_id: str, text: str) -> list[ChatMessage]:
        """
        Append the user's message, then the reply bubbles (or one error
        bubble). Returns the bot-side messages appended.
        """
        chat = self.chats.get(chat_id)
        if chat is None:
            raise KeyError(f"Unknown chat {chat_id!r}")

        sent_at = self._clock()
        chat.messages.append(ChatMessage.local("user", text, sent_at))
        chat.status = ChatStatus.local_only
        await self._persist()

        try:
            data = await self.api.send_turn(chat.persona_id, text)
        except ChatClientError as exc:
            logger.warning("Send failed", chat_id=chat_id, status=exc.status_code)
            appended = [ChatMessage.local("bot", exc.message, self._clock() + 1)]
        else:
            chat.thread_id = data.get("threadId") or chat.thread_id
            appended = self._reply_messages(data)

        chat.messages.extend(appended)
        await self._persist()
        return appended

    def _reply_messages(self, data: dict) -> list[ChatMessage]:
        records = data.get("messages") or []
        if records:
            return sorted((ChatMessage.from_server(r) for r in records), key=lambda m: m.ts)
        # Bot rows failed to persist server-side; show the replies anyway.
        base = self._clock()
        return [
            ChatMessage.local("bot", reply, base + i + 1)
            for i, reply in enumerate(data.get("replies") or [])
            if reply.strip()
        ]

    async def load_from_server(self, persona_id: str) -> str:
        """Fetch the newest history page and reconcile it into the chat."""
        chat_id = self.chat_id_for(persona_id)
        page_size = self.settings.PAGE_SIZE

        first = await self.api.get_messages(persona_id, page=0, page_size=page_size)
        total = int(first.get("total") or len(first.get("messages") or []))
        newest_page = max(0, (total - 1) // page_size)
        data = first
        if newest_page > 0:
            data = await self.api.get_messages(persona_id, page=newest_page, page_size=page_size)

        server = [ChatMessage.from_server(r) for r in data.get("messages") or []]

        # Re-read after the awaits: a send may have appended in the meantime.
        chat = self.chats.get(chat_id)
        if chat is None:
            chat = Chat(id=chat_id, persona_id=persona_id)
            self.chats[chat_id] = chat

        chat.messages = reconcile(
            chat.messages,
            server,
            now_ms=self._clock(),
            tolerance_ms=self.settings.MATCH_TOLERANCE_MS,
            recent_window_ms=self.settings.RECENT_WINDOW_MS,
            prefix_len=self.settings.MATCH_PREFIX_LENGTH,
            has_older=newest_page > 0,
        )
        thread = data.get("thread") or first.get("thread")
        chat.thread_id = thread["id"] if thread else chat.thread_id
        chat.total = total
        if server:
            # Page numbers count from the oldest message, so pages already
            # held stay valid as the thread grows.
            chat.oldest_page = (
                newest_page if chat.oldest_page is None else min(chat.oldest_page, newest_page)
            )
        chat.status = ChatStatus.reconciled
        await self._persist()

        logger.info(
            "Chat reconciled",
            chat_id=chat_id,
            server_messages=len(server),
            messages=len(chat.messages),
            page=newest_page,
        )
        return chat_id

    async def load_older(self, chat_id: str) -> OlderPage:
        """Merge in the page before the oldest one held; the anchor stays in place."""
        chat = self.chats.get(chat_id)
        if chat is None:
            raise KeyError(f"Unknown chat {chat_id!r}")

        anchor_id = chat.messages[0].id if chat.messages else None
        if not chat.has_older:
            return OlderPage(added=0, anchor_id=anchor_id, has_more=False)

        page = chat.oldest_page - 1
        data = await self.api.get_messages(
            chat.persona_id, page=page, page_size=self.settings.PAGE_SIZE
        )

        page_messages = [ChatMessage.from_server(r) for r in data.get("messages") or []]
        known = {m.id for m in chat.messages}
        added = sum(1 for m in page_messages if m.id not in known)
        chat.messages = merge_page(
            chat.messages,
            page_messages,
            tolerance_ms=self.settings.MATCH_TOLERANCE_MS,
            prefix_len=self.settings.MATCH_PREFIX_LENGTH,
        )
        chat.oldest_page = page
        await self._persist()
        return OlderPage(added=added, anchor_id=anchor_id, has_more=page > 0)
