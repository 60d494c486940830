"""
client/reconcile.py
-------------------
Merge locally-held messages with a freshly fetched page of server history.

Local and server identities never coincide: a message sent optimistically
gets a provisional id on the device and a UUID on the server. Matching is
therefore content-based. Two copies are the same message when

    role matches,
    the normalized text prefix matches, and
    |local.ts - server.ts| <= tolerance_ms.

The match key buckets timestamps by tolerance_ms, so a lookup checks the
local bucket and its two neighbours and then applies the exact bound.

Merge rules for a fetched window of server messages:
  - every server message is kept (it is the confirmed copy)
  - a provisional local message matched by a server message is dropped
  - an unmatched provisional message survives while it is younger than
    recent_window_ms; older ones are taken to have failed or been lost,
    unless they predate a window that is not the whole history
  - confirmed local messages older than the fetched window are kept, since
    they come from pages this fetch did not cover

merge_page() folds in an older page fetched while scrolling back: it only
replaces provisional copies the page confirms, and keeps the result
sorted by timestamp.
"""

import itertools
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

_WHITESPACE = re.compile(r"\s+")

_local_ids = itertools.count()


@dataclass
class ChatMessage:
    id: str
    role: str
    text: str
    ts: int  # epoch milliseconds
    provisional: bool = False

    @classmethod
    def local(cls, role: str, text: str, ts: int) -> "ChatMessage":
        """A device-created message awaiting server confirmation."""
        return cls(id=f"local-{ts}-{next(_local_ids)}", role=role, text=text.strip(), ts=ts, provisional=True)

    @classmethod
    def from_server(cls, record: dict) -> "ChatMessage":
        return cls(
            id=str(record["id"]),
            role="bot" if record.get("role") == "model" else record.get("role", "bot"),
            text=(record.get("text") or "").strip(),
            ts=parse_timestamp_ms(record["created_at"]),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        return cls(
            id=str(data["id"]),
            role=data["role"],
            text=data["text"],
            ts=int(data["ts"]),
            provisional=bool(data.get("provisional", False)),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def parse_timestamp_ms(value) -> int:
    """ISO-8601 string or datetime → epoch ms. Naive values are UTC."""
    if isinstance(value, (int, float)):
        return int(value)
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def normalize_text(text: str, prefix_len: int) -> str:
    return _WHITESPACE.sub(" ", text.strip())[:prefix_len]


def match_key(message: ChatMessage, prefix_len: int, tolerance_ms: int) -> tuple[str, str, int]:
    return (
        message.role,
        normalize_text(message.text, prefix_len),
        message.ts // max(tolerance_ms, 1),
    )


def _sort_key(message: ChatMessage) -> tuple[int, int]:
    # Confirmed copies sort ahead of provisional ones sharing a timestamp.
    return message.ts, 1 if message.provisional else 0


class _Matcher:
    """Claims server messages for local copies; each one is claimed at most once."""

    def __init__(self, server: list[ChatMessage], tolerance_ms: int, prefix_len: int) -> None:
        self.tolerance_ms = tolerance_ms
        self.prefix_len = prefix_len
        self.claimed: set[str] = set()
        self.buckets: dict[tuple[str, str, int], list[ChatMessage]] = {}
        for message in server:
            self.buckets.setdefault(match_key(message, prefix_len, tolerance_ms), []).append(message)

    def claim(self, message: ChatMessage) -> Optional[ChatMessage]:
        role, prefix, bucket = match_key(message, self.prefix_len, self.tolerance_ms)
        for b in (bucket - 1, bucket, bucket + 1):
            for candidate in self.buckets.get((role, prefix, b), ()):
                if candidate.id in self.claimed:
                    continue
                if abs(candidate.ts - message.ts) <= self.tolerance_ms:
                    self.claimed.add(candidate.id)
                    return candidate
        return None


def reconcile(
    local: Iterable[ChatMessage],
    server: Iterable[ChatMessage],
    now_ms: int,
    tolerance_ms: int = 10_000,
    recent_window_ms: int = 120_000,
    prefix_len: int = 200,
    has_older: bool = False,
) -> list[ChatMessage]:
    """
    Return the merged conversation, ascending by timestamp.

    has_older says the server holds messages before the fetched window. Local
    messages older than the window were then never compared against the
    server, so they are kept whether provisional or confirmed.
    """
    server = list(server)
    if not server:
        return sorted(local, key=_sort_key)

    window_start = min(m.ts for m in server)
    server_ids = {m.id for m in server}
    matcher = _Matcher(server, tolerance_ms, prefix_len)

    merged = list(server)
    for message in local:
        if message.provisional:
            if matcher.claim(message) is not None:
                continue
            recent = now_ms - message.ts <= recent_window_ms
            if recent or (has_older and message.ts < window_start):
                merged.append(message)
        elif message.id not in server_ids and message.ts < window_start:
            merged.append(message)

    return sorted(merged, key=_sort_key)


def merge_page(
    local: Iterable[ChatMessage],
    page: Iterable[ChatMessage],
    tolerance_ms: int = 10_000,
    prefix_len: int = 200,
) -> list[ChatMessage]:
    """
    Fold an older history page into the held messages, ascending by timestamp.

    Nothing held is dropped except provisional copies the page confirms.
    Page messages already held (same id) are not added twice.
    """
    local = list(local)
    known = {m.id for m in local}
    fresh = [m for m in page if m.id not in known]
    matcher = _Matcher(fresh, tolerance_ms, prefix_len)

    kept = [m for m in local if not (m.provisional and matcher.claim(m) is not None)]
    return sorted(kept + fresh, key=_sort_key)
