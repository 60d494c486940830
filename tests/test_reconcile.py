"""Tests for client-side reconciliation of local and server messages."""

from bubblechat.client.reconcile import (
    ChatMessage,
    match_key,
    merge_page,
    parse_timestamp_ms,
    reconcile,
)

T = 1_700_000_000_000


def server(id_, role, text, ts):
    return ChatMessage(id=id_, role=role, text=text, ts=ts)


class TestReconcile:

    def test_optimistic_copy_replaced_by_server_copy(self):
        local = [ChatMessage.local("user", "hi", T)]
        remote = [server("s1", "user", "hi", T + 2000)]

        merged = reconcile(local, remote, now_ms=T + 3000)

        assert [(m.id, m.text) for m in merged] == [("s1", "hi")]

    def test_match_across_bucket_boundary(self):
        # T + 9_999 and T + 10_001 fall in different 10 s buckets
        base = T - (T % 10_000)
        local = [ChatMessage.local("user", "hello", base + 9_999)]
        remote = [server("s1", "user", "hello", base + 10_001)]

        assert [m.id for m in reconcile(local, remote, now_ms=base + 20_000)] == ["s1"]

    def test_outside_tolerance_is_not_a_match(self):
        local = [ChatMessage.local("user", "hi", T)]
        remote = [server("s1", "user", "hi", T + 15_000)]

        merged = reconcile(local, remote, now_ms=T + 20_000)

        assert [m.id for m in merged][0].startswith("local-")
        assert len(merged) == 2

    def test_role_must_match(self):
        local = [ChatMessage.local("user", "ok", T)]
        remote = [server("s1", "bot", "ok", T + 100)]

        assert len(reconcile(local, remote, now_ms=T + 1000)) == 2

    def test_text_compared_by_normalized_prefix(self):
        long_text = "x" * 250
        local = [ChatMessage.local("bot", long_text + " local tail", T)]
        remote = [server("s1", "bot", long_text + " server tail", T + 10)]

        assert [m.id for m in reconcile(local, remote, now_ms=T + 100)] == ["s1"]

    def test_each_server_message_matches_once(self):
        local = [ChatMessage.local("user", "hi", T), ChatMessage.local("user", "hi", T + 500)]
        remote = [server("s1", "user", "hi", T + 100)]

        merged = reconcile(local, remote, now_ms=T + 1000)

        assert [m.text for m in merged] == ["hi", "hi"]
        assert sum(1 for m in merged if m.provisional) == 1

    def test_unsynced_recent_message_is_kept_in_order(self):
        remote = [server("s1", "user", "first", T), server("s2", "bot", "reply", T + 1000)]
        pending = ChatMessage.local("user", "still sending", T + 60_000)

        merged = reconcile([pending], remote, now_ms=T + 61_000)

        assert [m.text for m in merged] == ["first", "reply", "still sending"]

    def test_stale_unsynced_message_is_dropped(self):
        remote = [server("s1", "user", "first", T)]
        stale = ChatMessage.local("bot", "error bubble", T + 1000)

        merged = reconcile([stale], remote, now_ms=T + 10 * 60_000)

        assert [m.id for m in merged] == ["s1"]

    def test_confirmed_messages_from_older_pages_survive(self):
        older = server("old", "user", "from page 0", T - 100_000)
        remote = [server("s1", "user", "newest page", T)]

        merged = reconcile([older], remote, now_ms=T)

        assert [m.id for m in merged] == ["old", "s1"]

    def test_no_server_messages_keeps_local_state(self):
        greeting = ChatMessage.local("bot", "Hi!", T)
        assert reconcile([greeting], [], now_ms=T + 10 * 60_000) == [greeting]

    def test_stale_provisional_before_a_partial_window_survives(self):
        question = ChatMessage.local("user", "earlier question", T - 300_000)
        remote = [server("s9", "bot", "latest reply", T)]
        now = T + 10 * 60_000

        kept = reconcile([question], remote, now_ms=now, has_older=True)
        dropped = reconcile([question], remote, now_ms=now, has_older=False)

        assert [m.text for m in kept] == ["earlier question", "latest reply"]
        assert [m.id for m in dropped] == ["s9"]


class TestMergePage:

    def test_confirmed_copies_replace_provisional_and_order_by_time(self):
        held = [
            ChatMessage.local("user", "q1", T),
            server("b1", "bot", "a1", T + 1_000),
            ChatMessage.local("user", "q2", T + 60_000),
            server("b2", "bot", "a2", T + 61_000),
        ]
        page = [
            server("u1", "user", "q1", T + 400),
            server("b1", "bot", "a1", T + 1_000),
            server("u2", "user", "q2", T + 60_400),
        ]

        merged = merge_page(held, page)

        assert [m.id for m in merged] == ["u1", "b1", "u2", "b2"]

    def test_unmatched_held_messages_are_kept(self):
        greeting = ChatMessage.local("bot", "Hi!", T - 5_000)
        newest = server("b9", "bot", "latest", T + 90_000)
        page = [server("u1", "user", "old question", T)]

        merged = merge_page([greeting, newest], page)

        assert [m.text for m in merged] == ["Hi!", "old question", "latest"]


def test_match_key_buckets_by_tolerance():
    message = ChatMessage(id="a", role="user", text="  hello   world ", ts=25_000)
    assert match_key(message, prefix_len=200, tolerance_ms=10_000) == ("user", "hello world", 2)


def test_parse_timestamp_treats_naive_as_utc():
    assert parse_timestamp_ms("1970-01-01T00:00:01") == 1000
    assert parse_timestamp_ms("1970-01-01T00:00:01Z") == 1000
    assert parse_timestamp_ms("1970-01-01T01:00:01+01:00") == 1000
