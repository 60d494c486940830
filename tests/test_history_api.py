"""Tests for POST /messages and the persona listing endpoints."""

from datetime import timedelta

from bubblechat.db.base import utcnow
from bubblechat.db.session import session_scope
from bubblechat.models import MessageRole
from bubblechat.services.thread_service import ThreadService

PHONE = "+15550001111"


async def _thread_with_messages(count, phone=PHONE, persona_id="maya"):
    start = utcnow() - timedelta(hours=1)
    async with session_scope() as db:
        thread, _ = await ThreadService.get_or_create(db, phone, persona_id)
    async with session_scope() as db:
        for i in range(count):
            await ThreadService.append_message(
                db, thread.id, MessageRole.user if i % 2 == 0 else MessageRole.bot,
                f"m{i}", created_at=start + timedelta(seconds=i),
            )
    return thread


class TestFetchHistory:

    async def test_no_thread_yet(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya")

        response = await client.post("/messages", json={"personaId": "maya"}, headers=auth_headers(PHONE))

        assert response.status_code == 200
        assert response.json() == {"thread": None, "messages": [], "total": 0}

    async def test_default_page(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya")
        thread = await _thread_with_messages(5)

        response = await client.post("/messages", json={"personaId": "maya"}, headers=auth_headers(PHONE))

        body = response.json()
        assert body["thread"]["id"] == thread.id
        assert body["thread"]["persona_id"] == "maya"
        assert body["total"] == 5
        assert [m["text"] for m in body["messages"]] == ["m0", "m1", "m2", "m3", "m4"]
        assert [m["role"] for m in body["messages"]][:2] == ["user", "bot"]

    async def test_pagination(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya")
        await _thread_with_messages(7)
        headers = auth_headers(PHONE)

        texts = []
        for page in range(3):
            response = await client.post(
                "/messages", json={"personaId": "maya", "page": page, "pageSize": 3}, headers=headers
            )
            texts.extend(m["text"] for m in response.json()["messages"])

        assert texts == [f"m{i}" for i in range(7)]

    async def test_only_own_thread_is_visible(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_user("+15550002222")
        await seed_persona("maya")
        await _thread_with_messages(3, phone="+15550002222")

        response = await client.post("/messages", json={"personaId": "maya"}, headers=auth_headers(PHONE))

        assert response.json()["thread"] is None

    async def test_invalid_page_size(self, client, seed_user, auth_headers):
        await seed_user(PHONE)
        response = await client.post(
            "/messages", json={"personaId": "maya", "pageSize": 0}, headers=auth_headers(PHONE)
        )
        assert response.status_code == 400

    async def test_rotated_token_returned(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya")

        response = await client.post(
            "/messages", json={"personaId": "maya"}, headers=auth_headers(PHONE, expired=True)
        )

        assert response.status_code == 200
        assert response.json()["new_token"]


class TestPersonas:

    async def test_get_lists_display_fields_only(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya", caption="Film buff", long_doc="secret backstory", is_premium=True)
        await seed_persona("leo", name="Leo")

        response = await client.get("/personas", headers=auth_headers(PHONE))

        assert response.status_code == 200
        data = response.json()["data"]
        assert [p["id"] for p in data] == ["leo", "maya"]
        maya = data[1]
        assert maya["caption"] == "Film buff"
        assert maya["is_premium"] is True
        assert "long_doc" not in maya
        assert "system_prompt" not in maya

    async def test_post_filters_by_id(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya")
        await seed_persona("leo", name="Leo")

        response = await client.post("/personas", json={"id": "maya"}, headers=auth_headers(PHONE))

        assert [p["id"] for p in response.json()["data"]] == ["maya"]

    async def test_post_without_body_lists_all(self, client, seed_user, seed_persona, auth_headers):
        await seed_user(PHONE)
        await seed_persona("maya")

        response = await client.post("/personas", headers=auth_headers(PHONE))

        assert [p["id"] for p in response.json()["data"]] == ["maya"]

    async def test_requires_credential(self, client):
        response = await client.get("/personas")
        assert response.status_code == 401
