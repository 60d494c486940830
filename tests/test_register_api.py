"""Tests for registration and credential reissue."""

from bubblechat.core.security import verify_token
from bubblechat.db.session import session_scope
from bubblechat.models import User

PHONE = "+15550001111"


class TestRegister:

    async def test_creates_user_and_returns_app_key(self, client):
        response = await client.post(
            "/register",
            json={"phone": f"  {PHONE} ", "fcm_token": "device-1", "gender": "female", "age": 27, "city": "Pune"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["phone"] == PHONE
        assert verify_token(body["app_key"]) == PHONE

        async with session_scope() as db:
            user = await db.get(User, PHONE)
        assert user.push_token == "device-1"
        assert user.location == "Pune"
        assert user.age == 27

    async def test_reregistration_updates_supplied_fields(self, client, seed_user):
        await seed_user(PHONE, push_token="old-device")

        response = await client.post("/register", json={"phone": PHONE, "fcm_token": "new-device"})

        assert response.status_code == 200
        async with session_scope() as db:
            user = await db.get(User, PHONE)
        assert user.push_token == "new-device"

    async def test_location_alias(self, client):
        await client.post("/register", json={"phone": PHONE, "location": "Delhi"})
        async with session_scope() as db:
            user = await db.get(User, PHONE)
        assert user.location == "Delhi"

    async def test_missing_phone(self, client):
        response = await client.post("/register", json={"fcm_token": "device-1"})
        assert response.status_code == 400
        assert "error" in response.json()


class TestReissue:

    async def test_valid_token_gets_fresh_key(self, client, seed_user, auth_headers):
        await seed_user(PHONE)

        response = await client.post("/reissue-api-key", headers=auth_headers(PHONE))

        assert response.status_code == 200
        assert verify_token(response.json()["app_key"]) == PHONE

    async def test_expired_token_gets_fresh_key(self, client, seed_user, auth_headers):
        await seed_user(PHONE)

        response = await client.post("/reissue-api-key", headers=auth_headers(PHONE, expired=True))

        assert response.status_code == 200
        assert verify_token(response.json()["app_key"]) == PHONE

    async def test_expired_token_for_unknown_user(self, client, auth_headers):
        response = await client.post("/reissue-api-key", headers=auth_headers("+19990000000", expired=True))
        assert response.status_code == 401
