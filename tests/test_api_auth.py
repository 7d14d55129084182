"""Integration tests for the /api/auth endpoints."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from tests.conftest import CHILD_PHONE, PARENT_PHONE, register_user


class TestRegister:
    async def test_register_success(self, client):
        resp = await client.post("/api/auth/register", json={
            "name": "김엄마",
            "phone": PARENT_PHONE,
            "role": "parent",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "User registered successfully"
        user = body["data"]["user"]
        assert user["name"] == "김엄마"
        assert user["role"] == "parent"
        assert user["phone_masked"].startswith("+82")
        assert "1234" not in user["phone_masked"]
        assert body["data"]["token"] == body["data"]["tokens"]["access_token"]
        assert body["data"]["tokens"]["token_type"] == "bearer"

    async def test_phone_is_stored_encrypted(self, client, db_session, cipher):
        from mundapdari.models.user import User

        await register_user(client, "김엄마", PARENT_PHONE, "parent")
        user = (await db_session.execute(select(User))).scalar_one()
        assert "1012345678" not in user.phone_encrypted
        assert cipher.decrypt_from_text(user.phone_encrypted) == "+821012345678"
        assert user.phone_hash == cipher.lookup_hash(PARENT_PHONE)

    async def test_register_duplicate_phone(self, client):
        await register_user(client, "김엄마", PARENT_PHONE, "parent")

        # Same number in a different format
        resp = await client.post("/api/auth/register", json={
            "name": "다른사람",
            "phone": "010-1234-5678",
            "role": "child",
        })
        assert resp.status_code == 409
        assert resp.json()["success"] is False

    async def test_register_invalid_phone(self, client):
        resp = await client.post("/api/auth/register", json={
            "name": "김엄마",
            "phone": "02-123-4567",
            "role": "parent",
        })
        assert resp.status_code == 422
        body = resp.json()
        assert body["message"] == "Validation failed"
        assert any(e["field"] == "phone" for e in body["errors"])

    async def test_register_invalid_name(self, client):
        resp = await client.post("/api/auth/register", json={
            "name": "Kim123",
            "phone": PARENT_PHONE,
            "role": "parent",
        })
        assert resp.status_code == 422

    async def test_register_admin_role_rejected(self, client):
        resp = await client.post("/api/auth/register", json={
            "name": "관리자",
            "phone": PARENT_PHONE,
            "role": "admin",
        })
        assert resp.status_code == 422

    async def test_register_with_invite_code_activates_pair(self, client, registered_parent):
        resp = await client.post("/api/auth/invite", headers=registered_parent["headers"])
        token = resp.json()["data"]["invitation_token"]

        child = await register_user(client, "김지우", CHILD_PHONE, "child", invite_code=token)

        resp = await client.get("/api/auth/pairs", headers=child["headers"])
        pairs = resp.json()["data"]["pairs"]
        assert len(pairs) == 1
        assert pairs[0]["status"] == "active"
        assert pairs[0]["parent_name"] == "김엄마"
        assert pairs[0]["child_name"] == "김지우"

    async def test_register_with_unknown_invite_code_still_registers(self, client):
        child = await register_user(client, "김지우", CHILD_PHONE, "child", invite_code="nope")
        resp = await client.get("/api/auth/pairs", headers=child["headers"])
        assert resp.json()["data"]["pairs"] == []


class TestLogin:
    async def test_login_success(self, client, registered_parent):
        resp = await client.post("/api/auth/login", json={"phone": "01012345678"})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["user"]["id"] == registered_parent["user_id"]
        assert "access_token" in data["tokens"]
        assert "refresh_token" in data["tokens"]

    async def test_login_unknown_phone(self, client):
        resp = await client.post("/api/auth/login", json={"phone": "010-5555-5555"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid phone number"

    async def test_login_deactivated_account(self, client, registered_parent):
        resp = await client.delete("/api/auth/account", headers=registered_parent["headers"])
        assert resp.status_code == 200

        resp = await client.post("/api/auth/login", json={"phone": PARENT_PHONE})
        assert resp.status_code == 401


class TestInvite:
    async def test_invite_authenticated(self, client, registered_parent):
        resp = await client.post("/api/auth/invite", headers=registered_parent["headers"])
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert len(data["invitation_token"]) == 64
        assert data["invitation_url"].endswith(f"/invite/{data['invitation_token']}")
        assert data["inviter"]["id"] == registered_parent["user_id"]

    async def test_invite_anonymous_registers_inviter(self, client):
        resp = await client.post("/api/auth/invite", json={
            "inviter_phone": PARENT_PHONE,
            "inviter_name": "김엄마",
            "inviter_role": "parent",
        })
        assert resp.status_code == 201
        assert resp.json()["data"]["inviter"]["name"] == "김엄마"

    async def test_invite_anonymous_without_details(self, client):
        resp = await client.post("/api/auth/invite", json={})
        assert resp.status_code == 422

    async def test_second_pending_invitation_rejected(self, client, registered_parent):
        first = await client.post("/api/auth/invite", headers=registered_parent["headers"])
        assert first.status_code == 201
        second = await client.post("/api/auth/invite", headers=registered_parent["headers"])
        assert second.status_code == 409

    async def test_invite_with_active_pair_rejected(self, client, paired_users):
        resp = await client.post("/api/auth/invite", headers=paired_users["parent"]["headers"])
        assert resp.status_code == 409


class TestAccept:
    async def _invite(self, client, headers):
        resp = await client.post("/api/auth/invite", headers=headers)
        return resp.json()["data"]["invitation_token"]

    async def test_accept_success(self, client, registered_parent):
        token = await self._invite(client, registered_parent["headers"])
        resp = await client.post("/api/auth/accept", json={
            "invitation_token": token,
            "invitee_phone": CHILD_PHONE,
            "invitee_name": "김지우",
            "invitee_role": "child",
        })
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["pair"]["status"] == "active"
        assert data["pair"]["partner"]["partner_name"] == "김엄마"
        assert "access_token" in data["tokens"]

    async def test_accept_wrong_role(self, client, registered_parent):
        token = await self._invite(client, registered_parent["headers"])
        resp = await client.post("/api/auth/accept", json={
            "invitation_token": token,
            "invitee_phone": CHILD_PHONE,
            "invitee_name": "김아빠",
            "invitee_role": "parent",
        })
        assert resp.status_code == 409

    async def test_accept_unknown_token(self, client):
        resp = await client.post("/api/auth/accept", json={
            "invitation_token": "0" * 64,
            "invitee_phone": CHILD_PHONE,
            "invitee_name": "김지우",
            "invitee_role": "child",
        })
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid or expired invitation"

    async def test_accept_expired_token(self, client, db_session, registered_parent):
        from mundapdari.models.pair import Pair

        token = await self._invite(client, registered_parent["headers"])
        pair = (await db_session.execute(select(Pair))).scalar_one()
        pair.invitation_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await db_session.commit()

        resp = await client.post("/api/auth/accept", json={
            "invitation_token": token,
            "invitee_phone": CHILD_PHONE,
            "invitee_name": "김지우",
            "invitee_role": "child",
        })
        assert resp.status_code == 400

    async def test_token_cannot_be_reused(self, client, registered_parent, random_phone):
        token = await self._invite(client, registered_parent["headers"])
        body = {
            "invitation_token": token,
            "invitee_phone": CHILD_PHONE,
            "invitee_name": "김지우",
            "invitee_role": "child",
        }
        assert (await client.post("/api/auth/accept", json=body)).status_code == 201

        body["invitee_phone"] = random_phone()
        assert (await client.post("/api/auth/accept", json=body)).status_code == 400


class TestTokens:
    async def test_verify(self, client, registered_parent):
        resp = await client.get("/api/auth/verify", headers=registered_parent["headers"])
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token_valid"] is True
        assert data["expires_at"] is not None

    async def test_missing_token(self, client):
        resp = await client.get("/api/auth/verify")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Access token required"

    async def test_garbage_token(self, client):
        resp = await client.get("/api/auth/verify", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid access token"

    async def test_refresh_token_rejected_as_access(self, client, registered_parent):
        refresh = registered_parent["tokens"]["refresh_token"]
        resp = await client.get("/api/auth/verify", headers={"Authorization": f"Bearer {refresh}"})
        assert resp.status_code == 401

    async def test_refresh_rotates(self, client, registered_parent):
        old_refresh = registered_parent["tokens"]["refresh_token"]
        resp = await client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
        assert resp.status_code == 200
        new_tokens = resp.json()["data"]["tokens"]
        assert new_tokens["refresh_token"] != old_refresh

        # Old token is revoked after rotation
        resp = await client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
        assert resp.status_code == 401

    async def test_refresh_with_access_token(self, client, registered_parent):
        access = registered_parent["tokens"]["access_token"]
        resp = await client.post("/api/auth/refresh", json={"refresh_token": access})
        assert resp.status_code == 401

    async def test_logout_revokes_refresh_tokens(self, client, registered_parent):
        resp = await client.post("/api/auth/logout", headers=registered_parent["headers"])
        assert resp.status_code == 200

        resp = await client.post(
            "/api/auth/refresh", json={"refresh_token": registered_parent["tokens"]["refresh_token"]},
        )
        assert resp.status_code == 401


class TestProfile:
    async def test_get_profile(self, client, paired_users):
        resp = await client.get("/api/auth/profile", headers=paired_users["parent"]["headers"])
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["user"]["name"] == "김엄마"
        assert len(data["pairs"]) == 1
        assert data["stats"]["total_answers"] == 0

    async def test_update_profile(self, client, registered_parent):
        resp = await client.put(
            "/api/auth/profile", headers=registered_parent["headers"], json={"name": "Kim Mom"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["name"] == "Kim Mom"


class TestPairsAndAccount:
    async def test_leave_pair(self, client, paired_users):
        headers = paired_users["child"]["headers"]
        resp = await client.delete(f"/api/auth/pairs/{paired_users['pair_id']}", headers=headers)
        assert resp.status_code == 200

        resp = await client.get("/api/auth/pairs", headers=headers)
        assert resp.json()["data"]["pairs"] == []

    async def test_leave_pair_not_member(self, client, paired_users, random_phone):
        other = await register_user(client, "남남", random_phone(), "parent")
        resp = await client.delete(f"/api/auth/pairs/{paired_users['pair_id']}", headers=other["headers"])
        assert resp.status_code == 403

    async def test_deactivate_account_closes_pairs(self, client, paired_users):
        resp = await client.delete("/api/auth/account", headers=paired_users["parent"]["headers"])
        assert resp.status_code == 200

        resp = await client.get("/api/auth/pairs", headers=paired_users["child"]["headers"])
        assert resp.json()["data"]["pairs"] == []

        # Deactivated user's token no longer works
        resp = await client.get("/api/auth/verify", headers=paired_users["parent"]["headers"])
        assert resp.status_code == 401
