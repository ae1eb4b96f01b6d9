"""
Auth tests — password hashing, JWT tokens, login/refresh/me, role guards.
"""

import jwt as pyjwt

from qms.core.caller import Caller
from qms.models.audit_log import AuditLog
from qms.services.jwt_service import (
    decode_access_token,
    decode_refresh_token,
    generate_token_pair,
)
from qms.utils.crypto import hash_password, verify_password



class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("secret-pass")
        assert hashed != "secret-pass"
        assert verify_password("secret-pass", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_verify_rejects_empty_and_malformed(self):
        assert not verify_password("", hash_password("x" * 8))
        assert not verify_password("secret", "not-a-bcrypt-hash")


class TestJwtTokens:
    def test_pair_round_trip(self):
        tokens = generate_token_pair(7, ["manager"], "m@acme.com")
        assert tokens["tokenType"] == "Bearer"
        access = decode_access_token(tokens["accessToken"])
        assert access["sub"] == "7"
        assert access["roles"] == ["manager"]
        assert access["email"] == "m@acme.com"
        assert decode_refresh_token(tokens["refreshToken"])["type"] == "refresh"

    def test_refresh_token_is_not_an_access_token(self):
        tokens = generate_token_pair(1, [])
        try:
            decode_access_token(tokens["refreshToken"])
        except pyjwt.InvalidTokenError:
            pass
        else:
            raise AssertionError("refresh token accepted as access token")


class TestCaller:
    def test_has_role(self):
        caller = Caller(user_id=1, roles=frozenset({"manager"}))
        assert caller.has_role("admin", "manager")
        assert not caller.has_role("admin")

    def test_superuser_holds_every_role(self):
        caller = Caller(user_id=1, roles=frozenset({"superuser"}))
        assert caller.has_role("admin")
        assert caller.has_role("anything")


class TestLogin:
    def test_login_success(self, client, member, password):
        res = client.post("/api/v1/auth/login", json={"email": member.email, "password": password})
        assert res.status_code == 200
        body = res.get_json()
        assert body["accessToken"]
        assert body["refreshToken"]
        assert body["user"]["email"] == member.email
        assert body["user"]["roles"] == ["user"]

    def test_login_is_case_insensitive_on_email(self, client, member, password):
        res = client.post(
            "/api/v1/auth/login", json={"email": member.email.upper(), "password": password}
        )
        assert res.status_code == 200

    def test_login_missing_fields(self, client):
        res = client.post("/api/v1/auth/login", json={"email": "a@acme.com"})
        assert res.status_code == 400
        assert res.get_json()["error"] == "Email and password are required"

    def test_login_wrong_password_is_audited(self, client, member):
        res = client.post("/api/v1/auth/login", json={"email": member.email, "password": "nope-nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid email or password"
        entry = AuditLog.query.filter_by(action="login", success=False).one()
        assert entry.entity_identifier == member.email

    def test_inactive_user_cannot_login(self, client, make_user, password):
        user = make_user("gone@acme.com", active=False)
        res = client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
        assert res.status_code == 401


class TestRefreshAndMe:
    def test_refresh_issues_new_pair(self, client, member):
        tokens = generate_token_pair(member.id, ["user"], member.email)
        res = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert res.status_code == 200
        assert decode_access_token(res.get_json()["accessToken"])["sub"] == str(member.id)

    def test_refresh_rejects_garbage(self, client):
        res = client.post("/api/v1/auth/refresh", json={"refreshToken": "garbage"})
        assert res.status_code == 401

    def test_refresh_requires_token(self, client):
        res = client.post("/api/v1/auth/refresh", json={})
        assert res.status_code == 400

    def test_me(self, client, member, member_headers):
        res = client.get("/api/v1/auth/me", headers=member_headers)
        assert res.status_code == 200
        assert res.get_json()["id"] == member.id

    def test_me_without_token(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.get_json()["error"] == "User not authenticated"

    def test_change_password(self, client, member, member_headers, password):
        res = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": password, "newPassword": "N3w-password!"},
            headers=member_headers,
        )
        assert res.status_code == 200
        login = client.post("/api/v1/auth/login", json={"email": member.email, "password": "N3w-password!"})
        assert login.status_code == 200

    def test_change_password_wrong_current(self, client, member_headers):
        res = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": "wrong-one", "newPassword": "N3w-password!"},
            headers=member_headers,
        )
        assert res.status_code == 400
        assert res.get_json()["error"] == "Current password is incorrect"


class TestRoleGuards:
    def test_member_cannot_list_users(self, client, member_headers):
        res = client.get("/api/v1/users", headers=member_headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Insufficient permissions"

    def test_admin_lists_users(self, client, admin_headers, member):
        res = client.get("/api/v1/users", headers=admin_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 2
        assert body["limit"] == 20

    def test_superuser_passes_admin_guard(self, client, superuser, headers_for):
        res = client.get("/api/v1/users", headers=headers_for(superuser))
        assert res.status_code == 200

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
        live = client.get("/api/v1/health/live")
        assert live.status_code == 200
        assert live.get_json()["checks"]["database"]["status"] == "ok"
