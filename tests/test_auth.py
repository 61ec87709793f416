"""
Tests for authentication endpoints - SRP login, 2FA gating and sessions.
"""
import pyotp
import pytest

from zkvault.client.srp_client import build_registration


class TestRegistration:

    def test_register_returns_session(self, client, register, headers):
        token = register("alice", "correcthorse123")
        response = client.get("/auth/me", headers=headers(token))
        assert response.status_code == 200
        assert response.json()["username"] == "alice"
        assert response.json()["has_2fa"] is False

    def test_register_duplicate_username(self, client, register):
        register("alice", "correcthorse123")
        response = client.post("/auth/register", json={"username": "alice", **build_registration("alice", "x")})
        assert response.status_code == 400
        assert response.json()["detail"] == "Username already exists"

    def test_register_short_username(self, client):
        response = client.post("/auth/register", json={"username": "al", **build_registration("al", "x")})
        assert response.status_code == 422

    def test_register_oversized_verifier(self, client):
        response = client.post("/auth/register", json={
            "username": "alice", "srp_salt": "ab" * 16, "srp_verifier": "f" * 1001,
        })
        assert response.status_code == 422

    def test_register_username_limit_is_bytes(self, client):
        # 128 two-byte characters: 128 chars, 256 bytes
        username = "é" * 128
        response = client.post("/auth/register", json={"username": username, "srp_salt": "ab" * 16, "srp_verifier": "cd" * 64})
        assert response.status_code == 422

    def test_register_missing_field(self, client):
        response = client.post("/auth/register", json={"username": "alice", "srp_salt": "ab" * 16})
        assert response.status_code == 422


class TestSrpLogin:

    def test_login_success(self, register, srp_login):
        register("alice", "correcthorse123")
        response, srp = srp_login("alice", "correcthorse123")
        assert response.status_code == 200
        body = response.json()
        assert srp.verify_server_proof(body["server_proof"])
        assert len(body["token"]) == 96
        assert "requires_2fa" not in body

    def test_wrong_password_same_error_as_unknown_user(self, client, register, srp_login):
        register("alice", "correcthorse123")
        wrong, _ = srp_login("alice", "wrongpassword")

        unknown = client.post("/auth/srp-challenge", json={"username": "bob"})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"detail": "Invalid credentials"}
        assert "token" not in wrong.json()

    def test_replayed_proof_fails(self, client, register):
        from zkvault.client.srp_client import SrpClientLogin

        register("alice", "correcthorse123")
        challenge = client.post("/auth/srp-challenge", json={"username": "alice"}).json()
        a_pub, proof = SrpClientLogin("alice", "correcthorse123").respond(challenge["salt"], challenge["server_public_key"])
        body = {"username": "alice", "client_public_key": a_pub, "client_proof": proof}

        assert client.post("/auth/login", json=body).status_code == 200
        replay = client.post("/auth/login", json=body)
        assert replay.status_code == 401
        assert replay.json()["detail"] == "Invalid credentials"

    def test_login_without_challenge(self, client, register):
        register("alice", "correcthorse123")
        response = client.post("/auth/login", json={
            "username": "alice", "client_public_key": "ab" * 128, "client_proof": "cd" * 32,
        })
        assert response.status_code == 401


class TestTwoFactor:

    def _enable(self, client, headers, token):
        setup = client.post("/auth/2fa/setup", headers=headers(token))
        assert setup.status_code == 200
        secret = setup.json()["secret"]
        assert setup.json()["qr_code_url"].startswith("otpauth://")
        response = client.post("/auth/2fa/enable", headers=headers(token), json={
            "secret": secret, "token": pyotp.TOTP(secret).now(),
        })
        assert response.status_code == 200
        return secret

    def test_setup_alone_does_not_enable(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        client.post("/auth/2fa/setup", headers=headers(token))
        response, _ = srp_login("alice", "correcthorse123")
        assert "token" in response.json()

    def test_login_gated_until_code(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        secret = self._enable(client, headers, token)

        response, srp = srp_login("alice", "correcthorse123")
        body = response.json()
        assert response.status_code == 200
        assert body["requires_2fa"] is True
        assert "token" not in body
        assert srp.verify_server_proof(body["server_proof"])

        verified = client.post("/auth/verify-2fa", json={
            "temp_token": body["temp_token"], "totp_code": pyotp.TOTP(secret).now(),
        })
        assert verified.status_code == 200
        session_token = verified.json()["token"]
        assert client.get("/auth/me", headers=headers(session_token)).json()["has_2fa"] is True

    def test_wrong_code_then_right_code(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        secret = self._enable(client, headers, token)
        temp_token = srp_login("alice", "correcthorse123")[0].json()["temp_token"]

        wrong = client.post("/auth/verify-2fa", json={"temp_token": temp_token, "totp_code": "000000"})
        if wrong.status_code == 200:
            pytest.skip("000000 happened to be the current code")
        assert wrong.status_code == 400

        right = client.post("/auth/verify-2fa", json={"temp_token": temp_token, "totp_code": pyotp.TOTP(secret).now()})
        assert right.status_code == 200

    def test_temp_token_is_single_use(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        secret = self._enable(client, headers, token)
        temp_token = srp_login("alice", "correcthorse123")[0].json()["temp_token"]
        code = pyotp.TOTP(secret).now()

        assert client.post("/auth/verify-2fa", json={"temp_token": temp_token, "totp_code": code}).status_code == 200
        again = client.post("/auth/verify-2fa", json={"temp_token": temp_token, "totp_code": code})
        assert again.status_code == 401

    def test_malformed_code_rejected_by_schema(self, client):
        response = client.post("/auth/verify-2fa", json={"temp_token": "x", "totp_code": "12ab56"})
        assert response.status_code == 422

    def test_disable(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        secret = self._enable(client, headers, token)
        response = client.post("/auth/2fa/disable", headers=headers(token), json={"token": pyotp.TOTP(secret).now()})
        assert response.status_code == 200
        assert "token" in srp_login("alice", "correcthorse123")[0].json()

    def test_enable_with_wrong_code(self, client, register, headers):
        token = register("alice", "correcthorse123")
        secret = client.post("/auth/2fa/setup", headers=headers(token)).json()["secret"]
        response = client.post("/auth/2fa/enable", headers=headers(token), json={"secret": secret, "token": "abcdef"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid verification code"

    def test_enable_twice_rejected(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        secret = self._enable(client, headers, token)

        # A stolen session must not be able to swap in its own secret
        other = pyotp.random_base32()
        response = client.post("/auth/2fa/enable", headers=headers(token), json={
            "secret": other, "token": pyotp.TOTP(other).now(),
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "2FA is already enabled"

        temp_token = srp_login("alice", "correcthorse123")[0].json()["temp_token"]
        verified = client.post("/auth/verify-2fa", json={"temp_token": temp_token, "totp_code": pyotp.TOTP(secret).now()})
        assert verified.status_code == 200


class TestCredentialChanges:

    def test_password_change(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        other = srp_login("alice", "correcthorse123")[0].json()["token"]

        response = client.put("/auth/password", headers=headers(token), json=build_registration("alice", "newpassword1"))
        assert response.status_code == 200

        assert srp_login("alice", "correcthorse123")[0].status_code == 401
        assert srp_login("alice", "newpassword1")[0].status_code == 200
        # Other sessions are revoked, the current one survives
        assert client.get("/auth/me", headers=headers(other)).status_code == 401
        assert client.get("/auth/me", headers=headers(token)).status_code == 200

    def test_username_change(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        response = client.put("/auth/username", headers=headers(token), json={
            "username": "alicia", **build_registration("alicia", "correcthorse123"),
        })
        assert response.status_code == 200
        assert srp_login("alicia", "correcthorse123")[0].status_code == 200
        assert client.post("/auth/srp-challenge", json={"username": "alice"}).status_code == 401

    def test_username_change_to_taken_name(self, client, register, headers):
        token = register("alice", "correcthorse123")
        register("bob", "hunter22")
        response = client.put("/auth/username", headers=headers(token), json={
            "username": "bob", **build_registration("bob", "correcthorse123"),
        })
        assert response.status_code == 400


class TestSessions:

    def test_requires_bearer_token(self, client):
        assert client.get("/auth/me").status_code == 401
        assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_list_sessions(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        srp_login("alice", "correcthorse123")
        sessions = client.get("/auth/sessions", headers=headers(token)).json()
        assert len(sessions) == 2
        assert sum(1 for s in sessions if s["is_current"]) == 1

    def test_delete_other_session(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        other = srp_login("alice", "correcthorse123")[0].json()["token"]
        sessions = client.get("/auth/sessions", headers=headers(token)).json()
        other_id = next(s["id"] for s in sessions if not s["is_current"])
        current_id = next(s["id"] for s in sessions if s["is_current"])

        assert client.delete(f"/auth/sessions/{current_id}", headers=headers(token)).status_code == 400
        assert client.delete(f"/auth/sessions/{other_id}", headers=headers(token)).status_code == 200
        assert client.get("/auth/me", headers=headers(other)).status_code == 401
        assert client.delete(f"/auth/sessions/{other_id}", headers=headers(token)).status_code == 404

    def test_cannot_delete_someone_elses_session(self, client, register, headers):
        alice = register("alice", "correcthorse123")
        bob = register("bob", "hunter22")
        bob_session = client.get("/auth/sessions", headers=headers(bob)).json()[0]["id"]
        assert client.delete(f"/auth/sessions/{bob_session}", headers=headers(alice)).status_code == 404
        assert client.get("/auth/me", headers=headers(bob)).status_code == 200

    def test_delete_all_other_sessions(self, client, register, headers, srp_login):
        token = register("alice", "correcthorse123")
        srp_login("alice", "correcthorse123")
        srp_login("alice", "correcthorse123")
        response = client.delete("/auth/sessions", headers=headers(token))
        assert response.json()["count"] == 2
        assert len(client.get("/auth/sessions", headers=headers(token)).json()) == 1

    def test_logout(self, client, register, headers):
        token = register("alice", "correcthorse123")
        assert client.post("/auth/logout", headers=headers(token)).status_code == 200
        assert client.get("/auth/me", headers=headers(token)).status_code == 401
