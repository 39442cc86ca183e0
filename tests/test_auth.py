"""
Tests for session token verification and the identity dependency.
"""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from auth.dependencies import Identity, get_current_user_id, get_identity
from auth.jwt import InvalidSessionToken, create_token, verify_token


class TestTokens:
    def test_round_trip(self):
        assert verify_token(create_token("u1")) == "u1"

    def test_expired(self):
        with pytest.raises(InvalidSessionToken):
            verify_token(create_token("u1", expires_in=-1))

    def test_wrong_secret(self):
        token = create_token("u1", secret="other-secret")

        with pytest.raises(InvalidSessionToken):
            verify_token(token)

    @pytest.mark.parametrize("token", ["", "no-dot", "!!!.sig", "e30=.deadbeef"])
    def test_malformed(self, token):
        with pytest.raises(InvalidSessionToken):
            verify_token(token)

    def test_tampered_payload(self):
        token = create_token("u1")
        forged = create_token("admin").split(".")[0] + "." + token.split(".")[1]

        with pytest.raises(InvalidSessionToken):
            verify_token(forged)


@pytest.fixture
def client():
    app = FastAPI()

    @app.get("/whoami")
    async def whoami(identity: Identity = Depends(get_identity)):
        return {"user_id": identity.user_id, "authenticated": identity.is_authenticated}

    @app.get("/protected")
    async def protected(user_id: str = Depends(get_current_user_id)):
        return {"user_id": user_id}

    return TestClient(app)


class TestDependencies:
    def test_bearer_header(self, client):
        resp = client.get("/whoami", headers={"Authorization": f"Bearer {create_token('u1')}"})

        assert resp.json() == {"user_id": "u1", "authenticated": True}

    def test_session_cookie(self, client):
        client.cookies.set("session_token", create_token("u2"))

        assert client.get("/whoami").json() == {"user_id": "u2", "authenticated": True}

    def test_anonymous(self, client):
        assert client.get("/whoami").json() == {"user_id": None, "authenticated": False}

    def test_invalid_token_is_anonymous(self, client):
        resp = client.get("/whoami", headers={"Authorization": "Bearer garbage"})

        assert resp.json()["authenticated"] is False

    def test_protected_rejects_anonymous(self, client):
        resp = client.get("/protected")

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Unauthorized. Please log in first."

    def test_protected_accepts_token(self, client):
        resp = client.get("/protected", headers={"Authorization": f"Bearer {create_token('u1')}"})

        assert resp.json() == {"user_id": "u1"}
