"""
Security Test Suite: JWT Authentication

Tests that the bearer-token verification in dependencies.py correctly:
- Rejects missing Authorization headers
- Rejects malformed tokens
- Rejects expired tokens
- Rejects tokens with invalid signatures
- Accepts properly signed HS256 tokens
"""

import time
from unittest.mock import patch

import jwt
import pytest
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from paywall.api.dependencies import get_current_user_id
from paywall.config.settings import Settings


SECRET = "test-secret"
USER_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


# ---------------------------------------------------------------------------
# Minimal app that uses the real dependency
# ---------------------------------------------------------------------------

test_app = FastAPI()


@test_app.get("/protected")
async def protected_endpoint(user_id=Depends(get_current_user_id)):
    return {"user_id": str(user_id)}


client = TestClient(test_app, raise_server_exceptions=False)


def _token(secret: str = SECRET, **claims) -> str:
    payload = {"sub": USER_ID, "exp": int(time.time()) + 3600}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture(autouse=True)
def jwt_settings():
    with patch(
        "paywall.api.dependencies.get_settings",
        return_value=Settings(jwt_secret=SECRET, _env_file=None),
    ):
        yield


# ---------------------------------------------------------------------------
# Tests: rejection scenarios
# ---------------------------------------------------------------------------


class TestJWTRejection:
    """Verify that invalid/missing JWTs are rejected with 401."""

    def test_no_auth_header(self):
        resp = client.get("/protected")
        assert resp.status_code == 401

    def test_empty_bearer(self):
        resp = client.get("/protected", headers={"Authorization": "Bearer "})
        assert resp.status_code == 401

    def test_malformed_scheme(self):
        resp = client.get("/protected", headers={"Authorization": "Basic abc123"})
        assert resp.status_code == 401

    def test_garbage_token(self):
        resp = client.get("/protected", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    def test_wrong_secret(self):
        token = _token(secret="some-other-secret")
        resp = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_expired_token(self):
        """An expired token (even with correct secret) must be rejected."""
        token = _token(exp=int(time.time()) - 60)
        resp = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has expired"

    def test_missing_exp(self):
        token = jwt.encode({"sub": USER_ID}, SECRET, algorithm="HS256")
        resp = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_non_uuid_subject(self):
        token = _token(sub="not-a-uuid")
        resp = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_raw_uuid_rejected(self):
        """'Bearer <raw-uuid>' is not a token."""
        resp = client.get(
            "/protected",
            headers={"Authorization": f"Bearer {USER_ID}"},
        )
        assert resp.status_code == 401

    def test_unconfigured_secret(self):
        with patch(
            "paywall.api.dependencies.get_settings",
            return_value=Settings(jwt_secret=None, _env_file=None),
        ):
            resp = client.get("/protected", headers={"Authorization": f"Bearer {_token()}"})
        assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Tests: acceptance scenarios
# ---------------------------------------------------------------------------


class TestJWTAcceptance:
    """Verify that valid JWTs are accepted."""

    def test_valid_hs256_token(self):
        resp = client.get("/protected", headers={"Authorization": f"Bearer {_token()}"})
        assert resp.status_code == 200
        assert resp.json()["user_id"] == USER_ID

    def test_audience_checked_when_configured(self):
        settings = Settings(jwt_secret=SECRET, jwt_audience="authenticated", _env_file=None)
        with patch("paywall.api.dependencies.get_settings", return_value=settings):
            good = client.get(
                "/protected",
                headers={"Authorization": f"Bearer {_token(aud='authenticated')}"},
            )
            bad = client.get(
                "/protected",
                headers={"Authorization": f"Bearer {_token(aud='someone-else')}"},
            )
        assert good.status_code == 200
        assert bad.status_code == 401
