import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from content_api.auth import create_access_token, validate_token
from content_api.config import get_settings
from content_api.errors import TokenExpiredError, TokenInvalidError
from content_api.main import app

client = TestClient(app)


def test_token_round_trip():
    user_id = uuid.uuid4()
    token, expires = create_access_token(user_id, {"projects:create", "tasks:create"}, get_settings())
    principal = validate_token(token, get_settings())
    assert principal.user_id == user_id
    assert principal.credentials == frozenset({"projects:create", "tasks:create"})
    assert expires > datetime.now(timezone.utc)


def test_expired_token_is_rejected():
    token, _ = create_access_token(uuid.uuid4(), [], get_settings(), expires_delta=timedelta(seconds=-30))
    with pytest.raises(TokenExpiredError):
        validate_token(token, get_settings())


def test_token_signed_with_other_secret_is_invalid():
    exp = int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())
    token = jwt.encode({"user_id": str(uuid.uuid4()), "credentials": [], "exp": exp}, "other-secret", algorithm="HS256")
    with pytest.raises(TokenInvalidError):
        validate_token(token, get_settings())


@pytest.mark.parametrize(
    "claims",
    [
        {"credentials": []},
        {"user_id": "not-a-uuid", "credentials": []},
        {"user_id": str(uuid.uuid4()), "credentials": "projects:create"},
    ],
)
def test_bad_claims_are_invalid(claims):
    settings = get_settings()
    claims = {**claims, "exp": int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())}
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(TokenInvalidError):
        validate_token(token, settings)


def test_token_without_exp_is_invalid():
    settings = get_settings()
    token = jwt.encode({"user_id": str(uuid.uuid4()), "credentials": []}, settings.JWT_SECRET, algorithm="HS256")
    with pytest.raises(TokenInvalidError):
        validate_token(token, settings)


def test_garbage_token_is_invalid():
    with pytest.raises(TokenInvalidError):
        validate_token("not.a.jwt", get_settings())


def test_missing_header_is_401():
    r = client.get("/v1/me/projects")
    assert r.status_code == 401
    assert r.json() == {"status": 401, "error": "unauthorized", "msg": "missing or malformed JWT"}


def test_non_bearer_header_is_401():
    r = client.get("/v1/me/projects", headers={"Authorization": "Basic Zm9vOmJhcg=="})
    assert r.status_code == 401


def test_expired_token_on_protected_routes_is_401(auth_headers):
    # full credentials do not help once the token is expired
    headers = auth_headers(uuid.uuid4(), expires_delta=timedelta(minutes=-5))
    for method, url in [("POST", "/v1/project"), ("PATCH", "/v1/task"), ("DELETE", "/v1/answer"), ("GET", "/v1/cdn/list")]:
        r = client.request(method, url, headers=headers, json={})
        assert r.status_code == 401, url
        assert r.json()["error"] == "unauthorized"
        assert r.json()["msg"] == "token expired"
