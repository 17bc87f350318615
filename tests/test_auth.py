import pytest
from jose import jwt

from cleardrip.auth import get_current_user_id
from cleardrip.config import get_settings
from cleardrip.errors import Unauthorized


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(get_settings(), "JWT_SECRET", "test-jwt-secret")
    return "test-jwt-secret"


def test_bearer_token_yields_subject(jwt_secret):
    token = jwt.encode({"sub": "user-1"}, jwt_secret, algorithm="HS256")

    assert get_current_user_id(f"Bearer {token}") == "user-1"


@pytest.mark.parametrize("header", [
    None,
    "",
    "Bearer",
    "Basic abc",
    "Bearer not-a-jwt",
    "Bearer " + jwt.encode({"sub": "user-1"}, "wrong-secret", algorithm="HS256"),
    "Bearer " + jwt.encode({"role": "admin"}, "test-jwt-secret", algorithm="HS256"),
])
def test_rejected_headers(header):
    with pytest.raises(Unauthorized):
        get_current_user_id(header)
