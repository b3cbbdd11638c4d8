import hashlib
import hmac
import os

# paygate.database reads DATABASE_URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")
os.environ.setdefault("PAYDUNYA_MASTER_KEY", "test_master")
os.environ.setdefault("PAYDUNYA_PRIVATE_KEY", "test_private_key")
os.environ.setdefault("PAYDUNYA_TOKEN", "test_token")
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")

import pytest
from jose import jwt

from paygate.config import Settings

PRIVATE_KEY = "test_private_key"
JWT_SECRET = "test_jwt_secret"


def sign(body: bytes, key: str = PRIVATE_KEY, algo=hashlib.sha512) -> str:
    return hmac.new(key.encode(), body, algo).hexdigest()


def bearer(sub: str, **claims) -> dict:
    token = jwt.encode({"sub": sub, **claims}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings():
    return Settings(
        paydunya_master_key="test_master",
        paydunya_private_key=PRIVATE_KEY,
        paydunya_token="test_token",
        base_url="https://api.example.test",
        jwt_secret=JWT_SECRET,
    )
