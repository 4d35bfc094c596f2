"""Shared test configuration.

Environment is set before ``app.config`` is imported anywhere: HS256 tokens
signed with a test secret, and dummy AWS credentials so boto3 can presign
URLs offline (presigning is local; no request is sent).
"""

import os
import time

os.environ.setdefault("TOKEN_SIGNING_KEY", "test-signing-secret")
os.environ.setdefault("TOKEN_ALGORITHMS", '["HS256"]')
os.environ.setdefault("COGNITO_USER_POOL_ID", "")
os.environ.setdefault("USE_TEMPORAL", "false")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-north-1")

import httpx  # noqa: E402
import pytest  # noqa: E402
from jose import jwt  # noqa: E402

TEST_SECRET = os.environ["TOKEN_SIGNING_KEY"]


def make_token(
    sub: str | None = "3f1c9a52-7d0e-4b8e-9c55-1a2b3c4d5e6f",
    *,
    expires_in: int = 3600,
    secret: str = TEST_SECRET,
    **extra,
) -> str:
    """Mint an HS256 identity token the way the user pool would."""
    claims = {"exp": int(time.time()) + expires_in, "token_use": "id", **extra}
    if sub is not None:
        claims["sub"] = sub
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
async def client():
    """HTTP client bound to the FastAPI app (no network, no lifespan)."""
    from app.main import app

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c
