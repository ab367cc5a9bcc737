"""
Shared test configuration and fixtures.

- app_config: AppConfig for a test app on the "example.com" shop domain
- make_session_token: factory for App Bridge-style session tokens
- fake_shopify: in-process Shopify backend (httpx.MockTransport)
- db_session_factory: SQLite in-memory database with the session table
"""

import time
from typing import Any, Dict, Optional

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shopify_auth.config.app_config import AppConfig, WebhookOptions
from shopify_auth.db_base import Base
from shopify_auth.tests.helpers.fake_shopify import FakeShopify

TEST_CLIENT_ID = "test-client-id"
TEST_CLIENT_SECRET = "test-client-secret"
TEST_APP_URL = "https://app.example.com"
TEST_SHOP = "test-shop.example.com"


@pytest.fixture
def app_config() -> AppConfig:
    """Config for an embedded app with two desired webhook topics."""
    return AppConfig(
        client_id=TEST_CLIENT_ID,
        client_secret=TEST_CLIENT_SECRET,
        endpoint_url=TEST_APP_URL,
        allowed_shop_domains=("example.com", "myshopify.com"),
        desired_webhooks={
            "app/uninstalled": WebhookOptions(callback_url="/webhooks/app-uninstalled"),
            "ORDERS_CREATE": None,
        },
        scopes=("read_products", "write_orders"),
    )


@pytest.fixture
def make_session_token():
    """Factory for session tokens signed like App Bridge signs them."""

    def _make(
        shop: str = TEST_SHOP,
        secret: str = TEST_CLIENT_SECRET,
        algorithm: str = "HS256",
        user_id: str = "42",
        omit: tuple = (),
        **overrides: Any,
    ) -> str:
        now = int(time.time())
        payload: Dict[str, Optional[Any]] = {
            "iss": f"https://{shop}/admin",
            "dest": f"https://{shop}",
            "aud": TEST_CLIENT_ID,
            "sub": user_id,
            "exp": now + 60,
            "nbf": now,
            "iat": now,
            "jti": "token-id",
            "sid": "session-id",
        }
        payload.update(overrides)
        for claim in omit:
            payload.pop(claim, None)
        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make


@pytest.fixture
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def db_session_factory():
    """SQLite in-memory database shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)

    yield factory

    Base.metadata.drop_all(engine)
    engine.dispose()
