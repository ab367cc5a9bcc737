"""
HTTP tests for the auth routes, dependencies, error handlers and CSP middleware.
"""

import json
from urllib.parse import parse_qs, urlencode, urlparse

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from main import create_app
from shopify_auth.api.dependencies.shopify import require_shopify_session, verified_webhook
from shopify_auth.integrations.shopify.oauth_client import TokenExchangeClient
from shopify_auth.services.auth_orchestrator import AuthOrchestrator, AuthResult
from shopify_auth.services.hmac_verifier import WebhookContext
from shopify_auth.services.session_store import InMemorySessionStore
from shopify_auth.services.webhook_reconciler import WebhookReconciler
from shopify_auth.tests.conftest import TEST_CLIENT_ID, TEST_CLIENT_SECRET, TEST_SHOP
from shopify_auth.tests.helpers.hmac_signing import (
    compute_shopify_hmac,
    create_invalid_signature,
    sign_query,
)


@pytest.fixture
def app(app_config, fake_shopify):
    orchestrator = AuthOrchestrator(
        app_config,
        InMemorySessionStore(),
        exchange_client=TokenExchangeClient(app_config, http_client=fake_shopify.client()),
        reconciler=WebhookReconciler(app_config, http_client=fake_shopify.client()),
    )
    app = create_app(app_config, orchestrator=orchestrator)

    @app.get("/app/products")
    async def products(auth: AuthResult = Depends(require_shopify_session)):
        return {"shop": auth.shop, "locale": auth.locale}

    @app.post("/webhooks")
    async def webhooks(webhook: WebhookContext = Depends(verified_webhook)):
        return {"shop": webhook.shop, "topic": webhook.topic}

    return app


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


class TestInstallRoutes:

    def test_begin_install_redirects_to_authorize(self, client):
        query = sign_query({"shop": TEST_SHOP, "timestamp": "1"}, TEST_CLIENT_SECRET)

        response = client.get(f"/auth?{urlencode(query)}")

        assert response.status_code == 302
        assert response.headers["location"].startswith(f"https://{TEST_SHOP}/admin/oauth/authorize?")

    def test_install_callback_redirects_into_admin(self, client, fake_shopify):
        query = sign_query({"shop": TEST_SHOP, "code": "abc", "timestamp": "1"}, TEST_CLIENT_SECRET)

        response = client.get(f"/auth/install?{urlencode(query)}")

        assert response.status_code == 302
        assert response.headers["location"] == f"https://{TEST_SHOP}/admin/apps/{TEST_CLIENT_ID}"
        assert len(fake_shopify.token_requests()) == 1

    def test_update_callback(self, client):
        query = sign_query({"shop": TEST_SHOP, "code": "abc"}, TEST_CLIENT_SECRET)
        response = client.get(f"/auth/update?{urlencode(query)}")
        assert response.status_code == 302

    def test_bad_hmac_returns_401(self, client, fake_shopify):
        query = sign_query({"shop": TEST_SHOP, "code": "abc"}, "wrong-secret")

        response = client.get(f"/auth/install?{urlencode(query)}")

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_hmac"
        assert fake_shopify.requests == []

    @pytest.mark.parametrize("shop", ["store.evil.com", f"{TEST_SHOP}\n"])
    def test_invalid_shop_returns_401(self, client, fake_shopify, shop):
        query = sign_query({"shop": shop, "code": "abc"}, TEST_CLIENT_SECRET)

        response = client.get(f"/auth/install?{urlencode(query)}")

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_shop"
        assert fake_shopify.requests == []

    def test_exchange_failure_returns_502(self, client, fake_shopify):
        fake_shopify.token_response = (400, {"error": "invalid_request"})
        query = sign_query({"shop": TEST_SHOP, "code": "abc"}, TEST_CLIENT_SECRET)

        install = client.get(f"/auth/install?{urlencode(query)}")
        update = client.get(f"/auth/update?{urlencode(query)}")

        assert install.status_code == 502
        assert install.json()["error"] == "install_error"
        assert update.status_code == 502
        assert update.json()["error"] == "update_error"


class TestBouncePage:

    def test_bounce_page_loads_app_bridge(self, client):
        response = client.get("/auth/session-token-bounce?shop=x&shopify-reload=%2Fapp")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert f'<meta name="shopify-api-key" content="{TEST_CLIENT_ID}" />' in response.text
        assert '<script src="https://cdn.shopify.com/shopifycloud/app-bridge.js"></script>' in response.text


class TestProtectedRoute:

    def test_missing_token_redirects_to_bounce(self, client):
        response = client.get(f"/app/products?shop={TEST_SHOP}")

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.path == "/auth/session-token-bounce"
        assert parse_qs(location.query)["shopify-reload"] == [f"/app/products?shop={TEST_SHOP}"]

    def test_valid_token_establishes_session(self, client, make_session_token):
        token = make_session_token(loc="fr")

        response = client.get("/app/products", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json() == {"shop": TEST_SHOP, "locale": "fr"}

    def test_exchange_failure_returns_502(self, client, make_session_token, fake_shopify):
        fake_shopify.token_response = (401, {"error": "invalid_client"})

        response = client.get(f"/app/products?id_token={make_session_token()}")

        assert response.status_code == 502
        assert response.json()["error"] == "exchange_error"


class TestWebhookRoute:

    def test_valid_webhook(self, client):
        body = json.dumps({"id": 1}).encode()
        headers = {
            "X-Shopify-Hmac-Sha256": compute_shopify_hmac(body, TEST_CLIENT_SECRET),
            "X-Shopify-Shop-Domain": TEST_SHOP,
            "X-Shopify-Topic": "app/uninstalled",
            "Content-Type": "application/json",
        }

        response = client.post("/webhooks", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"shop": TEST_SHOP, "topic": "app/uninstalled"}

    def test_invalid_signature_returns_401(self, client):
        headers = {"X-Shopify-Hmac-Sha256": create_invalid_signature(), "X-Shopify-Shop-Domain": TEST_SHOP}

        response = client.post("/webhooks", content=b"{}", headers=headers)

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_hmac"


class TestFrameAncestors:

    def test_policy_for_valid_shop(self, client):
        response = client.get(f"/health?shop={TEST_SHOP}")
        assert response.headers["content-security-policy"] == (
            f"frame-ancestors https://{TEST_SHOP} https://admin.shopify.com"
        )

    def test_no_framing_without_shop(self, client):
        response = client.get("/health")
        assert response.headers["content-security-policy"] == "frame-ancestors 'none'"

    def test_no_framing_for_invalid_shop(self, client):
        response = client.get("/health?shop=evil.com")
        assert response.headers["content-security-policy"] == "frame-ancestors 'none'"
