"""
Tests for webhook subscription reconciliation.

Tests cover:
- Only missing desired topics are created
- Callback URL and format resolution
- Per-topic failures are isolated
- Listing failures surface as WebhookError
"""

import asyncio
from dataclasses import replace
from unittest.mock import patch

import pytest

from shopify_auth.config.app_config import WebhookOptions
from shopify_auth.errors import WebhookError
from shopify_auth.integrations.shopify.admin_client import ShopifyAdminClient
from shopify_auth.models.session import Session, offline_session_id
from shopify_auth.services.webhook_reconciler import WebhookReconciler
from shopify_auth.tests.conftest import TEST_APP_URL, TEST_SHOP


@pytest.fixture
def session():
    return Session(
        id=offline_session_id(TEST_SHOP),
        shop=TEST_SHOP,
        access_token="shpat_test_token",
        scope="read_products",
    )


@pytest.fixture
def reconciler(app_config, fake_shopify):
    return WebhookReconciler(app_config, http_client=fake_shopify.client())


class TestCallbackUrl:

    def test_relative_path_joined_to_endpoint(self, reconciler):
        assert reconciler.callback_url("/webhooks") == f"{TEST_APP_URL}/webhooks"
        assert reconciler.callback_url("webhooks") == f"{TEST_APP_URL}/webhooks"

    def test_absolute_url_unchanged(self, reconciler):
        assert reconciler.callback_url("https://hooks.example.com/x") == "https://hooks.example.com/x"


class TestReconcile:

    @pytest.mark.asyncio
    async def test_creates_all_when_none_exist(self, reconciler, session, fake_shopify):
        created = await reconciler.reconcile(session)

        assert sorted(s.topic for s in created) == ["APP_UNINSTALLED", "ORDERS_CREATE"]

    @pytest.mark.asyncio
    async def test_creates_only_missing_topics(self, reconciler, session, fake_shopify):
        fake_shopify.add_subscription("ORDERS_CREATE")

        created = await reconciler.reconcile(session)

        assert [s.topic for s in created] == ["APP_UNINSTALLED"]
        assert [r["variables"]["topic"] for r in fake_shopify.create_requests()] == ["APP_UNINSTALLED"]

    @pytest.mark.asyncio
    async def test_nothing_created_when_in_sync(self, reconciler, session, fake_shopify):
        fake_shopify.add_subscription("APP_UNINSTALLED")
        fake_shopify.add_subscription("ORDERS_CREATE")

        assert await reconciler.reconcile(session) == []
        assert fake_shopify.create_requests() == []

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, reconciler, session, fake_shopify):
        await reconciler.reconcile(session)
        assert await reconciler.reconcile(session) == []
        assert len(fake_shopify.create_requests()) == 2

    @pytest.mark.asyncio
    async def test_stale_subscriptions_left_alone(self, reconciler, session, fake_shopify):
        fake_shopify.add_subscription("PRODUCTS_UPDATE")

        await reconciler.reconcile(session)

        assert "PRODUCTS_UPDATE" in [s["topic"] for s in fake_shopify.subscriptions]
        assert len(fake_shopify.subscriptions) == 3

    @pytest.mark.asyncio
    async def test_no_desired_topics_makes_no_requests(self, app_config, session, fake_shopify):
        reconciler = WebhookReconciler(replace(app_config, desired_webhooks={}), http_client=fake_shopify.client())

        assert await reconciler.reconcile(session) == []
        assert fake_shopify.requests == []

    @pytest.mark.asyncio
    async def test_callback_and_format_resolution(self, app_config, session, fake_shopify):
        config = replace(
            app_config,
            desired_webhooks={"APP_UNINSTALLED": WebhookOptions("/webhooks/app-uninstalled"), "ORDERS_CREATE": None},
            default_webhook_options=WebhookOptions("/webhooks/default", format="XML"),
        )
        reconciler = WebhookReconciler(config, http_client=fake_shopify.client())

        await reconciler.reconcile(session)

        subscriptions = {r["variables"]["topic"]: r["variables"]["webhookSubscription"] for r in fake_shopify.create_requests()}
        assert subscriptions["APP_UNINSTALLED"] == {
            "callbackUrl": f"{TEST_APP_URL}/webhooks/app-uninstalled",
            "format": "JSON",
        }
        assert subscriptions["ORDERS_CREATE"] == {
            "callbackUrl": f"{TEST_APP_URL}/webhooks/default",
            "format": "XML",
        }


class TestFailures:

    @pytest.mark.asyncio
    async def test_failed_topic_is_logged_and_skipped(self, reconciler, session, fake_shopify):
        fake_shopify.add_subscription("ORDERS_CREATE")
        fake_shopify.failing_topics.add("APP_UNINSTALLED")

        assert await reconciler.reconcile(session) == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, reconciler, session, fake_shopify):
        fake_shopify.rejected_topics.add("APP_UNINSTALLED")

        created = await reconciler.reconcile(session)

        assert [s.topic for s in created] == ["ORDERS_CREATE"]
        assert len(fake_shopify.create_requests()) == 2

    @pytest.mark.asyncio
    async def test_malformed_create_response_is_skipped(self, reconciler, session, fake_shopify):
        fake_shopify.malformed_topics.add("APP_UNINSTALLED")

        created = await reconciler.reconcile(session)

        assert [s.topic for s in created] == ["ORDERS_CREATE"]
        assert len(fake_shopify.create_requests()) == 2

    @pytest.mark.asyncio
    async def test_malformed_listing_raises_webhook_error(self, reconciler, session, fake_shopify):
        fake_shopify.subscriptions.append({"topic": "ORDERS_CREATE"})

        with pytest.raises(WebhookError) as exc_info:
            await reconciler.reconcile(session)

        assert exc_info.value.shop == TEST_SHOP
        assert fake_shopify.create_requests() == []

    @pytest.mark.asyncio
    async def test_listing_failure_raises_webhook_error(self, reconciler, session, fake_shopify):
        fake_shopify.list_status = 500

        with pytest.raises(WebhookError) as exc_info:
            await reconciler.reconcile(session)

        assert exc_info.value.shop == TEST_SHOP
        assert fake_shopify.create_requests() == []


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_creates_bounded_by_concurrency_limit(self, app_config, session, fake_shopify):
        topics = {f"TOPIC_{i}": None for i in range(6)}
        config = replace(app_config, desired_webhooks=topics, webhook_concurrency=2)
        reconciler = WebhookReconciler(config, http_client=fake_shopify.client())

        in_flight = 0
        peak = 0
        original = ShopifyAdminClient.create_webhook_subscription

        async def tracking_create(self, *args, **kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            try:
                return await original(self, *args, **kwargs)
            finally:
                in_flight -= 1

        with patch.object(ShopifyAdminClient, "create_webhook_subscription", tracking_create):
            created = await reconciler.reconcile(session)

        assert len(created) == 6
        assert peak == 2
