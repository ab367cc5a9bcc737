"""
Webhook subscription reconciliation.

Brings a shop's webhook subscriptions up to the desired set declared in
AppConfig.desired_webhooks:

1. List the shop's current subscriptions
2. to_create = desired topics - current topics
3. Create each missing topic with its configured callback path (joined to the
   app's endpoint URL) and format, falling back to default_webhook_options

Topics are created concurrently, bounded by AppConfig.webhook_concurrency.
A failed topic is logged and left out of the result; the others continue.
Subscriptions outside the desired set are reported as stale but never
updated or deleted.
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from shopify_auth.config.app_config import AppConfig, normalize_topic
from shopify_auth.errors import ShopifyAPIError, WebhookError
from shopify_auth.integrations.shopify.admin_client import ShopifyAdminClient, WebhookSubscription
from shopify_auth.models.session import Session

logger = logging.getLogger(__name__)


class WebhookReconciler:
    """Creates the desired webhook subscriptions a shop is missing."""

    def __init__(self, config: AppConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._http_client = http_client

    def callback_url(self, path: str) -> str:
        """Absolute callback URL for a configured callback path."""
        if path.startswith(("https://", "http://")):
            return path
        return f"{self.config.endpoint_url}/{path.lstrip('/')}"

    def _client_for(self, session: Session) -> ShopifyAdminClient:
        return ShopifyAdminClient(
            session.shop,
            session.access_token,
            api_version=self.config.api_version,
            http_client=self._http_client,
            timeout=self.config.exchange_timeout,
        )

    async def reconcile(self, session: Session) -> List[WebhookSubscription]:
        """
        Create missing webhook subscriptions for the session's shop.

        Args:
            session: Session whose access token is used for the Admin API

        Returns:
            Subscriptions created in this run (not the full current set)

        Raises:
            WebhookError: If the current subscriptions cannot be listed
        """
        desired = set(self.config.desired_webhooks)
        if not desired:
            return []

        async with self._client_for(session) as client:
            try:
                current = await client.list_webhook_subscriptions()
            except ShopifyAPIError as e:
                raise WebhookError(
                    f"Failed to list webhook subscriptions: {e.message}",
                    shop=session.shop,
                ) from e

            current_topics = {normalize_topic(subscription.topic) for subscription in current}
            to_create = sorted(desired - current_topics)
            stale = sorted(current_topics - desired)

            logger.info("Reconciling webhook subscriptions", extra={
                "shop_domain": session.shop,
                "current_topics": sorted(current_topics),
                "to_create": to_create,
            })
            if stale:
                logger.info("Webhook subscriptions outside the desired set left unchanged", extra={
                    "shop_domain": session.shop,
                    "stale_topics": stale,
                })

            semaphore = asyncio.Semaphore(self.config.webhook_concurrency)
            results = await asyncio.gather(
                *(self._create(client, semaphore, session.shop, topic) for topic in to_create)
            )

        return [subscription for subscription in results if subscription is not None]

    async def _create(
        self,
        client: ShopifyAdminClient,
        semaphore: asyncio.Semaphore,
        shop: str,
        topic: str,
    ) -> Optional[WebhookSubscription]:
        options = self.config.webhook_options_for(topic)

        async with semaphore:
            try:
                subscription = await client.create_webhook_subscription(
                    topic,
                    self.callback_url(options.callback_url),
                    options.format,
                )
            except (ShopifyAPIError, WebhookError) as e:
                logger.warning("Failed to subscribe to webhook topic", extra={
                    "shop_domain": shop,
                    "topic": topic,
                    "error": e.message,
                })
                return None

        logger.info("Subscribed to webhook topic", extra={"shop_domain": shop, "topic": topic})
        return subscription
