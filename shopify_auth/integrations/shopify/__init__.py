"""
Shopify integration module.
"""

from shopify_auth.integrations.shopify.oauth_client import TokenExchangeClient
from shopify_auth.integrations.shopify.admin_client import ShopifyAdminClient, WebhookSubscription

__all__ = ["TokenExchangeClient", "ShopifyAdminClient", "WebhookSubscription"]
