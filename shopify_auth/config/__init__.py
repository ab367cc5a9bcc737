"""
App configuration.
"""

from shopify_auth.config.app_config import (
    AppConfig,
    WebhookOptions,
    load_webhook_config,
    normalize_topic,
    DEFAULT_API_VERSION,
    DEFAULT_SHOP_DOMAINS,
)

__all__ = [
    "AppConfig",
    "WebhookOptions",
    "load_webhook_config",
    "normalize_topic",
    "DEFAULT_API_VERSION",
    "DEFAULT_SHOP_DOMAINS",
]
