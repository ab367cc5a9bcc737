"""
Application configuration for the embedded Shopify app.

A single AppConfig is constructed at startup (from explicit arguments or from
environment variables) and passed to every component. Missing credentials
raise ConfigError immediately; nothing is looked up again at request time.

Desired webhook subscriptions can be declared in a YAML file:

    default:
      callback_url: /webhooks
      format: JSON
    webhooks:
      app/uninstalled:
        callback_url: /webhooks/app-uninstalled
      orders/create: {}        # uses the default options

Usage:
    from shopify_auth.config import AppConfig

    config = AppConfig.from_env()
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional, Tuple, Union, Any

import yaml

from shopify_auth.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-04"
DEFAULT_SHOP_DOMAINS: Tuple[str, ...] = ("myshopify.com", "shopify.com", "myshopify.io")

# App Bridge frequently sends tokens with a future `nbf`
DEFAULT_CLOCK_DRIFT = timedelta(seconds=10)
DEFAULT_EXCHANGE_TIMEOUT_SECONDS = 30.0
DEFAULT_WEBHOOK_CONCURRENCY = 4

WEBHOOK_FORMATS = ("JSON", "XML")

_TRUTHY = {"1", "true", "yes", "on"}


def normalize_topic(topic: str) -> str:
    """
    Normalize a webhook topic to its GraphQL enum form.

    "app/uninstalled" and "APP_UNINSTALLED" both become "APP_UNINSTALLED".
    """
    return topic.strip().replace("/", "_").replace("-", "_").upper()


@dataclass(frozen=True)
class WebhookOptions:
    """Delivery configuration for a webhook topic."""
    callback_url: str = "/webhooks"
    format: str = "JSON"

    def __post_init__(self):
        if not self.callback_url:
            raise ConfigError("Webhook callback_url is required")
        fmt = (self.format or "JSON").upper()
        if fmt not in WEBHOOK_FORMATS:
            raise ConfigError(f"Unsupported webhook format: {self.format}")
        object.__setattr__(self, "format", fmt)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["WebhookOptions"]:
        if not data:
            return None
        return cls(
            callback_url=data.get("callback_url", "/webhooks"),
            format=data.get("format", "JSON"),
        )


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable app configuration shared by every component.

    One AppConfig exists per Shopify app (not per shop).
    """
    client_id: str
    client_secret: str
    endpoint_url: str
    api_version: str = DEFAULT_API_VERSION
    is_embedded_app: bool = True
    use_online_tokens: bool = False
    allowed_clock_drift: timedelta = DEFAULT_CLOCK_DRIFT
    allowed_shop_domains: Tuple[str, ...] = DEFAULT_SHOP_DOMAINS
    desired_webhooks: Dict[str, Optional[WebhookOptions]] = field(default_factory=dict)
    default_webhook_options: WebhookOptions = field(default_factory=WebhookOptions)
    scopes: Tuple[str, ...] = ()
    exchange_timeout: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS
    webhook_concurrency: int = DEFAULT_WEBHOOK_CONCURRENCY
    register_webhooks_on_auth: bool = False
    reexchange_expired_sessions: bool = True

    def __post_init__(self):
        if not self.client_id:
            raise ConfigError("client_id is required (SHOPIFY_API_KEY)")
        if not self.client_secret:
            raise ConfigError("client_secret is required (SHOPIFY_API_SECRET)")
        if not self.endpoint_url:
            raise ConfigError("endpoint_url is required (APP_URL)")
        if not self.endpoint_url.startswith(("https://", "http://")):
            raise ConfigError(f"endpoint_url must be an absolute URL: {self.endpoint_url}")
        if not self.api_version:
            raise ConfigError("api_version is required")

        drift = self.allowed_clock_drift
        if isinstance(drift, (int, float)):
            drift = timedelta(seconds=drift)
        if drift < timedelta(0):
            raise ConfigError("allowed_clock_drift cannot be negative")
        object.__setattr__(self, "allowed_clock_drift", drift)

        domains = tuple(d.strip().lower() for d in self.allowed_shop_domains if d and d.strip())
        if not domains:
            raise ConfigError("allowed_shop_domains cannot be empty")
        object.__setattr__(self, "allowed_shop_domains", domains)

        if self.exchange_timeout <= 0:
            raise ConfigError("exchange_timeout must be positive")
        if self.webhook_concurrency < 1:
            raise ConfigError("webhook_concurrency must be at least 1")

        object.__setattr__(self, "endpoint_url", self.endpoint_url.rstrip("/"))
        object.__setattr__(self, "scopes", tuple(self.scopes))
        object.__setattr__(
            self,
            "desired_webhooks",
            {normalize_topic(topic): options for topic, options in self.desired_webhooks.items()},
        )

    def webhook_options_for(self, topic: str) -> WebhookOptions:
        """Options for a topic, falling back to the default options."""
        return self.desired_webhooks.get(normalize_topic(topic)) or self.default_webhook_options

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """
        Build configuration from environment variables.

        Environment:
            SHOPIFY_API_KEY, SHOPIFY_API_SECRET, APP_URL (required)
            SHOPIFY_API_VERSION, SHOPIFY_EMBEDDED_APP, SHOPIFY_USE_ONLINE_TOKENS,
            SHOPIFY_ALLOWED_CLOCK_DRIFT_SECONDS, SHOPIFY_ALLOWED_SHOP_DOMAINS,
            SHOPIFY_SCOPES, SHOPIFY_WEBHOOKS_CONFIG, SHOPIFY_REGISTER_WEBHOOKS_ON_AUTH

        Raises:
            ConfigError: If a required variable is missing or invalid
        """
        env = os.environ if environ is None else environ

        def _bool(name: str, default: bool) -> bool:
            value = env.get(name)
            if value is None or value == "":
                return default
            return value.strip().lower() in _TRUTHY

        def _list(name: str) -> Tuple[str, ...]:
            value = env.get(name, "")
            return tuple(item.strip() for item in value.split(",") if item.strip())

        try:
            drift_seconds = float(env.get("SHOPIFY_ALLOWED_CLOCK_DRIFT_SECONDS", "10"))
        except ValueError:
            raise ConfigError("SHOPIFY_ALLOWED_CLOCK_DRIFT_SECONDS must be a number")

        desired_webhooks: Dict[str, Optional[WebhookOptions]] = {}
        default_options = WebhookOptions()
        webhooks_path = env.get("SHOPIFY_WEBHOOKS_CONFIG")
        if webhooks_path:
            desired_webhooks, default_options = load_webhook_config(webhooks_path)

        return cls(
            client_id=env.get("SHOPIFY_API_KEY", ""),
            client_secret=env.get("SHOPIFY_API_SECRET", ""),
            endpoint_url=env.get("APP_URL", ""),
            api_version=env.get("SHOPIFY_API_VERSION", DEFAULT_API_VERSION),
            is_embedded_app=_bool("SHOPIFY_EMBEDDED_APP", True),
            use_online_tokens=_bool("SHOPIFY_USE_ONLINE_TOKENS", False),
            allowed_clock_drift=timedelta(seconds=drift_seconds),
            allowed_shop_domains=_list("SHOPIFY_ALLOWED_SHOP_DOMAINS") or DEFAULT_SHOP_DOMAINS,
            desired_webhooks=desired_webhooks,
            default_webhook_options=default_options,
            scopes=_list("SHOPIFY_SCOPES"),
            register_webhooks_on_auth=_bool("SHOPIFY_REGISTER_WEBHOOKS_ON_AUTH", False),
        )


def load_webhook_config(
    path: Union[str, Path],
) -> Tuple[Dict[str, Optional[WebhookOptions]], WebhookOptions]:
    """
    Load desired webhook topics from a YAML file.

    Returns:
        Tuple of (topic -> options or None, default options)

    Raises:
        ConfigError: If the file is missing or malformed
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Webhook config not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid webhook config {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Webhook config must be a mapping: {config_path}")

    default_options = WebhookOptions.from_dict(raw.get("default")) or WebhookOptions()
    webhooks = raw.get("webhooks") or {}
    if not isinstance(webhooks, dict):
        raise ConfigError("'webhooks' must map topic names to options")

    desired = {
        normalize_topic(topic): WebhookOptions.from_dict(options)
        for topic, options in webhooks.items()
    }

    logger.info(
        "Loaded webhook config from %s",
        config_path,
        extra={"topics": sorted(desired)},
    )
    return desired, default_options
