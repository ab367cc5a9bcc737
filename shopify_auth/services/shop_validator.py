"""
Shop domain and host validation.

Makes user input safer by ensuring a `shop` value is a properly formatted
shop domain under one of the allowed suffixes, and that a `host` value is a
base64-encoded Shopify admin host.

Accepted shop shapes:
- Direct domain: "my-store.myshopify.com"
- Admin console URL: "admin.shopify.com/store/my-store", normalized to
  "my-store.myshopify.com" before validation
"""

import base64
import binascii
import logging
import re
from typing import Iterable, Optional
from urllib.parse import urlparse

from shopify_auth.config.app_config import DEFAULT_SHOP_DOMAINS
from shopify_auth.errors import InvalidShopDomainError, ValidationError

logger = logging.getLogger(__name__)

# The unified admin lives on shopify.com; legacy shop domains on myshopify.com
ADMIN_TO_LEGACY_DOMAINS = {"shopify.com": "myshopify.com"}

HOST_ORIGINS = ("myshopify.com", "shopify.com", "myshopify.io", "spin.dev")

_BASE64_REGEX = re.compile(r"[0-9a-zA-Z+/]+={0,2}")
_SHOP_NAME = r"[a-zA-Z0-9][a-zA-Z0-9\-_]*"


class ShopValidator:
    """Validates shop domains against an allow-list of domain suffixes."""

    def __init__(self, allowed_domains: Iterable[str] = DEFAULT_SHOP_DOMAINS):
        self.allowed_domains = tuple(d.lower() for d in allowed_domains)
        suffixes = "|".join(re.escape(d) for d in self.allowed_domains)
        self._shop_regex = re.compile(rf"{_SHOP_NAME}\.({suffixes})/?")
        self._admin_regex = re.compile(rf"admin\.({suffixes})/store/({_SHOP_NAME})")

    def validate_shop_url(self, shop: Optional[str]) -> Optional[str]:
        """
        Validate a shop domain.

        Args:
            shop: Untrusted shop value from a request

        Returns:
            The shop domain if valid (admin URLs are normalized first),
            None otherwise
        """
        if not shop:
            return None

        shop_url = shop
        admin_match = self._admin_regex.fullmatch(shop_url)
        if admin_match:
            shop_url = self.admin_url_to_legacy_url(shop_url)
            if shop_url is None:
                return None

        if self._shop_regex.fullmatch(shop_url):
            return shop_url

        return None

    def admin_url_to_legacy_url(self, admin_url: str) -> Optional[str]:
        """
        Map an admin console URL to the shop's own domain.

        "admin.shopify.com/store/my-store" -> "my-store.myshopify.com"
        "admin.example.com/store/my-store" -> "my-store.example.com"
        """
        match = self._admin_regex.fullmatch(admin_url)
        if not match:
            return None
        admin_domain, shop_name = match.group(1).lower(), match.group(2)
        legacy_domain = ADMIN_TO_LEGACY_DOMAINS.get(admin_domain, admin_domain)
        return f"{shop_name}.{legacy_domain}"

    def require_valid_shop(self, shop: Optional[str]) -> str:
        """
        Validate a shop domain or raise.

        Raises:
            InvalidShopDomainError: If the shop domain is invalid
        """
        sanitized = self.validate_shop_url(shop)
        if sanitized is None:
            logger.warning("Invalid shop domain", extra={"shop": shop})
            raise InvalidShopDomainError(f"Invalid shop domain: {shop}", shop=shop)
        return sanitized


def _decode_host(host: str) -> Optional[str]:
    padded = host + "=" * (-len(host) % 4)
    try:
        return base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None


def _sanitize_host(host: Optional[str]) -> Optional[str]:
    if not host or not _BASE64_REGEX.fullmatch(host):
        return None

    decoded = _decode_host(host)
    if not decoded:
        return None

    hostname = urlparse(f"https://{decoded}").hostname or ""
    if not hostname.endswith(tuple(f".{origin}" for origin in HOST_ORIGINS)):
        return None

    return host


def validate_host(host: Optional[str], raise_on_invalid: bool = False) -> Optional[str]:
    """
    Validate the base64-encoded `host` parameter Shopify sends to embedded apps.

    Args:
        host: Untrusted host value from a request
        raise_on_invalid: Raise ValidationError instead of returning None

    Returns:
        The original host value if it decodes to a Shopify admin origin,
        None otherwise
    """
    sanitized = _sanitize_host(host)

    if sanitized is None and raise_on_invalid:
        raise ValidationError("Received invalid host argument")

    return sanitized
