"""
HMAC verification for requests signed by Shopify.

SECURITY: Every install/update callback and webhook MUST be verified before
processing. Shopify signs with HMAC-SHA256 using the app's client secret.

Two canonical forms are supported:
- GET: query parameters (app loads, OAuth callbacks, app proxy requests).
  The `hmac` param takes precedence and entries are joined with "&".
  App proxy requests carry a `signature` param instead and entries are
  joined with no separator. Digest is lowercase hex.
- POST: raw request body bytes (webhooks). Digest is base64, lowercased.

Documentation: https://shopify.dev/docs/apps/build/webhooks/subscribe/https
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from shopify_auth.errors import HMACVerificationError, ValidationError

logger = logging.getLogger(__name__)

HMAC_PARAM = "hmac"
SIGNATURE_PARAM = "signature"

HEADER_HMAC = "X-Shopify-Hmac-Sha256"
HEADER_SHOP_DOMAIN = "X-Shopify-Shop-Domain"
HEADER_API_VERSION = "X-Shopify-API-Version"
HEADER_TOPIC = "X-Shopify-Topic"
HEADER_WEBHOOK_ID = "X-Shopify-Webhook-Id"

QueryInput = Union[Mapping[str, Any], Iterable[Tuple[str, str]]]


@dataclass
class WebhookContext:
    """Verified webhook delivery."""
    shop: Optional[str]
    topic: Optional[str]
    api_version: Optional[str]
    webhook_id: Optional[str]
    hmac: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)


def query_items(query: QueryInput) -> List[Tuple[str, str]]:
    """
    Flatten query parameters into (key, value) pairs.

    Accepts Starlette QueryParams, a dict (list values are expanded) or an
    iterable of pairs.
    """
    if hasattr(query, "multi_items"):
        return [(str(k), str(v)) for k, v in query.multi_items()]

    if isinstance(query, Mapping):
        items: List[Tuple[str, str]] = []
        for key, value in query.items():
            if isinstance(value, (list, tuple)):
                items.extend((str(key), str(v)) for v in value)
            else:
                items.append((str(key), str(value)))
        return items

    return [(str(k), str(v)) for k, v in query]


def _get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


def canonical_query_string(query: QueryInput) -> str:
    """
    Build the string Shopify signed for a GET request.

    The signature field is excluded. Parameters are sorted by key; repeated
    keys produce one `key=value` entry per value. `ids` (sent as `ids[]` by
    bulk actions) is serialized as `ids=["1", "2"]` to match Shopify's
    signing of bulk action requests.
    """
    items = query_items(query)
    keys = {key for key, _ in items}

    if HMAC_PARAM in keys:
        signature_param, joiner = HMAC_PARAM, "&"
    else:
        signature_param, joiner = SIGNATURE_PARAM, ""

    grouped: Dict[str, List[str]] = {}
    for key, value in items:
        if key == signature_param:
            continue
        if key == "ids[]":
            key = "ids"
        grouped.setdefault(key, []).append(value)

    parts: List[str] = []
    for key in sorted(grouped):
        values = grouped[key]
        if key == "ids":
            ids = ", ".join(f'"{value}"' for value in values)
            parts.append(f"ids=[{ids}]")
        else:
            parts.extend(f"{key}={value}" for value in values)

    return joiner.join(parts)


def compute_query_hmac(query: QueryInput, secret: str) -> str:
    """HMAC-SHA256 of the canonical query string, lowercase hex."""
    digest = hmac.new(
        secret.encode("utf-8"),
        canonical_query_string(query).encode("utf-8"),
        hashlib.sha256,
    )
    return digest.hexdigest().lower()


def compute_body_hmac(body: bytes, secret: str) -> str:
    """HMAC-SHA256 of the raw body, base64 then lowercased."""
    digest = hmac.new(secret.encode("utf-8"), body or b"", hashlib.sha256)
    return base64.b64encode(digest.digest()).decode("utf-8").lower()


def get_request_hmac(
    query: Optional[QueryInput] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    The signature supplied with a request, lowercased.

    Checked in order: `hmac` param, `signature` param, X-Shopify-Hmac-Sha256 header.
    A param that is present wins even when empty, matching the field
    canonical_query_string excludes from the signed string.
    """
    params = dict(query_items(query)) if query is not None else {}

    for name in (HMAC_PARAM, SIGNATURE_PARAM):
        if name in params:
            return params[name].lower()

    if headers is not None:
        header_value = _get_header(headers, HEADER_HMAC)
        if header_value:
            return header_value.lower()

    return None


def signatures_match(expected: str, received: Optional[str]) -> bool:
    """Constant-time, case-insensitive comparison of two signatures."""
    if not expected or not received:
        return False
    return hmac.compare_digest(
        expected.lower().encode("utf-8"),
        received.lower().encode("utf-8"),
    )


class HmacVerifier:
    """
    Verifies Shopify HMAC signatures with the app's client secret.

    Verification returns a boolean; callers decide the consequence of a
    mismatch.
    """

    def __init__(self, client_secret: str):
        if not client_secret:
            raise ValueError("client_secret is required")
        self._secret = client_secret

    def verify_query(self, query: QueryInput) -> bool:
        """Verify a GET request's query parameters."""
        expected = compute_query_hmac(query, self._secret)
        received = get_request_hmac(query)
        return signatures_match(expected, received)

    def verify_body(self, body: bytes, received: Optional[str]) -> bool:
        """Verify a raw POST body against the supplied signature."""
        expected = compute_body_hmac(body, self._secret)
        return signatures_match(expected, received)

    def verify_request(
        self,
        method: str,
        query: QueryInput,
        headers: Mapping[str, str],
        body: bytes = b"",
    ) -> bool:
        """
        Verify a request using the canonical form for its HTTP method.

        Args:
            method: "GET" or "POST"
            query: Query parameters
            headers: Request headers
            body: Raw request body (POST only)

        Returns:
            True if the signature matches, False otherwise
        """
        method = method.upper()
        if method == "GET":
            return self.verify_query(query)
        if method == "POST":
            return self.verify_body(body, get_request_hmac(query, headers))

        logger.warning("HMAC verification not supported for method", extra={"method": method})
        return False

    def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> WebhookContext:
        """
        Verify a webhook delivery and extract its metadata.

        Args:
            headers: Request headers
            body: Raw request body bytes

        Returns:
            WebhookContext with shop, topic and parsed payload

        Raises:
            HMACVerificationError: If the signature is missing or does not match
            ValidationError: If the body is not valid JSON
        """
        received = _get_header(headers, HEADER_HMAC)
        shop = _get_header(headers, HEADER_SHOP_DOMAIN)

        if not self.verify_body(body, received):
            logger.warning("Invalid webhook HMAC", extra={"shop_domain": shop})
            raise HMACVerificationError(shop=shop)

        try:
            payload = json.loads(body) if body else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("Invalid JSON in webhook body", extra={"shop_domain": shop})
            raise ValidationError("Invalid JSON body", shop=shop)

        return WebhookContext(
            shop=shop,
            topic=_get_header(headers, HEADER_TOPIC),
            api_version=_get_header(headers, HEADER_API_VERSION),
            webhook_id=_get_header(headers, HEADER_WEBHOOK_ID),
            hmac=received,
            payload=payload if isinstance(payload, dict) else {"data": payload},
        )
