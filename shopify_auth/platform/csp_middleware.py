"""
Content Security Policy frame-ancestors middleware for embedded apps.

Shopify requires embedded apps to allow framing only by the shop's own admin
and admin.shopify.com:

    Content-Security-Policy: frame-ancestors https://{shop} https://admin.shopify.com

Requests without a valid `shop` parameter, and non-embedded apps, are not
frameable at all.

Documentation: https://shopify.dev/docs/apps/build/security/set-up-iframe-protection
"""

import logging
from typing import Callable, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shopify_auth.config.app_config import AppConfig
from shopify_auth.services.shop_validator import ShopValidator

logger = logging.getLogger(__name__)

SHOPIFY_ADMIN_ORIGIN = "https://admin.shopify.com"


def frame_ancestors_policy(shop: Optional[str], is_embedded_app: bool = True) -> str:
    """CSP value allowing the shop's admin to frame the app."""
    if not is_embedded_app or not shop:
        return "frame-ancestors 'none'"
    return f"frame-ancestors https://{shop} {SHOPIFY_ADMIN_ORIGIN}"


class ShopifyFrameAncestorsMiddleware(BaseHTTPMiddleware):
    """
    Adds a per-shop frame-ancestors policy to responses.

    The shop comes from the `shop` query parameter and must pass shop
    validation before it is written into the header.
    """

    def __init__(
        self,
        app,
        config: AppConfig,
        apply_to_paths: Optional[List[str]] = None,
    ):
        """
        Initialize CSP middleware.

        Args:
            app: FastAPI application
            config: App configuration (embedded flag, allowed shop domains)
            apply_to_paths: Only apply to paths starting with these prefixes.
                           If None, applies to all paths.
        """
        super().__init__(app)
        self.config = config
        self.shop_validator = ShopValidator(config.allowed_shop_domains)
        self.apply_to_paths = apply_to_paths

    def _should_apply_csp(self, path: str) -> bool:
        if self.apply_to_paths is None:
            return True
        return any(path.startswith(prefix) for prefix in self.apply_to_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        if self._should_apply_csp(request.url.path):
            shop = self.shop_validator.validate_shop_url(request.query_params.get("shop"))
            response.headers["Content-Security-Policy"] = frame_ancestors_policy(
                shop, self.config.is_embedded_app
            )

        return response
