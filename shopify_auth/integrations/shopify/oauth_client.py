"""
Shopify access token endpoint client.

Two grants are supported, both POSTed as JSON to
https://{shop}/admin/oauth/access_token with the app's client credentials:

1. Authorization code (install/update callbacks):
   {client_id, client_secret, code} -> {access_token, scope}
2. Token exchange (embedded apps, RFC 8693):
   {grant_type, subject_token_type, subject_token, client_id, client_secret,
    requested_token_type} -> {access_token, scope, expires_in, associated_user}

Every failure (non-2xx, transport error, timeout, invalid body) is raised as
ExchangeError carrying the shop, status code and cause.

Documentation: https://shopify.dev/docs/apps/build/authentication-authorization/get-access-tokens/exchange-tokens
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from shopify_auth.config.app_config import AppConfig
from shopify_auth.errors import ExchangeError
from shopify_auth.models.session import (
    AssociatedUser,
    Session,
    ShopCredentials,
    offline_session_id,
    online_session_id,
)

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"
ID_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:id_token"
ONLINE_ACCESS_TOKEN_TYPE = "urn:shopify:params:oauth:token-type:online-access-token"
OFFLINE_ACCESS_TOKEN_TYPE = "urn:shopify:params:oauth:token-type:offline-access-token"


class TokenExchangeClient:
    """
    Obtains Admin API access tokens from Shopify.

    An httpx.AsyncClient may be injected; otherwise one is created with the
    configured timeout and closed by close().
    """

    def __init__(self, config: AppConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.exchange_timeout, connect=10.0),
        )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def exchange_authorization_code(self, shop: str, code: str) -> ShopCredentials:
        """
        Exchange an OAuth authorization code for an offline access token.

        Args:
            shop: Validated shop domain
            code: Authorization code from the install/update callback

        Returns:
            ShopCredentials(url=shop, access_token, scope)

        Raises:
            ExchangeError: If the exchange fails
        """
        payload = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
        }

        token_data = await self._request_token(shop, payload)

        logger.info("Authorization code exchange successful", extra={"shop_domain": shop})
        return ShopCredentials(
            url=shop,
            access_token=token_data["access_token"],
            scope=token_data.get("scope") or "",
        )

    async def exchange_session_token(
        self,
        shop: str,
        session_token: str,
        online: bool = False,
    ) -> Session:
        """
        Exchange a verified session token for an access token.

        Args:
            shop: Shop domain derived from the verified session token
            session_token: The session token itself (subject token)
            online: Request an online (per-user) token instead of an offline one

        Returns:
            Session ready to be persisted

        Raises:
            ExchangeError: If the exchange fails or the response is incomplete
        """
        payload = {
            "grant_type": TOKEN_EXCHANGE_GRANT_TYPE,
            "subject_token_type": ID_TOKEN_TYPE,
            "subject_token": session_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "requested_token_type": ONLINE_ACCESS_TOKEN_TYPE if online else OFFLINE_ACCESS_TOKEN_TYPE,
        }

        token_data = await self._request_token(shop, payload)
        expires = self._expiry(token_data.get("expires_in"), shop)

        if online:
            session = self._online_session(shop, token_data, expires)
        else:
            session = Session(
                id=offline_session_id(shop),
                shop=shop,
                access_token=token_data["access_token"],
                scope=token_data.get("scope") or "",
                is_online=False,
                expires=expires,
            )

        logger.info(
            "Token exchange successful",
            extra={"shop_domain": shop, "is_online": online, "session_id": session.id},
        )
        return session

    def _online_session(
        self,
        shop: str,
        token_data: Dict[str, Any],
        expires: Optional[datetime],
    ) -> Session:
        user_data = token_data.get("associated_user")
        if not isinstance(user_data, dict) or "id" not in user_data:
            raise ExchangeError("Online token response missing associated_user", shop=shop)

        user = AssociatedUser.from_dict(user_data)

        if self.config.is_embedded_app:
            session_id = online_session_id(shop, user.id)
        else:
            session_id = str(uuid.uuid4())

        return Session(
            id=session_id,
            shop=shop,
            access_token=token_data["access_token"],
            scope=token_data.get("scope") or "",
            is_online=True,
            expires=expires,
            associated_user=user,
            associated_user_scope=token_data.get("associated_user_scope"),
        )

    @staticmethod
    def _expiry(expires_in: Any, shop: str) -> Optional[datetime]:
        if expires_in is None:
            return None
        try:
            seconds = int(expires_in)
        except (TypeError, ValueError):
            raise ExchangeError(f"Invalid expires_in in token response: {expires_in!r}", shop=shop)
        if seconds <= 0:
            raise ExchangeError(f"Token response expires_in must be positive: {expires_in!r}", shop=shop)
        return datetime.now(timezone.utc) + timedelta(seconds=seconds)

    async def _request_token(self, shop: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST to the shop's access token endpoint.

        Raises:
            ExchangeError: On any non-2xx response, transport failure or bad body
        """
        url = f"https://{shop}/admin/oauth/access_token"

        try:
            response = await self._client.post(
                url,
                json=payload,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            token_data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error("Token exchange failed", extra={
                "shop_domain": shop,
                "status_code": e.response.status_code,
                "response_text": e.response.text[:500]
            })
            raise ExchangeError(
                f"Token exchange failed: {e.response.status_code}",
                shop=shop,
                status_code=e.response.status_code,
                cause=e,
            )
        except httpx.TimeoutException as e:
            logger.error("Token exchange timeout", extra={
                "shop_domain": shop,
                "error": str(e)
            })
            raise ExchangeError(f"Token exchange timeout: {e}", shop=shop, cause=e)
        except httpx.RequestError as e:
            logger.error("Token exchange request error", extra={
                "shop_domain": shop,
                "error": str(e)
            })
            raise ExchangeError(f"Token exchange request error: {e}", shop=shop, cause=e)
        except httpx.InvalidURL as e:
            logger.error("Token exchange URL invalid", extra={
                "shop_domain": shop,
                "error": str(e)
            })
            raise ExchangeError(f"Token exchange URL invalid: {e}", shop=shop, cause=e)
        except ValueError as e:
            logger.error("Token exchange returned invalid JSON", extra={"shop_domain": shop})
            raise ExchangeError(
                "Token response is not valid JSON",
                shop=shop,
                status_code=response.status_code,
                cause=e,
            )

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise ExchangeError(
                "Token response missing access_token",
                shop=shop,
                status_code=response.status_code,
            )

        return token_data
