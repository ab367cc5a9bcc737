"""
Shopify session token authentication for embedded apps.

Shopify embedded apps use session tokens (JWTs) signed by Shopify with the
app's client secret. These tokens are used instead of cookies for
authentication in embedded contexts.

App Bridge session tokens expire after one minute. Once verified, the app may
mint its own longer-lived token for the shop (see issue_token) carrying the
shop domain in `sub` plus the `loc` and `host` claims.

Documentation: https://shopify.dev/docs/apps/auth/oauth/session-tokens
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

import jwt
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from shopify_auth.config.app_config import AppConfig
from shopify_auth.errors import (
    InvalidAudienceError,
    InvalidSignatureError,
    MalformedTokenError,
    MissingClaimError,
    MissingTokenError,
    TokenExpiredError,
    TokenNotYetValidError,
)
from shopify_auth.services.shop_validator import ShopValidator

logger = logging.getLogger(__name__)

ALLOWED_ALGORITHMS = ["HS512", "HS256"]
APP_TOKEN_ALGORITHM = "HS512"
DEFAULT_APP_TOKEN_TTL = timedelta(days=1)


class SessionTokenClaims(BaseModel):
    """
    Claims of a verified session token.

    Shopify session token claims:
    - iss: Shop admin URL ("https://my-store.myshopify.com/admin")
    - dest: Shop URL ("https://my-store.myshopify.com")
    - aud: App client ID
    - sub: Shopify user ID (App Bridge tokens) or shop domain (app tokens)
    - exp / nbf / iat: Validity window (Unix)
    - jti / sid: Token and session identifiers

    App tokens additionally carry:
    - loc: Merchant locale
    - host: Base64-encoded admin host
    """

    exp: int = Field(..., description="Expiration timestamp (Unix)")
    iss: Optional[str] = Field(None, description="Token issuer")
    dest: Optional[str] = Field(None, description="Shop URL")
    aud: Optional[Union[str, List[str]]] = Field(None, description="App client ID")
    sub: Optional[str] = Field(None, description="User ID or shop domain")
    nbf: Optional[int] = Field(None, description="Not before timestamp (Unix)")
    iat: Optional[int] = Field(None, description="Issued at timestamp (Unix)")
    jti: Optional[str] = Field(None, description="JWT ID")
    sid: Optional[str] = Field(None, description="Shopify session ID")
    loc: Optional[str] = Field(None, description="Locale")
    host: Optional[str] = Field(None, description="Base64-encoded admin host")

    # Set by the authenticator after the derived shop passes validation
    shop: Optional[str] = Field(None, description="Validated shop domain")

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @property
    def token_shop(self) -> Optional[str]:
        """Shop domain named by the token: `dest` (scheme stripped), else `sub`."""
        if self.dest:
            return self.dest.replace("https://", "").replace("http://", "").rstrip("/")
        return self.sub

    @property
    def user_id(self) -> Optional[str]:
        """Shopify user ID (only App Bridge tokens, which carry `dest`)."""
        if self.dest:
            return self.sub
        return None

    @property
    def locale(self) -> Optional[str]:
        return self.loc

    @property
    def expiration_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


class SessionTokenAuthenticator:
    """
    Verifies session tokens and extracts the shop they were issued for.

    Tokens are accepted with either HS512 or HS256, signed with the client
    secret. `nbf` and `exp` are checked with the configured clock drift.
    Every failure is raised as a distinct AuthError subclass.
    """

    def __init__(self, config: AppConfig, shop_validator: Optional[ShopValidator] = None):
        self.config = config
        self.shop_validator = shop_validator or ShopValidator(config.allowed_shop_domains)

    def authenticate(self, token: Optional[str]) -> SessionTokenClaims:
        """
        Verify a session token.

        Args:
            token: Compact JWT from the `id_token` param or the bearer header

        Returns:
            SessionTokenClaims with `shop` set to the validated shop domain

        Raises:
            MissingTokenError: No token supplied
            InvalidSignatureError: Signature does not match the client secret
            TokenNotYetValidError: `nbf` is in the future beyond the allowed drift
            TokenExpiredError: `exp` is in the past beyond the allowed drift
            InvalidAudienceError: `aud` is not this app's client ID
            MissingClaimError: A required claim is absent
            MalformedTokenError: Token cannot be decoded or names an invalid shop
        """
        if not token:
            raise MissingTokenError()

        try:
            payload = jwt.decode(
                token,
                self.config.client_secret,
                algorithms=ALLOWED_ALGORITHMS,
                leeway=self.config.allowed_clock_drift,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_aud": False,  # checked below, only when present
                    "require": ["exp"],
                },
            )
        except jwt.ExpiredSignatureError:
            logger.info("Session token expired")
            raise TokenExpiredError("Session token has expired")
        except jwt.ImmatureSignatureError:
            logger.info("Session token not yet valid")
            raise TokenNotYetValidError("Session token is not yet valid")
        except jwt.MissingRequiredClaimError as e:
            raise MissingClaimError(e.claim)
        except jwt.InvalidSignatureError:
            logger.warning("Session token signature verification failed")
            raise InvalidSignatureError("Session token signature is invalid")
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid session token", extra={"error": str(e)})
            raise MalformedTokenError(f"Invalid session token: {e}")

        self._verify_audience(payload.get("aud"))

        try:
            claims = SessionTokenClaims.model_validate(payload)
        except PydanticValidationError as e:
            raise MalformedTokenError(f"Session token claims are malformed: {e.errors()[0]['msg']}")

        token_shop = claims.token_shop
        if not token_shop:
            raise MissingClaimError("sub", "Session token has neither 'dest' nor 'sub' claim")

        shop = self.shop_validator.validate_shop_url(token_shop)
        if shop is None:
            logger.warning("Session token names an invalid shop", extra={"shop": token_shop})
            raise MalformedTokenError(f"Session token shop is not a valid shop domain: {token_shop}")

        logger.debug("Session token verified", extra={"shop_domain": shop})
        return claims.model_copy(update={"shop": shop})

    def _verify_audience(self, audience: Union[str, List[str], None]) -> None:
        if audience is None:
            return
        audiences = [audience] if isinstance(audience, str) else list(audience)
        if self.config.client_id not in audiences:
            logger.warning("Session token invalid audience", extra={"expected": self.config.client_id})
            raise InvalidAudienceError("Session token audience does not match this app")

    def issue_token(
        self,
        shop: str,
        locale: Optional[str] = None,
        host: Optional[str] = None,
        ttl: timedelta = DEFAULT_APP_TOKEN_TTL,
    ) -> str:
        """
        Mint a longer-lived app token for a shop.

        The token is signed with the client secret and verifies with
        authenticate(); the shop is carried in `sub`.

        Args:
            shop: Shop domain (validated before signing)
            locale: Merchant locale, stored as `loc`
            host: Base64 admin host, stored as `host`
            ttl: Token lifetime

        Raises:
            InvalidShopDomainError: If the shop domain is invalid
        """
        shop = self.shop_validator.require_valid_shop(shop)
        now = datetime.now(timezone.utc)

        payload = {
            "iss": self.config.endpoint_url,
            "aud": self.config.client_id,
            "sub": shop,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
        }
        if locale:
            payload["loc"] = locale
        if host:
            payload["host"] = host

        return jwt.encode(payload, self.config.client_secret, algorithm=APP_TOKEN_ALGORITHM)
