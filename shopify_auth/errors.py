"""
Exception taxonomy for embedded Shopify app authentication.

Hierarchy:
- ShopifyAuthError
  - ConfigError: missing or invalid app configuration (startup only)
  - ValidationError: bad shop domain, HMAC mismatch (401)
  - AuthError: session token rejected (bounce)
  - ExchangeError: token exchange failed (fatal to the request)
    - InstallError / UpdateError: code exchange failed on install/update callbacks
  - SessionStoreError: session could not be read or written
  - WebhookError: webhook listing or subscription failed (logged, never fatal)
  - ShopifyAPIError: Admin API call failed
"""

from enum import Enum
from typing import Optional, Any, List, Dict


class ShopifyAuthError(Exception):
    """Base exception for all shopify_auth errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r})"


class ConfigError(ShopifyAuthError):
    """Raised when a required credential or setting is missing or invalid."""
    pass


# =============================================================================
# Validation errors
# =============================================================================

class ValidationError(ShopifyAuthError):
    """Raised when an inbound request fails validation."""

    def __init__(self, message: str, shop: Optional[str] = None):
        super().__init__(message)
        self.shop = shop


class InvalidShopDomainError(ValidationError):
    """Raised when shop domain format is invalid."""
    pass


class HMACVerificationError(ValidationError):
    """Raised when HMAC signature verification fails."""

    def __init__(self, message: str = "Invalid HMAC signature", shop: Optional[str] = None):
        super().__init__(message, shop=shop)


# =============================================================================
# Session token errors
# =============================================================================

class AuthErrorKind(str, Enum):
    """Why a session token was rejected."""
    MISSING_TOKEN = "missing_token"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_AUDIENCE = "invalid_audience"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    MISSING_CLAIM = "missing_claim"


class AuthError(ShopifyAuthError):
    """Raised when a session token cannot be trusted."""

    kind = AuthErrorKind.MALFORMED

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value}, message={self.message!r})"


class MissingTokenError(AuthError):
    kind = AuthErrorKind.MISSING_TOKEN

    def __init__(self, message: str = "Session token missing from request"):
        super().__init__(message)


class InvalidSignatureError(AuthError):
    kind = AuthErrorKind.INVALID_SIGNATURE


class InvalidAudienceError(AuthError):
    kind = AuthErrorKind.INVALID_AUDIENCE


class TokenNotYetValidError(AuthError):
    kind = AuthErrorKind.NOT_YET_VALID


class TokenExpiredError(AuthError):
    kind = AuthErrorKind.EXPIRED


class MalformedTokenError(AuthError):
    kind = AuthErrorKind.MALFORMED


class MissingClaimError(AuthError):
    kind = AuthErrorKind.MISSING_CLAIM

    def __init__(self, claim: str, message: Optional[str] = None):
        super().__init__(message or f"Session token missing required claim '{claim}'")
        self.claim = claim


# =============================================================================
# Exchange errors
# =============================================================================

class ExchangeError(ShopifyAuthError):
    """Raised when a token exchange with Shopify fails."""

    def __init__(
        self,
        message: str,
        shop: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.shop = shop
        self.status_code = status_code
        self.cause = cause

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(message={self.message!r}, "
            f"shop={self.shop!r}, status_code={self.status_code})"
        )


class InstallError(ExchangeError):
    """Raised when the install callback cannot complete the code exchange."""

    error_code = "install_error"


class UpdateError(ExchangeError):
    """Raised when the update callback cannot complete the code exchange."""

    error_code = "update_error"


class SessionStoreError(ShopifyAuthError):
    """Raised when a session cannot be read or written."""
    pass


# =============================================================================
# Admin API / webhook errors
# =============================================================================

class ShopifyAPIError(ShopifyAuthError):
    """Error communicating with the Shopify Admin API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class WebhookError(ShopifyAuthError):
    """Raised when a webhook subscription cannot be listed or created."""

    def __init__(
        self,
        message: str,
        shop: Optional[str] = None,
        topic: Optional[str] = None,
        user_errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.shop = shop
        self.topic = topic
        self.user_errors = user_errors or []
