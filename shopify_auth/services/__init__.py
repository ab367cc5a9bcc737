"""
Authentication services.
"""

from shopify_auth.services.shop_validator import ShopValidator, validate_host
from shopify_auth.services.hmac_verifier import HmacVerifier, WebhookContext
from shopify_auth.services.session_token import SessionTokenAuthenticator, SessionTokenClaims
from shopify_auth.services.session_store import (
    SessionStore,
    InMemorySessionStore,
    SqlAlchemySessionStore,
)
from shopify_auth.services.webhook_reconciler import WebhookReconciler
from shopify_auth.services.auth_orchestrator import (
    AuthOrchestrator,
    AuthHooks,
    AuthResult,
    AuthState,
)

__all__ = [
    "ShopValidator",
    "validate_host",
    "HmacVerifier",
    "WebhookContext",
    "SessionTokenAuthenticator",
    "SessionTokenClaims",
    "SessionStore",
    "InMemorySessionStore",
    "SqlAlchemySessionStore",
    "WebhookReconciler",
    "AuthOrchestrator",
    "AuthHooks",
    "AuthResult",
    "AuthState",
]
