"""
FastAPI dependencies for embedded Shopify requests and webhooks.

Usage:
    @router.get("/api/products")
    async def products(auth: AuthResult = Depends(require_shopify_session)):
        session = auth.session

    @router.post("/webhooks")
    async def webhooks(webhook: WebhookContext = Depends(verified_webhook)):
        ...
"""

import logging

from fastapi import Depends, Request

from shopify_auth.errors import ConfigError
from shopify_auth.services.auth_orchestrator import AuthOrchestrator, AuthResult, AuthState
from shopify_auth.services.hmac_verifier import WebhookContext

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> AuthOrchestrator:
    """The app's AuthOrchestrator, installed by create_app()."""
    orchestrator = getattr(request.app.state, "auth_orchestrator", None)
    if orchestrator is None:
        raise ConfigError("AuthOrchestrator is not configured on this app")
    return orchestrator


async def require_shopify_session(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResult:
    """
    Require a valid session token and an established session.

    A rejected token raises its AuthError, which the registered handler turns
    into a redirect to the session token bounce page.

    Raises:
        AuthError: If the session token is missing or rejected
        ExchangeError: If a new session could not be obtained
        ConfigError: If the app is not an embedded app
    """
    if not orchestrator.config.is_embedded_app:
        raise ConfigError("Session token authentication requires an embedded app")

    result = await orchestrator.authenticate(
        request.url.path,
        request.query_params,
        request.headers,
    )

    if result.state == AuthState.BOUNCE:
        raise result.error

    request.state.shopify_session = result.session
    return result


async def verified_webhook(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> WebhookContext:
    """
    Verify a webhook delivery's HMAC against the raw body.

    Raises:
        HMACVerificationError: If the signature is missing or invalid
    """
    body = await request.body()
    webhook = orchestrator.verifier.verify_webhook(request.headers, body)

    logger.info("Webhook verified", extra={
        "shop_domain": webhook.shop,
        "topic": webhook.topic,
        "webhook_id": webhook.webhook_id,
    })
    return webhook
