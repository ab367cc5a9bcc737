"""
Shopify OAuth and session token bounce routes.

- GET /auth: signed install request, redirects to Shopify's authorize page
- GET /auth/install: install callback, exchanges the authorization code
- GET /auth/update: re-authorization callback, exchanges the authorization code
- GET /auth/session-token-bounce: page where App Bridge refreshes the
  session token and reloads the `shopify-reload` URL

None of these routes require a session token, so the bounce page can never
redirect to itself.
"""

import html
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from shopify_auth.api.dependencies.shopify import get_orchestrator
from shopify_auth.services.auth_orchestrator import AuthOrchestrator, CallbackResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["shopify-auth"])

APP_BRIDGE_SCRIPT = "https://cdn.shopify.com/shopifycloud/app-bridge.js"


def _callback_response(result: CallbackResult):
    if result.response is not None:
        return result.response
    return RedirectResponse(result.redirect_url, status_code=status.HTTP_302_FOUND)


@router.get("")
async def begin_install(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """Redirect a signed install request to Shopify's authorization page."""
    authorize_url = orchestrator.begin_install(request.query_params)
    return RedirectResponse(authorize_url, status_code=status.HTTP_302_FOUND)


@router.get("/install")
async def install_callback(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """
    OAuth install callback.

    Verifies the HMAC, exchanges the code and runs the install hook. The
    default response redirects into the app inside the Shopify admin.
    """
    result = await orchestrator.complete_install(request.query_params)
    return _callback_response(result)


@router.get("/update")
async def update_callback(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """OAuth update (scope change) callback."""
    result = await orchestrator.complete_update(request.query_params)
    return _callback_response(result)


@router.get("/session-token-bounce", response_class=HTMLResponse)
async def session_token_bounce(orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    """App Bridge page that fetches a fresh session token and reloads."""
    client_id = html.escape(orchestrator.config.client_id, quote=True)
    body = (
        "<head>\n"
        f'    <meta name="shopify-api-key" content="{client_id}" />\n'
        f'    <script src="{APP_BRIDGE_SCRIPT}"></script>\n'
        "</head>\n"
    )
    return HTMLResponse(content=body, status_code=status.HTTP_200_OK)
