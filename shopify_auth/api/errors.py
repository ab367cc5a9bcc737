"""
HTTP mapping for shopify_auth errors.

- ValidationError (bad shop, HMAC mismatch) -> 401
- AuthError (session token rejected) -> 302 to the session token bounce page
- InstallError / UpdateError / ExchangeError -> 502 with a distinct error code
- SessionStoreError -> 503
- ConfigError -> 500
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from shopify_auth.errors import (
    AuthError,
    ConfigError,
    ExchangeError,
    HMACVerificationError,
    InvalidShopDomainError,
    SessionStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    if isinstance(exc, HMACVerificationError):
        error = "invalid_hmac"
    elif isinstance(exc, InvalidShopDomainError):
        error = "invalid_shop"
    else:
        error = "invalid_request"

    logger.warning("Request validation failed", extra={
        "path": request.url.path,
        "shop": exc.shop,
        "error": error,
    })
    return _error_response(status.HTTP_401_UNAUTHORIZED, error, exc.message)


async def auth_error_handler(request: Request, exc: AuthError) -> RedirectResponse:
    orchestrator = request.app.state.auth_orchestrator
    bounce_url = orchestrator.bounce_url(request.url.path, request.query_params)
    return RedirectResponse(bounce_url, status_code=status.HTTP_302_FOUND)


async def exchange_error_handler(request: Request, exc: ExchangeError) -> JSONResponse:
    error = getattr(exc, "error_code", "exchange_error")
    logger.error("Token exchange failed", extra={
        "path": request.url.path,
        "shop_domain": exc.shop,
        "status_code": exc.status_code,
        "error": error,
    })
    return _error_response(status.HTTP_502_BAD_GATEWAY, error, exc.message)


async def session_store_error_handler(request: Request, exc: SessionStoreError) -> JSONResponse:
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "session_store_unavailable", exc.message)


async def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
    logger.error("Configuration error", extra={"path": request.url.path, "error": exc.message})
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "config_error", exc.message)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the shopify_auth exception handlers on an app."""
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(ExchangeError, exchange_error_handler)
    app.add_exception_handler(SessionStoreError, session_store_error_handler)
    app.add_exception_handler(ConfigError, config_error_handler)
