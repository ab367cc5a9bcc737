"""
FastAPI application entry point for an embedded Shopify app.

Run with:
    uvicorn main:create_app --factory

Configuration is read once from the environment (see AppConfig.from_env).
Sessions are stored in DATABASE_URL when set, otherwise in memory.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from shopify_auth.api.errors import register_exception_handlers
from shopify_auth.api.routes import auth
from shopify_auth.config import AppConfig
from shopify_auth.db_base import Base
from shopify_auth.platform.csp_middleware import ShopifyFrameAncestorsMiddleware
from shopify_auth.platform.secrets import SecretRedactingFilter, TokenCipher
from shopify_auth.services.auth_orchestrator import AuthHooks, AuthOrchestrator
from shopify_auth.services.session_store import (
    InMemorySessionStore,
    SessionStore,
    SqlAlchemySessionStore,
)

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(SecretRedactingFilter())

logger = logging.getLogger(__name__)


def build_session_store() -> SessionStore:
    """
    Session store from the environment.

    DATABASE_URL selects the SQLAlchemy store (ENCRYPTION_KEY is then
    required); without it sessions live in process memory.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.warning("DATABASE_URL is not set, sessions are stored in memory")
        return InMemorySessionStore()

    # Handle Render's postgres:// URL format (SQLAlchemy requires postgresql://)
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    engine = create_engine(database_url, pool_pre_ping=True, pool_recycle=1800)
    Base.metadata.create_all(engine)
    logger.info("Session store configured", extra={"host_db": database_url.split("@")[-1]})

    return SqlAlchemySessionStore(sessionmaker(bind=engine), TokenCipher.from_env())


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[SessionStore] = None,
    hooks: Optional[AuthHooks] = None,
    orchestrator: Optional[AuthOrchestrator] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Raises:
        ConfigError: If required configuration is missing
    """
    config = config or AppConfig.from_env()
    orchestrator = orchestrator or AuthOrchestrator(
        config,
        store or build_session_store(),
        hooks=hooks,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Shopify app", extra={
            "api_version": config.api_version,
            "is_embedded_app": config.is_embedded_app,
            "use_online_tokens": config.use_online_tokens,
        })
        yield
        await orchestrator.close()
        logger.info("Shutting down Shopify app")

    app = FastAPI(
        title="Shopify App",
        description="Embedded Shopify app authentication",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.auth_orchestrator = orchestrator

    app.add_middleware(ShopifyFrameAncestorsMiddleware, config=config)
    register_exception_handlers(app)
    app.include_router(auth.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
