# API routes
from shopify_auth.api.routes import auth

__all__ = ["auth"]
