"""
Authentication toolkit for embedded Shopify apps.

- Shop domain and host validation
- HMAC verification of OAuth callbacks and webhooks
- Session token verification and token exchange
- Webhook subscription reconciliation
"""

__version__ = "0.1.0"
