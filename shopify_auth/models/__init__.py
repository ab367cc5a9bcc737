"""
Session values and database models.
"""

from shopify_auth.models.session import (
    AssociatedUser,
    Session,
    ShopCredentials,
    offline_session_id,
    online_session_id,
)
from shopify_auth.models.session_record import ShopifySessionRecord

__all__ = [
    "AssociatedUser",
    "Session",
    "ShopCredentials",
    "offline_session_id",
    "online_session_id",
    "ShopifySessionRecord",
]
