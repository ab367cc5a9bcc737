"""
Persisted Shopify session.

SECURITY:
- encrypted_access_token is Fernet-encrypted via shopify_auth.platform.secrets
- Tokens are NEVER logged or exposed in __repr__
"""

from sqlalchemy import Boolean, Column, DateTime, JSON, String, Text, func

from shopify_auth.db_base import Base


class ShopifySessionRecord(Base):
    """
    One row per session id.

    Offline sessions are keyed "offline_<shop>"; online sessions
    "<shop>_<user id>".
    """

    __tablename__ = "shopify_sessions"

    id = Column(
        String(255),
        primary_key=True,
        comment="Deterministic session id"
    )

    shop = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Shopify shop domain (mystore.myshopify.com)"
    )

    encrypted_access_token = Column(
        Text,
        nullable=False,
        comment="Fernet-encrypted Admin API access token"
    )

    scope = Column(
        Text,
        nullable=False,
        default="",
        comment="Granted access scopes"
    )

    is_online = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Online (per-user) or offline (per-shop) token"
    )

    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Token expiry (online and expiring offline tokens)"
    )

    associated_user = Column(
        JSON,
        nullable=True,
        comment="Shopify staff member for online tokens"
    )

    associated_user_scope = Column(
        Text,
        nullable=True,
        comment="Scopes granted to the associated user"
    )

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )

    def __repr__(self) -> str:
        return f"<ShopifySessionRecord(id={self.id}, shop={self.shop}, is_online={self.is_online})>"
