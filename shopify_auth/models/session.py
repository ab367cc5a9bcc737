"""
Session values produced by token exchange.

Session ids are deterministic so a shop's session can be looked up from a
verified session token alone:
- offline: "offline_<shop>"
- online: "<shop>_<shopify user id>"
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def offline_session_id(shop: str) -> str:
    """Session id for a shop's offline access token."""
    return f"offline_{shop}"


def online_session_id(shop: str, user_id: Any) -> str:
    """Session id for a user's online access token on a shop."""
    return f"{shop}_{user_id}"


@dataclass(frozen=True)
class ShopCredentials:
    """Result of the authorization-code exchange handed to install/update hooks."""
    url: str
    access_token: str
    scope: str = ""


@dataclass(frozen=True)
class AssociatedUser:
    """Shopify staff member an online access token belongs to."""
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    account_owner: Optional[bool] = None
    locale: Optional[str] = None
    collaborator: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssociatedUser":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class Session:
    """
    An access token for a shop, online or offline.

    Invariants:
    - access_token is never empty
    - expires, when set, is timezone-aware
    """
    id: str
    shop: str
    access_token: str
    scope: str = ""
    is_online: bool = False
    expires: Optional[datetime] = None
    associated_user: Optional[AssociatedUser] = None
    associated_user_scope: Optional[str] = None
    state: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Session access_token cannot be empty")
        if not self.id:
            raise ValueError("Session id is required")
        if self.expires is not None and self.expires.tzinfo is None:
            self.expires = self.expires.replace(tzinfo=timezone.utc)

    @property
    def is_expired(self) -> bool:
        if self.expires is None:
            return False
        return datetime.now(timezone.utc) >= self.expires

    def is_active(self) -> bool:
        """True if the session has an access token that has not expired."""
        return bool(self.access_token) and not self.is_expired

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expires"] = self.expires.isoformat() if self.expires else None
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        expires = data.get("expires")
        created_at = data.get("created_at")
        user = data.get("associated_user")

        return cls(
            id=data["id"],
            shop=data["shop"],
            access_token=data["access_token"],
            scope=data.get("scope") or "",
            is_online=bool(data.get("is_online", False)),
            expires=datetime.fromisoformat(expires) if expires else None,
            associated_user=AssociatedUser.from_dict(user) if user else None,
            associated_user_scope=data.get("associated_user_scope"),
            state=data.get("state"),
            created_at=(
                datetime.fromisoformat(created_at) if created_at
                else datetime.now(timezone.utc)
            ),
        )

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, shop={self.shop!r}, is_online={self.is_online}, "
            f"expires={self.expires!r})"
        )
