"""
Session storage.

The store is the only shared mutable state in the auth flow. The contract is a
minimal key-value interface keyed by session id:
- get(session_id) -> Session or None
- put(session_id, session) -> None, raising on failure

Implementations:
- InMemorySessionStore: single-process apps and tests
- SqlAlchemySessionStore: relational storage, access tokens encrypted with Fernet
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DbSession

from shopify_auth.errors import SessionStoreError
from shopify_auth.models.session import AssociatedUser, Session
from shopify_auth.models.session_record import ShopifySessionRecord
from shopify_auth.platform.secrets import TokenCipher

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Abstract key-value store for sessions."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Load a session, or None if there is none for this id."""
        pass

    @abstractmethod
    async def put(self, session_id: str, session: Session) -> None:
        """
        Store a session, replacing any existing one.

        Raises:
            SessionStoreError: If the session could not be stored
        """
        pass


class InMemorySessionStore(SessionStore):
    """Dictionary-backed store. Not shared between processes."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    async def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def put(self, session_id: str, session: Session) -> None:
        self._sessions[session_id] = session

    def __len__(self) -> int:
        return len(self._sessions)


class SqlAlchemySessionStore(SessionStore):
    """
    Stores sessions in the `shopify_sessions` table.

    SQLAlchemy sessions are synchronous; each operation runs in a worker
    thread with its own DB session from `session_factory`.
    """

    def __init__(self, session_factory: Callable[[], DbSession], cipher: TokenCipher):
        self._session_factory = session_factory
        self._cipher = cipher

    async def get(self, session_id: str) -> Optional[Session]:
        return await asyncio.to_thread(self._get_sync, session_id)

    async def put(self, session_id: str, session: Session) -> None:
        await asyncio.to_thread(self._put_sync, session_id, session)

    def _get_sync(self, session_id: str) -> Optional[Session]:
        db = self._session_factory()
        try:
            record = db.get(ShopifySessionRecord, session_id)
            if record is None:
                return None
            return self._to_session(record)
        except SQLAlchemyError as e:
            logger.error("Failed to load session", extra={"session_id": session_id, "error": str(e)})
            raise SessionStoreError(f"Failed to load session {session_id}")
        finally:
            db.close()

    def _put_sync(self, session_id: str, session: Session) -> None:
        db = self._session_factory()
        try:
            record = db.get(ShopifySessionRecord, session_id)
            if record is None:
                record = ShopifySessionRecord(id=session_id)
                db.add(record)

            record.shop = session.shop
            record.encrypted_access_token = self._cipher.encrypt(session.access_token)
            record.scope = session.scope or ""
            record.is_online = session.is_online
            record.expires_at = session.expires
            record.associated_user = (
                asdict(session.associated_user) if session.associated_user else None
            )
            record.associated_user_scope = session.associated_user_scope

            db.commit()
            logger.info(
                "Session stored",
                extra={"session_id": session_id, "shop_domain": session.shop, "is_online": session.is_online},
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store session", extra={"session_id": session_id, "error": str(e)})
            raise SessionStoreError(f"Failed to store session {session_id}")
        finally:
            db.close()

    def _to_session(self, record: ShopifySessionRecord) -> Session:
        return Session(
            id=record.id,
            shop=record.shop,
            access_token=self._cipher.decrypt(record.encrypted_access_token),
            scope=record.scope or "",
            is_online=bool(record.is_online),
            expires=record.expires_at,
            associated_user=(
                AssociatedUser.from_dict(record.associated_user) if record.associated_user else None
            ),
            associated_user_scope=record.associated_user_scope,
        )
