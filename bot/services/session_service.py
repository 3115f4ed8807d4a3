"""Session service - persists per-user conversation snapshots with a TTL."""
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from bot.core.states import Session
from bot.errors import TransientError
from bot.utils.datetime_utils import utcnow
from database import BotSession, Database

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 24 * 3600


class SessionStore:
    """Load/save `Session` snapshots in the `bot_sessions` table."""

    def __init__(
        self,
        db: Database,
        ttl_seconds: int = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize session store.

        Args:
            db: Database instance
            ttl_seconds: Lifetime of a snapshot after its last save
            clock: Returns the current naive-UTC time (injectable for tests)
        """
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def load(self, telegram_id: int) -> Session:
        """
        Load a user's session.

        Missing, expired and unreadable snapshots all read as a fresh idle session.

        Raises:
            TransientError: the store is unreachable
        """
        try:
            async with self.db.session() as session:
                row = await session.get(BotSession, telegram_id)
                if row is None or row.expires_at <= self.clock():
                    return Session(telegram_id=telegram_id)
                data = row.data
        except SQLAlchemyError as e:
            raise TransientError() from e

        try:
            return Session.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable session for {telegram_id}: {e}")
            return Session(telegram_id=telegram_id)

    async def save(self, snapshot: Session) -> None:
        """Persist a snapshot and refresh its TTL (last writer wins)."""
        now = self.clock()
        payload = json.dumps(snapshot.to_dict())
        try:
            async with self.db.session() as session:
                row = await session.get(BotSession, snapshot.telegram_id)
                if row is None:
                    session.add(
                        BotSession(
                            telegram_id=snapshot.telegram_id,
                            data=payload,
                            expires_at=now + timedelta(seconds=self.ttl_seconds),
                            updated_at=now,
                        )
                    )
                else:
                    row.data = payload
                    row.expires_at = now + timedelta(seconds=self.ttl_seconds)
                    row.updated_at = now
        except SQLAlchemyError as e:
            raise TransientError() from e

    async def clear(self, telegram_id: int) -> None:
        """Drop a user's snapshot entirely."""
        try:
            async with self.db.session() as session:
                await session.execute(delete(BotSession).where(BotSession.telegram_id == telegram_id))
        except SQLAlchemyError as e:
            raise TransientError() from e

    async def purge_expired(self) -> int:
        """
        Delete expired snapshots.

        Returns:
            Number of rows deleted
        """
        try:
            async with self.db.session() as session:
                result = await session.execute(delete(BotSession).where(BotSession.expires_at <= self.clock()))
                count = result.rowcount or 0
            if count > 0:
                logger.info(f"Purged {count} expired sessions")
            return count
        except Exception as e:
            logger.error(f"Error purging expired sessions: {e}", exc_info=True)
            return 0

    async def count_active(self) -> int:
        """Number of unexpired sessions (status endpoint)."""
        async with self.db.session() as session:
            result = await session.execute(select(BotSession.telegram_id).where(BotSession.expires_at > self.clock()))
            return len(result.scalars().all())

    async def peek(self, telegram_id: int) -> Optional[Session]:
        """Like `load`, but returns None when there is no live snapshot."""
        async with self.db.session() as session:
            row = await session.get(BotSession, telegram_id)
            if row is None or row.expires_at <= self.clock():
                return None
            data = row.data
        return Session.from_dict(json.loads(data))
