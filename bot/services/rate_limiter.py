"""Rate limiter service - fixed-window counters stored in the database."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from bot.utils.datetime_utils import utcnow
from database import Database, RateLimitCounter

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_ms: int = 0
    backend_error: bool = False

    @property
    def retry_after_seconds(self) -> int:
        return -(-self.retry_after_ms // 1000)


class RateLimiter:
    """
    Fixed-window limiter: `points` consumptions per `duration` seconds per key.

    The window opens on the first consumption for a key and does not reset
    early. Each `try_consume` is a single conditional write, so concurrent
    callers can never push a counter past its limit.
    """

    def __init__(
        self,
        db: Database,
        key_prefix: str,
        points: int,
        duration: int,
        fail_open: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        if points < 1 or duration < 1:
            raise ValueError("points and duration must be positive")
        self.db = db
        self.key_prefix = key_prefix
        self.points = points
        self.duration = duration
        self.fail_open = fail_open
        self.clock = clock

    def make_key(self, *parts) -> str:
        return ":".join([self.key_prefix, *(str(p) for p in parts)])

    async def try_consume(self, key: str, points: int = 1) -> RateLimitResult:
        """
        Consume `points` from the bucket for `key` if they fit in the current window.

        Args:
            key: Bucket key (already prefixed, see `make_key`)
            points: Points requested

        Returns:
            RateLimitResult; `backend_error` is set when the counter store failed
        """
        if points > self.points:
            return RateLimitResult(allowed=False, remaining=0, retry_after_ms=self.duration * 1000)

        try:
            for _ in range(_MAX_ATTEMPTS):
                result = await self._attempt(key, points)
                if result is not None:
                    return result
            logger.warning(f"Rate limiter contention on {key}, giving up after {_MAX_ATTEMPTS} attempts")
        except Exception as e:
            logger.error(f"Rate limiter backend error for {key}: {e}", exc_info=True)

        if self.fail_open:
            return RateLimitResult(allowed=True, remaining=0, backend_error=True)
        return RateLimitResult(allowed=False, remaining=0, backend_error=True)

    async def _attempt(self, key: str, points: int) -> Optional[RateLimitResult]:
        now = self.clock()
        window_end = now + timedelta(seconds=self.duration)

        async with self.db.session() as session:
            consumed = await session.execute(
                update(RateLimitCounter)
                .where(
                    RateLimitCounter.key == key,
                    RateLimitCounter.expires_at > now,
                    RateLimitCounter.points + points <= self.points,
                )
                .values(points=RateLimitCounter.points + points)
            )
            if consumed.rowcount == 1:
                row = await session.get(RateLimitCounter, key, populate_existing=True)
                return RateLimitResult(allowed=True, remaining=max(0, self.points - row.points))

            row = (
                await session.execute(select(RateLimitCounter).where(RateLimitCounter.key == key))
            ).scalar_one_or_none()

            if row is not None and row.expires_at > now:
                return RateLimitResult(
                    allowed=False,
                    remaining=max(0, self.points - row.points),
                    retry_after_ms=_millis(row.expires_at - now),
                )

            if row is not None:
                reset = await session.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.key == key, RateLimitCounter.expires_at <= now)
                    .values(points=points, expires_at=window_end)
                )
                if reset.rowcount == 1:
                    return RateLimitResult(allowed=True, remaining=self.points - points)
                return None

        # No row yet: the first writer opens the window, a concurrent loser retries.
        try:
            async with self.db.session() as session:
                session.add(RateLimitCounter(key=key, points=points, expires_at=window_end))
        except IntegrityError:
            return None
        return RateLimitResult(allowed=True, remaining=self.points - points)

    async def status(self, key: str) -> RateLimitResult:
        """Report the bucket without consuming anything."""
        now = self.clock()
        async with self.db.session() as session:
            row = await session.get(RateLimitCounter, key)
        if row is None or row.expires_at <= now:
            return RateLimitResult(allowed=True, remaining=self.points)
        remaining = max(0, self.points - row.points)
        return RateLimitResult(
            allowed=remaining > 0,
            remaining=remaining,
            retry_after_ms=_millis(row.expires_at - now) if remaining == 0 else 0,
        )

    async def reset(self, key: str) -> None:
        async with self.db.session() as session:
            await session.execute(delete(RateLimitCounter).where(RateLimitCounter.key == key))

    async def purge_expired(self) -> int:
        """Delete counters whose window has closed. Returns the number removed."""
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    delete(RateLimitCounter).where(
                        RateLimitCounter.key.like(f"{self.key_prefix}:%"),
                        RateLimitCounter.expires_at <= self.clock(),
                    )
                )
                return result.rowcount or 0
        except Exception as e:
            logger.error(f"Error purging rate-limit counters ({self.key_prefix}): {e}", exc_info=True)
            return 0


def _millis(delta: timedelta) -> int:
    return max(0, int(delta.total_seconds() * 1000))
