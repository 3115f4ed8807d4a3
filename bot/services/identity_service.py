"""Identity service - Telegram account records, email linking, roles and the audit trail."""
import json
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from bot.core.states import CachedIdentity, Session
from bot.errors import IdentityConflict, IdentityNotFound
from bot.utils.datetime_utils import utcnow
from bot.utils.email import mask_email
from bot.utils.permissions import Role
from database import AuthEvent, Database, User

logger = logging.getLogger(__name__)

TELEGRAM_ALREADY_LINKED = "This Telegram account is already linked to another email address."
EMAIL_ALREADY_LINKED = "This email address is already linked to another Telegram account."


class IdentityService:
    """The `users` table is the source of truth for linking; sessions only cache it."""

    def __init__(self, db: Database, cache_seconds: int = 300, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.cache_seconds = cache_seconds
        self.clock = clock

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        async with self.db.session() as session:
            result = await session.execute(select(User).where(User.telegram_id == telegram_id))
            return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Optional[User]:
        async with self.db.session() as session:
            return await session.get(User, user_id)

    async def get_or_create(
        self,
        telegram_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        """Return the identity for a Telegram account, creating an unlinked one on first contact."""
        existing = await self.get_by_telegram_id(telegram_id)
        if existing:
            return existing

        try:
            async with self.db.session() as session:
                user = User(
                    telegram_id=telegram_id,
                    username=username,
                    first_name=first_name,
                    last_name=last_name,
                    role=Role.USER.value,
                )
                session.add(user)
                await session.flush()
                logger.info(f"Created identity for telegram_id={telegram_id}")
                return user
        except IntegrityError:
            # Concurrent first messages: the other insert won.
            user = await self.get_by_telegram_id(telegram_id)
            if user is None:
                raise
            return user

    async def link_identity(
        self,
        telegram_id: int,
        email: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        """
        Bind a verified email to a Telegram account.

        Works with no bot session at all; safe to repeat for the same pair.

        Raises:
            IdentityConflict: the email or the Telegram account is bound elsewhere
        """
        email = email.strip().lower()
        now = self.clock()

        try:
            async with self.db.session() as session:
                result = await session.execute(select(User).where(User.email == email))
                email_owner = result.scalar_one_or_none()
                if email_owner and int(email_owner.telegram_id) != int(telegram_id):
                    logger.warning(
                        "Email already linked to another Telegram account; telegram_id=%s conflicts_with=%s",
                        telegram_id,
                        email_owner.telegram_id,
                    )
                    raise IdentityConflict(EMAIL_ALREADY_LINKED)

                result = await session.execute(select(User).where(User.telegram_id == telegram_id))
                user = result.scalar_one_or_none()
                if user and user.email and user.email != email:
                    logger.warning(f"Telegram account {telegram_id} already linked to a different email")
                    raise IdentityConflict(TELEGRAM_ALREADY_LINKED)

                if user is None:
                    user = User(telegram_id=telegram_id, role=Role.USER.value)
                    session.add(user)

                user.email = email
                user.username = username or user.username
                user.first_name = first_name or user.first_name
                user.last_name = last_name or user.last_name
                if not user.role:
                    user.role = Role.USER.value
                user.last_login_at = now
                user.updated_at = now
                await session.flush()
        except IntegrityError as e:
            # Lost a race against another link for the same email or account.
            logger.warning(f"Identity link conflict for telegram_id={telegram_id}: {e}")
            raise IdentityConflict(EMAIL_ALREADY_LINKED) from e

        logger.info(f"Linked telegram_id={telegram_id} to {mask_email(email)}")
        await self.log_event(
            "link",
            user_id=user.id,
            telegram_id=telegram_id,
            metadata={"email": email, "username": username},
        )
        return user

    async def set_role(self, user_id: str, role: Role, actor: Optional[str] = None) -> User:
        """Change an identity's role and record a `role_change` event."""
        role = Role(role)
        async with self.db.session() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise IdentityNotFound()
            old_role = user.role
            user.role = role.value
            user.updated_at = self.clock()

        logger.info(f"Role changed for {user_id}: {old_role} -> {role.value}")
        await self.log_event(
            "role_change",
            user_id=user_id,
            telegram_id=user.telegram_id,
            metadata={"old_role": old_role, "new_role": role.value, "changed_by": actor},
        )
        return user

    async def list_users(self, role: Optional[Role] = None, limit: int = 50) -> List[User]:
        async with self.db.session() as session:
            query = select(User).order_by(User.created_at.desc()).limit(limit)
            if role is not None:
                query = query.where(User.role == Role(role).value)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def log_event(
        self,
        event: str,
        user_id: Optional[str] = None,
        telegram_id: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Append to the audit trail. Failures are logged and never propagate."""
        try:
            async with self.db.session() as session:
                session.add(
                    AuthEvent(
                        user_id=user_id,
                        telegram_id=telegram_id,
                        event=event,
                        event_metadata=json.dumps(metadata, default=str) if metadata else None,
                        created_at=self.clock(),
                    )
                )
        except Exception as e:
            logger.error(f"Failed to log auth event {event}: {e}", exc_info=True)

    async def audit_events(self, limit: int = 20, user_id: Optional[str] = None) -> List[AuthEvent]:
        async with self.db.session() as session:
            query = select(AuthEvent).order_by(AuthEvent.created_at.desc(), AuthEvent.id.desc()).limit(limit)
            if user_id:
                query = query.where(AuthEvent.user_id == user_id)
            result = await session.execute(query)
            return list(result.scalars().all())

    def to_cached(self, user: User) -> CachedIdentity:
        return CachedIdentity(
            id=user.id,
            telegram_id=int(user.telegram_id),
            role=user.role or Role.USER.value,
            email=user.email,
            cached_at=self.clock(),
        )

    def is_cache_fresh(self, identity: Optional[CachedIdentity]) -> bool:
        """Only linked identities are served from cache; unlinked ones are re-read every time."""
        if identity is None or not identity.is_linked or identity.cached_at is None:
            return False
        return self.clock() - identity.cached_at < timedelta(seconds=self.cache_seconds)

    async def resolve(
        self,
        snapshot: Session,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Session:
        """Attach a current `CachedIdentity` to the session, hitting the store only when stale."""
        if self.is_cache_fresh(snapshot.cached_identity):
            return snapshot
        user = await self.get_or_create(snapshot.telegram_id, username, first_name, last_name)
        return replace(snapshot, cached_identity=self.to_cached(user), username=username or snapshot.username)
