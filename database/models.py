"""Database models - identities, communities, sessions and rate-limit counters."""
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, BigInteger, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

from bot.utils.datetime_utils import utcnow

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Linked (or not yet linked) identities - one row per Telegram account."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    telegram_id = Column(BigInteger, nullable=False, unique=True)
    email = Column(String(320), nullable=True, unique=True)
    username = Column(String(32), nullable=True)
    first_name = Column(String(64), nullable=True)
    last_name = Column(String(64), nullable=True)
    role = Column(String, nullable=False, default="user")  # siteAdmin | communityAdmin | user
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship("CommunityMember", back_populates="user")

    __table_args__ = (
        Index("idx_users_role", "role"),
    )

    @property
    def is_linked(self) -> bool:
        return bool(self.email)

    def __repr__(self):
        return f"<User(id={self.id}, telegram_id={self.telegram_id}, role={self.role})>"


class AuthEvent(Base):
    """Audit trail for logins, links, role changes and community membership changes."""
    __tablename__ = "auth_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    telegram_id = Column(BigInteger, nullable=True)
    event = Column(String, nullable=False)
    event_metadata = Column("metadata", Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_auth_events_user", "user_id", "created_at"),
        Index("idx_auth_events_created", "created_at"),
    )

    def __repr__(self):
        return f"<AuthEvent(id={self.id}, event={self.event}, user_id={self.user_id})>"


class Community(Base):
    """A named group with public/private visibility."""
    __tablename__ = "communities"

    id = Column(String(36), primary_key=True, default=_new_id)
    slug = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_private = Column(Boolean, nullable=False, default=False)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    member_count = Column(Integer, nullable=False, default=0)
    post_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    members = relationship("CommunityMember", back_populates="community")

    __table_args__ = (
        Index("idx_communities_created", "created_at"),
        Index("idx_communities_members", "member_count"),
        Index("idx_communities_private", "is_private"),
    )

    def __repr__(self):
        return f"<Community(slug={self.slug}, is_private={self.is_private})>"


class CommunityMember(Base):
    """Membership of one identity in one community."""
    __tablename__ = "community_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    role = Column(String, nullable=False, default="member")  # admin | moderator | member
    status = Column(String, nullable=False, default="active")  # active | pending | banned
    joined_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    community = relationship("Community", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        # Concurrent joins rely on this constraint; the losing insert raises IntegrityError.
        UniqueConstraint("community_id", "user_id", name="uq_community_members_community_user"),
        Index("idx_community_members_user", "user_id", "status"),
    )

    def __repr__(self):
        return f"<CommunityMember(community_id={self.community_id}, user_id={self.user_id}, status={self.status})>"


class BotSession(Base):
    """Per-user conversation state (TTL-bound)."""
    __tablename__ = "bot_sessions"

    telegram_id = Column(BigInteger, primary_key=True, autoincrement=False)
    data = Column(Text, nullable=False)  # JSON snapshot
    expires_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_bot_sessions_expiry", "expires_at"),
    )


class RateLimitCounter(Base):
    """Fixed-window counters for the rate limiters."""
    __tablename__ = "rate_limit_counters"

    key = Column(String, primary_key=True)
    points = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_rate_limit_expiry", "expires_at"),
    )
