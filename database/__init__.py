"""Database package - models and connection management."""
from database.db import Database, db
from database.models import (
    Base,
    User,
    AuthEvent,
    Community,
    CommunityMember,
    BotSession,
    RateLimitCounter,
)

__all__ = [
    "Database",
    "db",
    "Base",
    "User",
    "AuthEvent",
    "Community",
    "CommunityMember",
    "BotSession",
    "RateLimitCounter",
]
