"""Service container - wires configuration, the magic-link client, and domain services."""
import logging
from dataclasses import dataclass

from bot.config import Config
from bot.services.auth_flow import AuthStateMachine
from bot.services.community_service import CommunityService
from bot.services.community_wizard import CommunityWizard
from bot.services.identity_service import IdentityService
from bot.services.magic_link import MagicLinkClient
from bot.services.rate_limiter import RateLimiter
from bot.services.session_service import SessionStore
from bot.services.verification import VerificationService
from database.db import Database, db as default_db

logger = logging.getLogger(__name__)

MESSAGE_LIMIT_PREFIX = "rl_msg"
MAGIC_LINK_LIMIT_PREFIX = "rl_magic"


@dataclass
class ServiceContainer:
    """Simple dependency container to share services across handlers."""

    config: Config
    db: Database
    magic_links: MagicLinkClient
    sessions: SessionStore
    identities: IdentityService
    message_limiter: RateLimiter
    magic_link_limiter: RateLimiter
    communities: CommunityService
    auth_flow: AuthStateMachine
    wizard: CommunityWizard
    verification: VerificationService

    @classmethod
    async def create(cls, config: Config, database: Database = None, magic_links: MagicLinkClient = None) -> "ServiceContainer":
        """
        Build the service container with all dependencies.

        Args:
            config: Loaded Config instance
            database: Database to use (defaults to the shared handle)
            magic_links: Pre-built magic-link client (tests pass a mock)

        Returns:
            ServiceContainer with initialized services
        """
        logger.info("Building service container...")

        database = database or default_db
        magic_links = magic_links or MagicLinkClient(
            config.supabase_url,
            config.supabase_anon_key,
            config.verification_base_url,
        )

        sessions = SessionStore(database, ttl_seconds=config.session_ttl_seconds)
        identities = IdentityService(database, cache_seconds=config.identity_cache_seconds)
        message_limiter = RateLimiter(
            database,
            MESSAGE_LIMIT_PREFIX,
            points=config.message_rate_limit,
            duration=config.message_rate_window,
            fail_open=config.rate_limit_fail_open,
        )
        # Gates outbound email: always fails closed.
        magic_link_limiter = RateLimiter(
            database,
            MAGIC_LINK_LIMIT_PREFIX,
            points=config.magic_link_rate_limit,
            duration=config.magic_link_rate_window,
        )
        communities = CommunityService(database, identities=identities)
        auth_flow = AuthStateMachine(
            identities,
            magic_links,
            magic_link_limiter,
            sessions=sessions,
            link_ttl_seconds=config.magic_link_ttl_seconds,
        )
        wizard = CommunityWizard(communities)
        verification = VerificationService(auth_flow, magic_links)

        logger.info("Service container ready")

        return cls(
            config=config,
            db=database,
            magic_links=magic_links,
            sessions=sessions,
            identities=identities,
            message_limiter=message_limiter,
            magic_link_limiter=magic_link_limiter,
            communities=communities,
            auth_flow=auth_flow,
            wizard=wizard,
            verification=verification,
        )

    async def run_cleanup(self) -> None:
        """Purge expired sessions and rate-limit counters."""
        await self.sessions.purge_expired()
        await self.message_limiter.purge_expired()
        await self.magic_link_limiter.purge_expired()

    async def cleanup(self):
        """Release HTTP resources."""
        await self.magic_links.close()
        logger.info("Service container cleanup complete")
