"""Magic-link linking flow: Idle -> AwaitingEmail -> SendingLink -> AwaitingVerification -> Idle."""
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from bot.core.states import (
    LINK_STATES,
    AwaitingEmail,
    AwaitingVerification,
    FlowResult,
    SendingLink,
    Session,
)
from bot.errors import IdentityConflict
from bot.services.identity_service import IdentityService
from bot.services.magic_link import MagicLinkClient
from bot.services.rate_limiter import RateLimiter
from bot.services.session_service import SessionStore
from bot.utils import messages
from bot.utils.datetime_utils import utcnow
from bot.utils.email import mask_email, validate_email
from database import User

logger = logging.getLogger(__name__)

DEFAULT_LINK_TTL = 24 * 3600


class AuthStateMachine:
    """
    Drives linking for one user message at a time.

    Every step takes the current snapshot and returns a `FlowResult`; the
    caller persists `result.session`.
    """

    def __init__(
        self,
        identities: IdentityService,
        magic_links: MagicLinkClient,
        limiter: RateLimiter,
        sessions: Optional[SessionStore] = None,
        link_ttl_seconds: int = DEFAULT_LINK_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.identities = identities
        self.magic_links = magic_links
        self.limiter = limiter
        self.sessions = sessions
        self.link_ttl_seconds = link_ttl_seconds
        self.clock = clock

    async def start(self, session: Session, first_name: Optional[str] = None) -> FlowResult:
        """/link: short-circuit for linked identities, otherwise wait for an email."""
        user = await self.identities.get_by_telegram_id(session.telegram_id)
        if user and user.is_linked:
            session = replace(session, cached_identity=self.identities.to_cached(user))
            return FlowResult(session, [messages.already_linked_message(user.email, user.role)], outcome="linked")

        # Replaces any wizard in progress.
        session = session.with_state(AwaitingEmail(started_at=self.clock()))
        return FlowResult(session, [messages.link_prompt_message(first_name)])

    async def handle_text(
        self,
        session: Session,
        text: Optional[str],
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> FlowResult:
        """Text received while in `AwaitingEmail`."""
        if not isinstance(session.state, AwaitingEmail):
            return await self.link_status(session)

        if not text:
            return FlowResult(session, [messages.email_expected_message()])

        validation = validate_email(text)
        if not validation.is_valid:
            return FlowResult(session, [messages.invalid_email_message(validation.error)])
        email = validation.normalized_email

        quota = await self.limiter.try_consume(self.limiter.make_key(session.telegram_id, email))
        if not quota.allowed:
            if quota.backend_error:
                return FlowResult(session.reset(), [messages.try_later_message()], outcome="error")
            logger.info(f"Magic link limit hit for telegram_id={session.telegram_id}")
            return FlowResult(
                session.reset(),
                [messages.magic_link_limited_message(quota.retry_after_seconds)],
                outcome="rate_limited",
            )

        expires_at = self.clock() + timedelta(seconds=self.link_ttl_seconds)
        sending = session.with_state(SendingLink(email=email, expires_at=expires_at))
        return await self._send(sending, username, first_name)

    async def _send(self, session: Session, username: Optional[str], first_name: Optional[str]) -> FlowResult:
        state = session.state
        replies = [messages.sending_link_message(state.email)]
        try:
            sent = await self.magic_links.send_magic_link(
                state.email,
                session.telegram_id,
                username=username,
                first_name=first_name,
            )
        except Exception as e:
            logger.error(f"Error sending magic link for telegram_id={session.telegram_id}: {e}", exc_info=True)
            sent = False

        if not sent:
            replies.append(messages.magic_link_failed_message())
            return FlowResult(session.reset(), replies, outcome="error")

        logger.info(f"Magic link sent to {mask_email(state.email)} for telegram_id={session.telegram_id}")
        session = session.with_state(AwaitingVerification(email=state.email, expires_at=state.expires_at))
        replies.append(messages.magic_link_sent_message(state.email, self.limiter.points))
        return FlowResult(session, replies, outcome="sent")

    def cancel(self, session: Session) -> FlowResult:
        if isinstance(session.state, LINK_STATES):
            return FlowResult(session.reset(), [messages.link_cancelled_message()], outcome="cancelled")
        return FlowResult(session, [messages.nothing_to_cancel_message()])

    async def link_status(self, session: Session) -> FlowResult:
        """
        Report linked / pending / expired / not_linked.

        Always reads the identity table. Finished or expired link states
        collapse to Idle here rather than on a timer.
        """
        user = await self.identities.get_by_telegram_id(session.telegram_id)
        if user is not None:
            session = replace(session, cached_identity=self.identities.to_cached(user))

        if user and user.is_linked:
            if isinstance(session.state, LINK_STATES):
                session = session.reset()
            return FlowResult(
                session,
                [messages.link_status_linked_message(user.email, user.role, user.username)],
                outcome="linked",
            )

        state = session.state
        if isinstance(state, (SendingLink, AwaitingVerification)):
            now = self.clock()
            if now > state.expires_at:
                return FlowResult(session.reset(), [messages.link_status_expired_message(state.email)], outcome="expired")
            remaining = int((state.expires_at - now).total_seconds())
            return FlowResult(session, [messages.link_status_pending_message(state.email, remaining)], outcome="pending")

        if isinstance(state, AwaitingEmail):
            return FlowResult(session, [messages.link_status_awaiting_email_message()], outcome="pending")

        return FlowResult(session, [messages.link_status_not_linked_message()], outcome="not_linked")

    async def complete_link(
        self,
        telegram_id: int,
        email: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        """
        Verification callback: link the identity, then tidy the bot session if there is one.

        Raises:
            IdentityConflict: propagated from the identity store
        """
        try:
            user = await self.identities.link_identity(
                telegram_id,
                email,
                username=username,
                first_name=first_name,
                last_name=last_name,
            )
        except IdentityConflict:
            await self._abandon_link(telegram_id)
            raise

        if self.sessions is not None:
            try:
                snapshot = await self.sessions.peek(telegram_id)
                if snapshot is not None:
                    if isinstance(snapshot.state, LINK_STATES):
                        snapshot = snapshot.reset()
                    await self.sessions.save(replace(snapshot, cached_identity=self.identities.to_cached(user)))
            except Exception as e:
                # The identity row is authoritative; a stale session self-corrects on /link_status.
                logger.warning(f"Could not refresh session after linking telegram_id={telegram_id}: {e}")

        return user

    async def _abandon_link(self, telegram_id: int) -> None:
        """A conflicting email can never verify, so drop the pending link back to Idle."""
        if self.sessions is None:
            return
        try:
            snapshot = await self.sessions.peek(telegram_id)
            if snapshot is not None and isinstance(snapshot.state, LINK_STATES):
                await self.sessions.save(snapshot.reset())
        except Exception as e:
            logger.warning(f"Could not reset session after link conflict for telegram_id={telegram_id}: {e}")

