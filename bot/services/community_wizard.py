"""Five-step community creation dialogue: slug, name, description, visibility, confirm."""
import logging
from dataclasses import replace
from typing import Optional

from bot.core.states import FlowResult, Session, Wizard
from bot.errors import BotError, SlugTaken, ValidationError
from bot.services.community_service import CommunityService
from bot.utils import messages
from bot.utils.permissions import Role, require_role
from bot.utils.validators import clean_description, parse_visibility, validate_name, validate_slug

logger = logging.getLogger(__name__)


class CommunityWizard:
    """State is `Wizard(step, draft)`; `cancel` works at every step, `back` only on confirm."""

    def __init__(self, communities: CommunityService):
        self.communities = communities

    def start(self, session: Session) -> FlowResult:
        """
        /create_community.

        Raises:
            NotLinked: the user has no linked identity
        """
        require_role(session.cached_identity, [Role.USER])
        # Replaces any linking flow in progress.
        return FlowResult(session.with_state(Wizard(step=1)), [messages.wizard_step_message(1)])

    def cancel(self, session: Session) -> FlowResult:
        return FlowResult(session.reset(), [messages.wizard_cancelled_message()], outcome="cancelled")

    async def handle_text(self, session: Session, text: Optional[str]) -> FlowResult:
        state = session.state
        if not isinstance(state, Wizard):
            return FlowResult(session, [messages.unknown_input_message()])

        value = (text or "").strip()
        if value.lower() == "cancel":
            return self.cancel(session)

        try:
            if state.step == 1:
                return await self._slug(session, state, value)
            if state.step == 2:
                name = validate_name(value)
                return self._advance(session, state.advance(name=name))
            if state.step == 3:
                description = None if value.lower() == "skip" else clean_description(value)
                return self._advance(session, state.advance(description=description))
            if state.step == 4:
                return self._confirm(session, state.advance(is_private=parse_visibility(value)))
            return await self._step_confirm(session, state, value.lower())
        except (ValidationError, SlugTaken) as e:
            return FlowResult(session, [messages.wizard_error_message(e.user_message), messages.wizard_step_message(state.step)])

    async def _slug(self, session: Session, state: Wizard, value: str) -> FlowResult:
        slug = validate_slug(value)
        try:
            taken = await self.communities.slug_exists(slug)
        except Exception as e:
            logger.error(f"Slug check failed for telegram_id={session.telegram_id}: {e}", exc_info=True)
            return FlowResult(
                session.with_state(Wizard(step=1)),
                [messages.generic_error_message(), messages.wizard_step_message(1)],
                outcome="error",
            )
        if taken:
            raise SlugTaken(slug)
        return self._advance(session, state.advance(slug=slug))

    def _advance(self, session: Session, state: Wizard) -> FlowResult:
        return FlowResult(session.with_state(state), [messages.wizard_step_message(state.step)])

    def _confirm(self, session: Session, state: Wizard) -> FlowResult:
        draft = state.draft
        return FlowResult(
            session.with_state(state),
            [messages.wizard_confirm_message(draft.slug, draft.name, draft.description, draft.is_private)],
        )

    async def _step_confirm(self, session: Session, state: Wizard, choice: str) -> FlowResult:
        if choice == "back":
            return self._advance(session, replace(state, step=4))
        if choice != "create":
            return FlowResult(session, [messages.wizard_confirm_reprompt_message()])
        return await self._commit(session, state)

    async def _commit(self, session: Session, state: Wizard) -> FlowResult:
        """Create the community. The wizard is cleared whatever happens."""
        cleared = session.reset()
        identity = session.cached_identity
        if identity is None or not identity.is_linked:
            return FlowResult(cleared, [messages.community_create_failed_message("Link your account first with /link.")], outcome="error")

        draft = state.draft
        try:
            community = await self.communities.create(
                identity.id,
                {
                    "slug": draft.slug,
                    "name": draft.name,
                    "description": draft.description,
                    "is_private": bool(draft.is_private),
                },
            )
        except BotError as e:
            return FlowResult(cleared, [messages.community_create_failed_message(e.user_message)], outcome="error")
        except Exception as e:
            logger.error(f"Community creation failed for telegram_id={session.telegram_id}: {e}", exc_info=True)
            return FlowResult(cleared, [messages.community_create_failed_message()], outcome="error")

        return FlowResult(
            cleared,
            [messages.community_created_message(community.name, community.slug, community.is_private)],
            outcome="created",
        )
