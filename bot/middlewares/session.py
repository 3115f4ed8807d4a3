"""Loads the user's session before a handler runs and persists it afterwards."""

from __future__ import annotations

import logging
from typing import Optional

from aiogram.dispatcher.middlewares.base import BaseMiddleware
from aiogram.types import CallbackQuery, Message

from bot.core.states import FlowResult, Session
from bot.errors import BotError, TransientError
from bot.services.identity_service import IdentityService
from bot.services.session_service import SessionStore
from bot.utils import messages

logger = logging.getLogger(__name__)


class SessionContext:
    """Mutable holder handed to handlers as `session_ctx`; the middleware saves `session` when it changed."""

    def __init__(self, session: Session):
        self.session = session
        self._loaded = session

    def apply(self, result: FlowResult) -> list[str]:
        self.session = result.session
        return result.replies

    @property
    def changed(self) -> bool:
        return self.session != self._loaded


class SessionMiddleware(BaseMiddleware):
    def __init__(self, sessions: SessionStore, identities: IdentityService):
        self.sessions = sessions
        self.identities = identities

    async def __call__(self, handler, event, data):  # type: ignore[override]
        user = getattr(event, "from_user", None)
        if user is None:
            # Anonymous admins / channel posts: nothing to key a session on.
            return None

        try:
            snapshot = await self.sessions.load(user.id)
            snapshot = await self.identities.resolve(
                snapshot,
                username=user.username,
                first_name=user.first_name,
                last_name=user.last_name,
            )
        except Exception as e:
            logger.error(f"Failed to load session for {user.id}: {e}", exc_info=not isinstance(e, TransientError))
            await _notify(event, messages.generic_error_message())
            return None

        ctx = SessionContext(snapshot)
        data["session_ctx"] = ctx
        try:
            result = await handler(event, data)
        except Exception as e:
            # No partial-flow resume after an infrastructure failure: drop back to idle.
            transient = isinstance(e, TransientError) or not isinstance(e, BotError)
            if transient and ctx.session.flow is not None:
                ctx.session = ctx.session.reset()
            await self._save(ctx)
            raise

        await self._save(ctx)
        return result

    async def _save(self, ctx: SessionContext) -> None:
        if not ctx.changed:
            return
        try:
            await self.sessions.save(ctx.session)
        except Exception as e:
            logger.error(f"Failed to save session for {ctx.session.telegram_id}: {e}")


async def _notify(event, text: str) -> Optional[Message]:
    try:
        if isinstance(event, CallbackQuery):
            await event.answer(text)
        elif isinstance(event, Message):
            return await event.answer(text, parse_mode="HTML")
    except Exception as e:
        logger.debug(f"Could not notify user: {e}")
    return None
