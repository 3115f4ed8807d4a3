"""Dispatcher-level error handlers - every escaped exception becomes one user-facing reply."""
import logging

from aiogram import Router
from aiogram.filters import ExceptionTypeFilter
from aiogram.types import ErrorEvent

from bot.errors import BotError, TransientError
from bot.utils import messages

logger = logging.getLogger(__name__)


async def _reply(event: ErrorEvent, text: str) -> None:
    update = event.update
    try:
        if update.message is not None:
            await update.message.answer(text, parse_mode="HTML")
        elif update.callback_query is not None:
            await update.callback_query.answer(text, show_alert=True)
    except Exception as e:
        logger.warning(f"Could not deliver error reply for update {update.update_id}: {e}")


def create_error_handlers() -> Router:
    router = Router()

    @router.error(ExceptionTypeFilter(TransientError))
    async def on_transient(event: ErrorEvent):
        logger.error(f"Transient failure on update {event.update.update_id}: {event.exception!r}")
        await _reply(event, messages.generic_error_message())
        return True

    @router.error(ExceptionTypeFilter(BotError))
    async def on_bot_error(event: ErrorEvent):
        # Typed errors carry a message written for users.
        await _reply(event, event.exception.user_message)
        return True

    @router.error()
    async def on_unexpected(event: ErrorEvent):
        logger.error(
            f"Unhandled error on update {event.update.update_id}: {event.exception}",
            exc_info=event.exception,
        )
        await _reply(event, messages.generic_error_message())
        return True

    return router
