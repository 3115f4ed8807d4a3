"""Message handlers - route free text to whichever flow the session is in."""
import logging

from aiogram import F, Router
from aiogram.types import Message

from bot.container import ServiceContainer
from bot.core.states import AwaitingEmail, AwaitingVerification, SendingLink, Wizard
from bot.handlers.commands import send_replies
from bot.middlewares.session import SessionContext
from bot.utils import messages

logger = logging.getLogger(__name__)


def create_message_handlers(container: ServiceContainer) -> Router:
    """
    Create the free-text router. Include it last so commands win.

    Args:
        container: Service container with all dependencies

    Returns:
        Router with registered handlers
    """
    router = Router()

    @router.message(F.chat.type == "private", F.text)
    async def handle_text_message(message: Message, session_ctx: SessionContext):
        session = session_ctx.session
        state = session.state
        user = message.from_user

        if isinstance(state, AwaitingEmail):
            result = await container.auth_flow.handle_text(
                session,
                message.text,
                username=user.username,
                first_name=user.first_name,
            )
        elif isinstance(state, (SendingLink, AwaitingVerification)):
            result = await container.auth_flow.link_status(session)
        elif isinstance(state, Wizard):
            result = await container.wizard.handle_text(session, message.text)
        else:
            await message.answer(messages.unknown_input_message(), parse_mode="HTML")
            return

        await send_replies(message, session_ctx.apply(result))

    @router.message(F.chat.type == "private")
    async def handle_non_text(message: Message, session_ctx: SessionContext):
        if isinstance(session_ctx.session.state, AwaitingEmail):
            await message.answer(messages.email_expected_message(), parse_mode="HTML")
            return
        await message.answer(messages.unknown_input_message(), parse_mode="HTML")

    return router
