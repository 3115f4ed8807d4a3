"""Command handlers - home, help, linking, wizard entry, cancel and the admin panel."""
from __future__ import annotations

import logging
from typing import Iterable

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from bot.container import ServiceContainer
from bot.middlewares.session import SessionContext
from bot.utils import messages
from bot.utils.permissions import Role, require_role

logger = logging.getLogger(__name__)


async def send_replies(message: Message, replies: Iterable[str]) -> None:
    for text in replies:
        await message.answer(text, parse_mode="HTML")


def create_command_handlers(container: ServiceContainer) -> Router:
    router = Router()

    @router.message(CommandStart())
    async def cmd_start(message: Message, session_ctx: SessionContext):
        identity = session_ctx.session.cached_identity
        linked = bool(identity and identity.is_linked)
        if identity:
            await container.identities.log_event("login", user_id=identity.id, telegram_id=message.from_user.id)
        await message.answer(messages.welcome_message(message.from_user.first_name, linked=linked), parse_mode="HTML")

    @router.message(Command("help"))
    async def cmd_help(message: Message, session_ctx: SessionContext):
        identity = session_ctx.session.cached_identity
        linked = bool(identity and identity.is_linked)
        await message.answer(
            messages.help_message(identity.role if identity else None, linked=linked),
            parse_mode="HTML",
        )

    @router.message(Command("link"))
    async def cmd_link(message: Message, session_ctx: SessionContext):
        result = await container.auth_flow.start(session_ctx.session, first_name=message.from_user.first_name)
        await send_replies(message, session_ctx.apply(result))

    @router.message(Command("link_status"))
    async def cmd_link_status(message: Message, session_ctx: SessionContext):
        result = await container.auth_flow.link_status(session_ctx.session)
        await send_replies(message, session_ctx.apply(result))

    @router.message(Command("cancel"))
    async def cmd_cancel(message: Message, session_ctx: SessionContext):
        flow = session_ctx.session.flow
        if flow == "wizard":
            result = container.wizard.cancel(session_ctx.session)
        else:
            result = container.auth_flow.cancel(session_ctx.session)
        await send_replies(message, session_ctx.apply(result))

    @router.message(Command("create_community"))
    async def cmd_create_community(message: Message, session_ctx: SessionContext):
        result = container.wizard.start(session_ctx.session)
        await send_replies(message, session_ctx.apply(result))

    @router.message(Command("admin_panel"))
    async def cmd_admin_panel(message: Message, session_ctx: SessionContext):
        require_role(session_ctx.session.cached_identity, [Role.SITE_ADMIN])

        stats = await container.db.get_table_counts()
        stats["active_sessions"] = await container.sessions.count_active()
        quota = await container.message_limiter.status(container.message_limiter.make_key(message.from_user.id))
        stats["your_message_quota"] = f"{quota.remaining}/{container.message_limiter.points}"
        await message.answer(messages.admin_panel_message(stats), parse_mode="HTML")

    return router
