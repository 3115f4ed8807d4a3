"""Community discovery and membership commands."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from bot.container import ServiceContainer
from bot.core.states import BrowseState
from bot.middlewares.session import SessionContext
from bot.services.community_service import SORT_ORDERS
from bot.utils import messages
from bot.utils.permissions import Role, require_role

logger = logging.getLogger(__name__)

PAGE_SIZE = 5


def browse_keyboard(browse: BrowseState, has_more: bool) -> InlineKeyboardMarkup:
    nav = []
    if browse.page > 0:
        nav.append(InlineKeyboardButton(text="⬅️ Prev", callback_data=f"cm:page:{browse.page - 1}"))
    if has_more:
        nav.append(InlineKeyboardButton(text="Next ➡️", callback_data=f"cm:page:{browse.page + 1}"))

    sorts = [
        InlineKeyboardButton(
            text=("• " if sort == browse.sort else "") + messages.SORT_LABELS[sort],
            callback_data=f"cm:sort:{sort}",
        )
        for sort in SORT_ORDERS
    ]
    rows = [sorts]
    if nav:
        rows.insert(0, nav)
    return InlineKeyboardMarkup(inline_keyboard=rows)


def create_community_handlers(container: ServiceContainer) -> Router:
    router = Router()

    async def render(browse: BrowseState, user_id: Optional[str]):
        page = await container.communities.list(
            search=browse.search,
            sort=browse.sort,
            limit=PAGE_SIZE,
            offset=browse.page * PAGE_SIZE,
            user_id=user_id,
        )
        text = messages.community_list_message(page.items, browse.page, browse.sort, browse.search)
        return text, browse_keyboard(browse, page.has_more)

    def requester_id(session_ctx: SessionContext) -> Optional[str]:
        identity = session_ctx.session.cached_identity
        return identity.id if identity and identity.is_linked else None

    @router.message(Command("communities"))
    async def cmd_communities(message: Message, command: CommandObject, session_ctx: SessionContext):
        search = (command.args or "").strip() or None
        browse = BrowseState(page=0, sort=session_ctx.session.browse.sort, search=search)
        session_ctx.session = replace(session_ctx.session, browse=browse)

        text, keyboard = await render(browse, requester_id(session_ctx))
        await message.answer(text, parse_mode="HTML", reply_markup=keyboard)

    @router.callback_query(F.data.startswith("cm:"))
    async def on_browse(callback: CallbackQuery, session_ctx: SessionContext):
        _, action, value = (callback.data.split(":", 2) + ["", ""])[:3]
        browse = session_ctx.session.browse
        if action == "page" and value.isdigit():
            browse = replace(browse, page=int(value))
        elif action == "sort" and value in SORT_ORDERS:
            browse = replace(browse, sort=value, page=0)
        else:
            await callback.answer()
            return

        session_ctx.session = replace(session_ctx.session, browse=browse)
        text, keyboard = await render(browse, requester_id(session_ctx))
        try:
            await callback.message.edit_text(text, parse_mode="HTML", reply_markup=keyboard)
        except Exception as e:
            # "message is not modified" when the same page is requested twice.
            logger.debug(f"Browse edit skipped: {e}")
        await callback.answer()

    @router.message(Command("join"))
    async def cmd_join(message: Message, command: CommandObject, session_ctx: SessionContext):
        slug = (command.args or "").strip().lower()
        if not slug:
            await message.answer(messages.slug_argument_missing_message("join"), parse_mode="HTML")
            return
        identity = session_ctx.session.cached_identity
        require_role(identity, [Role.USER])

        result = await container.communities.join_by_slug(slug, identity.id)
        if result.status == "joined":
            await message.answer(messages.joined_message(result.community.name), parse_mode="HTML")
        else:
            await message.answer(messages.join_pending_message(result.community.name), parse_mode="HTML")

    @router.message(Command("leave"))
    async def cmd_leave(message: Message, command: CommandObject, session_ctx: SessionContext):
        slug = (command.args or "").strip().lower()
        if not slug:
            await message.answer(messages.slug_argument_missing_message("leave"), parse_mode="HTML")
            return
        identity = session_ctx.session.cached_identity
        require_role(identity, [Role.USER])

        community = await container.communities.leave_by_slug(slug, identity.id)
        await message.answer(messages.left_message(community.name), parse_mode="HTML")

    @router.message(Command("my_communities"))
    async def cmd_my_communities(message: Message, session_ctx: SessionContext):
        identity = session_ctx.session.cached_identity
        require_role(identity, [Role.USER])

        rows = await container.communities.get_user_communities(identity.id)
        await message.answer(messages.my_communities_message(rows), parse_mode="HTML")

    return router
