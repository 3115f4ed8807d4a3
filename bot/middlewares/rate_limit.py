"""Throughput limiter in front of every user update."""

from __future__ import annotations

import logging

from aiogram.dispatcher.middlewares.base import BaseMiddleware
from aiogram.types import CallbackQuery, Message

from bot.services.rate_limiter import RateLimiter
from bot.utils import messages

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseMiddleware):
    """Drops updates from users over the message budget, replying with a retry hint."""

    def __init__(self, limiter: RateLimiter):
        self.limiter = limiter

    async def __call__(self, handler, event, data):  # type: ignore[override]
        user = getattr(event, "from_user", None)
        if user is None:
            return await handler(event, data)

        result = await self.limiter.try_consume(self.limiter.make_key(user.id))
        if result.allowed:
            return await handler(event, data)

        if result.backend_error:
            text = messages.try_later_message()
        else:
            logger.info(f"Throughput limit hit for user {user.id}")
            text = messages.rate_limited_message(result.retry_after_seconds)

        try:
            if isinstance(event, CallbackQuery):
                await event.answer(text, show_alert=False)
            elif isinstance(event, Message):
                await event.answer(text, parse_mode="HTML")
        except Exception as e:
            logger.debug(f"Could not send rate-limit notice to {user.id}: {e}")
        return None
