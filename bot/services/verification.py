"""Verification service - completes linking when a magic link lands on the callback page."""
import logging
from dataclasses import dataclass
from typing import Optional

from aiogram import Bot

from bot.errors import IdentityConflict
from bot.services.auth_flow import AuthStateMachine
from bot.services.magic_link import MagicLinkClient
from bot.utils.email import mask_email
from bot.utils.messages import link_completed_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationOutcome:
    success: bool
    status_code: int
    title: str
    message: str
    email: Optional[str] = None
    role: Optional[str] = None


def _failure(status_code: int, title: str, message: str) -> VerificationOutcome:
    return VerificationOutcome(success=False, status_code=status_code, title=title, message=message)


class VerificationService:
    """
    Turns (access token, telegram id) into a linked identity.

    No bot session is needed: the identity table is authoritative, so a link
    that arrives after the session expired still succeeds.
    """

    def __init__(self, auth_flow: AuthStateMachine, magic_links: MagicLinkClient):
        self.auth_flow = auth_flow
        self.magic_links = magic_links

    async def verify(
        self,
        access_token: Optional[str],
        telegram_id: Optional[str],
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        bot: Optional[Bot] = None,
    ) -> VerificationOutcome:
        if not access_token:
            return _failure(400, "Missing Access Token", "The magic link is missing required authentication data.")

        try:
            tg_id = int(str(telegram_id))
        except (TypeError, ValueError):
            return _failure(400, "Missing Telegram Data", "The magic link is missing Telegram user information.")

        try:
            auth_user = await self.magic_links.verify_access_token(access_token)
        except Exception as e:
            logger.error(f"Token verification failed for telegram_id={tg_id}: {e}")
            return _failure(502, "Server Error", "We could not reach the sign-in service. Please try again later.")

        if auth_user is None:
            return _failure(401, "Invalid or Expired Link", "The magic link has expired or is invalid.")

        email = (auth_user.get("email") or "").strip().lower()
        if not email:
            return _failure(400, "No Email Found", "Your sign-in account does not have an email address.")

        try:
            user = await self.auth_flow.complete_link(
                tg_id,
                email,
                username=username or None,
                first_name=first_name or None,
            )
        except IdentityConflict as e:
            return _failure(409, "Linking Failed", e.user_message)
        except Exception as e:
            logger.error(f"Linking failed for telegram_id={tg_id}: {e}", exc_info=True)
            return _failure(500, "Server Error", "An unexpected error occurred during verification.")

        logger.info(f"Verification complete for telegram_id={tg_id} ({mask_email(email)})")

        if bot is not None:
            try:
                await bot.send_message(chat_id=tg_id, text=link_completed_message(email), parse_mode="HTML")
            except Exception as e:
                logger.warning(f"Could not notify telegram_id={tg_id} about linking: {e}")

        return VerificationOutcome(
            success=True,
            status_code=200,
            title="Account Linked",
            message="Your Telegram account is now linked. You can return to the bot.",
            email=email,
            role=user.role,
        )
