"""Typed errors raised by services and converted to replies by handlers."""
from typing import Optional


class BotError(Exception):
    """Base class; `user_message` is safe to show to the end user."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if message:
            self.user_message = message


class ValidationError(BotError):
    """Bad user input. Callers re-prompt at the same step."""


class ConflictError(BotError):
    """Uniqueness or state conflict in the store."""


class SlugTaken(ConflictError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f'The slug "{slug}" is already taken. Please choose a different one.')


class AlreadyMember(ConflictError):
    _MESSAGES = {
        "active": "You are already a member of this community.",
        "pending": "Your join request is already pending approval.",
        "banned": "You have been banned from this community.",
    }

    def __init__(self, status: str):
        self.status = status
        super().__init__(self._MESSAGES.get(status, "You already have a membership in this community."))


class IdentityConflict(ConflictError):
    """Email or Telegram account already bound to a different identity."""


class CreatorCannotLeave(BotError):
    user_message = "The community creator cannot leave. Transfer ownership first."


class NotMember(BotError):
    user_message = "You are not a member of this community."


class CommunityNotFound(BotError):
    user_message = "Community not found."


class AuthorizationError(BotError):
    """Base for authorization failures."""


class NotLinked(AuthorizationError):
    user_message = "🔐 You need to link your account first.\n\nUse /link to connect your Telegram account with your email address."


class InsufficientRole(AuthorizationError):
    def __init__(self, required: str, actual: str):
        self.required = required
        self.actual = actual
        super().__init__(
            f"🚫 Access denied. This requires one of: {required}.\n\nYour current role: {actual}"
        )


class TransientError(BotError):
    """Store or upstream service unavailable. Flows reset; the user retries."""


class IdentityNotFound(BotError):
    user_message = "User not found."
