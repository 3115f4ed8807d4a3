"""Handlers package - command, conversation and error handlers."""
from bot.handlers.commands import create_command_handlers
from bot.handlers.community_commands import create_community_handlers
from bot.handlers.errors import create_error_handlers
from bot.handlers.message_handlers import create_message_handlers

__all__ = [
    "create_command_handlers",
    "create_community_handlers",
    "create_error_handlers",
    "create_message_handlers",
]
