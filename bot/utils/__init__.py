"""Utilities package - validators, message templates and helpers."""
from bot.utils.email import validate_email, mask_email, EmailValidation

__all__ = [
    "validate_email",
    "mask_email",
    "EmailValidation",
]
