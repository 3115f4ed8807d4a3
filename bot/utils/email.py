"""Email validation and masking."""
import re
from dataclasses import dataclass
from typing import Optional

from email_validator import EmailNotValidError, validate_email as _check_syntax

MAX_EMAIL_LENGTH = 320  # RFC 5321

# starts/ends with a dot, doubled @, or a dot touching the @
_SUSPICIOUS = (
    re.compile(r"^\."),
    re.compile(r"\.$"),
    re.compile(r"@{2,}"),
    re.compile(r"[.@]{2,}"),
)


@dataclass(frozen=True)
class EmailValidation:
    is_valid: bool
    normalized_email: Optional[str] = None
    error: Optional[str] = None


def _invalid(error: str) -> EmailValidation:
    return EmailValidation(is_valid=False, error=error)


def validate_email(raw: str) -> EmailValidation:
    """
    Validate and normalize an email address.

    The normalized form is trimmed and lowercased. Invalid input never
    carries a normalized value.
    """
    email = (raw or "").strip().lower()

    if not email:
        return _invalid("Email address is required")

    if len(email) > MAX_EMAIL_LENGTH:
        return _invalid(f"Email address is too long (max {MAX_EMAIL_LENGTH} characters)")

    if email.count("@") != 1:
        if "@" not in email:
            return _invalid("Please enter a valid email address")
        return _invalid("Email address format is invalid")

    if ".." in email:
        return _invalid("Email address cannot contain consecutive dots")

    for pattern in _SUSPICIOUS:
        if pattern.search(email):
            return _invalid("Email address format is invalid")

    try:
        _check_syntax(email, check_deliverability=False)
    except EmailNotValidError:
        return _invalid("Please enter a valid email address")

    return EmailValidation(is_valid=True, normalized_email=email)


def mask_email(email: Optional[str]) -> str:
    """john.doe@example.com -> j***@e***"""
    if not email or "@" not in email:
        return "***"

    local, domain = email.split("@", 1)
    if len(local) <= 1:
        return f"{local}***@{domain[:1]}***"

    masked_local = local[0] + "*" * min(len(local) - 1, 3)
    masked_domain = domain[0] + "*" * min(len(domain) - 1, 3)
    return f"{masked_local}@{masked_domain}"
