"""Field validators for community input (wizard steps and the service layer share these)."""
import re
from typing import Optional

from bot.errors import ValidationError

SLUG_MIN, SLUG_MAX = 3, 50
NAME_MIN, NAME_MAX = 3, 100
DESCRIPTION_MAX = 500

_SLUG_RE = re.compile(r"[a-z0-9_-]+")
_TAG_RE = re.compile(r"<[^>]*>")


def validate_slug(slug: Optional[str]) -> str:
    slug = slug or ""
    if len(slug) < SLUG_MIN or len(slug) > SLUG_MAX:
        raise ValidationError(f"Slug must be {SLUG_MIN}-{SLUG_MAX} characters long.")
    if not _SLUG_RE.fullmatch(slug):
        raise ValidationError("Slug can only contain lowercase letters, numbers, underscores, and hyphens.")
    return slug


def validate_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if len(name) < NAME_MIN or len(name) > NAME_MAX:
        raise ValidationError(f"Community name must be {NAME_MIN}-{NAME_MAX} characters long.")
    return name


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text).strip()


def clean_description(description: Optional[str]) -> Optional[str]:
    """Strip tags and enforce the length limit. Empty descriptions collapse to None."""
    if description is None:
        return None
    if len(description) > DESCRIPTION_MAX:
        raise ValidationError(f"Description must be at most {DESCRIPTION_MAX} characters.")
    cleaned = strip_html(description)
    return cleaned or None


def parse_visibility(choice: Optional[str]) -> bool:
    """Return `is_private` for "public"/"private" (case-insensitive)."""
    value = (choice or "").strip().lower()
    if value == "public":
        return False
    if value == "private":
        return True
    raise ValidationError('Please send either "public" or "private".')
