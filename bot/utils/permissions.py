"""Role checks - explicit authorization for gated operations."""
import logging
from enum import Enum
from typing import Iterable, Optional, Protocol

from bot.errors import InsufficientRole, NotLinked

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SITE_ADMIN = "siteAdmin"
    COMMUNITY_ADMIN = "communityAdmin"
    USER = "user"


# siteAdmin ⊇ communityAdmin ⊇ user
_RANK = {Role.USER: 0, Role.COMMUNITY_ADMIN: 1, Role.SITE_ADMIN: 2}

ROLE_DISPLAY_NAMES = {
    Role.SITE_ADMIN: "Site Admin",
    Role.COMMUNITY_ADMIN: "Community Admin",
    Role.USER: "User",
}


class HasRole(Protocol):
    role: str
    email: Optional[str]


def parse_role(value: Optional[str]) -> Role:
    """Map a stored role string to `Role`. Unknown values read as plain user."""
    try:
        return Role(value)
    except ValueError:
        return Role.USER


def role_display_name(value: Optional[str]) -> str:
    return ROLE_DISPLAY_NAMES[parse_role(value)]


def has_role(actual: Optional[str], allowed: Iterable[Role]) -> bool:
    """
    True when `actual` satisfies any role in `allowed`.

    Higher roles satisfy lower ones, so a siteAdmin passes a communityAdmin check.
    """
    rank = _RANK[parse_role(actual)]
    return any(rank >= _RANK[Role(r)] for r in allowed)


def require_role(identity: Optional[HasRole], allowed: Iterable[Role]) -> None:
    """
    Gate an operation on a linked identity holding one of `allowed`.

    Raises:
        NotLinked: no identity, or the identity has no email yet
        InsufficientRole: linked, but the role is too low
    """
    allowed = list(allowed)
    if identity is None or not identity.email:
        raise NotLinked()
    if not has_role(identity.role, allowed):
        required = ", ".join(ROLE_DISPLAY_NAMES[Role(r)] for r in allowed)
        logger.info(f"Role check failed: role={identity.role} required={required}")
        raise InsufficientRole(required, role_display_name(identity.role))
