"""Session snapshot and the closed set of conversation states.

Each state carries only the data valid for it: linking fields exist only on
the link states, wizard data only on `Wizard`. A session holds exactly one
state, so at most one flow (auth or wizard) is active at a time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

WIZARD_STEPS = 5


@dataclass(frozen=True)
class Idle:
    kind = "idle"


@dataclass(frozen=True)
class AwaitingEmail:
    kind = "awaiting_email"
    started_at: Optional[datetime] = None


@dataclass(frozen=True)
class SendingLink:
    kind = "sending_link"
    email: str
    expires_at: datetime


@dataclass(frozen=True)
class AwaitingVerification:
    kind = "awaiting_verification"
    email: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class WizardDraft:
    slug: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    is_private: Optional[bool] = None


@dataclass(frozen=True)
class Wizard:
    kind = "wizard"
    step: int = 1
    draft: WizardDraft = field(default_factory=WizardDraft)

    def __post_init__(self):
        if not 1 <= self.step <= WIZARD_STEPS:
            raise ValueError(f"wizard step must be 1..{WIZARD_STEPS}, got {self.step}")

    def advance(self, **changes) -> "Wizard":
        return Wizard(step=self.step + 1, draft=replace(self.draft, **changes))


FlowState = Union[Idle, AwaitingEmail, SendingLink, AwaitingVerification, Wizard]
LINK_STATES = (AwaitingEmail, SendingLink, AwaitingVerification)

IDLE = Idle()


@dataclass(frozen=True)
class CachedIdentity:
    """Resolved identity kept on the session to skip repeat lookups."""
    id: str
    telegram_id: int
    role: str
    email: Optional[str] = None
    cached_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.email)


@dataclass(frozen=True)
class BrowseState:
    page: int = 0
    sort: str = "newest"
    search: Optional[str] = None


@dataclass(frozen=True)
class Session:
    telegram_id: int
    state: FlowState = IDLE
    cached_identity: Optional[CachedIdentity] = None
    browse: BrowseState = field(default_factory=BrowseState)
    username: Optional[str] = None

    @property
    def flow(self) -> Optional[str]:
        if isinstance(self.state, LINK_STATES):
            return "auth"
        if isinstance(self.state, Wizard):
            return "wizard"
        return None

    def with_state(self, state: FlowState) -> "Session":
        return replace(self, state=state)

    def reset(self) -> "Session":
        return replace(self, state=IDLE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "telegram_id": self.telegram_id,
            "username": self.username,
            "state": _state_to_dict(self.state),
            "cached_identity": _identity_to_dict(self.cached_identity),
            "browse": {
                "page": self.browse.page,
                "sort": self.browse.sort,
                "search": self.browse.search,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        browse = data.get("browse") or {}
        return cls(
            telegram_id=int(data["telegram_id"]),
            username=data.get("username"),
            state=_state_from_dict(data.get("state")),
            cached_identity=_identity_from_dict(data.get("cached_identity")),
            browse=BrowseState(
                page=int(browse.get("page") or 0),
                sort=browse.get("sort") or "newest",
                search=browse.get("search"),
            ),
        )


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _state_to_dict(state: FlowState) -> dict[str, Any]:
    if isinstance(state, AwaitingEmail):
        return {"kind": state.kind, "started_at": _dt(state.started_at)}
    if isinstance(state, (SendingLink, AwaitingVerification)):
        return {"kind": state.kind, "email": state.email, "expires_at": _dt(state.expires_at)}
    if isinstance(state, Wizard):
        draft = state.draft
        return {
            "kind": state.kind,
            "step": state.step,
            "draft": {
                "slug": draft.slug,
                "name": draft.name,
                "description": draft.description,
                "is_private": draft.is_private,
            },
        }
    return {"kind": Idle.kind}


def _state_from_dict(data: Optional[dict[str, Any]]) -> FlowState:
    if not data:
        return IDLE
    kind = data.get("kind")
    try:
        if kind == AwaitingEmail.kind:
            return AwaitingEmail(started_at=_parse_dt(data.get("started_at")))
        if kind == SendingLink.kind:
            return SendingLink(email=data["email"], expires_at=_parse_dt(data["expires_at"]))
        if kind == AwaitingVerification.kind:
            return AwaitingVerification(email=data["email"], expires_at=_parse_dt(data["expires_at"]))
        if kind == Wizard.kind:
            return Wizard(step=int(data["step"]), draft=WizardDraft(**(data.get("draft") or {})))
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Discarding malformed session state kind={kind}: {e}")
        return IDLE
    return IDLE


def _identity_to_dict(identity: Optional[CachedIdentity]) -> Optional[dict[str, Any]]:
    if identity is None:
        return None
    return {
        "id": identity.id,
        "telegram_id": identity.telegram_id,
        "role": identity.role,
        "email": identity.email,
        "cached_at": _dt(identity.cached_at),
    }


def _identity_from_dict(data: Optional[dict[str, Any]]) -> Optional[CachedIdentity]:
    if not data:
        return None
    try:
        return CachedIdentity(
            id=data["id"],
            telegram_id=int(data["telegram_id"]),
            role=data["role"],
            email=data.get("email"),
            cached_at=_parse_dt(data.get("cached_at")),
        )
    except (KeyError, TypeError, ValueError):
        return None


@dataclass(frozen=True)
class FlowResult:
    """Outcome of one state-machine step: the new snapshot plus replies to send."""
    session: Session
    replies: list[str] = field(default_factory=list)
    outcome: Optional[str] = None
