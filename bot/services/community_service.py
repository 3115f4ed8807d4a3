"""Community service - creation, discovery and membership rules."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from bot.errors import AlreadyMember, CommunityNotFound, CreatorCannotLeave, NotMember, SlugTaken, ValidationError
from bot.utils.datetime_utils import utcnow
from bot.utils.validators import clean_description, validate_name, validate_slug
from database import Community, CommunityMember, Database

logger = logging.getLogger(__name__)

SORT_ORDERS = ("newest", "popular", "alphabetical")
MAX_PAGE_SIZE = 50


class CreateCommunityData(BaseModel):
    """Input for `CommunityService.create`; the authoritative validation of community fields."""

    slug: str
    name: str
    description: Optional[str] = None
    is_private: bool = False

    @field_validator("slug")
    @classmethod
    def check_slug(cls, v: str) -> str:
        return _as_value_error(validate_slug, v)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _as_value_error(validate_name, v)

    @field_validator("description")
    @classmethod
    def check_description(cls, v: Optional[str]) -> Optional[str]:
        return _as_value_error(clean_description, v)


def _as_value_error(check, value):
    try:
        return check(value)
    except ValidationError as e:
        raise ValueError(e.user_message) from e


def _first_error(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    cause = (err.get("ctx") or {}).get("error")
    if cause is not None:
        return str(cause)
    return f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"


@dataclass
class CommunityPage:
    items: List[Community] = field(default_factory=list)
    has_more: bool = False


@dataclass(frozen=True)
class JoinResult:
    status: str  # joined | pending
    community: Community


class CommunityService:
    """
    All community and membership writes go through here.

    Private communities are never revealed to anyone who is not an active
    member: lookups return None rather than a permission error.
    """

    def __init__(self, db: Database, identities=None):
        """
        Args:
            db: Database instance
            identities: Optional IdentityService used for audit events
        """
        self.db = db
        self.identities = identities

    async def _audit(self, event: str, user_id: str, **metadata) -> None:
        if self.identities is not None:
            await self.identities.log_event(event, user_id=user_id, metadata=metadata)

    async def slug_exists(self, slug: str) -> bool:
        """Uniqueness check across all communities, private ones included."""
        async with self.db.session() as session:
            result = await session.execute(select(Community.id).where(Community.slug == slug))
            return result.scalar_one_or_none() is not None

    async def create(self, creator_id: str, data: Union[CreateCommunityData, dict]) -> Community:
        """
        Create a community together with the creator's admin membership.

        Raises:
            ValidationError: a field fails validation
            SlugTaken: the slug already exists
        """
        try:
            if isinstance(data, CreateCommunityData):
                data = CreateCommunityData.model_validate(data.model_dump())
            else:
                data = CreateCommunityData.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(_first_error(e)) from e

        if await self.slug_exists(data.slug):
            raise SlugTaken(data.slug)

        now = utcnow()
        try:
            async with self.db.session() as session:
                community = Community(
                    slug=data.slug,
                    name=data.name,
                    description=data.description,
                    is_private=data.is_private,
                    creator_id=creator_id,
                    member_count=1,
                    post_count=0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(community)
                await session.flush()
                session.add(
                    CommunityMember(
                        community_id=community.id,
                        user_id=creator_id,
                        role="admin",
                        status="active",
                        joined_at=now,
                    )
                )
                await session.flush()
        except IntegrityError as e:
            # Both rows roll back together; a concurrent create may have taken the slug.
            if await self.slug_exists(data.slug):
                raise SlugTaken(data.slug) from e
            raise

        logger.info(f"Community created: {community.slug} by {creator_id} (private={community.is_private})")
        await self._audit("create_community", creator_id, community_id=community.id, slug=community.slug)
        return community

    async def _is_active_member(self, session, community_id: str, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        result = await session.execute(
            select(CommunityMember.id).where(
                CommunityMember.community_id == community_id,
                CommunityMember.user_id == user_id,
                CommunityMember.status == "active",
            )
        )
        return result.scalar_one_or_none() is not None

    async def _visible(self, session, community: Optional[Community], user_id: Optional[str]) -> Optional[Community]:
        if community is None:
            return None
        if not community.is_private:
            return community
        if await self._is_active_member(session, community.id, user_id):
            return community
        return None

    async def get_by_slug(self, slug: str, user_id: Optional[str] = None) -> Optional[Community]:
        async with self.db.session() as session:
            result = await session.execute(select(Community).where(Community.slug == slug))
            return await self._visible(session, result.scalar_one_or_none(), user_id)

    async def get_by_id(self, community_id: str, user_id: Optional[str] = None) -> Optional[Community]:
        async with self.db.session() as session:
            community = await session.get(Community, community_id)
            return await self._visible(session, community, user_id)

    async def list(
        self,
        search: Optional[str] = None,
        sort: str = "newest",
        limit: int = 10,
        offset: int = 0,
        user_id: Optional[str] = None,
    ) -> CommunityPage:
        """
        Page through visible communities.

        Args:
            search: Case-insensitive substring of name or description
            sort: newest | popular | alphabetical
            limit: Page size (capped)
            offset: Rows to skip
            user_id: Requester; private communities show only to their active members
        """
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort order: {sort}")
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)

        query = select(Community)
        if user_id:
            member_of = select(CommunityMember.community_id).where(
                CommunityMember.user_id == user_id,
                CommunityMember.status == "active",
            )
            query = query.where(or_(Community.is_private.is_(False), Community.id.in_(member_of)))
        else:
            query = query.where(Community.is_private.is_(False))

        if search and search.strip():
            pattern = "%" + _escape_like(search.strip()) + "%"
            query = query.where(
                or_(
                    Community.name.ilike(pattern, escape="\\"),
                    Community.description.ilike(pattern, escape="\\"),
                )
            )

        if sort == "popular":
            query = query.order_by(Community.member_count.desc(), Community.created_at.desc())
        elif sort == "alphabetical":
            query = query.order_by(Community.name.asc())
        else:
            query = query.order_by(Community.created_at.desc())

        # One extra row tells us whether another page exists.
        query = query.offset(offset).limit(limit + 1)

        async with self.db.session() as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())

        return CommunityPage(items=rows[:limit], has_more=len(rows) > limit)

    async def _get_internal(self, session, community_id: str) -> Community:
        community = await session.get(Community, community_id)
        if community is None:
            raise CommunityNotFound()
        return community

    async def join(self, community_id: str, user_id: str) -> JoinResult:
        """
        Join a community: public -> active immediately, private -> pending approval.

        Raises:
            CommunityNotFound: no such community
            AlreadyMember: any membership row already exists (active, pending or banned)
        """
        try:
            async with self.db.session() as session:
                community = await self._get_internal(session, community_id)
                result = await session.execute(
                    select(CommunityMember).where(
                        CommunityMember.community_id == community_id,
                        CommunityMember.user_id == user_id,
                    )
                )
                existing = result.scalar_one_or_none()
                if existing is not None:
                    raise AlreadyMember(existing.status)

                status = "pending" if community.is_private else "active"
                session.add(
                    CommunityMember(
                        community_id=community_id,
                        user_id=user_id,
                        role="member",
                        status=status,
                        joined_at=utcnow(),
                    )
                )
                await session.flush()
                if status == "active":
                    await session.execute(
                        update(Community)
                        .where(Community.id == community_id)
                        .values(member_count=Community.member_count + 1)
                    )
        except IntegrityError as e:
            # Lost a concurrent join for the same pair; the unique constraint kept one row.
            logger.info(f"Concurrent join rejected for community={community_id} user={user_id}")
            raise AlreadyMember(await self._membership_status(community_id, user_id) or "active") from e

        outcome = "joined" if status == "active" else "pending"
        logger.info(f"User {user_id} {outcome} community {community.slug}")
        await self._audit("join_community", user_id, community_id=community_id, status=outcome)
        return JoinResult(status=outcome, community=community)

    async def join_by_slug(self, slug: str, user_id: str) -> JoinResult:
        """Join by slug. Private communities can be requested by slug even though they are unlisted."""
        async with self.db.session() as session:
            result = await session.execute(select(Community.id).where(Community.slug == slug))
            community_id = result.scalar_one_or_none()
        if community_id is None:
            raise CommunityNotFound()
        return await self.join(community_id, user_id)

    async def leave(self, community_id: str, user_id: str) -> Community:
        """
        Remove a membership row.

        Raises:
            CommunityNotFound: no such community
            CreatorCannotLeave: the user created the community
            NotMember: no membership row exists
            AlreadyMember: the user is banned; the row stays so the ban holds
        """
        async with self.db.session() as session:
            community = await self._get_internal(session, community_id)
            if community.creator_id == user_id:
                raise CreatorCannotLeave()

            result = await session.execute(
                select(CommunityMember).where(
                    CommunityMember.community_id == community_id,
                    CommunityMember.user_id == user_id,
                )
            )
            membership = result.scalar_one_or_none()
            if membership is None:
                raise NotMember()
            if membership.status == "banned":
                raise AlreadyMember("banned")

            was_active = membership.status == "active"
            await session.execute(delete(CommunityMember).where(CommunityMember.id == membership.id))
            if was_active:
                await session.execute(
                    update(Community)
                    .where(Community.id == community_id, Community.member_count > 0)
                    .values(member_count=Community.member_count - 1)
                )

        logger.info(f"User {user_id} left community {community.slug}")
        await self._audit("leave_community", user_id, community_id=community_id)
        return community

    async def leave_by_slug(self, slug: str, user_id: str) -> Community:
        async with self.db.session() as session:
            result = await session.execute(select(Community.id).where(Community.slug == slug))
            community_id = result.scalar_one_or_none()
        if community_id is None:
            raise CommunityNotFound()
        return await self.leave(community_id, user_id)

    async def _membership_status(self, community_id: str, user_id: str) -> Optional[str]:
        async with self.db.session() as session:
            result = await session.execute(
                select(CommunityMember.status).where(
                    CommunityMember.community_id == community_id,
                    CommunityMember.user_id == user_id,
                )
            )
            return result.scalar_one_or_none()

    async def is_member(self, community_id: str, user_id: str) -> bool:
        return await self._membership_status(community_id, user_id) == "active"

    async def get_user_role(self, community_id: str, user_id: str) -> Optional[str]:
        async with self.db.session() as session:
            result = await session.execute(
                select(CommunityMember.role).where(
                    CommunityMember.community_id == community_id,
                    CommunityMember.user_id == user_id,
                    CommunityMember.status == "active",
                )
            )
            return result.scalar_one_or_none()

    async def get_user_communities(self, user_id: str) -> List[Tuple[Community, CommunityMember]]:
        """Communities where the user holds an active membership, newest membership first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Community, CommunityMember)
                .join(CommunityMember, CommunityMember.community_id == Community.id)
                .where(CommunityMember.user_id == user_id, CommunityMember.status == "active")
                .order_by(CommunityMember.joined_at.desc())
            )
            return [(community, membership) for community, membership in result.all()]

    async def count_memberships(self, community_id: str) -> int:
        """Number of membership rows of any status (used to check the uniqueness invariant)."""
        async with self.db.session() as session:
            result = await session.execute(
                select(CommunityMember.id).where(CommunityMember.community_id == community_id)
            )
            return len(result.scalars().all())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
