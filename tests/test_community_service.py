import asyncio

import pytest

from bot.errors import AlreadyMember, CommunityNotFound, CreatorCannotLeave, NotMember, SlugTaken, ValidationError
from bot.services.community_service import CreateCommunityData
from database import CommunityMember


@pytest.fixture()
async def people(make_linked):
    creator, _ = await make_linked(1, "creator@acme.org")
    alice, _ = await make_linked(2, "alice@acme.org")
    bob, _ = await make_linked(3, "bob@acme.org")
    return creator, alice, bob


async def test_public_join_is_immediate(communities, people):
    creator, alice, _ = people
    community = await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})

    result = await communities.join(community.id, alice.id)

    assert result.status == "joined"
    assert await communities.is_member(community.id, alice.id)
    assert (await communities.get_by_id(community.id)).member_count == 2


async def test_private_join_is_pending_and_hidden(communities, people):
    creator, alice, bob = people
    community = await communities.create(creator.id, {"slug": "inner", "name": "Inner Circle", "is_private": True})

    result = await communities.join_by_slug("inner", alice.id)

    assert result.status == "pending"
    assert not await communities.is_member(community.id, alice.id)
    assert await communities.get_user_role(community.id, alice.id) is None
    # Pending members and strangers cannot see it; the creator can.
    assert await communities.get_by_slug("inner", alice.id) is None
    assert await communities.get_by_slug("inner", bob.id) is None
    assert await communities.get_by_slug("inner") is None
    visible = await communities.get_by_slug("inner", creator.id)
    assert visible.member_count == 1


async def test_second_join_reports_existing_membership(communities, people):
    creator, alice, _ = people
    community = await communities.create(creator.id, {"slug": "inner", "name": "Inner Circle", "is_private": True})
    await communities.join(community.id, alice.id)

    with pytest.raises(AlreadyMember) as exc_info:
        await communities.join(community.id, alice.id)
    assert exc_info.value.status == "pending"


async def test_concurrent_joins_leave_one_row(communities, people):
    creator, alice, _ = people
    community = await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})

    results = await asyncio.gather(
        communities.join(community.id, alice.id),
        communities.join(community.id, alice.id),
        return_exceptions=True,
    )

    joined = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, AlreadyMember)]
    assert len(joined) == 1
    assert len(rejected) == 1
    assert await communities.count_memberships(community.id) == 2
    assert (await communities.get_by_id(community.id)).member_count == 2


async def test_creator_cannot_leave(communities, people):
    creator, _, _ = people
    community = await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})

    with pytest.raises(CreatorCannotLeave):
        await communities.leave(community.id, creator.id)


async def test_leave(communities, people):
    creator, alice, bob = people
    community = await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})
    await communities.join(community.id, alice.id)

    await communities.leave_by_slug("open-club", alice.id)

    assert not await communities.is_member(community.id, alice.id)
    assert (await communities.get_by_id(community.id)).member_count == 1
    with pytest.raises(NotMember):
        await communities.leave(community.id, bob.id)


async def test_withdrawing_a_pending_request_keeps_the_count(communities, people):
    creator, alice, _ = people
    community = await communities.create(creator.id, {"slug": "inner", "name": "Inner Circle", "is_private": True})
    await communities.join(community.id, alice.id)

    await communities.leave(community.id, alice.id)

    assert (await communities.get_by_slug("inner", creator.id)).member_count == 1


async def test_banned_member_cannot_leave_to_rejoin(communities, database, people):
    creator, alice, _ = people
    community = await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})
    async with database.session() as session:
        session.add(CommunityMember(community_id=community.id, user_id=alice.id, status="banned"))

    with pytest.raises(AlreadyMember) as exc_info:
        await communities.leave(community.id, alice.id)
    assert exc_info.value.status == "banned"

    with pytest.raises(AlreadyMember):
        await communities.join(community.id, alice.id)


async def test_unknown_slug(communities, people):
    _, alice, _ = people
    with pytest.raises(CommunityNotFound):
        await communities.join_by_slug("nope", alice.id)
    with pytest.raises(CommunityNotFound):
        await communities.leave_by_slug("nope", alice.id)


async def test_create_validates_input(communities, people):
    creator, _, _ = people

    with pytest.raises(ValidationError):
        await communities.create(creator.id, {"slug": "No Spaces", "name": "Valid Name"})
    with pytest.raises(ValidationError):
        await communities.create(creator.id, {"slug": "open\n", "name": "Open Club"})
    with pytest.raises(ValidationError):
        await communities.create(creator.id, {"slug": "valid", "name": "ab"})
    with pytest.raises(ValidationError):
        await communities.create(creator.id, {"slug": "valid", "name": "Valid", "description": "x" * 501})


async def test_create_rejects_duplicate_slug(communities, people):
    creator, alice, _ = people
    await communities.create(creator.id, CreateCommunityData(slug="open-club", name="Open Club"))

    with pytest.raises(SlugTaken):
        await communities.create(alice.id, {"slug": "open-club", "name": "Copycat"})


async def test_create_strips_html_from_description(communities, people):
    creator, _, _ = people
    community = await communities.create(
        creator.id, {"slug": "open-club", "name": "Open Club", "description": "<i>all</i> welcome"}
    )
    assert community.description == "all welcome"


async def test_list_respects_visibility(communities, people):
    creator, alice, _ = people
    await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})
    await communities.create(creator.id, {"slug": "inner", "name": "Inner Circle", "is_private": True})

    anonymous = await communities.list()
    assert [c.slug for c in anonymous.items] == ["open-club"]

    outsider = await communities.list(user_id=alice.id)
    assert [c.slug for c in outsider.items] == ["open-club"]

    member = await communities.list(user_id=creator.id, sort="alphabetical")
    assert [c.slug for c in member.items] == ["inner", "open-club"]


async def test_list_sorting_and_paging(communities, people):
    creator, alice, bob = people
    for slug, name in [("gamma", "Gamma"), ("alpha", "Alpha"), ("beta", "Beta")]:
        await communities.create(creator.id, {"slug": slug, "name": name})
    beta = await communities.get_by_slug("beta")
    await communities.join(beta.id, alice.id)
    await communities.join(beta.id, bob.id)

    first = await communities.list(sort="alphabetical", limit=2)
    assert [c.name for c in first.items] == ["Alpha", "Beta"]
    assert first.has_more is True

    second = await communities.list(sort="alphabetical", limit=2, offset=2)
    assert [c.name for c in second.items] == ["Gamma"]
    assert second.has_more is False

    popular = await communities.list(sort="popular", limit=1)
    assert popular.items[0].slug == "beta"

    with pytest.raises(ValidationError):
        await communities.list(sort="random")


async def test_list_search(communities, people):
    creator, _, _ = people
    await communities.create(creator.id, {"slug": "pyth", "name": "Python Users", "description": "Snakes and 100% fun"})
    await communities.create(creator.id, {"slug": "rust", "name": "Rustaceans"})

    assert [c.slug for c in (await communities.list(search="PYTHON")).items] == ["pyth"]
    assert [c.slug for c in (await communities.list(search="100%")).items] == ["pyth"]
    assert (await communities.list(search="%")).items[0].slug == "pyth"
    assert (await communities.list(search="haskell")).items == []


async def test_user_communities_and_audit(communities, identities, people):
    creator, alice, _ = people
    community = await communities.create(creator.id, {"slug": "open-club", "name": "Open Club"})
    await communities.join(community.id, alice.id)

    mine = await communities.get_user_communities(alice.id)
    assert [(c.slug, m.role) for c, m in mine] == [("open-club", "member")]

    events = [e.event for e in await identities.audit_events(user_id=alice.id)]
    assert "join_community" in events
    creator_events = [e.event for e in await identities.audit_events(user_id=creator.id)]
    assert "create_community" in creator_events
