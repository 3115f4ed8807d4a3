from unittest.mock import AsyncMock

import pytest

from bot.core.states import IDLE, Session, Wizard
from bot.errors import NotLinked


async def _walk(wizard, session, *inputs):
    result = None
    for text in inputs:
        result = await wizard.handle_text(session, text)
        session = result.session
    return result


async def test_create_community_end_to_end(wizard, communities, make_linked):
    user, session = await make_linked(1001, "alice@acme.org")

    started = wizard.start(session)
    assert started.session.state == Wizard(step=1)

    result = await _walk(wizard, started.session, "tech-talk", "Tech Talk", "skip", "public")
    state = result.session.state
    assert state.step == 5
    assert state.draft.slug == "tech-talk"
    assert state.draft.name == "Tech Talk"
    assert state.draft.description is None
    assert state.draft.is_private is False

    done = await wizard.handle_text(result.session, "create")
    assert done.outcome == "created"
    assert done.session.state == IDLE

    community = await communities.get_by_slug("tech-talk")
    assert community.name == "Tech Talk"
    assert community.member_count == 1
    assert community.creator_id == user.id
    assert await communities.get_user_role(community.id, user.id) == "admin"


async def test_same_slug_is_rejected_on_a_second_run(wizard, make_linked):
    _, session = await make_linked(1001, "alice@acme.org")
    first = await _walk(wizard, wizard.start(session).session, "tech-talk", "Tech Talk", "skip", "public", "create")
    assert first.outcome == "created"

    second = await wizard.handle_text(wizard.start(first.session).session, "tech-talk")

    assert second.session.state == Wizard(step=1)
    assert any("already taken" in reply for reply in second.replies)


async def test_invalid_slug_reprompts_at_step_one(wizard, make_linked):
    _, session = await make_linked(1, "a@acme.org")

    result = await wizard.handle_text(wizard.start(session).session, "Bad Slug!")

    assert result.session.state == Wizard(step=1)
    assert len(result.replies) == 2


async def test_short_name_reprompts_at_step_two(wizard, make_linked):
    _, session = await make_linked(1, "a@acme.org")
    at_name = await _walk(wizard, wizard.start(session).session, "my-club")

    result = await wizard.handle_text(at_name.session, "ab")

    assert result.session.state.step == 2
    assert result.session.state.draft.slug == "my-club"


async def test_description_is_cleaned(wizard, make_linked):
    _, session = await make_linked(1, "a@acme.org")

    result = await _walk(wizard, wizard.start(session).session, "my-club", "My Club", "<b>Weekly</b> meetups")

    assert result.session.state.step == 4
    assert result.session.state.draft.description == "Weekly meetups"


async def test_bad_visibility_reprompts(wizard, make_linked):
    _, session = await make_linked(1, "a@acme.org")

    result = await _walk(wizard, wizard.start(session).session, "my-club", "My Club", "skip", "secret")

    assert result.session.state.step == 4


async def test_back_from_confirm_keeps_the_draft(wizard, make_linked):
    _, session = await make_linked(1, "a@acme.org")
    at_confirm = await _walk(wizard, wizard.start(session).session, "my-club", "My Club", "skip", "public")

    back = await wizard.handle_text(at_confirm.session, "back")
    assert back.session.state.step == 4
    assert back.session.state.draft.slug == "my-club"

    redo = await wizard.handle_text(back.session, "private")
    assert redo.session.state.step == 5
    assert redo.session.state.draft.is_private is True


async def test_unrecognised_confirm_input_stays_on_confirm(wizard, make_linked):
    _, session = await make_linked(1, "a@acme.org")
    at_confirm = await _walk(wizard, wizard.start(session).session, "my-club", "My Club", "skip", "public")

    result = await wizard.handle_text(at_confirm.session, "maybe")

    assert result.session.state == at_confirm.session.state


@pytest.mark.parametrize("steps", [(), ("my-club",), ("my-club", "My Club"), ("my-club", "My Club", "skip", "public")])
async def test_cancel_works_at_every_step(wizard, make_linked, steps):
    _, session = await make_linked(1, "a@acme.org")
    current = wizard.start(session).session
    if steps:
        current = (await _walk(wizard, current, *steps)).session

    result = await wizard.handle_text(current, "Cancel")

    assert result.outcome == "cancelled"
    assert result.session.state == IDLE


async def test_start_requires_a_linked_identity(wizard):
    with pytest.raises(NotLinked):
        wizard.start(Session(telegram_id=1))


async def test_slug_taken_between_check_and_commit_clears_the_wizard(wizard, communities, make_linked):
    user, session = await make_linked(1, "a@acme.org")
    at_confirm = await _walk(wizard, wizard.start(session).session, "my-club", "My Club", "skip", "public")
    await communities.create(user.id, {"slug": "my-club", "name": "Someone Else"})

    result = await wizard.handle_text(at_confirm.session, "create")

    assert result.outcome == "error"
    assert result.session.state == IDLE


async def test_slug_check_failure_restarts_at_step_one(wizard, communities, make_linked, monkeypatch):
    _, session = await make_linked(1, "a@acme.org")
    monkeypatch.setattr(communities, "slug_exists", AsyncMock(side_effect=RuntimeError("db down")))

    result = await wizard.handle_text(wizard.start(session).session, "my-club")

    assert result.outcome == "error"
    assert result.session.state == Wizard(step=1)
