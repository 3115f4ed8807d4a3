import pytest

from bot.core.states import IDLE, AwaitingEmail, AwaitingVerification, Session, Wizard
from bot.errors import IdentityConflict


async def _request_link(auth_flow, telegram_id: int, email: str):
    started = await auth_flow.start(Session(telegram_id=telegram_id))
    return await auth_flow.handle_text(started.session, email, username="alice", first_name="Alice")


async def test_link_happy_path(auth_flow, magic_links, identities, sessions):
    session = Session(telegram_id=1001)

    started = await auth_flow.start(session, first_name="Alice")
    assert isinstance(started.session.state, AwaitingEmail)
    assert started.replies

    result = await auth_flow.handle_text(started.session, "  Alice@Acme.org ", username="alice", first_name="Alice")
    assert result.outcome == "sent"
    assert isinstance(result.session.state, AwaitingVerification)
    assert result.session.state.email == "alice@acme.org"
    magic_links.send_magic_link.assert_awaited_once_with(
        "alice@acme.org", 1001, username="alice", first_name="Alice"
    )
    await sessions.save(result.session)

    pending = await auth_flow.link_status(result.session)
    assert pending.outcome == "pending"

    user = await auth_flow.complete_link(1001, "alice@acme.org", username="alice")
    assert user.email == "alice@acme.org"
    assert user.role == "user"

    # The stored session was tidied by the callback.
    refreshed = await sessions.peek(1001)
    assert refreshed.state == IDLE
    assert refreshed.cached_identity.email == "alice@acme.org"

    status = await auth_flow.link_status(result.session)
    assert status.outcome == "linked"
    assert status.session.state == IDLE

    again = await auth_flow.start(status.session)
    assert again.outcome == "linked"
    assert again.session.state == IDLE

    events = [e.event for e in await identities.audit_events()]
    assert "link" in events


async def test_invalid_email_reprompts_without_leaving_state(auth_flow, magic_links):
    started = await auth_flow.start(Session(telegram_id=1))

    result = await auth_flow.handle_text(started.session, "not-an-email")

    assert isinstance(result.session.state, AwaitingEmail)
    assert result.replies
    magic_links.send_magic_link.assert_not_awaited()


async def test_fourth_request_within_the_hour_is_rate_limited(auth_flow, magic_links):
    for _ in range(3):
        result = await _request_link(auth_flow, 1, "alice@acme.org")
        assert result.outcome == "sent"

    fourth = await _request_link(auth_flow, 1, "alice@acme.org")

    assert fourth.outcome == "rate_limited"
    assert fourth.session.state == IDLE
    assert magic_links.send_magic_link.await_count == 3


async def test_rate_limit_is_per_email(auth_flow):
    for _ in range(3):
        await _request_link(auth_flow, 1, "alice@acme.org")

    other = await _request_link(auth_flow, 1, "bob@acme.org")
    assert other.outcome == "sent"


async def test_rate_limit_lifts_after_the_window(auth_flow, clock):
    for _ in range(3):
        await _request_link(auth_flow, 1, "alice@acme.org")
    clock.advance(3601)

    assert (await _request_link(auth_flow, 1, "alice@acme.org")).outcome == "sent"


async def test_send_failure_returns_to_idle(auth_flow, magic_links):
    magic_links.send_magic_link.return_value = False

    result = await _request_link(auth_flow, 1, "alice@acme.org")

    assert result.outcome == "error"
    assert result.session.state == IDLE


async def test_send_exception_returns_to_idle(auth_flow, magic_links):
    magic_links.send_magic_link.side_effect = RuntimeError("smtp down")

    result = await _request_link(auth_flow, 1, "alice@acme.org")

    assert result.outcome == "error"
    assert result.session.state == IDLE


async def test_expired_link_collapses_to_idle(auth_flow, clock):
    sent = await _request_link(auth_flow, 1, "alice@acme.org")
    clock.advance(3601)

    status = await auth_flow.link_status(sent.session)

    assert status.outcome == "expired"
    assert status.session.state == IDLE


async def test_link_status_when_never_started(auth_flow):
    status = await auth_flow.link_status(Session(telegram_id=1))
    assert status.outcome == "not_linked"


async def test_start_replaces_a_wizard(auth_flow):
    result = await auth_flow.start(Session(telegram_id=1, state=Wizard(step=3)))
    assert isinstance(result.session.state, AwaitingEmail)
    assert result.session.flow == "auth"


async def test_cancel(auth_flow):
    started = await auth_flow.start(Session(telegram_id=1))

    cancelled = auth_flow.cancel(started.session)
    assert cancelled.outcome == "cancelled"
    assert cancelled.session.state == IDLE

    nothing = auth_flow.cancel(cancelled.session)
    assert nothing.outcome is None
    assert nothing.session.state == IDLE


async def test_email_owned_by_another_account_conflicts(auth_flow):
    await auth_flow.complete_link(1, "alice@acme.org")

    with pytest.raises(IdentityConflict):
        await auth_flow.complete_link(2, "alice@acme.org")


async def test_conflicting_link_drops_the_pending_session(auth_flow, sessions):
    await auth_flow.complete_link(1, "taken@acme.org")
    requested = await _request_link(auth_flow, 2, "taken@acme.org")
    assert isinstance(requested.session.state, AwaitingVerification)
    await sessions.save(requested.session)

    with pytest.raises(IdentityConflict):
        await auth_flow.complete_link(2, "taken@acme.org")

    stored = await sessions.peek(2)
    assert stored.state == IDLE
    assert (await auth_flow.link_status(stored)).outcome == "not_linked"


async def test_account_linked_to_another_email_conflicts(auth_flow):
    await auth_flow.complete_link(1, "alice@acme.org")

    with pytest.raises(IdentityConflict):
        await auth_flow.complete_link(1, "bob@acme.org")


async def test_relinking_the_same_pair_is_idempotent(auth_flow, identities):
    first = await auth_flow.complete_link(1, "alice@acme.org")
    second = await auth_flow.complete_link(1, "ALICE@acme.org")

    assert first.id == second.id
    assert len(await identities.list_users()) == 1


async def test_link_without_a_session(auth_flow, sessions):
    user = await auth_flow.complete_link(77, "late@acme.org")

    assert user.email == "late@acme.org"
    assert await sessions.peek(77) is None
