import asyncio

from bot.services.rate_limiter import RateLimiter
from database.db import Database


async def test_exactly_n_consumptions_fit_in_a_window(message_limiter):
    key = message_limiter.make_key(42)

    results = [await message_limiter.try_consume(key) for _ in range(30)]
    assert all(r.allowed for r in results)
    assert results[-1].remaining == 0

    denied = await message_limiter.try_consume(key)
    assert denied.allowed is False
    assert denied.backend_error is False
    assert 0 < denied.retry_after_ms <= 60_000


async def test_window_reopens_after_duration(message_limiter, clock):
    key = message_limiter.make_key(42)
    for _ in range(30):
        await message_limiter.try_consume(key)
    assert not (await message_limiter.try_consume(key)).allowed

    clock.advance(61)

    result = await message_limiter.try_consume(key)
    assert result.allowed
    assert result.remaining == 29


async def test_window_does_not_slide(message_limiter, clock):
    key = message_limiter.make_key(7)
    await message_limiter.try_consume(key)
    clock.advance(50)
    for _ in range(29):
        assert (await message_limiter.try_consume(key)).allowed

    denied = await message_limiter.try_consume(key)
    assert not denied.allowed
    assert denied.retry_after_seconds == 10


async def test_status_does_not_consume(magic_link_limiter):
    key = magic_link_limiter.make_key(1, "alice@acme.org")
    await magic_link_limiter.try_consume(key)

    first = await magic_link_limiter.status(key)
    second = await magic_link_limiter.status(key)
    assert first.remaining == second.remaining == 2
    assert (await magic_link_limiter.try_consume(key)).remaining == 1


async def test_status_of_unknown_key_is_full(magic_link_limiter):
    status = await magic_link_limiter.status(magic_link_limiter.make_key("nobody"))
    assert status.allowed
    assert status.remaining == 3


async def test_keys_are_independent(magic_link_limiter):
    alice = magic_link_limiter.make_key(1, "alice@acme.org")
    bob = magic_link_limiter.make_key(1, "bob@acme.org")
    for _ in range(3):
        assert (await magic_link_limiter.try_consume(alice)).allowed

    assert not (await magic_link_limiter.try_consume(alice)).allowed
    assert (await magic_link_limiter.try_consume(bob)).allowed


async def test_request_larger_than_budget_is_denied(magic_link_limiter):
    result = await magic_link_limiter.try_consume(magic_link_limiter.make_key("x"), points=4)
    assert not result.allowed
    assert result.retry_after_seconds == 3600


async def test_concurrent_consumers_never_exceed_the_limit(database, clock):
    limiter = RateLimiter(database, "rl_test", points=5, duration=60, clock=clock)
    key = limiter.make_key("burst")

    results = await asyncio.gather(*(limiter.try_consume(key) for _ in range(12)))

    assert sum(1 for r in results if r.allowed) == 5
    assert (await limiter.status(key)).remaining == 0


async def test_reset_clears_the_bucket(magic_link_limiter):
    key = magic_link_limiter.make_key(9)
    for _ in range(3):
        await magic_link_limiter.try_consume(key)
    await magic_link_limiter.reset(key)
    assert (await magic_link_limiter.try_consume(key)).remaining == 2


async def test_purge_only_touches_own_prefix(database, clock):
    messages = RateLimiter(database, "rl_msg", points=5, duration=60, clock=clock)
    links = RateLimiter(database, "rl_magic", points=5, duration=60, clock=clock)
    await messages.try_consume(messages.make_key(1))
    await links.try_consume(links.make_key(1))
    clock.advance(120)

    assert await messages.purge_expired() == 1
    assert await links.purge_expired() == 1
    assert await messages.purge_expired() == 0


async def test_backend_failure_fails_closed(tmp_path, clock):
    broken = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
    limiter = RateLimiter(broken, "rl_msg", points=5, duration=60, clock=clock)
    try:
        result = await limiter.try_consume(limiter.make_key(1))
    finally:
        await broken.close()

    assert result.allowed is False
    assert result.backend_error is True


async def test_backend_failure_can_fail_open(tmp_path, clock):
    broken = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
    limiter = RateLimiter(broken, "rl_msg", points=5, duration=60, fail_open=True, clock=clock)
    try:
        result = await limiter.try_consume(limiter.make_key(1))
    finally:
        await broken.close()

    assert result.allowed is True
    assert result.backend_error is True
