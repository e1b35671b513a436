"""
TokenCache: single refresh under concurrency, expiry buffer, seeding and invalidation.
"""
import asyncio
from datetime import datetime, timedelta, timezone

from app.services.token_cache import TokenCache


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def make_cache(clock=None):
    return TokenCache(ttl=timedelta(hours=240), buffer=timedelta(hours=1), clock=clock or Clock())


async def test_concurrent_callers_share_one_login():
    cache = make_cache()
    logins = 0

    async def login():
        nonlocal logins
        logins += 1
        await asyncio.sleep(0.01)
        return f"token-{logins}"

    tokens = await asyncio.gather(*[cache.get_valid_token(login, key="ops@example.com") for _ in range(10)])
    assert logins == 1
    assert cache.login_count == 1
    assert set(tokens) == {"token-1"}


async def test_refreshes_inside_buffer():
    clock = Clock()
    cache = make_cache(clock)
    counter = iter(range(1, 10))

    async def login():
        return f"token-{next(counter)}"

    assert await cache.get_valid_token(login) == "token-1"
    clock.now += timedelta(hours=238)
    assert await cache.get_valid_token(login) == "token-1"
    clock.now += timedelta(hours=1, minutes=1)  # less than an hour left
    assert await cache.get_valid_token(login) == "token-2"


async def test_on_refresh_receives_expiry_and_failures_are_swallowed():
    clock = Clock()
    cache = make_cache(clock)
    saved = []

    async def login():
        return "fresh"

    def persist(token, expires_at):
        saved.append((token, expires_at))
        raise RuntimeError("db down")

    assert await cache.get_valid_token(login, on_refresh=persist) == "fresh"
    assert saved == [("fresh", clock.now + timedelta(hours=240))]
    assert cache.is_valid()


async def test_seed_and_invalidate():
    clock = Clock()
    cache = make_cache(clock)
    cache.seed("stored", clock.now + timedelta(days=3), key="ops@example.com")
    assert cache.is_valid("ops@example.com")
    assert not cache.is_valid("other@example.com")

    async def login():
        return "new"

    assert await cache.get_valid_token(login, key="ops@example.com") == "stored"
    cache.invalidate()
    assert await cache.get_valid_token(login, key="ops@example.com") == "new"


def test_seed_ignores_nearly_expired_token():
    clock = Clock()
    cache = make_cache(clock)
    cache.seed("stale", clock.now + timedelta(minutes=30))
    assert not cache.is_valid()


def test_seed_accepts_naive_datetimes():
    clock = Clock()
    cache = make_cache(clock)
    cache.seed("stored", (clock.now + timedelta(days=2)).replace(tzinfo=None))
    assert cache.is_valid()
