"""
Tests for in-memory role checks.
"""

from datetime import timedelta

import pytest

from rolekit import ANY, Roleable, configure
from rolekit.timezone import utc_now
from tests.models import Organization


@pytest.mark.asyncio
async def test_cached_check_matches_live_check(db, user, organization):
    roles = Roleable(db, user)
    await roles.add_role("admin")
    await roles.add_role("manager", organization)
    await roles.add_role("auditor", Organization)
    await roles.add_role("temp", expires_at=utc_now() - timedelta(hours=1))

    cases = [
        ("admin", None),
        ("admin", organization),
        ("admin", ANY),
        ("manager", organization),
        ("manager", None),
        ("manager", ANY),
        ("auditor", Organization),
        ("auditor", organization),
        ("temp", None),
        ("missing", None),
    ]
    for name, resource in cases:
        assert await roles.has_cached_role(name, resource) == await roles.has_role(name, resource), (name, resource)


@pytest.mark.asyncio
async def test_cached_check_applies_override(db, user, organization):
    configure(global_roles_override=True)
    roles = Roleable(db, user)
    await roles.add_role("admin")

    assert await roles.has_cached_role("admin", organization) is True


@pytest.mark.asyncio
async def test_cached_check_does_not_query_after_load(db, user, organization, statements):
    roles = Roleable(db, user)
    await roles.add_role("admin")
    await roles.load_roles()

    statements.reset()
    assert await roles.has_cached_role("admin") is True
    assert await roles.has_cached_role("manager", organization) is False

    assert statements.count == 0


@pytest.mark.asyncio
async def test_cache_is_stale_until_invalidated(db, user):
    roles = Roleable(db, user)
    await roles.load_roles()
    await roles.add_role("admin")

    assert await roles.has_cached_role("admin") is False

    roles.invalidate()
    assert await roles.has_cached_role("admin") is True


@pytest.mark.asyncio
async def test_preload_uses_one_query(db, factory, statements):
    users = [await factory.user(f"user-{i}") for i in range(3)]
    await Roleable(db, users[0]).add_role("admin")
    await Roleable(db, users[2]).add_role("editor")

    statements.reset()
    roleables = await Roleable.preload(db, users)
    assert statements.count == 1

    assert [await r.has_cached_role("admin") for r in roleables] == [True, False, False]
    assert [await r.has_cached_role("editor") for r in roleables] == [False, False, True]
    assert statements.count == 1


@pytest.mark.asyncio
async def test_preload_empty(db):
    assert await Roleable.preload(db, []) == []


@pytest.mark.asyncio
async def test_cached_none_role(db, user):
    assert await Roleable(db, user).has_cached_role(None) is False
