"""
Tests for assignment lifecycle side effects: audit trail and orphan cleanup.
"""

from datetime import timedelta

import pytest

from rolekit import (
    AssignmentLifecycle,
    AuditRecorder,
    RoleRepository,
    Roleable,
    registry,
    with_actor,
)
from rolekit.timezone import utc_now


def operations(entries):
    return sorted(entry.operation for entry in entries)


# ============ Audit ============


@pytest.mark.asyncio
async def test_grant_update_revoke_are_audited(db, user, other_user):
    roles = Roleable(db, user)

    with with_actor(other_user):
        await roles.add_role("admin", meta={"ticket": "OPS-1"})
        assignment = (await roles.assignments())[0]
        await roles.add_role("admin", meta={"ticket": "OPS-2"})
        await roles.remove_role("admin")

    entries = await AuditRecorder(db).history(assignment_id=assignment.id)

    assert operations(entries) == ["DELETE", "INSERT", "UPDATE"]
    assert {entry.actor_reference for entry in entries} == {str(other_user.id)}
    assert {entry.actor_id for entry in entries} == {str(user.id)}
    snapshots = {entry.operation: entry.meta_snapshot for entry in entries}
    assert snapshots["INSERT"] == {"ticket": "OPS-1"}
    assert snapshots["UPDATE"] == {"ticket": "OPS-2"}


@pytest.mark.asyncio
async def test_unchanged_regrant_writes_no_audit(db, user):
    roles = Roleable(db, user)
    await roles.add_role("admin")
    await roles.add_role("admin")

    assert operations(await AuditRecorder(db).history(actor_id=user.id)) == ["INSERT"]


@pytest.mark.asyncio
async def test_audit_without_current_actor(db, user):
    await Roleable(db, user).add_role("admin")

    entries = await AuditRecorder(db).history(actor_id=user.id)

    assert [entry.actor_reference for entry in entries] == [None]


@pytest.mark.asyncio
async def test_audit_failure_does_not_block_grant(db, user, monkeypatch):
    class BrokenAudit:
        def __init__(self, **kwargs):
            raise RuntimeError("audit store unavailable")

    monkeypatch.setitem(registry._models, "RoleAssignmentAudit", BrokenAudit)
    roles = Roleable(db, user)

    await roles.add_role("admin")

    assert await roles.has_role("admin") is True


@pytest.mark.asyncio
async def test_no_audit_model(db, user, monkeypatch):
    monkeypatch.delitem(registry._models, "RoleAssignmentAudit")
    roles = Roleable(db, user)

    await roles.add_role("admin")

    assert await roles.has_role("admin") is True
    assert await AuditRecorder(db).history() == []


@pytest.mark.asyncio
async def test_update_rejects_other_fields(db, user):
    await Roleable(db, user).add_role("admin")
    assignment = (await Roleable(db, user).assignments())[0]

    with pytest.raises(ValueError):
        await AssignmentLifecycle(db).update(assignment, role_id=None)


# ============ Orphan cleanup ============


@pytest.mark.asyncio
async def test_last_revoke_deletes_role(db, user):
    roles = Roleable(db, user)
    await roles.add_role("admin")

    await roles.remove_role("admin")

    assert await RoleRepository(db).find("admin") is None


@pytest.mark.asyncio
async def test_shared_role_survives_partial_revoke(db, user, other_user):
    await Roleable(db, user).add_role("admin")
    await Roleable(db, other_user).add_role("admin")

    await Roleable(db, user).remove_role("admin")

    assert await RoleRepository(db).find("admin") is not None
    assert await Roleable(db, other_user).has_role("admin") is True


@pytest.mark.asyncio
async def test_orphan_cleanup_removes_permissions(db, user):
    repo = RoleRepository(db)
    editor = await repo.find_or_create("editor")
    await repo.grant_permission(editor, "posts.update")
    roles = Roleable(db, user)
    await roles.add_role("editor")

    await roles.remove_role("editor")

    assert await repo.find("editor") is None
    assert await repo.permissions_of(editor) == []


@pytest.mark.asyncio
async def test_regrant_after_orphan_cleanup_creates_new_role(db, user):
    roles = Roleable(db, user)
    first = await roles.add_role("admin")
    await roles.remove_role("admin")

    second = await roles.add_role("admin")

    assert second.id != first.id
    assert await roles.has_role("admin") is True


@pytest.mark.asyncio
async def test_destroy_role_audits_each_assignment(db, user, other_user):
    await Roleable(db, user).add_role("admin")
    await Roleable(db, other_user).add_role("admin")
    repo = RoleRepository(db)
    role = await repo.find("admin")

    assert await repo.destroy(role) == 2

    entries = await AuditRecorder(db).history(role_id=role.id)
    assert operations(entries) == ["DELETE", "DELETE", "INSERT", "INSERT"]
    assert await repo.find("admin") is None


@pytest.mark.asyncio
async def test_find_or_create_handles_conflict(db, monkeypatch):
    """A role created between lookup and insert is read back instead."""
    repo = RoleRepository(db)
    existing = await repo.find_or_create("admin")

    real_find = repo.find
    calls = []

    async def stale_find(name, resource=None):
        calls.append(name)
        if len(calls) == 1:
            return None
        return await real_find(name, resource)

    monkeypatch.setattr(repo, "find", stale_find)

    role = await repo.find_or_create("admin")

    assert role.id == existing.id
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_resource_of(db, organization):
    from tests.models import Organization

    repo = RoleRepository(db)
    instance_role = await repo.find_or_create("manager", organization)
    class_role = await repo.find_or_create("auditor", Organization)
    global_role = await repo.find_or_create("admin")

    assert await repo.resource_of(instance_role) is organization
    assert await repo.resource_of(class_role) is Organization
    assert await repo.resource_of(global_role) is None


@pytest.mark.asyncio
async def test_expired_assignment_still_counts_for_orphan_check(db, user, other_user):
    await Roleable(db, user).add_role("admin", expires_at=utc_now() - timedelta(hours=1))
    await Roleable(db, other_user).add_role("admin")

    await Roleable(db, other_user).remove_role("admin")

    assert await RoleRepository(db).find("admin") is not None
