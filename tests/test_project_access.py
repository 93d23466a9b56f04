"""
Tests for per-project access resolution and assignment administration.
"""

import logging

import pytest
from pydantic import ValidationError

from orgguard.auth.capabilities import Permission
from orgguard.auth.project_access import ProjectAccess, ProjectAccessResolver, check_task_access
from orgguard.core.errors import InfraFailure, StoreError
from orgguard.core.models import AccessLevel, OrgRole, ProjectTeamMember
from orgguard.storage import AuthRepository, InMemoryMetadataStorage


class BrokenStampRepository(AuthRepository):
    def __init__(self):
        super().__init__(InMemoryMetadataStorage())

    async def stamp_last_project_access(self, member_id, at):
        raise StoreError("read-only replica")


class BrokenLookupRepository(AuthRepository):
    def __init__(self):
        super().__init__(InMemoryMetadataStorage())

    async def find_project_member(self, project_id, user_id):
        raise StoreError("timeout")


@pytest.fixture
def resolver(repository, clock):
    return ProjectAccessResolver(repository, clock=clock)


class TestResolve:

    @pytest.mark.asyncio
    async def test_admin_gets_synthetic_full_access(self, resolver, make_principal):
        access = await resolver.resolve(make_principal(OrgRole.ADMIN), 42)

        assert access.synthetic
        assert access.access_level is AccessLevel.FULL
        assert access.can_edit_project and access.can_invite_members and access.can_view_all_tasks
        assert access.member_id is None

    @pytest.mark.asyncio
    async def test_unassigned_is_none(self, resolver, make_principal):
        assert await resolver.resolve(make_principal(), 42) is None

    @pytest.mark.asyncio
    async def test_assigned_member(self, resolver, make_principal):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1", can_edit_project=True)

        access = await resolver.resolve(make_principal(user_id="user_1"), 42)

        assert access.member_id == member.id
        assert access.access_level is AccessLevel.STANDARD
        assert access.can_edit_project
        assert not access.can_invite_members
        assert access.can_view_all_tasks
        assert not access.synthetic

    @pytest.mark.asyncio
    async def test_assignment_is_per_project(self, resolver, make_principal):
        await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        assert await resolver.resolve(make_principal(user_id="user_1"), 43) is None

    @pytest.mark.asyncio
    async def test_full_level_overrides_flags(self, resolver, make_principal):
        await resolver.assign_member(42, "user_1", assigned_by="admin_1", access_level=AccessLevel.FULL)

        access = await resolver.resolve(make_principal(user_id="user_1"), 42)

        assert access.can_edit_project
        assert access.can_invite_members
        assert access.can_view_all_tasks

    @pytest.mark.asyncio
    async def test_stamps_last_access(self, resolver, repository, make_principal, now):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        await resolver.resolve(make_principal(user_id="user_1"), 42)
        await resolver.drain()

        stored = await repository.get_project_member(member.id)
        assert stored.last_project_access == now

    @pytest.mark.asyncio
    async def test_stamp_failure_never_fails_resolve(self, clock, make_principal, caplog):
        resolver = ProjectAccessResolver(BrokenStampRepository(), clock=clock)
        await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        with caplog.at_level(logging.WARNING):
            access = await resolver.resolve(make_principal(user_id="user_1"), 42)
            await resolver.drain()

        assert access is not None
        assert "Failed to stamp last project access" in caplog.text

    @pytest.mark.asyncio
    async def test_store_failure_is_infra_failure(self, make_principal):
        resolver = ProjectAccessResolver(BrokenLookupRepository())
        with pytest.raises(InfraFailure):
            await resolver.resolve(make_principal(), 42)


class TestTaskAccess:

    @pytest.mark.asyncio
    async def test_restricted_allow_list(self, resolver, make_principal):
        await resolver.assign_member(
            42, "user_1", assigned_by="admin_1",
            access_level=AccessLevel.RESTRICTED,
            allowed_task_ids={5, 9},
        )
        access = await resolver.resolve(make_principal(user_id="user_1"), 42)

        assert not access.can_view_all_tasks
        assert check_task_access(access, 5)
        assert check_task_access(access, 9)
        assert not check_task_access(access, 7)

    def test_assignee_sees_own_task(self):
        access = ProjectAccess(
            project_id=42,
            access_level=AccessLevel.RESTRICTED,
            can_edit_project=False,
            can_invite_members=False,
            can_view_all_tasks=False,
            allowed_task_ids=frozenset({5, 9}),
        )
        assert check_task_access(access, 7, requester_is_assignee=True)

    def test_view_all(self):
        assert check_task_access(ProjectAccess.full(42), 12345)

    def test_restricted_row_cannot_view_all(self):
        with pytest.raises(ValidationError):
            ProjectTeamMember(
                project_id=42,
                user_id="user_1",
                access_level=AccessLevel.RESTRICTED,
                can_view_all_tasks=True,
            )


class TestAdministration:

    @pytest.mark.asyncio
    async def test_double_assignment_rejected(self, resolver):
        await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        with pytest.raises(ValueError):
            await resolver.assign_member(42, "user_1", assigned_by="admin_1")

    @pytest.mark.asyncio
    async def test_remove_is_soft(self, resolver, repository, make_principal, now):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        removed = await resolver.remove_member(member.id, removed_by="admin_1")

        assert not removed.is_active
        stored = await repository.get_project_member(member.id)
        assert stored is not None
        assert not stored.is_active
        assert stored.removed_by == "admin_1"
        assert stored.removed_at == now
        assert await resolver.resolve(make_principal(user_id="user_1"), 42) is None

    @pytest.mark.asyncio
    async def test_remove_twice_is_harmless(self, resolver):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        await resolver.remove_member(member.id, removed_by="admin_1")
        again = await resolver.remove_member(member.id, removed_by="admin_2")
        assert again.removed_by == "admin_1"

    @pytest.mark.asyncio
    async def test_remove_unknown(self, resolver):
        with pytest.raises(LookupError):
            await resolver.remove_member("ptm_missing", removed_by="admin_1")

    @pytest.mark.asyncio
    async def test_removed_rows_listed_only_on_request(self, resolver):
        kept = await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        gone = await resolver.assign_member(42, "user_2", assigned_by="admin_1")
        await resolver.remove_member(gone.id, removed_by="admin_1")

        active = await resolver.list_members(42)
        everyone = await resolver.list_members(42, include_inactive=True)

        assert [m.id for m in active] == [kept.id]
        assert {m.id for m in everyone} == {kept.id, gone.id}

    @pytest.mark.asyncio
    async def test_reassign_after_removal_creates_new_row(self, resolver, make_principal):
        first = await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        await resolver.remove_member(first.id, removed_by="admin_1")

        second = await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        assert second.id != first.id
        access = await resolver.resolve(make_principal(user_id="user_1"), 42)
        assert access.member_id == second.id

    @pytest.mark.asyncio
    async def test_update_to_restricted_hides_tasks(self, resolver):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        updated = await resolver.update_member(
            member.id, access_level=AccessLevel.RESTRICTED, allowed_task_ids={3}
        )

        assert updated.access_level is AccessLevel.RESTRICTED
        assert not updated.can_view_all_tasks
        assert updated.allowed_task_ids == {3}

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, resolver):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        with pytest.raises(ValueError):
            await resolver.update_member(member.id, is_active=False)

    @pytest.mark.asyncio
    async def test_update_removed_member(self, resolver):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")
        await resolver.remove_member(member.id, removed_by="admin_1")
        with pytest.raises(LookupError):
            await resolver.update_member(member.id, can_edit_project=True)


class TestProjectGrants:

    @pytest.mark.asyncio
    async def test_plain_assignment_gets_role_grants(self, resolver, make_principal):
        await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        access = await resolver.resolve(make_principal(user_id="user_1"), 42)

        assert access.grants(Permission.parse("projects:view"))
        assert access.grants(Permission.parse("projects:manage_tasks"))
        assert not access.grants(Permission.parse("projects:update"))
        assert not access.grants(Permission.parse("projects:delete"))

    @pytest.mark.asyncio
    async def test_flags_map_to_grants(self, resolver, make_principal):
        await resolver.assign_member(
            42, "user_1", assigned_by="admin_1", can_edit_project=True, can_invite_members=True,
        )

        access = await resolver.resolve(make_principal(user_id="user_1"), 42)

        assert access.grants(Permission.parse("projects:update"))
        assert access.grants(Permission.parse("projects:assign_members"))
        assert not access.grants(Permission.parse("projects:manage_team"))

    @pytest.mark.asyncio
    async def test_client_is_capped_even_with_full_level(self, resolver, make_principal):
        await resolver.assign_member(
            42, "client_1", assigned_by="admin_1", access_level=AccessLevel.FULL,
            permissions={"projects:delete"},
        )

        access = await resolver.resolve(make_principal(OrgRole.CLIENT, user_id="client_1"), 42)

        assert access.access_level is AccessLevel.FULL
        assert not access.can_edit_project
        assert not access.grants(Permission.parse("projects:delete"))
        assert access.grants(Permission.parse("projects:view_assigned"))

    def test_non_project_grants_are_dropped(self, caplog):
        member = ProjectTeamMember(
            project_id=42, user_id="user_1", permissions={"users:invite", "projects:delete", "bogus"},
        )

        with caplog.at_level(logging.WARNING):
            access = ProjectAccess.from_member(member)

        assert access.grants(Permission.parse("projects:delete"))
        assert not access.grants(Permission.parse("users:invite"))
        assert "Ignoring" in caplog.text

    def test_admin_record_grants_anything(self):
        assert ProjectAccess.full(42).grants(Permission.parse("users:invite"))

    @pytest.mark.asyncio
    async def test_update_replaces_grants(self, resolver):
        member = await resolver.assign_member(42, "user_1", assigned_by="admin_1")

        updated = await resolver.update_member(member.id, permissions={"projects:manage_team"})

        assert updated.permissions == {"projects:manage_team"}
