"""
Tests for the composed authorization decision.
"""

import itertools
import logging
from datetime import timedelta

import pytest

from orgguard.auth.capabilities import Action, Resource
from orgguard.auth.decisions import DenyReason, Outcome, ResourceRef
from orgguard.core.errors import InfraFailure
from orgguard.core.models import AccessLevel, Organization, OrgRole, Plan, TrialPhase, Usage


async def _org(engine, plan=Plan.PRO, trial_started_at=None, **usage):
    await engine.repository.save_organization(
        Organization(id="org_1", plan=plan, trial_started_at=trial_started_at, usage=Usage(**usage))
    )


class TestTrialPrecedence:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", list(OrgRole))
    async def test_expired_trial_denies_everything(self, engine, make_principal, now, role):
        await _org(engine, plan=Plan.PRO_TRIAL, trial_started_at=now - timedelta(days=30))
        principal = make_principal(role, user_id="user_1")
        await engine.project_access.assign_member(42, "user_1", assigned_by="admin", access_level=AccessLevel.FULL)

        refs = [
            ResourceRef(resource=Resource.PROJECTS, route="/projects/42", project_id=42),
            ResourceRef(resource=Resource.PROJECTS, route="/projects"),
            ResourceRef(route="/dashboard"),
        ]
        for ref in refs:
            decision = await engine.facade.decide(principal, ref, Action.VIEW_ASSIGNED)
            assert decision.outcome is Outcome.DENY
            assert decision.reason is DenyReason.TRIAL_EXPIRED
            assert decision.to_response()["redirect"] == "/billing"

        await engine.drain()

    @pytest.mark.asyncio
    async def test_allow_list_still_reachable(self, engine, make_principal, now):
        await _org(engine, plan=Plan.PRO_TRIAL, trial_started_at=now - timedelta(days=30))

        decision = await engine.facade.decide(make_principal(OrgRole.ADMIN), ResourceRef(route="/billing/plans"))

        assert decision.allowed

    @pytest.mark.asyncio
    async def test_subscription_lifts_expiry(self, engine, make_principal, now):
        await engine.repository.save_organization(
            Organization(
                id="org_1",
                plan=Plan.PRO_TRIAL,
                trial_started_at=now - timedelta(days=30),
                has_active_subscription=True,
            )
        )
        decision = await engine.facade.decide(make_principal(OrgRole.ADMIN), ResourceRef(route="/projects"))
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_trial_status_helper(self, engine, now):
        await _org(engine, plan=Plan.PRO_TRIAL, trial_started_at=now - timedelta(days=9))
        status = await engine.facade.trial_status("org_1")
        assert status.phase is TrialPhase.ACTIVE
        assert status.days_left == 5


class TestRolesAndPermissions:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("required, actual", list(itertools.product(OrgRole, OrgRole)))
    async def test_role_monotonicity(self, engine, make_principal, required, actual):
        await _org(engine)

        decision = await engine.facade.decide(make_principal(actual), ResourceRef(required_role=required))

        expected = actual is required or actual is OrgRole.ADMIN
        assert decision.allowed is expected
        if not expected:
            assert decision.reason is DenyReason.INSUFFICIENT_ROLE
            assert decision.required == (required.value,)
            assert decision.current == actual.value

    @pytest.mark.asyncio
    async def test_missing_permission_names_requirement(self, engine, make_principal):
        await _org(engine)

        decision = await engine.facade.decide(
            make_principal(OrgRole.CLIENT), ResourceRef(resource=Resource.CLIENTS), Action.VIEW_ALL
        )

        assert decision.reason is DenyReason.MISSING_PERMISSION
        body = decision.to_response()
        assert body["required"] == ["clients:view_all"]
        assert body["current"] == "client"
        assert decision.status_code == 403

    @pytest.mark.asyncio
    async def test_raw_grant_allows(self, engine, make_principal):
        await _org(engine)
        principal = make_principal(OrgRole.TEAM_MEMBER, permissions=("clients:view_all",))

        decision = await engine.facade.decide(principal, ResourceRef(resource=Resource.CLIENTS), Action.VIEW_ALL)

        assert decision.allowed

    @pytest.mark.asyncio
    async def test_navigation_route(self, engine, make_principal):
        await _org(engine)

        denied = await engine.facade.decide(make_principal(OrgRole.TEAM_MEMBER), ResourceRef(route="/clients"))
        allowed = await engine.facade.decide(make_principal(OrgRole.TEAM_MEMBER), ResourceRef(route="/projects"))

        assert denied.reason is DenyReason.MISSING_PERMISSION
        assert allowed.allowed

    @pytest.mark.asyncio
    async def test_denials_logged_at_info(self, engine, make_principal, caplog):
        await _org(engine)

        with caplog.at_level(logging.INFO, logger="orgguard.auth.facade"):
            await engine.facade.decide(
                make_principal(OrgRole.CLIENT), ResourceRef(resource=Resource.USERS), Action.INVITE
            )

        records = [r for r in caplog.records if r.name == "orgguard.auth.facade"]
        assert records and all(r.levelno == logging.INFO for r in records)
        assert records[0].reason == "missing_permission"


class TestProjectScope:

    @pytest.mark.asyncio
    async def test_unassigned(self, engine, make_principal):
        await _org(engine)

        decision = await engine.facade.decide(
            make_principal(), ResourceRef(resource=Resource.PROJECTS, project_id=42), Action.VIEW_ASSIGNED
        )

        assert decision.reason is DenyReason.NOT_ASSIGNED

    @pytest.mark.asyncio
    async def test_restricted_tasks(self, engine, make_principal):
        await _org(engine)
        await engine.project_access.assign_member(
            42, "user_1", assigned_by="admin",
            access_level=AccessLevel.RESTRICTED, allowed_task_ids={5, 9},
        )
        principal = make_principal(user_id="user_1")

        denied = await engine.facade.decide(principal, ResourceRef(project_id=42, task_id=7))
        allowed = await engine.facade.decide(principal, ResourceRef(project_id=42, task_id=5))
        own = await engine.facade.decide(
            principal, ResourceRef(project_id=42, task_id=7, requester_is_assignee=True)
        )
        await engine.drain()

        assert denied.reason is DenyReason.TASK_ACCESS_DENIED
        assert allowed.allowed
        assert own.allowed

    @pytest.mark.asyncio
    async def test_edit_needs_flag(self, engine, make_principal):
        await _org(engine)
        await engine.project_access.assign_member(42, "user_1", assigned_by="admin")
        await engine.project_access.assign_member(43, "user_1", assigned_by="admin", can_edit_project=True)
        principal = make_principal(user_id="user_1")

        denied = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.PROJECTS, project_id=42), Action.UPDATE
        )
        allowed = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.PROJECTS, project_id=43), Action.UPDATE
        )
        await engine.drain()

        assert denied.reason is DenyReason.NO_PROJECT_ACCESS
        assert denied.required == ("can_edit_project",)
        assert allowed.allowed

    @pytest.mark.asyncio
    async def test_removed_member_is_not_assigned(self, engine, make_principal):
        await _org(engine)
        member = await engine.project_access.assign_member(42, "user_1", assigned_by="admin")
        await engine.project_access.remove_member(member.id, removed_by="admin")

        decision = await engine.facade.decide(make_principal(user_id="user_1"), ResourceRef(project_id=42))

        assert decision.outcome is Outcome.DENY
        assert decision.reason is DenyReason.NOT_ASSIGNED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", [Action.DELETE, Action.MANAGE_TEAM, Action.UPDATE])
    async def test_assigned_client_cannot_mutate_project(self, engine, make_principal, action):
        await _org(engine)
        await engine.project_access.assign_member(
            42, "client_1", assigned_by="admin", role="client", access_level=AccessLevel.FULL,
        )
        principal = make_principal(OrgRole.CLIENT, user_id="client_1")

        denied = await engine.facade.decide(principal, ResourceRef(resource=Resource.PROJECTS, project_id=42), action)
        viewed = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.PROJECTS, project_id=42), Action.VIEW_ASSIGNED
        )
        await engine.drain()

        assert denied.reason is DenyReason.NO_PROJECT_ACCESS
        assert viewed.allowed

    @pytest.mark.asyncio
    async def test_invite_flag_does_not_grant_team_management(self, engine, make_principal):
        await _org(engine)
        await engine.project_access.assign_member(
            42, "user_1", assigned_by="admin",
            access_level=AccessLevel.RESTRICTED, can_invite_members=True,
        )
        principal = make_principal(user_id="user_1")
        ref = ResourceRef(resource=Resource.PROJECTS, project_id=42)

        invite = await engine.facade.decide(principal, ref, Action.ASSIGN_MEMBERS)
        manage = await engine.facade.decide(principal, ref, Action.MANAGE_TEAM)
        delete = await engine.facade.decide(principal, ref, Action.DELETE)
        await engine.drain()

        assert invite.allowed
        assert manage.reason is DenyReason.NO_PROJECT_ACCESS
        assert manage.required == ("projects:manage_team",)
        assert delete.reason is DenyReason.NO_PROJECT_ACCESS

    @pytest.mark.asyncio
    async def test_explicit_grant_and_project_role(self, engine, make_principal):
        await _org(engine)
        await engine.project_access.assign_member(
            42, "user_1", assigned_by="admin", permissions={"projects:manage_team"},
        )
        await engine.project_access.assign_member(43, "user_1", assigned_by="admin", role="project_manager")
        principal = make_principal(user_id="user_1")

        manage = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.PROJECTS, project_id=42), Action.MANAGE_TEAM
        )
        pm_update = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.PROJECTS, project_id=43), Action.UPDATE
        )
        pm_delete = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.PROJECTS, project_id=43), Action.DELETE
        )
        await engine.drain()

        assert manage.allowed
        assert pm_update.allowed
        assert pm_delete.reason is DenyReason.NO_PROJECT_ACCESS


class TestAdminBypassIsBounded:

    @pytest.mark.asyncio
    async def test_admin_needs_no_assignment(self, engine, make_principal):
        await _org(engine)

        decision = await engine.facade.decide(
            make_principal(OrgRole.ADMIN), ResourceRef(resource=Resource.PROJECTS, project_id=42, task_id=7),
            Action.UPDATE,
        )

        assert decision.allowed

    @pytest.mark.asyncio
    async def test_admin_still_hits_plan_limits(self, engine, make_principal):
        await _org(engine, plan=Plan.SOLO, projects=3)

        decision = await engine.facade.decide(
            make_principal(OrgRole.ADMIN), ResourceRef(resource=Resource.PROJECTS), Action.CREATE
        )
        await engine.drain()

        assert decision.outcome is Outcome.REQUIRES_UPGRADE
        assert decision.current_usage == 3
        assert decision.limit == 3


class TestQuota:

    @pytest.mark.asyncio
    async def test_invite_on_solo(self, engine, make_principal):
        await _org(engine, plan=Plan.SOLO)

        decision = await engine.facade.decide(
            make_principal(OrgRole.ADMIN), ResourceRef(resource=Resource.USERS), Action.INVITE
        )
        await engine.drain()

        assert decision.outcome is Outcome.REQUIRES_UPGRADE
        assert decision.to_response()["plan"] == "solo"

    @pytest.mark.asyncio
    async def test_upload_uses_quota_delta(self, engine, make_principal):
        await _org(engine, plan=Plan.SOLO, storage_bytes=5 * 1024**3 - 500)
        principal = make_principal(OrgRole.TEAM_MEMBER)

        small = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.DOCUMENTS, quota_delta=400), Action.UPLOAD
        )
        large = await engine.facade.decide(
            principal, ResourceRef(resource=Resource.DOCUMENTS, quota_delta=600), Action.UPLOAD
        )
        await engine.drain()

        assert small.allowed
        assert small.percentage_used == 100
        assert large.outcome is Outcome.REQUIRES_UPGRADE

    @pytest.mark.asyncio
    async def test_permission_checked_before_quota(self, engine, make_principal):
        await _org(engine, plan=Plan.SOLO, projects=3)

        decision = await engine.facade.decide(
            make_principal(OrgRole.CLIENT), ResourceRef(resource=Resource.PROJECTS), Action.CREATE
        )
        await engine.drain()

        assert decision.reason is DenyReason.MISSING_PERMISSION
        assert await engine.entitlements.list_violations("org_1") == []

    @pytest.mark.asyncio
    async def test_non_creations_skip_quota(self, engine, make_principal):
        await _org(engine, plan=Plan.SOLO, projects=30)

        decision = await engine.facade.decide(
            make_principal(OrgRole.ADMIN), ResourceRef(resource=Resource.PROJECTS), Action.VIEW_ALL
        )

        assert decision.allowed
        assert decision.percentage_used is None


class TestIdempotence:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "role, ref, action",
        [
            (OrgRole.ADMIN, ResourceRef(resource=Resource.PROJECTS), Action.CREATE),
            (OrgRole.CLIENT, ResourceRef(resource=Resource.USERS), Action.INVITE),
            (OrgRole.TEAM_MEMBER, ResourceRef(project_id=42, task_id=7), None),
            (OrgRole.ADMIN, ResourceRef(resource=Resource.USERS), Action.INVITE),
        ],
    )
    async def test_same_inputs_same_decision(self, engine, make_principal, role, ref, action):
        await _org(engine, plan=Plan.SOLO, projects=2)
        principal = make_principal(role)

        first = await engine.facade.decide(principal, ref, action)
        second = await engine.facade.decide(principal, ref, action)
        await engine.drain()

        assert first == second


class TestInfra:

    @pytest.mark.asyncio
    async def test_unknown_org_is_infra_failure(self, engine, make_principal):
        with pytest.raises(InfraFailure):
            await engine.facade.decide(make_principal(org_id="org_missing"), ResourceRef(route="/projects"))
