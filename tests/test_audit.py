"""
Tests for the audit manager - engagements, participants, control profiles
and findings.

These tests verify:
1. CREATE: engagement ids are generated per org, type and month
2. LIFECYCLE: status and stage only move along their graphs
3. PARTICIPANTS: participation is mirrored onto registered users
4. CONTROLS: evidence, notes and status of control profiles
5. FINDINGS: remediation progress drives the finding status
"""

from datetime import datetime, timedelta, timezone

import pytest

from compliance_tracker.core.errors import (
    DuplicateFieldError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from compliance_tracker.models import utcnow
from compliance_tracker.services.audit import AuditManager, engagement_id_prefix

from .conftest import engagement_payload


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
async def profile(container, engagement):
    return await container.audit.create_control_profile({
        "engagement_id": engagement.id,
        "requirement_id": "CC6.1",
        "control_owner": "sam@acme.com",
    })


@pytest.fixture
async def finding(container, engagement):
    return await container.audit.create_finding({
        "engagement_id": engagement.id,
        "control_id": "CC6.1",
        "framework": "SOC2",
        "severity": "high",
        "title": "MFA not enforced for administrators",
        "due_date": (utcnow() + timedelta(days=30)).isoformat(),
    })


# =============================================================================
# TEST: CREATE ENGAGEMENT
# =============================================================================


class TestCreateEngagement:
    def test_id_prefix(self):
        when = datetime(2026, 3, 15, tzinfo=timezone.utc)
        assert engagement_id_prefix("acme", "audit-prep", when) == "acme_audit-prep_2603"

    async def test_manager_runs_on_store_and_users(self, container, engagement):
        audit = AuditManager(container.store, container.users)
        assert [e.id for e in await audit.list_engagements()] == [engagement.id]

    async def test_ids_are_versioned_per_month(self, container, organization):
        audit: AuditManager = container.audit
        first = await audit.create_engagement(engagement_payload(organization.id))
        second = await audit.create_engagement(engagement_payload(organization.id))

        prefix = engagement_id_prefix(organization.id, "gap-assessment", utcnow())
        assert first.id == f"{prefix}:v1"
        assert second.id == f"{prefix}:v2"
        assert first.status == "pending"
        assert first.stage == "onboarding"

    async def test_explicit_id_is_kept_and_unique(self, container, organization):
        audit = container.audit
        payload = engagement_payload(organization.id, id="acme-corp_audit-prep_2512:v3")
        created = await audit.create_engagement(payload)
        assert created.id == "acme-corp_audit-prep_2512:v3"

        with pytest.raises(DuplicateFieldError):
            await audit.create_engagement(payload)

    async def test_unknown_organization(self, container):
        with pytest.raises(NotFoundError):
            await container.audit.create_engagement(engagement_payload("ghost-org"))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"frameworks": []},
            {"frameworks": [{"framework": "GDPR"}]},
            {"frameworks": [{"framework": "SOC2", "components": ["speed"]}]},
            {"id": "not-a-valid-id"},
            {"timeline": {"start_date": "2026-03-01T00:00:00Z", "end_date": "2026-02-01T00:00:00Z"}},
            {"portal_url": "portal.example.com"},
        ],
    )
    async def test_invalid_payloads(self, container, organization, overrides):
        with pytest.raises(ValidationError):
            await container.audit.create_engagement(
                engagement_payload(organization.id, **overrides)
            )

    async def test_mixed_timezone_timeline(self, container, organization):
        engagement = await container.audit.create_engagement(engagement_payload(
            organization.id,
            timeline={"start_date": "2026-01-01T00:00:00", "end_date": "2026-03-01T00:00:00Z"},
        ))
        assert engagement.timeline["end_date"].startswith("2026-03-01")

        with pytest.raises(ValidationError):
            await container.audit.create_engagement(engagement_payload(
                organization.id,
                timeline={"start_date": "2026-03-01T00:00:00", "end_date": "2026-02-01T00:00:00Z"},
            ))

    async def test_participants_are_synced_to_users(self, container, organization, customer_user):
        engagement = await container.audit.create_engagement(engagement_payload(
            organization.id,
            participants=[{"user_id": "SAM@acme.com", "roles": ["sme"]}],
        ))

        user = await container.users.get_user(customer_user.user_id)
        assert [e["engagement_id"] for e in user.engagements] == [engagement.id]
        assert engagement.participants[0]["user_id"] == "sam@acme.com"

    async def test_duplicate_participants_are_rejected(self, container, organization):
        participant = {"user_id": "sam@acme.com", "roles": ["sme"]}
        with pytest.raises(ValidationError):
            await container.audit.create_engagement(
                engagement_payload(organization.id, participants=[participant, participant])
            )


# =============================================================================
# TEST: ENGAGEMENT LIFECYCLE
# =============================================================================


class TestEngagementLifecycle:
    async def test_status_path(self, container, engagement):
        audit = container.audit
        for status in ("scheduled", "active", "extended", "closed"):
            updated = await audit.update_status(engagement.id, status)
            assert updated.status == status

        with pytest.raises(StateTransitionError):
            await audit.update_status(engagement.id, "active")

    async def test_stage_moves_forward_only(self, container, engagement):
        audit = container.audit
        updated = await audit.update_stage(engagement.id, "deliverable creation")
        assert updated.stage == "deliverable creation"

        with pytest.raises(StateTransitionError):
            await audit.update_stage(engagement.id, "fieldwork")

    async def test_list_filters(self, container, organization, engagement):
        audit = container.audit
        await audit.update_status(engagement.id, "closed")
        other = await audit.create_engagement(engagement_payload(organization.id, name="ISO prep"))

        assert {e.id for e in await audit.list_engagements(org=organization.id)} == {
            engagement.id,
            other.id,
        }
        open_only = await audit.list_engagements(include_closed=False)
        assert [e.id for e in open_only] == [other.id]
        closed = await audit.list_engagements(status="closed")
        assert [e.id for e in closed] == [engagement.id]

    async def test_update_rejects_immutable_fields(self, container, engagement):
        with pytest.raises(ValidationError):
            await container.audit.update_engagement(engagement.id, {"org": "globex"})


# =============================================================================
# TEST: PARTICIPANTS
# =============================================================================


class TestParticipants:
    async def test_add_merges_roles_and_controls(self, container, engagement):
        audit = container.audit
        await audit.add_participant(engagement.id, "pat@acme.com", ["sme"], ["CC6.1"])
        updated = await audit.add_participant(
            engagement.id, "PAT@acme.com", ["controlOwner"], ["CC7.2"]
        )

        assert len(updated.participants) == 1
        participant = updated.participants[0]
        assert participant["roles"] == ["sme", "controlOwner"]
        assert participant["assigned_controls"] == ["CC6.1", "CC7.2"]
        assert [p["user_id"] for p in await audit.participants_by_role(engagement.id, "sme")] == [
            "pat@acme.com"
        ]

    async def test_unknown_role_is_rejected(self, container, engagement):
        with pytest.raises(ValidationError):
            await container.audit.add_participant(engagement.id, "pat@acme.com", ["wizard"])

    async def test_remove_participant_updates_user(self, container, engagement, customer_user):
        audit = container.audit
        await audit.add_participant(engagement.id, customer_user.email, ["sme"])
        updated = await audit.remove_participant(engagement.id, customer_user.email)

        assert updated.participants == []
        user = await container.users.get_user(customer_user.user_id)
        assert user.engagements == []

    async def test_assign_controls_requires_participant(self, container, engagement):
        audit = container.audit
        with pytest.raises(ValidationError):
            await audit.assign_controls(engagement.id, "stranger@acme.com", ["CC6.1"])

        await audit.add_participant(engagement.id, "pat@acme.com", ["sme"])
        updated = await audit.assign_controls(engagement.id, "pat@acme.com", ["CC6.1", "CC6.1"])
        assert updated.participants[0]["assigned_controls"] == ["CC6.1"]

    async def test_details_join_registered_users(self, container, engagement, customer_user):
        audit = container.audit
        await audit.add_participant(engagement.id, customer_user.email, ["sme"])
        await audit.add_participant(engagement.id, "guest@acme.com", ["executive"])

        detailed = {p["user_id"]: p["user"] for p in await audit.participants_with_details(engagement.id)}
        assert detailed["sam@acme.com"].user_id == customer_user.user_id
        assert detailed["guest@acme.com"] is None

    async def test_user_engagements(self, container, engagement, customer_user):
        audit = container.audit
        await audit.add_participant(engagement.id, customer_user.email, ["sme"])
        user = await container.users.get_user(customer_user.user_id)
        assert [e.id for e in await audit.user_engagements(user)] == [engagement.id]


# =============================================================================
# TEST: CONTROL PROFILES
# =============================================================================


class TestControlProfiles:
    async def test_requirement_is_unique_per_engagement(self, container, engagement, profile):
        with pytest.raises(DuplicateFieldError):
            await container.audit.create_control_profile({
                "engagement_id": engagement.id,
                "requirement_id": "CC6.1",
            })

    async def test_profile_needs_engagement(self, container):
        with pytest.raises(NotFoundError):
            await container.audit.create_control_profile({
                "engagement_id": "ghost_gap-assessment_2601:v1",
                "requirement_id": "CC6.1",
            })

    async def test_evidence_moves_open_profile_to_responded(self, container, profile):
        updated = await container.audit.add_evidence(profile.id, {
            "type": "link",
            "url": "https://drive.example.com/mfa-policy",
            "provided_by": "Sam@Acme.com",
        })
        assert updated.status == "responded"
        assert updated.evidence[0]["provided_by"] == "sam@acme.com"

    async def test_malformed_evidence_is_rejected(self, container, profile):
        with pytest.raises(ValidationError):
            await container.audit.add_evidence(profile.id, {
                "type": "file",
                "subtype": "video",
                "name": "walkthrough.mp4",
                "provided_by": "sam@acme.com",
            })

    async def test_private_notes_are_hidden_by_default(self, container, profile):
        audit = container.audit
        await audit.add_note(profile.id, {"note": "Looks good", "author": "lead@auditfirm.com"})
        await audit.add_note(profile.id, {
            "note": "Check the exception list",
            "author": "lead@auditfirm.com",
            "private": True,
        })

        assert [n["note"] for n in await audit.notes(profile.id)] == ["Looks good"]
        assert len(await audit.notes(profile.id, include_private=True)) == 2

    async def test_status_graph(self, container, profile):
        audit = container.audit
        await audit.update_control_status(profile.id, "responded")
        await audit.update_control_status(profile.id, "action_required")
        await audit.update_control_status(profile.id, "responded")
        done = await audit.update_control_status(profile.id, "complete")
        assert done.status == "complete"

        with pytest.raises(StateTransitionError):
            await audit.update_control_status(profile.id, "open")

    async def test_controls_for_owner_skips_complete(self, container, profile):
        audit = container.audit
        assert [p.id for p in await audit.controls_for_owner("SAM@acme.com")] == [profile.id]

        await audit.update_control_status(profile.id, "complete")
        assert await audit.controls_for_owner("sam@acme.com") == []

    async def test_prior_submissions(self, container, profile):
        updated = await container.audit.add_prior_submission(profile.id, {
            "engagement_id": "acme-corp_gap-assessment_2501:v1",
            "submission_date": "2025-02-01T00:00:00Z",
            "status": "complete",
        })
        assert updated.prior_submissions[0]["engagement_id"] == "acme-corp_gap-assessment_2501:v1"


# =============================================================================
# TEST: FINDINGS & REMEDIATION
# =============================================================================


class TestFindings:
    async def test_finding_starts_open(self, container, finding):
        assert finding.status == "open"
        assert [f.id for f in await container.audit.list_findings(status="open")] == [finding.id]

    async def test_finding_needs_engagement(self, container):
        with pytest.raises(NotFoundError):
            await container.audit.create_finding({
                "engagement_id": "ghost_gap-assessment_2601:v1",
                "severity": "low",
                "title": "Orphan",
            })

    async def test_unknown_status_is_rejected(self, container, finding):
        with pytest.raises(ValidationError):
            await container.audit.update_finding_status(finding.id, "ignored")

    async def test_remediation_lifecycle(self, container, finding):
        audit = container.audit
        plan = await audit.create_remediation_plan(finding.id, {
            "assigned_to": "sam@acme.com",
            "actions": ["Enforce MFA in the IdP"],
        })
        assert plan.status == "planned"
        assert (await audit.get_finding(finding.id)).status == "in-remediation"

        plan = await audit.update_remediation_progress(plan.id, 0.5, "Half the admins enrolled")
        assert plan.status == "in-progress"
        assert plan.notes == "Half the admins enrolled"

        plan = await audit.update_remediation_progress(plan.id, 1.0)
        assert plan.status == "completed"
        assert plan.notes == "Half the admins enrolled"
        assert plan.completed_date is not None
        assert (await audit.get_finding(finding.id)).status == "remediated"

    async def test_progress_out_of_range(self, container, finding):
        audit = container.audit
        plan = await audit.create_remediation_plan(finding.id, {})
        with pytest.raises(ValidationError):
            await audit.update_remediation_progress(plan.id, 1.5)

    async def test_remediation_dates_are_ordered(self, container, finding):
        with pytest.raises(ValidationError):
            await container.audit.create_remediation_plan(finding.id, {
                "start_date": "2026-05-01T00:00:00Z",
                "target_date": "2026-04-01T00:00:00Z",
            })

    async def test_mixed_timezone_remediation_dates_are_ordered(self, container, finding):
        with pytest.raises(ValidationError):
            await container.audit.create_remediation_plan(finding.id, {
                "start_date": "2026-05-01T00:00:00Z",
                "target_date": "2026-04-01T00:00:00",
            })


# =============================================================================
# TEST: OVERDUE ITEMS
# =============================================================================


class TestOverdue:
    async def test_overdue_items_sorted_worst_first(self, container, organization, engagement):
        audit = container.audit
        now = datetime(2026, 6, 1, tzinfo=timezone.utc)

        late_finding = await audit.create_finding({
            "engagement_id": engagement.id,
            "severity": "medium",
            "title": "Stale access review",
            "due_date": "2026-05-27T00:00:00Z",
        })
        await audit.create_finding({
            "engagement_id": engagement.id,
            "severity": "low",
            "title": "Future item",
            "due_date": "2026-07-01T00:00:00Z",
        })
        plan = await audit.create_remediation_plan(late_finding.id, {
            "target_date": "2026-05-30T00:00:00Z",
        })

        items = await audit.overdue_items(now)

        # The engagement timeline ended 2026-04-05
        assert [(i.kind, i.id) for i in items] == [
            ("engagement", engagement.id),
            ("remediation", plan.id),
        ]
        assert items[0].days_overdue == 57
        assert items[1].days_overdue == 2

    async def test_closed_engagements_are_never_overdue(self, container, engagement):
        await container.audit.update_status(engagement.id, "closed")
        items = await container.audit.overdue_items(datetime(2027, 1, 1, tzinfo=timezone.utc))
        assert items == []

    async def test_health_check(self, container, engagement, finding):
        health = await container.audit.health_check()
        assert health["status"] == "healthy"
        assert health["engagements"] == 1
        assert health["open_findings"] == 1
