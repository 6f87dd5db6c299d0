"""Audit service: engagements, participants, control profiles and findings."""

import logging
import re
from datetime import datetime
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from ..models import (
    Engagement,
    EngagementControlProfile,
    Finding,
    FindingStatus,
    RemediationPlan,
    RemediationStatus,
    User,
    as_utc,
    utcnow,
)
from ..models import derived
from ..schemas.engagements import (
    ControlNote,
    ControlProfileCreate,
    ControlProfileUpdate,
    EngagementCreate,
    EngagementUpdate,
    EvidenceItem,
    FindingCreate,
    OverdueItem,
    Participant,
    PriorSubmission,
    RemediationPlanCreate,
    Timeline,
)
from .persistence import PersistenceManager
from .users import UserRoleManager

logger = logging.getLogger(__name__)

_VERSION_SUFFIX = re.compile(r":v(\d+)$")


def engagement_id_prefix(org: str, engagement_type: str, when: datetime) -> str:
    return f"{org}_{engagement_type}_{when:%y%m}"


def _merge(existing: list[str], extra: list[str]) -> list[str]:
    return list(dict.fromkeys([*existing, *extra]))


def _days_between(earlier: datetime, later: datetime) -> int:
    return (later - earlier).days


class AuditManager:
    """Engagement workflows spanning engagements, users and control profiles."""

    def __init__(self, store: PersistenceManager, users: UserRoleManager):
        self.store = store
        self.users = users

    # =========================================================================
    # ENGAGEMENTS
    # =========================================================================

    async def generate_engagement_id(
        self, org: str, engagement_type: str, when: datetime | None = None
    ) -> str:
        """Next ``<org>_<type>_<yymm>:v<n>`` for the month."""
        prefix = engagement_id_prefix(org, engagement_type, when or utcnow())
        versions = []
        for existing in await self.store.engagement_ids_with_prefix(f"{prefix}:v"):
            match = _VERSION_SUFFIX.search(existing)
            if match:
                versions.append(int(match.group(1)))
        return f"{prefix}:v{max(versions, default=0) + 1}"

    async def create_engagement(self, data: EngagementCreate | dict) -> Engagement:
        payload = self.store.validate(EngagementCreate, data)
        if await self.store.find_organization_by_id(payload.org) is None:
            raise NotFoundError("Organization", payload.org)
        if not payload.id:
            payload.id = await self.generate_engagement_id(payload.org, payload.type)

        engagement = await self.store.create_engagement(payload)
        for participant in payload.participants:
            await self._sync_user_participation(
                engagement.id, participant.user_id, participant.roles, participant.assigned_controls
            )
        logger.info(f"Created engagement {engagement.id} ({engagement.name}) for {engagement.org}")
        return engagement

    async def get_engagement(self, engagement_id: str) -> Engagement:
        engagement = await self.store.find_engagement_by_id(engagement_id)
        if engagement is None:
            raise NotFoundError("Engagement", engagement_id)
        return engagement

    async def list_engagements(
        self,
        org: str | None = None,
        status: str | None = None,
        include_closed: bool = True,
    ) -> list[Engagement]:
        engagements = await self.store.list_engagements(org=org, include_closed=include_closed)
        if status:
            engagements = [e for e in engagements if derived.state_value(e.status) == status]
        return engagements

    async def organization_engagements(
        self, org: str, include_closed: bool = False
    ) -> list[Engagement]:
        return await self.store.list_engagements(org=org, include_closed=include_closed)

    async def update_engagement(
        self, engagement_id: str, data: EngagementUpdate | dict
    ) -> Engagement:
        engagement = await self.store.update_engagement(engagement_id, data)
        logger.info(f"Updated engagement {engagement_id}")
        return engagement

    async def update_status(self, engagement_id: str, status: str) -> Engagement:
        engagement = await self.store.update_engagement(engagement_id, {"status": status})
        logger.info(f"Updated engagement {engagement_id} status to: {status}")
        return engagement

    async def update_stage(self, engagement_id: str, stage: str) -> Engagement:
        engagement = await self.store.update_engagement(engagement_id, {"stage": stage})
        logger.info(f"Updated engagement {engagement_id} stage to: {stage}")
        return engagement

    # =========================================================================
    # PARTICIPANTS
    # =========================================================================

    async def _sync_user_participation(
        self,
        engagement_id: str,
        email: str,
        roles: list[str],
        assigned_controls: list[str],
    ) -> None:
        user = await self.store.find_user_by_email(email)
        if user is not None:
            await self.users.add_user_to_engagement(
                user.user_id, engagement_id, roles, assigned_controls
            )

    async def add_participant(
        self,
        engagement_id: str,
        email: str,
        roles: list[str],
        assigned_controls: list[str] | None = None,
    ) -> Engagement:
        """Add or merge a participant; registered users get the engagement too."""
        engagement = await self.get_engagement(engagement_id)
        assigned_controls = assigned_controls or []
        email = email.strip().lower()

        participants = [dict(p) for p in engagement.participants or []]
        existing = next((p for p in participants if p.get("user_id") == email), None)
        if existing is not None:
            existing["roles"] = _merge(existing.get("roles", []), roles)
            existing["assigned_controls"] = _merge(
                existing.get("assigned_controls", []), assigned_controls
            )
            existing["active"] = True
        else:
            participant = self.store.validate(
                Participant,
                {"user_id": email, "roles": roles, "assigned_controls": assigned_controls},
            )
            participants.append(participant.model_dump(mode="json"))

        updated = await self.store.update_engagement(engagement_id, {"participants": participants})
        await self._sync_user_participation(engagement_id, email, roles, assigned_controls)
        logger.info(f"Added participant {email} to engagement {engagement_id} with roles: {', '.join(roles)}")
        return updated

    async def remove_participant(self, engagement_id: str, email: str) -> Engagement:
        engagement = await self.get_engagement(engagement_id)
        email = email.strip().lower()
        participants = [p for p in engagement.participants or [] if p.get("user_id") != email]
        updated = await self.store.update_engagement(engagement_id, {"participants": participants})

        user = await self.store.find_user_by_email(email)
        if user is not None:
            await self.users.remove_user_from_engagement(user.user_id, engagement_id)
        logger.info(f"Removed participant {email} from engagement {engagement_id}")
        return updated

    async def participants(self, engagement_id: str) -> list[dict]:
        engagement = await self.get_engagement(engagement_id)
        return [p for p in engagement.participants or [] if p.get("active", True)]

    async def participants_by_role(self, engagement_id: str, role: str) -> list[dict]:
        return [p for p in await self.participants(engagement_id) if role in p.get("roles", [])]

    async def participants_with_details(self, engagement_id: str) -> list[dict]:
        """Participants joined with their user record, when one exists."""
        detailed = []
        for participant in await self.participants(engagement_id):
            user = await self.store.find_user_by_email(participant["user_id"])
            detailed.append({**participant, "user": user})
        return detailed

    async def assign_controls(
        self, engagement_id: str, email: str, controls: list[str]
    ) -> Engagement:
        engagement = await self.get_engagement(engagement_id)
        email = email.strip().lower()
        participants = [dict(p) for p in engagement.participants or []]
        participant = next((p for p in participants if p.get("user_id") == email), None)
        if participant is None:
            raise ValidationError.for_field(
                "user_id", f"User {email} is not a participant in engagement {engagement_id}"
            )
        participant["assigned_controls"] = _merge(participant.get("assigned_controls", []), controls)
        updated = await self.store.update_engagement(engagement_id, {"participants": participants})

        await self._sync_user_participation(engagement_id, email, [], controls)
        logger.info(f"Assigned controls to {email} in engagement {engagement_id}: {', '.join(controls)}")
        return updated

    # =========================================================================
    # CONTROL PROFILES
    # =========================================================================

    async def create_control_profile(
        self, data: ControlProfileCreate | dict
    ) -> EngagementControlProfile:
        payload = self.store.validate(ControlProfileCreate, data)
        await self.get_engagement(payload.engagement_id)
        profile = await self.store.create_control_profile(payload)
        logger.info(f"Created control profile {payload.requirement_id} for {payload.engagement_id}")
        return profile

    async def get_control_profile(self, profile_id: str) -> EngagementControlProfile:
        profile = await self.store.find_control_profile_by_id(profile_id)
        if profile is None:
            raise NotFoundError("Control profile", profile_id)
        return profile

    async def control_profiles(self, engagement_id: str) -> list[EngagementControlProfile]:
        return await self.store.list_control_profiles(engagement_id=engagement_id)

    async def update_control_profile(
        self, profile_id: str, data: ControlProfileUpdate | dict
    ) -> EngagementControlProfile:
        return await self.store.update_control_profile(profile_id, data)

    async def update_control_status(self, profile_id: str, status: str) -> EngagementControlProfile:
        profile = await self.store.update_control_profile(profile_id, {"status": status})
        logger.info(f"Control profile {profile_id} status -> {status}")
        return profile

    async def add_evidence(
        self, profile_id: str, evidence: EvidenceItem | dict
    ) -> EngagementControlProfile:
        """Attach evidence; an open control moves to responded in the same write."""
        profile = await self.get_control_profile(profile_id)
        item = self.store.validate(EvidenceItem, evidence)
        patch: dict[str, Any] = {
            "evidence": [*(profile.evidence or []), item.model_dump(mode="json")],
        }
        if derived.state_value(profile.status) == "open":
            patch["status"] = "responded"
        return await self.store.update_control_profile(profile_id, patch)

    async def add_note(self, profile_id: str, note: ControlNote | dict) -> EngagementControlProfile:
        profile = await self.get_control_profile(profile_id)
        item = self.store.validate(ControlNote, note)
        notes = [*(profile.control_notes or []), item.model_dump(mode="json")]
        return await self.store.update_control_profile(profile_id, {"control_notes": notes})

    async def notes(self, profile_id: str, include_private: bool = False) -> list[dict]:
        profile = await self.get_control_profile(profile_id)
        if include_private:
            return list(profile.control_notes or [])
        return derived.public_notes(profile)

    async def add_prior_submission(
        self, profile_id: str, submission: PriorSubmission | dict
    ) -> EngagementControlProfile:
        profile = await self.get_control_profile(profile_id)
        item = self.store.validate(PriorSubmission, submission)
        submissions = [*(profile.prior_submissions or []), item.model_dump(mode="json")]
        return await self.store.update_control_profile(
            profile_id, {"prior_submissions": submissions}
        )

    async def controls_for_owner(self, email: str) -> list[EngagementControlProfile]:
        """Control profiles owned by ``email`` that still need work."""
        return await self.store.list_control_profiles(control_owner=email, exclude_complete=True)

    # =========================================================================
    # FINDINGS & REMEDIATION
    # =========================================================================

    async def create_finding(self, data: FindingCreate | dict) -> Finding:
        payload = self.store.validate(FindingCreate, data)
        await self.get_engagement(payload.engagement_id)
        finding = await self.store.create_finding(payload)
        logger.info(f"Created new finding: {finding.title} ({finding.id})")
        return finding

    async def get_finding(self, finding_id: str) -> Finding:
        finding = await self.store.find_finding_by_id(finding_id)
        if finding is None:
            raise NotFoundError("Finding", finding_id)
        return finding

    async def list_findings(
        self, engagement_id: str | None = None, status: str | None = None
    ) -> list[Finding]:
        return await self.store.list_findings(engagement_id=engagement_id, status=status)

    async def update_finding_status(self, finding_id: str, status: str) -> Finding:
        finding = await self.store.update_finding(finding_id, {"status": status})
        logger.info(f"Updated finding {finding_id} status to: {status}")
        return finding

    async def create_remediation_plan(
        self, finding_id: str, data: RemediationPlanCreate | dict
    ) -> RemediationPlan:
        """Plan a remediation; the finding moves to in-remediation."""
        await self.get_finding(finding_id)
        plan = await self.store.create_remediation_plan(finding_id, data)
        await self.update_finding_status(finding_id, FindingStatus.IN_REMEDIATION.value)
        logger.info(f"Created remediation plan for finding {finding_id}")
        return plan

    async def get_remediation_plan(self, plan_id: str) -> RemediationPlan:
        plan = await self.store.find_remediation_plan_by_id(plan_id)
        if plan is None:
            raise NotFoundError("Remediation plan", plan_id)
        return plan

    async def remediation_for_finding(self, finding_id: str) -> list[RemediationPlan]:
        return await self.store.list_remediation_plans(finding_id)

    async def update_remediation_progress(
        self, plan_id: str, progress: float, notes: str | None = None
    ) -> RemediationPlan:
        """Record progress in [0, 1]; reaching 1 completes the plan and remediates the finding."""
        await self.get_remediation_plan(plan_id)

        values: dict[str, Any] = {"progress": progress}
        if notes is not None:
            values["notes"] = notes
        if progress >= 1.0:
            values.update(status=RemediationStatus.COMPLETED.value, completed_date=utcnow())
        elif progress > 0:
            values["status"] = RemediationStatus.IN_PROGRESS.value
        plan = await self.store.update_remediation_plan(plan_id, values)

        if progress >= 1.0:
            await self.update_finding_status(plan.finding_id, FindingStatus.REMEDIATED.value)
        logger.info(f"Updated remediation {plan_id} progress to: {progress * 100:.0f}%")
        return plan

    async def overdue_items(self, now: datetime | None = None) -> list[OverdueItem]:
        """Open findings, running remediations and live engagements past due, worst first."""
        now = now or utcnow()
        items: list[OverdueItem] = []

        for finding in await self.list_findings(status=FindingStatus.OPEN.value):
            due = as_utc(finding.due_date)
            if due is not None and due < now:
                items.append(OverdueItem(
                    kind="finding",
                    id=finding.id,
                    title=finding.title,
                    due_date=due,
                    engagement_id=finding.engagement_id,
                    days_overdue=_days_between(due, now),
                ))

        for plan in await self.store.list_open_remediation_plans():
            due = as_utc(plan.target_date)
            if due is not None and due < now:
                items.append(OverdueItem(
                    kind="remediation",
                    id=plan.id,
                    title=f"Remediation for finding {plan.finding_id}",
                    due_date=due,
                    days_overdue=_days_between(due, now),
                ))

        for engagement in await self.store.list_engagements(include_closed=False):
            due = as_utc(Timeline.model_validate(engagement.timeline).end_date)
            if due < now:
                items.append(OverdueItem(
                    kind="engagement",
                    id=engagement.id,
                    title=engagement.name,
                    due_date=due,
                    engagement_id=engagement.id,
                    days_overdue=_days_between(due, now),
                ))

        return sorted(items, key=lambda item: item.days_overdue, reverse=True)

    async def health_check(self) -> dict[str, Any]:
        database = await self.store.health_check()
        if not database["connected"]:
            return {**database, "engagements": 0, "open_findings": 0, "overdue_items": 0}
        return {
            "status": database["status"],
            "initialized": database["initialized"],
            "engagements": await self.store.count(Engagement),
            "open_findings": await self.store.count(
                Finding, Finding.status == FindingStatus.OPEN.value
            ),
            "overdue_items": len(await self.overdue_items()),
        }

    async def user_engagements(self, user: User) -> list[Engagement]:
        """Engagements the user actively participates in."""
        engagements = []
        for entry in derived.active_engagements(user):
            engagement = await self.store.find_engagement_by_id(entry["engagement_id"])
            if engagement is not None:
                engagements.append(engagement)
        return engagements
