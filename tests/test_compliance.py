"""
Tests for compliance frameworks, assessments, scoring and gap analysis.

With the default sources three frameworks are loaded:
NIST (ID.AM-1, PR.AC-1), ISO27001 (A.5.1.1) and SOC2 (CC6.1).
"""

import pytest

from compliance_tracker.core.errors import NotFoundError, ValidationError
from compliance_tracker.schemas.compliance import FrameworkControl
from compliance_tracker.services.compliance import (
    ComplianceFrameworksManager,
    compliance_score,
    load_framework_definition,
)
from compliance_tracker.services.helpers import ComplianceHelpers


async def assess(container, framework, control_id, status, **extra):
    return await container.compliance.assess_control(
        framework, control_id, {"status": status, **extra}
    )


# =============================================================================
# TEST: CATALOG
# =============================================================================


class TestCatalog:
    async def test_default_frameworks_loaded(self, container):
        manager: ComplianceFrameworksManager = container.compliance
        assert manager.initialized
        assert await manager.get_frameworks() == ["NIST", "ISO27001", "SOC2"]

    async def test_controls_by_category(self, container):
        manager = container.compliance
        protect = await manager.get_framework_controls("NIST", category="Protect")
        assert [c.id for c in protect] == ["PR.AC-1"]
        assert len(await manager.get_framework_controls("NIST")) == 2
        assert await manager.get_framework_controls("COBIT") == []

    def test_unknown_definition_is_empty(self):
        definition = load_framework_definition("HIPAA")
        assert definition.key == "HIPAA"
        assert definition.name == "HIPAA"
        assert definition.controls == []


# =============================================================================
# TEST: ASSESSMENTS
# =============================================================================


class TestAssessments:
    async def test_unknown_framework_or_control(self, container):
        with pytest.raises(NotFoundError):
            await assess(container, "COBIT", "X.1", "compliant")
        with pytest.raises(NotFoundError):
            await assess(container, "NIST", "XX.99", "compliant")

    async def test_invalid_status(self, container):
        with pytest.raises(ValidationError):
            await assess(container, "NIST", "ID.AM-1", "mostly-fine")

    async def test_reassessment_replaces_previous(self, container):
        manager = container.compliance
        await assess(container, "NIST", "ID.AM-1", "non-compliant", findings=["No asset register"])
        latest = await assess(
            container, "NIST", "ID.AM-1", "compliant", assessor="lead@auditfirm.com"
        )

        rows = await manager.get_framework_assessments("NIST")
        assert len(rows) == 1
        assert rows[0].id == latest.id
        assert rows[0].status == "compliant"
        assert rows[0].findings == []

        stored = await manager.get_control_assessment("NIST", "ID.AM-1")
        assert stored.assessor == "lead@auditfirm.com"
        assert await manager.get_control_assessment("NIST", "PR.AC-1") is None


# =============================================================================
# TEST: SCORING & GAPS
# =============================================================================


class TestScoring:
    def test_score_of_empty_catalog(self):
        assert compliance_score([], {}) == 0.0

    def test_score_weights_partial_compliance(self):
        controls = [
            FrameworkControl(id=f"C{i}", name=f"Control {i}", category="Security")
            for i in range(3)
        ]

        class Row:
            def __init__(self, status):
                self.status = status

        assessments = {"C0": Row("compliant"), "C1": Row("partially-compliant")}
        assert compliance_score(controls, assessments) == 0.5

    async def test_framework_score(self, container):
        await assess(container, "NIST", "ID.AM-1", "compliant")
        await assess(container, "NIST", "PR.AC-1", "partially-compliant")
        assert await container.compliance.calculate_compliance_score("NIST") == 0.75
        assert await container.compliance.calculate_compliance_score("COBIT") == 0.0

    async def test_gap_analysis(self, container):
        await assess(container, "NIST", "PR.AC-1", "non-compliant", findings=["Shared admin accounts"])

        analysis = await container.compliance.perform_gap_analysis("NIST")

        assert analysis.total_controls == 2
        assert analysis.gaps == 2
        reasons = {g.control_id: g.reason for g in analysis.gap_details}
        assert reasons == {"ID.AM-1": "Not assessed", "PR.AC-1": "Non-compliant"}
        non_compliant = next(g for g in analysis.gap_details if g.control_id == "PR.AC-1")
        assert non_compliant.findings == ["Shared admin accounts"]
        assert analysis.compliance_score == 0.0

    async def test_not_applicable_is_not_a_gap(self, container):
        await assess(container, "SOC2", "CC6.1", "not-applicable")

        analysis = await container.compliance.perform_gap_analysis("SOC2")

        assert analysis.gaps == 0
        assert analysis.not_applicable_controls == 1
        assert analysis.compliant_controls == 0

    async def test_partially_compliant_details(self, container):
        await assess(container, "ISO27001", "A.5.1.1", "partially-compliant", maturity_level="initial")

        analysis = await container.compliance.perform_gap_analysis("ISO27001")

        assert analysis.partially_compliant_controls == 1
        detail = analysis.partially_compliant_details[0]
        assert detail.control_id == "A.5.1.1"
        assert detail.assessment.maturity_level == "initial"

    async def test_unknown_framework_has_no_analysis(self, container):
        assert await container.compliance.perform_gap_analysis("COBIT") is None

    async def test_health_check(self, container):
        await assess(container, "SOC2", "CC6.1", "compliant")
        health = await container.compliance.health_check()
        assert health["status"] == "healthy"
        assert health["frameworks_loaded"] == 3
        assert health["assessments_count"] == 1


# =============================================================================
# TEST: HELPERS
# =============================================================================


class TestHelpers:
    async def test_helpers_initialize_lazily(self, container):
        manager = ComplianceFrameworksManager(container.store, container.settings)
        helpers = ComplianceHelpers(manager)
        assert not manager.initialized

        assert await helpers.available_frameworks() == ["NIST", "ISO27001", "SOC2"]
        assert manager.initialized

    async def test_overall_score_is_mean(self, container):
        helpers = container.compliance_helpers
        await assess(container, "NIST", "ID.AM-1", "compliant")
        await assess(container, "NIST", "PR.AC-1", "partially-compliant")
        await assess(container, "SOC2", "CC6.1", "compliant")

        # (0.75 + 0.0 + 1.0) / 3
        assert await helpers.overall_compliance_score() == 0.58

    async def test_status_summary(self, container):
        helpers = container.compliance_helpers
        await assess(container, "NIST", "ID.AM-1", "compliant")
        await assess(container, "SOC2", "CC6.1", "partially-compliant")

        summary = await helpers.status_summary()

        assert summary.total_frameworks == 3
        assert summary.total_controls == 4
        assert summary.assessed_controls == 2
        assert summary.compliant_controls == 1
        assert summary.framework_scores["NIST"].score == 0.5
        assert summary.framework_scores["SOC2"].partially_compliant_controls == 1

    async def test_high_priority_and_pending(self, container):
        helpers = container.compliance_helpers
        await assess(container, "NIST", "ID.AM-1", "compliant")
        await assess(container, "NIST", "PR.AC-1", "non-compliant")

        high = await helpers.high_priority_gaps()
        assert {(g.framework, g.control_id) for g in high} == {
            ("NIST", "PR.AC-1"),
            ("ISO27001", "A.5.1.1"),
            ("SOC2", "CC6.1"),
        }

        pending = await helpers.controls_requiring_assessment("NIST")
        assert pending == []
        pending = await helpers.controls_requiring_assessment()
        assert {g.control_id for g in pending} == {"A.5.1.1", "CC6.1"}

    async def test_recent_assessments_are_limited(self, container):
        await assess(container, "NIST", "ID.AM-1", "compliant")
        await assess(container, "NIST", "PR.AC-1", "compliant")
        await assess(container, "SOC2", "CC6.1", "compliant")

        assert len(await container.compliance_helpers.recent_assessments(limit=2)) == 2
        assert len(await container.compliance_helpers.recent_assessments()) == 3
