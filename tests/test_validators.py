"""
Tests for the field and business-rule predicates.

These are pure functions, so no database is involved.
"""

from datetime import datetime, timezone

import pytest

from compliance_tracker.roles import DEFAULT_CATALOG
from compliance_tracker.validators import (
    evidence_problem,
    extract_mentions,
    invalid_soc2_components,
    is_date_after,
    is_valid_domain,
    is_valid_email,
    is_valid_engagement_id,
    is_valid_organization_id,
    is_valid_phone,
    is_valid_timezone,
    is_valid_url,
    mixes_role_tiers,
    timeline_out_of_order,
)


# =============================================================================
# TEST: SHAPE PREDICATES
# =============================================================================


class TestShapePredicates:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("alice@acme.com", True),
            ("alice@acme", False),
            ("alice acme.com", False),
            ("", False),
            (None, False),
        ],
    )
    def test_email(self, value, expected):
        assert is_valid_email(value) is expected

    def test_phone_requires_ten_digits(self):
        assert is_valid_phone("+1 (555) 123-4567")
        assert not is_valid_phone("555-1234")
        assert not is_valid_phone("call me maybe")

    def test_url_requires_http_scheme_and_host(self):
        assert is_valid_url("https://portal.example.com/a")
        assert not is_valid_url("ftp://example.com")
        assert not is_valid_url("https://")

    def test_domain(self):
        assert is_valid_domain("acme.com")
        assert not is_valid_domain("acme")
        assert not is_valid_domain("-acme.com")

    def test_organization_id(self):
        assert is_valid_organization_id("acme-corp-2")
        assert not is_valid_organization_id("acme corp")
        assert not is_valid_organization_id("")

    def test_engagement_id(self):
        assert is_valid_engagement_id("acme_gap-assessment_2601:v1")
        assert is_valid_engagement_id("acme-corp_internal-audit_2612:v12")
        assert not is_valid_engagement_id("acme_gap-assessment_2601")
        assert not is_valid_engagement_id("acme_gap_assessment_26:v1")

    def test_timezone(self):
        assert is_valid_timezone("Europe/Berlin")
        assert not is_valid_timezone("Mars/Olympus")


# =============================================================================
# TEST: BUSINESS RULES
# =============================================================================


class TestBusinessRules:
    def test_role_tiers_cannot_mix(self):
        catalog = DEFAULT_CATALOG
        assert mixes_role_tiers(["admin", "sme"], catalog.system_roles, catalog.customer_roles)
        assert not mixes_role_tiers(["owner", "sme"], catalog.system_roles, catalog.customer_roles)
        assert not mixes_role_tiers([], catalog.system_roles, catalog.customer_roles)

    def test_user_roles_problem(self):
        """Too many, unknown and mixed role lists are each described."""
        catalog = DEFAULT_CATALOG
        assert catalog.user_roles_problem(["owner", "sme"]) is None
        assert "Unknown roles" in catalog.user_roles_problem(["wizard"])
        assert "Cannot mix" in catalog.user_roles_problem(["auditor", "owner"])
        too_many = ["owner", "sme", "controlOwner", "manager", "executive", "owner"]
        assert "at most" in catalog.user_roles_problem(too_many)

    def test_soc2_components(self):
        assert invalid_soc2_components(["security", "privacy"]) == []
        assert invalid_soc2_components(["security", "speed"]) == ["speed"]

    def test_date_after_passes_when_either_side_missing(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert is_date_after(start, end)
        assert not is_date_after(end, start)
        assert not is_date_after(start, start)
        assert is_date_after(None, end)
        assert is_date_after(start, None)

    def test_timeline_order(self):
        timeline = {
            "start_date": datetime(2026, 1, 1),
            "kickoff_call": datetime(2026, 1, 10),
            "fieldwork_start": datetime(2026, 1, 5),
            "end_date": datetime(2026, 3, 1),
        }
        assert timeline_out_of_order(timeline) == ("kickoff_call", "fieldwork_start")

        timeline["fieldwork_start"] = datetime(2026, 1, 15)
        assert timeline_out_of_order(timeline) is None

    def test_naive_dates_order_against_aware_ones(self):
        naive = datetime(2026, 1, 1)
        aware = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert is_date_after(naive, aware)
        assert not is_date_after(aware, naive)

        timeline = {
            "start_date": naive,
            "kickoff_call": datetime(2026, 1, 10, tzinfo=timezone.utc),
            "fieldwork_start": datetime(2026, 1, 5),
            "end_date": aware,
        }
        assert timeline_out_of_order(timeline) == ("kickoff_call", "fieldwork_start")

    def test_evidence_shapes(self):
        assert evidence_problem({
            "type": "file", "name": "policy.pdf", "subtype": "document",
            "provided_by": "sam@acme.com",
        }) is None
        assert evidence_problem({
            "type": "link", "url": "https://drive.example.com/x",
            "provided_by": "sam@acme.com",
        }) is None
        assert "requires a name" in evidence_problem({"type": "file", "subtype": "image"})
        assert "subtype" in evidence_problem({"type": "file", "name": "a.png", "subtype": "video"})
        assert "URL" in evidence_problem({"type": "link", "url": "not a url"})
        assert "provided_by" in evidence_problem({
            "type": "link", "url": "https://example.com", "provided_by": "sam",
        })

    def test_mentions_are_unique_and_capped(self):
        assert extract_mentions("ping @sam and @alex, then @sam again") == ["@sam", "@alex"]
        many = " ".join(f"@user{i}" for i in range(30))
        assert len(extract_mentions(many)) == 20
        assert extract_mentions("") == []
