"""Field-level and cross-field business-rule predicates.

Every function here is pure: it takes values (and any closed sets it needs
as arguments) and answers True/False or returns the offending items. The
Pydantic schemas turn a failed predicate into a field error.
"""

import re
from collections.abc import Iterable
from datetime import date, datetime
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models.base import as_utc

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")
DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{0,61}[a-zA-Z0-9]?\.[a-zA-Z]{2,}$")
ORGANIZATION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9\-]+$")
ENGAGEMENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9\-]+_[a-zA-Z\-]+_\d{4}:v\d+$")
MENTION_PATTERN = re.compile(r"^@[\w\-\.]+$")
MENTION_SEARCH_PATTERN = re.compile(r"@[\w\-\.]+")

MAX_ORG_DOMAINS = 10
MAX_MENTIONS = 20
MIN_PHONE_DIGITS = 10

SOC2_COMPONENTS = frozenset(
    {"security", "availability", "processing integrity", "confidentiality", "privacy"}
)

# Chronological order the timeline milestones must respect
TIMELINE_ORDER = (
    "start_date",
    "onboard_survey_due",
    "kickoff_call",
    "fieldwork_start",
    "fieldwork_end",
    "evidence_cutoff",
    "draft_report_delivery",
    "end_date",
)


# =============================================================================
# SHAPE
# =============================================================================


def is_valid_email(value: str | None) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


def is_valid_phone(value: str | None) -> bool:
    if not value or not PHONE_PATTERN.match(value):
        return False
    return sum(ch.isdigit() for ch in value) >= MIN_PHONE_DIGITS


def is_valid_url(value: str | None, schemes: Iterable[str] = ("http", "https")) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in set(schemes) and bool(parsed.netloc)


def is_valid_domain(value: str | None) -> bool:
    return bool(value) and DOMAIN_PATTERN.match(value) is not None


def is_valid_organization_id(value: str | None) -> bool:
    return bool(value) and ORGANIZATION_ID_PATTERN.match(value) is not None


def is_valid_engagement_id(value: str | None) -> bool:
    return bool(value) and ENGAGEMENT_ID_PATTERN.match(value) is not None


def is_valid_mention(value: str) -> bool:
    return MENTION_PATTERN.match(value) is not None


def is_valid_timezone(value: str) -> bool:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def invalid_members(values: Iterable[str], allowed: Iterable[str]) -> list[str]:
    """Return the values not in ``allowed``, preserving order."""
    allowed_set = set(allowed)
    return [v for v in values if v not in allowed_set]


# =============================================================================
# BUSINESS RULES
# =============================================================================


def mixes_role_tiers(
    roles: Iterable[str],
    system_roles: Iterable[str],
    customer_roles: Iterable[str],
) -> bool:
    """True when a role list holds both a system-tier and a customer-tier role."""
    role_set = set(roles)
    return bool(role_set & set(system_roles)) and bool(role_set & set(customer_roles))


def invalid_soc2_components(components: Iterable[str]) -> list[str]:
    return [c for c in components if c not in SOC2_COMPONENTS]


def _comparable(value: date | datetime) -> date | datetime:
    # Naive datetimes are taken as UTC so they order against aware ones
    return as_utc(value) if isinstance(value, datetime) else value


def is_date_after(start: date | datetime | None, end: date | datetime | None) -> bool:
    """End strictly after start; passes when either side is unset."""
    if start is None or end is None:
        return True
    return _comparable(end) > _comparable(start)


def timeline_out_of_order(timeline: dict) -> tuple[str, str] | None:
    """Return the first (earlier_field, later_field) pair that is out of order."""
    present = [(key, timeline[key]) for key in TIMELINE_ORDER if timeline.get(key) is not None]
    for (prev_key, prev_date), (key, current) in zip(present, present[1:]):
        if _comparable(current) < _comparable(prev_date):
            return prev_key, key
    return None


def evidence_problem(item: dict) -> str | None:
    """Describe what is wrong with one evidence item, or None if it is valid."""
    evidence_type = item.get("type")
    if evidence_type == "file":
        if not item.get("name"):
            return "File evidence requires a name"
        if item.get("subtype") not in ("document", "image"):
            return "File evidence subtype must be 'document' or 'image'"
    elif evidence_type == "link":
        if not is_valid_url(item.get("url")):
            return "Link evidence requires a valid http(s) URL"
    else:
        return f"Unknown evidence type: {evidence_type}"
    if not is_valid_email(item.get("provided_by")):
        return "Evidence provided_by must be a valid email"
    return None


def extract_mentions(text: str, limit: int = MAX_MENTIONS) -> list[str]:
    """Unique @mentions in first-seen order, capped at ``limit``."""
    seen: list[str] = []
    for mention in MENTION_SEARCH_PATTERN.findall(text or ""):
        if mention not in seen:
            seen.append(mention)
    return seen[:limit]
