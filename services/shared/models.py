"""
Shared data models and utilities for the election platform.

This module contains:
- Enums for election, question, lottery and role vocabularies
- Regional pricing zones
- Slug, date window and shareable URL helpers
- Response envelope and pagination helpers
"""

import math
import re
import secrets
import string
import time
import unicodedata
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List


class ElectionStatus(str, Enum):
    """Lifecycle status of an election."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CreatorType(str, Enum):
    """Kind of account that owns an election."""
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"
    CONTENT_CREATOR = "content_creator"


class VotingType(str, Enum):
    """Ballot counting method."""
    PLURALITY = "plurality"
    RANKED_CHOICE = "ranked_choice"
    APPROVAL = "approval"


class PermissionType(str, Enum):
    """Who may vote in an election."""
    PUBLIC = "public"
    COUNTRY_SPECIFIC = "country_specific"
    ORGANIZATION_ONLY = "organization_only"


class PricingType(str, Enum):
    """Participation pricing model."""
    FREE = "free"
    GENERAL_FEE = "general_fee"
    REGIONAL_FEE = "regional_fee"


class QuestionType(str, Enum):
    """Kinds of ballot question."""
    MULTIPLE_CHOICE = "multiple_choice"
    OPEN_TEXT = "open_text"
    IMAGE_BASED = "image_based"


class RewardType(str, Enum):
    """Lottery prize kinds."""
    MONETARY = "monetary"
    NON_MONETARY = "non_monetary"
    PROJECTED_REVENUE = "projected_revenue"


class SecurityFeature(str, Enum):
    """Per-election security switches."""
    ENCRYPTION = "encryption_enabled"
    DIGITAL_SIGNATURES = "digital_signatures_enabled"
    TAMPER_RESISTANCE = "tamper_resistance_enabled"
    PRIVACY_PROTECTION = "privacy_protection_enabled"
    AUDIT_TRAIL = "audit_trail_enabled"
    IDENTITY_VERIFICATION = "identity_verification_enabled"


# Voting types whose questions are always rendered as multiple choice
CHOICE_VOTING_TYPES = (
    VotingType.PLURALITY.value,
    VotingType.RANKED_CHOICE.value,
    VotingType.APPROVAL.value,
)

ADMIN_ROLES = ("Manager", "Admin")
AUDITOR_ROLES = ("Manager", "Admin", "Auditor")

REGIONAL_ZONES = [
    {"code": "region_1_us_canada", "name": "US & Canada",
     "countries": ["US", "CA"]},
    {"code": "region_2_western_europe", "name": "Western Europe",
     "countries": ["GB", "FR", "DE", "IT", "ES", "NL", "BE", "CH", "AT",
                   "SE", "NO", "DK", "FI"]},
    {"code": "region_3_eastern_europe", "name": "Eastern Europe & Russia",
     "countries": ["RU", "PL", "UA", "CZ", "RO", "HU", "GR", "BG"]},
    {"code": "region_4_africa", "name": "Africa",
     "countries": ["ZA", "NG", "EG", "KE", "GH", "ET", "TZ", "UG", "DZ", "MA"]},
    {"code": "region_5_latin_america", "name": "Latin America & Caribbean",
     "countries": ["BR", "MX", "AR", "CO", "CL", "PE", "VE", "EC", "CU", "DO"]},
    {"code": "region_6_middle_east_asia",
     "name": "Middle East, Asia, Eurasia, Melanesia, Micronesia & Polynesia",
     "countries": ["IN", "PK", "BD", "ID", "PH", "VN", "TH", "MY", "SA", "AE",
                   "TR", "IR", "IQ"]},
    {"code": "region_7_australasia",
     "name": "Australasia (Australia, NZ, Taiwan, South Korea, Japan, Singapore)",
     "countries": ["AU", "NZ", "TW", "KR", "JP", "SG"]},
    {"code": "region_8_china", "name": "China, Macau & Hong Kong",
     "countries": ["CN", "HK", "MO"]},
]


@dataclass
class ElectionWindow:
    """
    Validated voting window of an election.

    Attributes:
        start: Timezone-aware start of voting
        end: Timezone-aware end of voting, strictly after start
    """
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with ISO timestamps."""
        data = asdict(self)
        return {key: value.isoformat() for key, value in data.items()}


def slugify(text: str) -> str:
    """
    Turn a title into a lowercase, URL-safe slug.

    Args:
        text: Free-form title

    Returns:
        str: Slug made of ASCII letters, digits and single hyphens
    """
    normalized = unicodedata.normalize("NFKD", text or "")
    normalized = normalized.encode("ascii", "ignore").decode("ascii").lower()
    normalized = re.sub(r"[^a-z0-9\s_-]", "", normalized)
    return re.sub(r"[\s_-]+", "-", normalized).strip("-")


def generate_unique_slug(title: str) -> str:
    """
    Generate a slug from a title with a random and a time-based suffix.

    Args:
        title: Election title

    Returns:
        str: ``<slug>-<6 random chars>-<epoch millis>``
    """
    base = slugify(title) or "election"
    alphabet = string.ascii_lowercase + string.digits
    random_part = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"{base}-{random_part}-{int(time.time() * 1000)}"


def _parse_timestamp(date_value: Any, time_value: Optional[str], default_time: str) -> datetime:
    if isinstance(date_value, datetime):
        parsed = date_value
    else:
        if not isinstance(date_value, str) or not date_value.strip():
            raise ValueError("Invalid date format")
        text = date_value.strip()
        if "T" not in text and " " not in text:
            text = f"{text}T{time_value or default_time}"
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError("Invalid date format")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_election_window(
    start_date: Any,
    end_date: Any,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    now: Optional[datetime] = None,
    allow_past_start: bool = False
) -> ElectionWindow:
    """
    Parse and validate the start/end of an election.

    Dates without a time part take ``start_time`` (default midnight) and
    ``end_time`` (default one second before midnight). Naive values are UTC.

    Args:
        start_date: ISO date or datetime of the start
        end_date: ISO date or datetime of the end
        start_time: Optional ``HH:MM:SS`` for the start
        end_time: Optional ``HH:MM:SS`` for the end
        now: Reference time for the past-start check
        allow_past_start: Skip the past-start check

    Returns:
        ElectionWindow: Parsed window

    Raises:
        ValueError: On malformed dates, end not after start, or past start
    """
    start = _parse_timestamp(start_date, start_time, "00:00:00")
    end = _parse_timestamp(end_date, end_time, "23:59:59")

    if end <= start:
        raise ValueError("End date must be after start date")

    if not allow_past_start:
        reference = now or datetime.now(timezone.utc)
        if start < reference:
            raise ValueError("Start date cannot be in the past")

    return ElectionWindow(start=start, end=end)


def generate_shareable_url(frontend_url: str, slug: str) -> str:
    """Build the public voting URL for an election slug."""
    return f"{frontend_url.rstrip('/')}/vote/{slug}"


def get_region_by_country(country_code: str) -> Optional[Dict[str, Any]]:
    """
    Find the regional pricing zone that contains a country.

    Args:
        country_code: ISO 3166-1 alpha-2 code

    Returns:
        dict or None: Zone with code, name and countries
    """
    code = (country_code or "").upper()
    for zone in REGIONAL_ZONES:
        if code in zone["countries"]:
            return zone
    return None


def determine_creator_type(roles: List[str]) -> str:
    """Map gateway roles to the creator type stored on elections."""
    if any(role == "Content_Creator" for role in roles):
        return CreatorType.CONTENT_CREATOR.value
    if any(role.startswith("Organization_") for role in roles):
        return CreatorType.ORGANIZATION.value
    return CreatorType.INDIVIDUAL.value


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        str: ISO format timestamp with Z suffix
    """
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def format_response(success: bool, data: Any = None, message: str = "") -> Dict[str, Any]:
    """Wrap a payload in the standard response envelope."""
    return {
        "success": success,
        "message": message,
        "data": data,
        "timestamp": get_current_timestamp(),
    }


def calculate_pagination_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    """
    Build pagination metadata for list responses.

    Args:
        page: 1-based page number
        limit: Page size
        total: Total number of matching rows

    Returns:
        dict: page, limit, total, total_pages, has_next, has_prev
    """
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
