"""
Shared utilities and models for the election platform.

This package contains common code used across all services:
- Vocabulary enums (election status, voting types, lottery rewards, ...)
- Regional pricing zones
- Slug, date window and URL helpers
- Response envelope and pagination helpers
"""

from .models import (
    ElectionStatus,
    CreatorType,
    VotingType,
    PermissionType,
    PricingType,
    QuestionType,
    RewardType,
    SecurityFeature,
    ElectionWindow,
    CHOICE_VOTING_TYPES,
    ADMIN_ROLES,
    AUDITOR_ROLES,
    REGIONAL_ZONES,
    slugify,
    generate_unique_slug,
    validate_election_window,
    generate_shareable_url,
    get_region_by_country,
    determine_creator_type,
    get_current_timestamp,
    format_response,
    calculate_pagination_meta,
)

__all__ = [
    'ElectionStatus',
    'CreatorType',
    'VotingType',
    'PermissionType',
    'PricingType',
    'QuestionType',
    'RewardType',
    'SecurityFeature',
    'ElectionWindow',
    'CHOICE_VOTING_TYPES',
    'ADMIN_ROLES',
    'AUDITOR_ROLES',
    'REGIONAL_ZONES',
    'slugify',
    'generate_unique_slug',
    'validate_election_window',
    'generate_shareable_url',
    'get_region_by_country',
    'determine_creator_type',
    'get_current_timestamp',
    'format_response',
    'calculate_pagination_meta',
]

__version__ = '1.0.0'
