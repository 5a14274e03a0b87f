"""Pydantic models for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, StrictBool, validator

from services.shared import (
    CreatorType,
    PermissionType,
    PricingType,
    QuestionType,
    RewardType,
    SecurityFeature,
    VotingType,
)


class DraftCreate(BaseModel):
    """New election draft. Unknown fields are kept in the draft JSON."""

    title: str = Field(..., min_length=1, max_length=500, description="Election title")
    description: Optional[str] = Field(None, max_length=5000)

    @validator("title")
    def validate_title(cls, v):
        """Reject blank titles."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "title": "Best Pizza Topping 2031",
                "description": "Community poll",
                "start_date": "2031-01-01",
                "end_date": "2031-01-31",
                "voting_type": "plurality"
            }
        }


class DraftUpdate(BaseModel):
    """Partial draft update, merged into the stored draft JSON."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)

    class Config:
        extra = "allow"


class OptionIn(BaseModel):
    option_text: str = Field(..., min_length=1, max_length=1000)
    option_image_url: Optional[str] = None
    option_order: Optional[int] = Field(None, ge=1)


class QuestionIn(BaseModel):
    question_text: str = Field(..., min_length=1, max_length=2000)
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    question_order: Optional[int] = Field(None, ge=1)
    question_image_url: Optional[str] = None
    is_required: bool = True
    max_selections: Optional[int] = Field(None, ge=1)
    options: List[OptionIn] = Field(default_factory=list)


class RegionalPriceIn(BaseModel):
    region_code: str = Field(..., min_length=1, max_length=100)
    region_name: str = Field(..., min_length=1, max_length=200)
    participation_fee: Decimal = Field(..., ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)


class LotterySettingsIn(BaseModel):
    """Lottery settings attached to an election at publish time."""

    lottery_enabled: bool = False
    reward_type: RewardType = RewardType.MONETARY
    total_prize_pool: Optional[Decimal] = Field(None, ge=0)
    reward_amount: Optional[Decimal] = Field(None, ge=0)
    prize_description: Optional[str] = None
    winner_count: int = Field(1, ge=1, le=100)
    prize_funding_source: Optional[str] = None
    lottery_machine_visible: bool = True
    auto_trigger_at_end: bool = True


class ElectionFieldsIn(BaseModel):
    """
    Election columns taken from a draft and its publish overrides.

    Drafts accept arbitrary keys, so the merged fields are checked here
    before they reach the INSERT. Keys that are not election columns are
    dropped.
    """

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    slug: Optional[str] = Field(None, max_length=700)
    creator_type: Optional[CreatorType] = None
    organization_id: Optional[int] = None
    topic_image_url: Optional[str] = None
    topic_video_url: Optional[str] = None
    logo_url: Optional[str] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_date: Optional[str] = None
    end_time: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=100)
    voting_type: Optional[VotingType] = None
    permission_type: Optional[PermissionType] = None
    allowed_countries: Optional[List[str]] = None
    pricing_type: Optional[PricingType] = None
    general_participation_fee: Optional[Decimal] = Field(None, ge=0)
    processing_fee_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    authentication_methods: Optional[List[str]] = None
    biometric_required: Optional[StrictBool] = None
    show_live_results: Optional[StrictBool] = None
    vote_editing_allowed: Optional[StrictBool] = None
    anonymous_voting_enabled: Optional[StrictBool] = None
    custom_url: Optional[str] = Field(None, max_length=500)

    class Config:
        extra = "ignore"


class PublishRequest(BaseModel):
    """Overrides applied on top of the stored draft when publishing."""

    election: Dict[str, Any] = Field(default_factory=dict)
    questions: Optional[List[QuestionIn]] = None
    regional_pricing: Optional[List[RegionalPriceIn]] = None
    lottery_config: Optional[LotterySettingsIn] = None
    category_id: Optional[int] = None

    class Config:
        json_schema_extra = {
            "example": {
                "election": {"start_date": "2031-01-01", "end_date": "2031-01-31"},
                "questions": [
                    {
                        "question_text": "Favourite topping?",
                        "options": [{"option_text": "Basil"}, {"option_text": "Olives"}]
                    }
                ],
                "lottery_config": {"lottery_enabled": True, "winner_count": 3,
                                   "total_prize_pool": "300.00"}
            }
        }


class ElectionUpdate(BaseModel):
    """Editable election fields while no votes exist."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    topic_image_url: Optional[str] = None
    topic_video_url: Optional[str] = None
    logo_url: Optional[str] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_date: Optional[str] = None
    end_time: Optional[str] = None
    voting_type: Optional[VotingType] = None
    permission_type: Optional[PermissionType] = None
    pricing_type: Optional[PricingType] = None
    show_live_results: Optional[bool] = None
    vote_editing_allowed: Optional[bool] = None
    custom_url: Optional[str] = None


class CloneRequest(BaseModel):
    new_title: Optional[str] = Field(None, min_length=1, max_length=500)


class QuestionCreate(QuestionIn):
    pass


class OptionCreate(OptionIn):
    pass


class LotteryConfigRequest(BaseModel):
    """Lottery settings managed after publishing."""

    is_lotterized: bool = True
    reward_type: RewardType = RewardType.MONETARY
    reward_amount: Optional[Decimal] = Field(None, ge=0)
    reward_description: Optional[str] = Field(None, max_length=2000)
    winner_count: int = Field(1, ge=1, le=100)
    prize_pool_total: Optional[Decimal] = Field(None, ge=0)
    lottery_machine_visible: bool = True
    auto_trigger_at_end: bool = False


class ApiKeyCreate(BaseModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    environment: Literal["live", "test"] = "live"
    rate_limit_per_minute: Optional[int] = Field(None, ge=1, le=10000)
    expires_at: Optional[datetime] = None

    @validator("name")
    def validate_name(cls, v):
        """Name is required and cannot be blank."""
        if not v or not v.strip():
            raise ValueError("API key name is required")
        return v.strip()


class ApiKeyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None
    rate_limit_per_minute: Optional[int] = Field(None, ge=1, le=10000)
    expires_at: Optional[datetime] = None


class SecurityConfigRequest(BaseModel):
    encryption_enabled: bool = True
    digital_signatures_enabled: bool = True
    tamper_resistance_enabled: bool = True
    privacy_protection_enabled: bool = True
    audit_trail_enabled: bool = True
    identity_verification_enabled: bool = False
    encryption_algorithm: str = "AES-256-GCM"
    signature_algorithm: str = "RSA-SHA256"


class FeatureToggle(BaseModel):
    feature: SecurityFeature
    enabled: bool


class AuditEventCreate(BaseModel):
    election_id: Optional[int] = None
    action_type: str = Field(..., min_length=1, max_length=100)
    action_description: Optional[str] = Field(None, max_length=2000)
    data_before: Optional[Dict[str, Any]] = None
    data_after: Optional[Dict[str, Any]] = None


class OneTimeLinkCreate(BaseModel):
    viewer_identifier: Optional[str] = Field(None, max_length=255)
    expires_in_hours: Optional[int] = Field(None, ge=1, le=720)


class RevenueTrack(BaseModel):
    election_id: int
    content_platform: str = Field(..., min_length=1, max_length=100)
    projected_amount: Decimal = Field(..., ge=0)
    actual_amount: Optional[Decimal] = Field(None, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)


class IconCreate(BaseModel):
    election_id: int
    icon_url: str = Field(..., min_length=1)
    icon_position: str = "bottom-right"
    is_visible: bool = False


class IconVisibility(BaseModel):
    is_visible: bool


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Overall health status")
    services: dict = Field(..., description="Individual service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "services": {
                    "postgresql": "connected",
                    "rate_limit_store": "memory"
                },
                "timestamp": "2031-01-15T10:30:00Z"
            }
        }
