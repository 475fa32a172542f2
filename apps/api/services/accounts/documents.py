"""Document shapes for users, organizations and influencers.

Attributes are snake_case in Python and camelCase in the store, so documents
written here keep the keys the web client already reads (``displayName``,
``userType``, ``lastLoginAt`` ...). Timestamps are either resolved datetimes or
the ``SERVER_TIMESTAMP`` sentinel awaiting resolution by the store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from pydantic.json_schema import WithJsonSchema

from services.accounts.types import (
    AuthProvider,
    InfluencerTier,
    OrganizationType,
    SocialPlatform,
    UserRole,
    UserType,
)
from services.document_store import ServerTimestamp

Timestamp = Annotated[
    Union[datetime, ServerTimestamp],
    WithJsonSchema({"type": "string", "format": "date-time"}),
]


class DocumentModel(BaseModel):
    # Stored documents keep fields owned by other services (billing, metric
    # ingestion) when they are read and written back.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="allow",
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the camelCase shape stored in the document store."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        return cls.model_validate(document)


class OnboardingPayload(DocumentModel):
    """Client-submitted onboarding answers; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")


# ------------------------------------------------------------------
# User
# ------------------------------------------------------------------


class User(DocumentModel):
    id: str
    email: str
    display_name: str
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    user_type: UserType
    organization_id: Optional[str] = None
    role: Optional[UserRole] = None
    auth_provider: AuthProvider
    email_verified: Optional[bool] = None
    is_personal_email: Optional[bool] = None
    onboarding_completed: bool = False
    onboarding_step: Optional[int] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None
    last_login_at: Optional[Timestamp] = None


# ------------------------------------------------------------------
# Organization (brand or agency)
# ------------------------------------------------------------------


class OrganizationMember(DocumentModel):
    user_id: str
    email: str
    display_name: str
    role: UserRole
    joined_at: Optional[Timestamp] = None
    invited_by: str


class BrandOnboardingData(OnboardingPayload):
    type: Literal["brand"] = "brand"
    company_name: str
    website: str
    logo: Optional[str] = None
    industry: str
    company_size: str
    marketing_goals: List[str] = Field(default_factory=list)
    target_countries: List[str] = Field(default_factory=list)
    target_age_range: Tuple[int, int] = (18, 65)
    target_gender: Literal["all", "male", "female"] = "all"
    target_interests: List[str] = Field(default_factory=list)
    monthly_budget: str
    preferred_platforms: List[SocialPlatform] = Field(default_factory=list)
    preferred_influencer_tiers: List[InfluencerTier] = Field(default_factory=list)
    completed_at: Optional[Timestamp] = None

    @model_validator(mode="after")
    def _check_age_range(self) -> "BrandOnboardingData":
        low, high = self.target_age_range
        if low < 0 or low > high:
            raise ValueError("targetAgeRange must be an ascending pair of non-negative ages")
        return self


class AgencyOnboardingData(OnboardingPayload):
    type: Literal["agency"] = "agency"
    agency_name: str
    website: str
    logo: Optional[str] = None
    services_offered: List[str] = Field(default_factory=list)
    industries_served: List[str] = Field(default_factory=list)
    typical_client_size: str
    average_campaign_budget: str
    team_size: int = Field(ge=1)
    seats_needed: int = Field(ge=1)
    completed_at: Optional[Timestamp] = None


OrganizationOnboardingData = Annotated[
    Union[BrandOnboardingData, AgencyOnboardingData],
    Field(discriminator="type"),
]


class Organization(DocumentModel):
    id: str
    type: OrganizationType
    name: str
    website: Optional[str] = None
    logo: Optional[str] = None
    industry: Optional[str] = None
    onboarding_data: Optional[OrganizationOnboardingData] = None
    owner_id: str
    members: List[OrganizationMember] = Field(default_factory=list)
    subscription_id: Optional[str] = None
    client_brand_ids: Optional[List[str]] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

    def member(self, user_id: str) -> Optional[OrganizationMember]:
        for entry in self.members:
            if entry.user_id == user_id:
                return entry
        return None


# ------------------------------------------------------------------
# Influencer
# ------------------------------------------------------------------


class SocialAccount(DocumentModel):
    platform: SocialPlatform
    handle: str
    profile_url: str
    followers: int = 0
    engagement_rate: float = 0.0
    connected: bool = False
    access_token: Optional[str] = None
    last_verified: Optional[Timestamp] = None


class SocialAccounts(DocumentModel):
    instagram: Optional[SocialAccount] = None
    tiktok: Optional[SocialAccount] = None
    youtube: Optional[SocialAccount] = None
    twitter: Optional[SocialAccount] = None


class InfluencerProfile(DocumentModel):
    display_name: str = ""
    bio: str = ""
    avatar: Optional[str] = None
    cover_image: Optional[str] = None
    country: str = ""
    city: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    niches: List[str] = Field(default_factory=list)


class InfluencerMetrics(DocumentModel):
    total_followers: int = 0
    average_engagement: float = 0
    authenticity_score: float = 0
    tier: InfluencerTier = "nano"
    last_updated: Optional[Timestamp] = None


class RateCard(DocumentModel):
    currency: str = "USD"
    post: float = 0
    story: float = 0
    reel: float = 0
    video: float = 0


class Influencer(DocumentModel):
    id: str
    user_id: str
    profile: InfluencerProfile = Field(default_factory=InfluencerProfile)
    social_accounts: SocialAccounts = Field(default_factory=SocialAccounts)
    metrics: InfluencerMetrics = Field(default_factory=InfluencerMetrics)
    rate_card: RateCard = Field(default_factory=RateCard)
    verified: bool = False
    featured: bool = False
    searchable_niches: List[str] = Field(default_factory=list)
    searchable_country: str = ""
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None


class ConnectedAccountEntry(OnboardingPayload):
    platform: SocialPlatform
    handle: str
    connected: bool = False


class PortfolioItem(OnboardingPayload):
    url: str
    type: Literal["image", "video"]
    description: Optional[str] = None


class InfluencerOnboardingData(OnboardingPayload):
    display_name: str
    bio: str = ""
    country: str
    city: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    connected_accounts: List[ConnectedAccountEntry] = Field(default_factory=list)
    primary_niche: str
    secondary_niches: List[str] = Field(default_factory=list)
    content_style: List[str] = Field(default_factory=list)
    currency: str = "USD"
    rate_post: float = Field(default=0, ge=0)
    rate_story: float = Field(default=0, ge=0)
    rate_reel: float = Field(default=0, ge=0)
    rate_video: float = Field(default=0, ge=0)
    portfolio_items: List[PortfolioItem] = Field(default_factory=list)
    completed_at: Optional[Timestamp] = None
