"""Write-time invariants for account documents.

The document store validates nothing, so every write site that creates or
mutates a User, Organization or Influencer runs the matching check here first.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from services.accounts.documents import Influencer, Organization, User
from services.accounts.types import ORGANIZATION_TYPES, AccountInvariantError

ALLOWED_AUTH_PROVIDERS: Dict[str, FrozenSet[str]] = {
    "influencer": frozenset({"google", "facebook"}),
    "brand": frozenset({"email"}),
    "agency": frozenset({"email"}),
}


def ensure_user_invariants(user: User) -> None:
    allowed = ALLOWED_AUTH_PROVIDERS[user.user_type]
    if user.auth_provider not in allowed:
        raise AccountInvariantError(
            f"{user.user_type} accounts cannot use the {user.auth_provider} auth provider"
        )
    is_organization_user = user.user_type in ORGANIZATION_TYPES
    if is_organization_user and not user.organization_id:
        raise AccountInvariantError(f"{user.user_type} accounts require an organizationId")
    if not is_organization_user and user.organization_id:
        raise AccountInvariantError("influencer accounts cannot belong to an organization")
    if user.onboarding_step is not None and user.onboarding_step < 0:
        raise AccountInvariantError("onboardingStep must be non-negative")


def ensure_organization_invariants(organization: Organization) -> None:
    if not organization.members:
        raise AccountInvariantError("organization must list its owner as the first member")
    head = organization.members[0]
    if head.user_id != organization.owner_id or head.role != "owner" or head.invited_by != organization.owner_id:
        raise AccountInvariantError("members[0] must be the owner, self-invited, with role owner")
    if any(member.role == "owner" for member in organization.members[1:]):
        raise AccountInvariantError("only members[0] may hold the owner role")
    member_ids = [member.user_id for member in organization.members]
    if len(set(member_ids)) != len(member_ids):
        raise AccountInvariantError("organization members must be unique")
    if organization.onboarding_data is not None and organization.onboarding_data.type != organization.type:
        raise AccountInvariantError(
            f"{organization.onboarding_data.type} onboarding data cannot be stored on a {organization.type} organization"
        )
    if organization.client_brand_ids is not None and organization.type != "agency":
        raise AccountInvariantError("only agencies can manage client brands")


def sync_searchable_fields(influencer: Influencer) -> Influencer:
    """Return a copy whose search fields mirror the profile."""
    return influencer.model_copy(
        update={
            "searchable_niches": list(influencer.profile.niches),
            "searchable_country": influencer.profile.country,
        }
    )


def ensure_influencer_invariants(influencer: Influencer) -> None:
    if influencer.user_id != influencer.id:
        raise AccountInvariantError("influencer userId must equal its id")
    if influencer.searchable_niches != influencer.profile.niches:
        raise AccountInvariantError("searchableNiches must equal profile.niches")
    if influencer.searchable_country != influencer.profile.country:
        raise AccountInvariantError("searchableCountry must equal profile.country")


def ensure_default_influencer(influencer: Influencer) -> None:
    """Check a freshly provisioned influencer starts from zeroed metrics."""
    metrics = influencer.metrics
    rates = influencer.rate_card
    if metrics.total_followers or metrics.average_engagement or metrics.authenticity_score:
        raise AccountInvariantError("new influencer metrics must start at zero")
    if metrics.tier != "nano":
        raise AccountInvariantError("new influencers start in the nano tier")
    if rates.post or rates.story or rates.reel or rates.video:
        raise AccountInvariantError("new influencer rate card must start at zero")
    if influencer.verified or influencer.featured:
        raise AccountInvariantError("new influencers cannot start verified or featured")
    ensure_influencer_invariants(influencer)
