"""Account provisioning and login protocol.

A logical account is a User document plus satellite documents: an
Organization for brand/agency accounts, an Influencer profile for creators.
All of them share the credential provider's subject id as their key. First
login provisions the full set in one batch write; later logins only
merge-update login metadata, so repeating a login never re-creates documents.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from services.accounts.documents import (
    AgencyOnboardingData,
    BrandOnboardingData,
    Influencer,
    InfluencerMetrics,
    InfluencerOnboardingData,
    InfluencerProfile,
    Organization,
    OrganizationMember,
    RateCard,
    User,
)
from services.accounts.email import is_personal_email_domain
from services.accounts.types import (
    ORGANIZATION_TYPES,
    SOCIAL_PROVIDERS,
    AccountInvariantError,
    AccountNotFoundError,
    AccountPermissionError,
    AccountSnapshot,
    LoginResult,
    OrganizationType,
    RegistrationResult,
    SocialProvider,
    SocialSignInResult,
    UserRole,
    WrongAccountKindError,
    WrongLoginChannelError,
)
from services.accounts.validators import (
    ensure_default_influencer,
    ensure_influencer_invariants,
    ensure_organization_invariants,
    ensure_user_invariants,
    sync_searchable_fields,
)
from services.credentials import AuthObserver, AuthSubscription, CredentialProvider, Principal
from services.document_store import (
    COLLECTION_INFLUENCERS,
    COLLECTION_ORGANIZATIONS,
    COLLECTION_USERS,
    SERVER_TIMESTAMP,
    AccountStore,
)

logger = logging.getLogger(__name__)

DEFAULT_INFLUENCER_NAME = "Influencer"
ORGANIZATION_EDITOR_ROLES = {"owner", "admin"}
# Top-level fields each onboarding flow owns; everything else is left as stored.
ORGANIZATION_ONBOARDING_FIELDS = ("onboardingData", "website", "logo", "industry", "updatedAt")
INFLUENCER_ONBOARDING_FIELDS = ("profile", "rateCard", "searchableNiches", "searchableCountry", "updatedAt")


def _pick(document: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    return {key: document[key] for key in keys if key in document}


def _unique_tokens(values: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered: List[str] = []
    for value in values:
        token = str(value or "").strip()
        if token and token not in seen:
            seen.add(token)
            ordered.append(token)
    return ordered


class AccountProvisioningService:
    """Entry points for social sign-in, corporate registration and login."""

    def __init__(self, store: AccountStore, credentials: CredentialProvider) -> None:
        self.store = store
        self.credentials = credentials
        self._background_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Influencer social sign-in
    # ------------------------------------------------------------------

    async def sign_in_influencer(self, provider: SocialProvider, oauth_token: str) -> SocialSignInResult:
        if provider not in SOCIAL_PROVIDERS:
            raise AccountInvariantError(f"Influencers sign in with google or facebook, not {provider}.")

        principal = await self.credentials.sign_in_with_oauth(provider, oauth_token)
        existing = await self.store.get(COLLECTION_USERS, principal.uid)

        if existing is not None:
            user = User.from_document(existing)
            if user.user_type != "influencer":
                raise WrongAccountKindError("This account is not registered as an influencer.")
            refreshed = await self.store.merge(
                COLLECTION_USERS,
                principal.uid,
                {"lastLoginAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP},
            )
            logger.info("influencer_login user=%s provider=%s", principal.uid, provider)
            return SocialSignInResult(principal=principal, is_new_user=False, user=User.from_document(refreshed))

        user = User(
            id=principal.uid,
            email=principal.email,
            display_name=principal.display_name or DEFAULT_INFLUENCER_NAME,
            photo_url=principal.photo_url,
            user_type="influencer",
            auth_provider=provider,
            onboarding_completed=False,
            created_at=SERVER_TIMESTAMP,
            updated_at=SERVER_TIMESTAMP,
            last_login_at=SERVER_TIMESTAMP,
        )
        influencer = sync_searchable_fields(
            Influencer(
                id=principal.uid,
                user_id=principal.uid,
                profile=InfluencerProfile(
                    display_name=principal.display_name or "",
                    avatar=principal.photo_url or "",
                ),
                metrics=InfluencerMetrics(last_updated=SERVER_TIMESTAMP),
                rate_card=RateCard(),
                created_at=SERVER_TIMESTAMP,
                updated_at=SERVER_TIMESTAMP,
            )
        )
        ensure_user_invariants(user)
        ensure_default_influencer(influencer)

        stored_user, _ = await self.store.put_many(
            [
                (COLLECTION_USERS, principal.uid, user.to_document()),
                (COLLECTION_INFLUENCERS, principal.uid, influencer.to_document()),
            ]
        )
        logger.info("influencer_provisioned user=%s provider=%s", principal.uid, provider)
        return SocialSignInResult(principal=principal, is_new_user=True, user=User.from_document(stored_user))

    # ------------------------------------------------------------------
    # Brand / agency email registration and login
    # ------------------------------------------------------------------

    async def register_brand_or_agency(
        self,
        email: str,
        password: str,
        user_type: OrganizationType,
        display_name: str,
        organization_name: str,
    ) -> RegistrationResult:
        if user_type not in ORGANIZATION_TYPES:
            raise AccountInvariantError("Only brand and agency accounts register with email.")

        is_personal_email = is_personal_email_domain(email)
        principal = await self.credentials.create_with_password(email, password)
        self._send_verification_in_background(principal)

        org_id = principal.uid
        organization = Organization(
            id=org_id,
            type=user_type,
            name=organization_name,
            owner_id=principal.uid,
            members=[
                OrganizationMember(
                    user_id=principal.uid,
                    email=email,
                    display_name=display_name,
                    role="owner",
                    joined_at=SERVER_TIMESTAMP,
                    invited_by=principal.uid,
                )
            ],
            created_at=SERVER_TIMESTAMP,
            updated_at=SERVER_TIMESTAMP,
        )
        user = User(
            id=principal.uid,
            email=email,
            display_name=display_name,
            user_type=user_type,
            organization_id=org_id,
            role="owner",
            onboarding_completed=False,
            email_verified=False,
            is_personal_email=is_personal_email,
            auth_provider="email",
            created_at=SERVER_TIMESTAMP,
            updated_at=SERVER_TIMESTAMP,
            last_login_at=SERVER_TIMESTAMP,
        )
        ensure_organization_invariants(organization)
        ensure_user_invariants(user)

        _, stored_user = await self.store.put_many(
            [
                (COLLECTION_ORGANIZATIONS, org_id, organization.to_document()),
                (COLLECTION_USERS, principal.uid, user.to_document()),
            ]
        )
        logger.info(
            "organization_registered user=%s type=%s personal_email=%s",
            principal.uid,
            user_type,
            is_personal_email,
        )
        return RegistrationResult(principal=principal, user=User.from_document(stored_user), organization_id=org_id)

    async def login_brand_or_agency(self, email: str, password: str) -> LoginResult:
        principal = await self.credentials.sign_in_with_password(email, password)
        existing = await self.store.get(COLLECTION_USERS, principal.uid)
        if existing is None:
            raise AccountNotFoundError("User account not found. Please register first.")

        user = User.from_document(existing)
        if user.user_type == "influencer" and user.auth_provider != "email":
            raise WrongLoginChannelError("Please sign in using Google or Facebook.")

        refreshed = await self.store.merge(
            COLLECTION_USERS,
            principal.uid,
            {
                "lastLoginAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
                "emailVerified": principal.email_verified,
            },
        )
        logger.info("organization_login user=%s type=%s", principal.uid, user.user_type)
        return LoginResult(principal=principal, user=User.from_document(refreshed))

    # ------------------------------------------------------------------
    # Credential passthroughs
    # ------------------------------------------------------------------

    async def logout(self, principal: Optional[Principal] = None) -> None:
        await self.credentials.sign_out(principal)

    async def reset_password(self, email: str) -> None:
        await self.credentials.send_password_reset(email)

    def on_auth_change(self, observer: AuthObserver) -> AuthSubscription:
        return self.credentials.on_auth_state_changed(observer)

    def _send_verification_in_background(self, principal: Principal) -> None:
        task = asyncio.create_task(self.credentials.send_email_verification(principal))
        self._background_tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background_tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.warning("Verification email for user %s failed: %s", principal.uid, exc)

        task.add_done_callback(_done)

    async def wait_for_background_tasks(self) -> None:
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Account reads and onboarding mutations
    # ------------------------------------------------------------------

    async def _require_user(self, user_id: str) -> User:
        document = await self.store.get(COLLECTION_USERS, user_id)
        if document is None:
            raise AccountNotFoundError("User account not found.")
        return User.from_document(document)

    async def _require_organization(self, user: User) -> Organization:
        if user.user_type not in ORGANIZATION_TYPES or not user.organization_id:
            raise WrongAccountKindError("Only brand and agency accounts belong to an organization.")
        document = await self.store.get(COLLECTION_ORGANIZATIONS, user.organization_id)
        if document is None:
            raise AccountNotFoundError("Organization not found.")
        return Organization.from_document(document)

    async def _require_influencer(self, user: User) -> Influencer:
        if user.user_type != "influencer":
            raise WrongAccountKindError("This account is not registered as an influencer.")
        document = await self.store.get(COLLECTION_INFLUENCERS, user.id)
        if document is None:
            raise AccountNotFoundError("Influencer profile not found.")
        return Influencer.from_document(document)

    async def get_account(self, user_id: str) -> AccountSnapshot:
        user = await self._require_user(user_id)
        if user.user_type == "influencer":
            return AccountSnapshot(user=user, influencer=await self._require_influencer(user))
        return AccountSnapshot(user=user, organization=await self._require_organization(user))

    async def save_onboarding_step(self, user_id: str, step: int) -> User:
        if step < 0:
            raise AccountInvariantError("onboardingStep must be non-negative")
        await self._require_user(user_id)
        refreshed = await self.store.merge(
            COLLECTION_USERS,
            user_id,
            {"onboardingStep": int(step), "updatedAt": SERVER_TIMESTAMP},
        )
        return User.from_document(refreshed)

    def _completion_fields(self, user: User) -> Dict[str, Any]:
        ensure_user_invariants(user.model_copy(update={"onboarding_completed": True}))
        return {"onboardingCompleted": True, "updatedAt": SERVER_TIMESTAMP}

    async def complete_organization_onboarding(
        self,
        user_id: str,
        data: Union[BrandOnboardingData, AgencyOnboardingData],
    ) -> AccountSnapshot:
        user = await self._require_user(user_id)
        organization = await self._require_organization(user)
        member = organization.member(user_id)
        if member is None or member.role not in ORGANIZATION_EDITOR_ROLES:
            raise AccountPermissionError("Only organization owners and admins can complete onboarding.")

        updates = {
            "onboarding_data": data.model_copy(update={"completed_at": SERVER_TIMESTAMP}),
            "website": data.website or organization.website,
            "logo": data.logo or organization.logo,
            "updated_at": SERVER_TIMESTAMP,
        }
        if isinstance(data, BrandOnboardingData):
            updates["industry"] = data.industry or organization.industry
        updated = organization.model_copy(update=updates)
        ensure_organization_invariants(updated)
        user_fields = self._completion_fields(user)

        stored_org, stored_user = await self.store.merge_many(
            [
                (COLLECTION_ORGANIZATIONS, updated.id, _pick(updated.to_document(), ORGANIZATION_ONBOARDING_FIELDS)),
                (COLLECTION_USERS, user_id, user_fields),
            ]
        )
        logger.info("organization_onboarded org=%s type=%s by=%s", updated.id, updated.type, user_id)
        return AccountSnapshot(
            user=User.from_document(stored_user),
            organization=Organization.from_document(stored_org),
        )

    async def complete_influencer_onboarding(
        self,
        user_id: str,
        data: InfluencerOnboardingData,
    ) -> AccountSnapshot:
        user = await self._require_user(user_id)
        influencer = await self._require_influencer(user)

        profile = influencer.profile.model_copy(
            update={
                "display_name": data.display_name,
                "bio": data.bio,
                "country": data.country,
                "city": data.city,
                "languages": _unique_tokens(data.languages),
                "niches": _unique_tokens([data.primary_niche, *data.secondary_niches]),
            }
        )
        rate_card = RateCard(
            currency=data.currency,
            post=data.rate_post,
            story=data.rate_story,
            reel=data.rate_reel,
            video=data.rate_video,
        )
        updated = sync_searchable_fields(
            influencer.model_copy(update={"profile": profile, "rate_card": rate_card, "updated_at": SERVER_TIMESTAMP})
        )
        ensure_influencer_invariants(updated)
        user_fields = self._completion_fields(user)

        stored_influencer, stored_user = await self.store.merge_many(
            [
                (COLLECTION_INFLUENCERS, user_id, _pick(updated.to_document(), INFLUENCER_ONBOARDING_FIELDS)),
                (COLLECTION_USERS, user_id, user_fields),
            ]
        )
        logger.info("influencer_onboarded user=%s niches=%s", user_id, len(profile.niches))
        return AccountSnapshot(
            user=User.from_document(stored_user),
            influencer=Influencer.from_document(stored_influencer),
        )

    async def invite_member(
        self,
        inviter_id: str,
        *,
        user_id: str,
        email: str,
        display_name: str,
        role: UserRole = "member",
    ) -> Organization:
        if role == "owner":
            raise AccountInvariantError("An organization has exactly one owner.")
        inviter = await self._require_user(inviter_id)
        organization = await self._require_organization(inviter)
        inviter_member = organization.member(inviter_id)
        if inviter_member is None or inviter_member.role not in ORGANIZATION_EDITOR_ROLES:
            raise AccountPermissionError("Only organization owners and admins can invite members.")
        if organization.member(user_id) is not None:
            raise AccountInvariantError("User is already a member of this organization.")

        member = OrganizationMember(
            user_id=user_id,
            email=email,
            display_name=display_name,
            role=role,
            joined_at=SERVER_TIMESTAMP,
            invited_by=inviter_id,
        )
        updated = organization.model_copy(
            update={"members": [*organization.members, member], "updated_at": SERVER_TIMESTAMP}
        )
        ensure_organization_invariants(updated)
        stored = await self.store.merge(
            COLLECTION_ORGANIZATIONS,
            updated.id,
            _pick(updated.to_document(), ("members", "updatedAt")),
        )
        logger.info("organization_member_invited org=%s member=%s role=%s", updated.id, user_id, role)
        return Organization.from_document(stored)
