"""Onboarding router for organization and influencer profile capture."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from routers.auth import account_http_error, account_payload, get_account_service, user_payload
from routers.auth_scope import AuthContext, get_auth_context, require_account_kind
from services.accounts.documents import InfluencerOnboardingData, OrganizationOnboardingData
from services.accounts.provisioning import AccountProvisioningService
from services.accounts.types import AccountError

router = APIRouter()
logger = logging.getLogger(__name__)


class OnboardingStepRequest(BaseModel):
    step: int = Field(ge=0, le=100)


class OrganizationOnboardingRequest(BaseModel):
    onboarding_data: OrganizationOnboardingData


class InviteMemberRequest(BaseModel):
    user_id: str = Field(min_length=1)
    email: str = Field(min_length=3, max_length=320)
    display_name: str = Field(min_length=1, max_length=200)
    role: Literal["admin", "member", "viewer"] = "member"


@router.put("/step")
async def save_step(
    request: OnboardingStepRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: AccountProvisioningService = Depends(get_account_service),
):
    try:
        user = await service.save_onboarding_step(auth.user_id, request.step)
    except AccountError as exc:
        raise account_http_error(exc) from exc
    return {"user": user_payload(user)}


@router.post("/organization")
async def complete_organization(
    request: OrganizationOnboardingRequest,
    auth: AuthContext = Depends(require_account_kind("brand", "agency")),
    service: AccountProvisioningService = Depends(get_account_service),
):
    """Store brand or agency onboarding answers on the caller's organization."""
    try:
        snapshot = await service.complete_organization_onboarding(auth.user_id, request.onboarding_data)
    except AccountError as exc:
        raise account_http_error(exc) from exc
    return account_payload(snapshot)


@router.post("/influencer")
async def complete_influencer(
    request: InfluencerOnboardingData,
    auth: AuthContext = Depends(require_account_kind("influencer")),
    service: AccountProvisioningService = Depends(get_account_service),
):
    """Store influencer onboarding answers on the caller's profile."""
    try:
        snapshot = await service.complete_influencer_onboarding(auth.user_id, request)
    except AccountError as exc:
        raise account_http_error(exc) from exc
    return account_payload(snapshot)


@router.post("/organization/members")
async def invite_member(
    request: InviteMemberRequest,
    auth: AuthContext = Depends(require_account_kind("brand", "agency")),
    service: AccountProvisioningService = Depends(get_account_service),
):
    try:
        organization = await service.invite_member(
            auth.user_id,
            user_id=request.user_id,
            email=request.email,
            display_name=request.display_name,
            role=request.role,
        )
    except AccountError as exc:
        raise account_http_error(exc) from exc
    return {
        "organizationId": organization.id,
        "members": [member.model_dump(by_alias=True, mode="json", exclude_none=True) for member in organization.members],
    }
