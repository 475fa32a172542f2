"""
Authentication router: influencer social sign-in and brand/agency email flows.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.accounts.documents import User
from services.accounts.provisioning import AccountProvisioningService
from services.accounts.types import (
    AccountError,
    AccountInvariantError,
    AccountNotFoundError,
    AccountPermissionError,
    AccountSnapshot,
    CredentialConflictError,
    CredentialProviderError,
    InvalidCredentialsError,
    WrongAccountKindError,
    WrongLoginChannelError,
)
from services.credentials import CredentialProvider, build_credential_provider
from services.document_store import SqlAlchemyAccountStore
from services.session_token import create_session_token

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (CredentialConflictError, 409),
    (InvalidCredentialsError, 401),
    (WrongAccountKindError, 403),
    (WrongLoginChannelError, 403),
    (AccountPermissionError, 403),
    (AccountNotFoundError, 404),
    (AccountInvariantError, 422),
    (CredentialProviderError, 502),
)


def account_http_error(exc: AccountError) -> HTTPException:
    """Translate an account protocol failure into an HTTP error."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def get_credential_provider() -> CredentialProvider:
    try:
        return build_credential_provider()
    except CredentialProviderError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_account_service(
    db: AsyncSession = Depends(get_db),
    credentials: CredentialProvider = Depends(get_credential_provider),
) -> AccountProvisioningService:
    return AccountProvisioningService(SqlAlchemyAccountStore(db), credentials)


def user_payload(user: User) -> Dict[str, Any]:
    return user.model_dump(by_alias=True, mode="json", exclude_none=True)


def account_payload(snapshot: AccountSnapshot) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"user": user_payload(snapshot.user)}
    if snapshot.organization is not None:
        payload["organization"] = snapshot.organization.model_dump(by_alias=True, mode="json", exclude_none=True)
    if snapshot.influencer is not None:
        payload["influencer"] = snapshot.influencer.model_dump(by_alias=True, mode="json", exclude_none=True)
    return payload


class SocialSignInRequest(BaseModel):
    oauth_token: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=6)
    user_type: Literal["brand", "agency"]
    display_name: str = Field(min_length=1, max_length=200)
    organization_name: str = Field(min_length=1, max_length=200)


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)


class PasswordResetRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


@router.post("/social/{provider}")
async def social_sign_in(
    provider: Literal["google", "facebook"],
    request: SocialSignInRequest,
    _rate_limit: None = Depends(rate_limit("auth_login", limit=settings.AUTH_LOGIN_RATE_LIMIT, window_seconds=3600)),
    service: AccountProvisioningService = Depends(get_account_service),
):
    """Sign an influencer in with Google or Facebook, provisioning on first login."""
    try:
        result = await service.sign_in_influencer(provider, request.oauth_token)
    except AccountError as exc:
        raise account_http_error(exc) from exc

    return {
        "firebaseUser": result.principal.to_public_dict(),
        "isNewUser": result.is_new_user,
        "user": user_payload(result.user),
        "session": create_session_token(result.user),
    }


@router.post("/register")
async def register(
    request: RegisterRequest,
    _rate_limit: None = Depends(
        rate_limit("auth_register", limit=settings.AUTH_REGISTER_RATE_LIMIT, window_seconds=3600)
    ),
    service: AccountProvisioningService = Depends(get_account_service),
):
    """Register a brand or agency owner together with its organization."""
    try:
        result = await service.register_brand_or_agency(
            email=request.email.strip(),
            password=request.password,
            user_type=request.user_type,
            display_name=request.display_name.strip(),
            organization_name=request.organization_name.strip(),
        )
    except AccountError as exc:
        raise account_http_error(exc) from exc

    return {
        "firebaseUser": result.principal.to_public_dict(),
        "user": user_payload(result.user),
        "organizationId": result.organization_id,
        "session": create_session_token(result.user),
    }


@router.post("/login")
async def login(
    request: LoginRequest,
    _rate_limit: None = Depends(rate_limit("auth_login", limit=settings.AUTH_LOGIN_RATE_LIMIT, window_seconds=3600)),
    service: AccountProvisioningService = Depends(get_account_service),
):
    """Log a brand or agency user in with email and password."""
    try:
        result = await service.login_brand_or_agency(request.email.strip(), request.password)
    except AccountError as exc:
        raise account_http_error(exc) from exc

    return {
        "firebaseUser": result.principal.to_public_dict(),
        "user": user_payload(result.user),
        "session": create_session_token(result.user),
    }


@router.post("/logout")
async def logout(
    auth: AuthContext = Depends(get_auth_context),
    service: AccountProvisioningService = Depends(get_account_service),
):
    await service.logout()
    logger.info("logout user=%s", auth.user_id)
    return {"ok": True}


@router.post("/password-reset")
async def password_reset(
    request: PasswordResetRequest,
    _rate_limit: None = Depends(
        rate_limit("auth_password_reset", limit=settings.AUTH_PASSWORD_RESET_RATE_LIMIT, window_seconds=3600)
    ),
    service: AccountProvisioningService = Depends(get_account_service),
):
    try:
        await service.reset_password(request.email.strip())
    except InvalidCredentialsError:
        # Unknown addresses get the same answer as known ones.
        logger.info("Password reset requested for unknown address")
    except AccountError as exc:
        raise account_http_error(exc) from exc
    return {"ok": True}


@router.get("/me")
async def get_current_account(
    auth: AuthContext = Depends(get_auth_context),
    service: AccountProvisioningService = Depends(get_account_service),
):
    """Get the signed-in user and its organization or influencer profile."""
    try:
        snapshot = await service.get_account(auth.user_id)
    except AccountError as exc:
        raise account_http_error(exc) from exc
    return account_payload(snapshot)
