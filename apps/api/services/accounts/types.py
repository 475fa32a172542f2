"""Account protocol contracts: literals, errors and result shapes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Optional

if TYPE_CHECKING:
    from services.accounts.documents import Influencer, Organization, User
    from services.credentials import Principal


UserType = Literal["brand", "agency", "influencer"]
OrganizationType = Literal["brand", "agency"]
UserRole = Literal["owner", "admin", "member", "viewer"]
AuthProvider = Literal["email", "google", "facebook"]
SocialProvider = Literal["google", "facebook"]
InfluencerTier = Literal["nano", "micro", "mid", "macro", "mega"]
SocialPlatform = Literal["instagram", "tiktok", "youtube", "twitter"]

ORGANIZATION_TYPES = ("brand", "agency")
SOCIAL_PROVIDERS = ("google", "facebook")


class AccountError(Exception):
    """Base class for account protocol failures surfaced to callers."""


class CredentialConflictError(AccountError):
    """Raised when the credential provider already holds the email."""


class InvalidCredentialsError(AccountError):
    """Raised when the credential provider rejects the supplied credentials."""


class CredentialProviderError(AccountError):
    """Raised when the credential provider answers with an unexpected error."""


class WrongAccountKindError(AccountError):
    """Raised when a social sign-in resolves to a non-influencer account."""


class AccountNotFoundError(AccountError):
    """Raised when a verified credential has no provisioned User document."""


class WrongLoginChannelError(AccountError):
    """Raised when an influencer account uses the corporate email channel."""


class AccountPermissionError(AccountError):
    """Raised when the acting user may not mutate the target document."""


class AccountInvariantError(AccountError, ValueError):
    """Raised before a write that would break a document invariant."""


@dataclass(frozen=True)
class SocialSignInResult:
    principal: "Principal"
    is_new_user: bool
    user: "User"


@dataclass(frozen=True)
class RegistrationResult:
    principal: "Principal"
    user: "User"
    organization_id: str


@dataclass(frozen=True)
class LoginResult:
    principal: "Principal"
    user: "User"


@dataclass(frozen=True)
class AccountSnapshot:
    user: "User"
    organization: Optional["Organization"] = None
    influencer: Optional["Influencer"] = None
