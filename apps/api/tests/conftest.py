from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from routers import auth as auth_router
from routers import rate_limit
from services.accounts.provisioning import AccountProvisioningService
from services.accounts.types import (
    CredentialConflictError,
    CredentialProviderError,
    InvalidCredentialsError,
)
from services.credentials import OAUTH_PROVIDER_IDS, CredentialProvider, Principal
from services.document_store import InMemoryAccountStore


class FakeCredentialProvider(CredentialProvider):
    """In-process credential provider with password and OAuth identities."""

    def __init__(self) -> None:
        super().__init__()
        self.password_accounts: Dict[str, Dict[str, object]] = {}
        self.oauth_identities: Dict[Tuple[str, str], Principal] = {}
        self.verification_emails: List[str] = []
        self.password_resets: List[str] = []
        self.sign_outs = 0
        self.fail_verification = False

    def add_oauth_identity(
        self,
        provider: str,
        token: str,
        *,
        uid: str,
        email: str,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> Principal:
        principal = Principal(
            uid=uid,
            email=email,
            display_name=display_name,
            photo_url=photo_url,
            email_verified=True,
            provider_id=OAUTH_PROVIDER_IDS[provider],
            id_token=f"id-token-{uid}",
        )
        self.oauth_identities[(provider, token)] = principal
        return principal

    def add_password_identity(self, email: str, password: str, *, uid: str, email_verified: bool = False) -> None:
        self.password_accounts[email.lower()] = {
            "uid": uid,
            "password": password,
            "email_verified": email_verified,
        }

    def mark_email_verified(self, email: str) -> None:
        self.password_accounts[email.lower()]["email_verified"] = True

    async def _create_with_password(self, email: str, password: str) -> Principal:
        key = email.lower()
        if key in self.password_accounts:
            raise CredentialConflictError("An account with this email already exists.")
        uid = f"uid-{len(self.password_accounts) + 1}"
        self.add_password_identity(email, password, uid=uid)
        return Principal(uid=uid, email=email, provider_id="password", id_token=f"id-token-{uid}")

    async def _sign_in_with_password(self, email: str, password: str) -> Principal:
        account = self.password_accounts.get(email.lower())
        if account is None or account["password"] != password:
            raise InvalidCredentialsError("INVALID_LOGIN_CREDENTIALS")
        uid = str(account["uid"])
        return Principal(
            uid=uid,
            email=email,
            email_verified=bool(account["email_verified"]),
            provider_id="password",
            id_token=f"id-token-{uid}",
        )

    async def _sign_in_with_oauth(self, provider: str, oauth_token: str) -> Principal:
        principal = self.oauth_identities.get((provider, oauth_token))
        if principal is None:
            raise InvalidCredentialsError("INVALID_IDP_RESPONSE")
        return principal

    async def _sign_out(self, principal: Optional[Principal]) -> None:
        self.sign_outs += 1

    async def send_email_verification(self, principal: Principal) -> None:
        if self.fail_verification:
            raise CredentialProviderError("Verification mailer unavailable")
        self.verification_emails.append(principal.email)

    async def send_password_reset(self, email: str) -> None:
        if email.lower() not in self.password_accounts:
            raise InvalidCredentialsError("EMAIL_NOT_FOUND")
        self.password_resets.append(email)


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def credentials() -> FakeCredentialProvider:
    return FakeCredentialProvider()


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def service(store, credentials) -> AccountProvisioningService:
    return AccountProvisioningService(store, credentials)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "accounts.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker, credentials):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_router.get_credential_provider] = lambda: credentials
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(auth_router.get_credential_provider, None)
