"""Session-token dependencies that scope requests to the signed-in account."""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    user_type: str
    auth_provider: Optional[str] = None
    email: Optional[str] = None
    organization_id: Optional[str] = None


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the signed-in account from its Bearer session token."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        user_id=str(claims["sub"]),
        user_type=str(claims["user_type"]),
        auth_provider=claims.get("auth_provider"),
        email=claims.get("email"),
        organization_id=claims.get("org_id"),
    )


def require_account_kind(*kinds: str) -> Callable[..., AuthContext]:
    """Dependency factory rejecting sessions of other account kinds with 403."""

    async def _dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.user_type not in kinds:
            raise HTTPException(
                status_code=403,
                detail=f"This endpoint is only available to {' or '.join(kinds)} accounts.",
            )
        return auth

    return _dependency
