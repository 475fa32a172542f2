"""Backend session tokens issued after a successful sign-in or registration.

The token carries the account kind and, for brand/agency users, the
organization id, so routers can scope requests without a store read.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings
from services.accounts.documents import User


SESSION_TOKEN_TYPE = "fynd_session"
ACCOUNT_KINDS = {"influencer", "brand", "agency"}


def create_session_token(user: User, expires_hours: Optional[int] = None) -> Dict[str, Any]:
    """Sign a session token for ``user`` and return it with its expiry."""
    issued_at = datetime.now(timezone.utc)
    ttl_hours = max(int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24), 1)
    expires_at = issued_at + timedelta(hours=ttl_hours)
    claims: Dict[str, Any] = {
        "sub": user.id,
        "type": SESSION_TOKEN_TYPE,
        "user_type": user.user_type,
        "auth_provider": user.auth_provider,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if user.email:
        claims["email"] = user.email
    if user.organization_id:
        claims["org_id"] = user.organization_id

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": claims["exp"],
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify a session token and return its claims.

    Raises ``ValueError`` for bad signatures, expired tokens, foreign token
    types, a missing subject or an unknown account kind.
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if claims.get("type") != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    if not str(claims.get("sub", "")).strip():
        raise ValueError("Session token missing subject.")
    if claims.get("user_type") not in ACCOUNT_KINDS:
        raise ValueError("Session token has no valid account kind.")
    return claims
