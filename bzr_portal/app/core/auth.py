"""
Supabase session authentication.

Supabase Auth signs access tokens with the project's JWT secret (HS256).
We only verify them: the `sub` claim is the account id, the local
`accounts` row is created on first sight and carries tier/admin flags.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from bzr_portal.app.api.deps import get_session
from bzr_portal.app.core.logging import bind_account, get_logger
from bzr_portal.app.core.settings import get_settings
from bzr_portal.app.services.accounts import AccountService

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True, slots=True)
class CurrentAccount:
    id: str
    email: Optional[str]
    is_pro: bool
    is_admin: bool


def decode_access_token(token: str) -> Optional[dict]:
    """
    Verify a Supabase access token.

    Returns:
        Token claims or None if the token is invalid or expired
    """
    settings = get_settings()
    if not settings.SUPABASE_JWT_SECRET:
        logger.error("SUPABASE_JWT_SECRET is not configured")
        return None
    try:
        claims = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except jwt.InvalidTokenError:
        return None
    if not claims.get("sub"):
        return None
    return claims


def create_access_token(account_id: str, email: Optional[str] = None, expires_in: int = 3600) -> str:
    """Issue a token in the Supabase format (local tooling and tests)."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": account_id,
        "email": email,
        "aud": settings.SUPABASE_JWT_AUDIENCE,
        "role": "authenticated",
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, settings.SUPABASE_JWT_SECRET, algorithm=JWT_ALGORITHM)


async def get_current_account(
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> CurrentAccount:
    """
    FastAPI dependency: resolve the caller from `Authorization: Bearer <token>`.

    Raises:
        HTTPException 401: If authentication fails
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization header format. Expected: Bearer <token>"
        )

    claims = decode_access_token(parts[1])
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    account = await AccountService(session).get_or_create(claims["sub"], email=claims.get("email"))
    bind_account(account.id)
    return CurrentAccount(
        id=account.id,
        email=account.email,
        is_pro=account.is_pro,
        is_admin=account.is_admin,
    )


async def require_admin(account: CurrentAccount = Depends(get_current_account)) -> CurrentAccount:
    if not account.is_admin:
        raise HTTPException(status_code=403, detail="Samo administratori mogu izvršiti ovu akciju")
    return account
