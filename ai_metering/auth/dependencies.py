"""
FastAPI dependency for API key authentication.

Flow:
  1. Extract Bearer token from Authorization header
  2. Hash the token (SHA-256)
  3. Look up api_keys by hash
  4. Verify is_active = true
  5. Load the owning User
  6. Return AuthContext (user + api_key_id)

Security:
  • Generic 401 for ALL failure modes (missing, invalid, inactive)
  • Raw keys are NEVER logged
  • Hash lookup means the DB never sees the raw key
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.auth.hashing import hash_api_key
from ai_metering.core.database import get_db_session
from ai_metering.models.api_key import APIKey
from ai_metering.models.user import User

logger = logging.getLogger(__name__)

# Generic 401 — same message for all auth failures to avoid leaking info
_AUTH_FAILED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or missing API key.",
    headers={"WWW-Authenticate": "Bearer"},
)


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Authenticated request context injected into every protected route.

    Attributes:
        user_id:    The user that owns the API key. Usage and limits are
                    scoped to this id.
        api_key_id: The specific API key UUID used for this request.
    """

    user_id: uuid.UUID
    api_key_id: uuid.UUID


async def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    session: AsyncSession = Depends(get_db_session),
) -> AuthContext:
    """
    FastAPI dependency — resolves Bearer token to an AuthContext.

    Usage in routers:
        Auth = Annotated[AuthContext, Depends(get_current_user)]

    Raises 401 for:
      - Missing Authorization header
      - Non-Bearer scheme
      - Unknown key hash
      - Inactive key
      - Key whose user no longer exists
    """

    # ── 1. Extract token ────────────────────────────────────
    if not authorization:
        raise _AUTH_FAILED

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _AUTH_FAILED

    raw_token = parts[1].strip()
    if not raw_token:
        raise _AUTH_FAILED

    # ── 2. Hash and look up ─────────────────────────────────
    stmt = select(APIKey).where(APIKey.key_hash == hash_api_key(raw_token))
    api_key = (await session.execute(stmt)).scalar_one_or_none()

    if api_key is None or not api_key.is_active:
        raise _AUTH_FAILED

    # ── 3. Load user ────────────────────────────────────────
    stmt = select(User.id).where(User.id == api_key.user_id)
    user_id = (await session.execute(stmt)).scalar_one_or_none()

    if user_id is None:
        logger.error("API key %s references missing user %s", api_key.id, api_key.user_id)
        raise _AUTH_FAILED

    return AuthContext(user_id=user_id, api_key_id=api_key.id)
