"""
Authentication and authorization dependencies
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import LedgerConfig
from ..errors import ValidationFailure
from ..system import LedgerSystem


TEST_USER_ID = "test_user"

security = HTTPBearer(auto_error=False)


def get_ledger_system(request: Request) -> LedgerSystem:
    """Dependency to get the application's ledger system"""
    system = getattr(request.app.state, "system", None)
    if system is None:
        raise HTTPException(status_code=503, detail="Ledger system not initialized")
    return system


def issue_token(
    user_id: str,
    config: LedgerConfig,
    expires_in_hours: Optional[int] = None,
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[str] = None,
    issued_at: Optional[datetime] = None
) -> str:
    """Sign a bearer token for user_id (for tooling and tests; login lives elsewhere)"""
    now = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=expires_in_hours or config.jwt_expiry_hours)
    }
    for claim, value in (("name", name), ("email", email), ("role", role)):
        if value:
            payload[claim] = value
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: LedgerSystem = Depends(get_ledger_system)
) -> str:
    """Dependency that validates the bearer JWT and returns the user id"""
    if not system.config.auth_enabled:
        return TEST_USER_ID  # For tests when auth is disabled

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    issued_at = payload.get("iat")
    try:
        user = system.user_directory.provision_from_token(
            user_id,
            name=payload.get("name"),
            email=payload.get("email"),
            role=payload.get("role"),
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc) if issued_at is not None else None
        )
    except ValidationFailure:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return user_id


def require_admin(
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
) -> str:
    """Dependency that only lets admin users through"""
    if not system.config.auth_enabled:
        return user_id  # Skip role checks for tests

    user = system.user_directory.find_user(user_id)
    if user is None or not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id
