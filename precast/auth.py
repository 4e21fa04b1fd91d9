"""
Permission gate — bearer JWT verification.

Tokens are minted by the identity service and carry a `permissions` claim:
a list of "resource:action" strings ("*" grants everything, "resource:*" every
action on one resource). Only routers call into this module.

Library: python-jose[cryptography] for JWT.
"""

from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings

security = HTTPBearer(auto_error=False)


def _get_jwt_secret() -> str:
    """Get JWT secret, failing loudly if not configured."""
    secret = settings.JWT_SECRET
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT_SECRET not configured — set it in environment variables",
        )
    return secret


def create_access_token(subject: str, permissions: list, expires_minutes: int = 15) -> str:
    """Mint a token — used by service scripts and tests."""
    payload = {
        "sub": str(subject),
        "permissions": list(permissions),
        "exp": datetime.utcnow() + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises HTTPException on failure."""
    try:
        return jwt.decode(token, _get_jwt_secret(), algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """FastAPI dependency — returns the decoded token payload."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return decode_token(credentials.credentials)


def has_permission(principal: dict, resource: str, action: str) -> bool:
    granted = principal.get("permissions") or []
    return (
        "*" in granted
        or f"{resource}:*" in granted
        or f"{resource}:{action}" in granted
    )


def require_permission(resource: str, action: str):
    """Dependency factory: `Depends(require_permission("budgets", "update"))`."""

    def checker(principal: dict = Depends(get_current_principal)) -> dict:
        if not has_permission(principal, resource, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission {resource}:{action}",
            )
        return principal

    return checker
