# pyright: reportMissingTypeStubs=false
"""
Authentication and authorization dependencies for FastAPI.

Provides dependency injection functions for caller authentication and
role-based access control. Identity is owned by an external provider; these
dependencies only read the verified token.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.jwt_service import TokenPayload, jwt_service

logger = logging.getLogger(__name__)

VALID_ROLES = ("patient", "provider", "admin")


class UserContext:
    """Authenticated user context extracted from JWT token."""

    def __init__(
        self,
        user_id: str,
        role: str,
        provider_slug: Optional[str] = None,
        name: Optional[str] = None
    ):
        self.user_id = user_id
        self.role = role  # "patient", "provider" or "admin"
        self.provider_slug = provider_slug  # Provider the staff member works for
        self.name = name

    def is_admin(self) -> bool:
        """Check if user is a platform admin."""
        return self.role == "admin"

    def is_provider(self) -> bool:
        """Check if user is provider staff."""
        return self.role == "provider"

    def is_patient(self) -> bool:
        """Check if user is a patient."""
        return self.role == "patient"

    def __repr__(self) -> str:
        return f"UserContext(user_id='{self.user_id}', role='{self.role}', provider_slug={self.provider_slug!r})"


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None

    return jwt_service.verify_token(credentials.credentials)


def get_current_user(
    payload: Optional[TokenPayload] = Depends(get_token_payload)
) -> UserContext:
    """Get authenticated user context from JWT token."""
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    if payload.role not in VALID_ROLES:
        logger.warning(f"Rejected token with unknown role {payload.role!r} for user {payload.sub}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )

    if payload.role == "provider" and not payload.provider_slug:
        logger.warning(f"Provider token for user {payload.sub} carries no provider_slug")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provider access requires a provider account"
        )

    return UserContext(
        user_id=payload.sub,
        role=payload.role,
        provider_slug=payload.provider_slug,
        name=payload.name,
    )


def require_provider(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require provider staff access."""
    if not user.is_provider():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provider access required"
        )
    return user


def require_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require platform admin access."""
    if not user.is_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


def require_patient(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require patient access."""
    if not user.is_patient():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patient access required"
        )
    return user
