"""
JWT Service for access token verification.

Tokens are issued by the identity provider that fronts the marketplace. This
backend only verifies them and reads the caller's identity and role; token
creation is kept for service-to-service calls and tests.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel

from core.config import JWT_ACCESS_TOKEN_EXPIRE_MINUTES, JWT_SECRET_KEY

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """Payload structure for JWT tokens."""
    sub: str  # User id
    role: str  # "patient", "provider" or "admin"
    provider_slug: Optional[str] = None  # Set for provider staff
    name: Optional[str] = None
    iat: Optional[int] = None  # Set by JWT service
    exp: Optional[int] = None  # Set by JWT service


class JWTService:
    """Service for JWT token operations."""

    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = JWT_ACCESS_TOKEN_EXPIRE_MINUTES

    @classmethod
    def create_access_token(cls, payload: TokenPayload, secret_key: Optional[str] = None) -> str:
        """Create a JWT access token."""
        to_encode = payload.model_dump(exclude_none=True)
        now = datetime.now(timezone.utc)
        to_encode.update({"exp": now + timedelta(minutes=cls.ACCESS_TOKEN_EXPIRE_MINUTES), "iat": now})
        return jwt.encode(to_encode, secret_key or JWT_SECRET_KEY, algorithm=cls.ALGORITHM)

    @classmethod
    def verify_token(cls, token: str, secret_key: Optional[str] = None) -> Optional[TokenPayload]:
        """Verify and decode a JWT token. Returns None for expired or invalid tokens."""
        try:
            payload = jwt.decode(token, secret_key or JWT_SECRET_KEY, algorithms=[cls.ALGORITHM])
            return TokenPayload(**payload)
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired access token")
            return None
        except jwt.InvalidTokenError:
            return None
        except ValueError:
            # Signature fine but claims malformed
            logger.warning("Rejected access token with malformed claims")
            return None


# Global instance
jwt_service = JWTService()
