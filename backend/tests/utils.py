"""
Test utilities for authenticated API calls.
"""

from typing import Dict, Optional

from services.jwt_service import TokenPayload, jwt_service


def create_jwt_token(user_id: str, role: str, provider_slug: Optional[str] = None) -> str:
    """Create a signed access token for the given identity."""
    payload = TokenPayload(sub=user_id, role=role, provider_slug=provider_slug, name=f"Test {role}")
    return jwt_service.create_access_token(payload)


def auth_headers(user_id: str, role: str, provider_slug: Optional[str] = None) -> Dict[str, str]:
    """Authorization header for the given identity."""
    return {"Authorization": f"Bearer {create_jwt_token(user_id, role, provider_slug)}"}


def provider_headers(provider_slug: str = "clinic-a", user_id: str = "front-desk-1") -> Dict[str, str]:
    return auth_headers(user_id, "provider", provider_slug)


def patient_headers(user_id: str = "patient-1") -> Dict[str, str]:
    return auth_headers(user_id, "patient")


def admin_headers(user_id: str = "admin-1") -> Dict[str, str]:
    return auth_headers(user_id, "admin")
