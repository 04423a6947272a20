"""
Authentication utilities for API endpoints

Tokens are issued by Supabase Auth; this service only validates them and
resolves the caller's identity and role.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException

from config.permissions import has_capability, is_valid_role
from config.settings import SUPABASE_JWT_SECRET, SUPABASE_JWT_AUDIENCE

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"


@dataclass
class AuthContext:
    """Identity resolved from a valid bearer token"""
    user_id: str
    email: Optional[str] = None
    role: str = DEFAULT_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_supabase_token(token: str, secret: Optional[str] = None,
                          audience: Optional[str] = None) -> Dict[str, Any]:
    """
    Validate a Supabase access token

    Raises:
        jwt.InvalidTokenError: If token is invalid, expired or for another audience
    """
    return jwt.decode(
        token,
        secret or SUPABASE_JWT_SECRET,
        algorithms=["HS256"],
        audience=audience or SUPABASE_JWT_AUDIENCE,
        options={
            "require": ["exp", "sub"],
            "verify_signature": True
        }
    )


def resolve_role(claims: Dict[str, Any]) -> str:
    """Role from app_metadata (server controlled), then the custom claim, then default"""
    app_metadata = claims.get("app_metadata") or {}
    role = app_metadata.get("role") or claims.get("user_role") or DEFAULT_ROLE
    if not is_valid_role(role):
        logger.warning(f"AUTH: Unknown role '{role}' in token - falling back to '{DEFAULT_ROLE}'")
        role = DEFAULT_ROLE
    return role


def context_from_claims(claims: Dict[str, Any]) -> AuthContext:
    return AuthContext(
        user_id=claims["sub"],
        email=claims.get("email"),
        role=resolve_role(claims)
    )


async def get_current_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    """
    FastAPI dependency for Supabase bearer token authentication.

    Raises:
        HTTPException: 401 if authentication fails
    """
    if not authorization:
        logger.info("AUTH: Request missing Authorization header - returning 401")
        raise HTTPException(status_code=401, detail="No token provided. Please log in first.")

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header format. Expected 'Bearer <token>'"
        )

    token = authorization[7:]  # Remove "Bearer " prefix

    try:
        claims = decode_supabase_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(401, "Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info(f"AUTH: Invalid token: {str(e)}")
        raise HTTPException(401, "Invalid or expired token")

    return context_from_claims(claims)


def require_capability(capability: str):
    """Dependency factory guarding an endpoint with a role capability"""

    async def capability_checker(actor: AuthContext = Depends(get_current_user)) -> AuthContext:
        if not has_capability(actor.role, capability):
            logger.info(f"AUTH: role '{actor.role}' lacks capability '{capability}'")
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return capability_checker
