"""Governance Auth - Bearer token identity + role checks for endpoints

Self-Explanatory: Turns the Authorization header into an Identity.
How: HS256 JWT issued by the session directory; claims 'sub' and 'role'.
Roles: 'admin' (full), 'client' (own documents, read-only).
"""

from typing import Dict, List

import structlog
from fastapi import Depends, Header
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from docvault import config
from docvault.errors import AuthenticationError, Forbidden
from docvault.governance.access import Identity

logger = structlog.get_logger()

# Role mappings per endpoint; per-document ownership is checked by the access gate
ALLOWED_ROLES: Dict[str, List[str]] = {
    "upload": ["admin"],
    "retrieve": ["admin", "client"],
    "list": ["admin", "client"],
    "signed_url": ["admin"],
    "delete": ["admin"],
}


def issue_token(user_id: str, role: str) -> str:
    """Mint a token (used by tests and local tooling; production tokens come from the directory)"""
    return jwt.encode({"sub": user_id, "role": role}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Identity:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        return Identity(user_id=claims["sub"], role=claims["role"])
    except (JWTError, KeyError, PydanticValidationError) as e:
        logger.error("Auth error", error=str(e))
        raise AuthenticationError("Invalid authentication")


def get_current_user(authorization: str = Header(None)) -> Identity:
    """Get caller identity from 'Authorization: Bearer <jwt>'

    Raises:
        AuthenticationError (401) if missing or invalid
    """
    if not authorization:
        logger.error("Missing auth header")
        raise AuthenticationError("Authorization header missing")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        logger.error("Auth error", error="Invalid scheme")
        raise AuthenticationError("Invalid authentication")

    identity = decode_token(token.strip())
    logger.info("User authenticated", user_id=identity.user_id, role=identity.role.value)
    return identity


def check_role(endpoint: str):
    """Dependency factory for role check based on endpoint

    Usage: Depends(check_role("upload"))
    """
    required_roles = ALLOWED_ROLES.get(endpoint, [])

    async def _check_role(user: Identity = Depends(get_current_user)) -> Identity:
        if user.role.value not in required_roles:
            logger.warning("Role denied", user_role=user.role.value, required=required_roles, endpoint=endpoint)
            raise Forbidden("Insufficient permissions")
        return user

    return _check_role
