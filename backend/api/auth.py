# api/auth.py
# ============================================================================
# PAID Q&A SERVICE — BEARER TOKEN AUTH
# ============================================================================
# Tokens are HS256 JWTs carrying {id, email, role}. Issuance belongs to the
# account service; this module only verifies and maps claims to a Caller.
#
# pip install pyjwt
# ============================================================================

from datetime import timedelta
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request

from config import settings
from schemas.question_models import Caller, UserRole, utcnow

logger = structlog.get_logger().bind(component="auth")


def create_access_token(user_id: str, email: str, role: str = "user", expires_hours: int = None) -> str:
    """Sign a token with the service secret (used by tooling and tests)."""
    expires = utcnow() + timedelta(hours=expires_hours or settings.JWT_EXPIRES_HOURS)
    payload = {"id": user_id, "email": email, "role": role, "exp": expires}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Caller]:
    """Return the Caller for a valid token, None otherwise."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info("token_rejected", error=str(e))
        return None

    try:
        role = UserRole(claims.get("role", UserRole.USER.value))
    except ValueError:
        role = UserRole.USER

    return Caller(id=claims.get("id"), email=claims.get("email"), role=role)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def optional_caller(request: Request) -> Caller:
    """Caller from the bearer token, or an anonymous caller."""
    token = _bearer_token(request)
    if not token:
        return Caller.anonymous()
    return decode_token(token) or Caller.anonymous()


async def require_caller(request: Request) -> Caller:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    caller = decode_token(token)
    if caller is None or not caller.is_authenticated:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return caller


async def require_admin(caller: Caller = Depends(require_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return caller
