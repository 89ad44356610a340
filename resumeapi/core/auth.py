"""
Auth utilities for the resume API.

Access tokens are issued by the account service; this module only verifies
them (HS256 with AUTH_JWT_SECRET) and extracts the user id. Outside
production an X-User-Id header is accepted for local development and tests.
"""
from typing import Optional, Tuple
import logging

import jwt
from fastapi import Header, HTTPException, Request

from resumeapi.core.config import settings

logger = logging.getLogger("resumeapi")


def verify_access_token(token: str) -> Tuple[str, Optional[str]]:
    """
    Verify a bearer token and return (user_id, email).

    Raises:
        HTTPException 401: Invalid, expired or unverifiable token
    """
    if not settings.AUTH_JWT_SECRET:
        raise HTTPException(status_code=401, detail="Token verification is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True, "require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    return str(payload["sub"]), payload.get("email")


def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> str:
    """
    Resolve the calling user and make sure their account row exists.

    Priority:
    1. Bearer JWT from the Authorization header
    2. X-User-Id header (not in production)
    3. 401 Unauthorized
    """
    from resumeapi.features.users.service import get_or_create_user

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id, email = verify_access_token(auth_header[7:])
        get_or_create_user(user_id, email=email)
        request.state.user_id = user_id
        return user_id

    if x_user_id and settings.ENV.lower() != "production":
        get_or_create_user(x_user_id)
        request.state.user_id = x_user_id
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
