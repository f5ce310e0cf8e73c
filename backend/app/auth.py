"""
Admin authentication.

A single administrator credential pair is configured through the environment.
Logging in yields a short-lived signed session token that every admin route
requires as "Authorization: Bearer <token>".

Environment variables
---------------------
ADMIN_USERNAME   Admin login name.
ADMIN_PASSWORD   Admin password.
"""

import hmac
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import Header, HTTPException

from app.services.errors import ConfigurationError, TokenExpired, TokenInvalid
from app.services.tokens import verify_admin_token

load_dotenv()

logger = logging.getLogger(__name__)

ADMIN_USERNAME: Optional[str] = os.environ.get("ADMIN_USERNAME") or None
ADMIN_PASSWORD: Optional[str] = os.environ.get("ADMIN_PASSWORD") or None


def check_admin_credentials(username: str, password: str) -> bool:
    """
    Compare a login attempt against the configured credentials.

    Comparison is constant-time.  Returns False (never raises) when the
    credentials are not configured, so a misconfigured deployment rejects
    every login instead of accepting empty ones.
    """
    if not ADMIN_USERNAME or not ADMIN_PASSWORD:
        logger.warning("ADMIN_USERNAME / ADMIN_PASSWORD not configured — all logins will be rejected")
        return False
    user_ok = hmac.compare_digest(username.encode(), ADMIN_USERNAME.encode())
    pass_ok = hmac.compare_digest(password.encode(), ADMIN_PASSWORD.encode())
    return user_ok and pass_ok


async def get_current_admin(authorization: Optional[str] = Header(None)) -> str:
    """
    Extract and verify the admin session token from the Authorization header.

    Args:
        authorization: Authorization header with format "Bearer <token>"

    Returns:
        The admin username (the token's ``sub`` claim)

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated"
        )

    # Extract token from "Bearer <token>" format
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication credentials"
        )

    try:
        return verify_admin_token(parts[1])
    except TokenExpired:
        raise HTTPException(status_code=401, detail="Token expired")
    except TokenInvalid:
        raise HTTPException(status_code=401, detail="Invalid token")
    except ConfigurationError as exc:
        logger.error(exc.message)
        raise HTTPException(status_code=500, detail="Authentication is not configured")
