"""
Admin login.

Endpoints:
  POST /login   — exchange the admin credentials for a session token
"""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.auth import check_admin_credentials
from app.services.errors import ConfigurationError
from app.services.tokens import ADMIN_SESSION_TTL_MINUTES, issue_admin_token

logger = logging.getLogger(__name__)

router = APIRouter()


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


@router.post("/login", response_model=LoginResponse)
async def login(credentials: LoginRequest) -> LoginResponse:
    """Return a short-lived admin session token for valid credentials."""
    if not check_admin_credentials(credentials.username, credentials.password):
        logger.info("Rejected admin login attempt")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    try:
        token = issue_admin_token(credentials.username)
    except ConfigurationError as exc:
        logger.error(exc.message)
        raise HTTPException(status_code=500, detail="Authentication is not configured")

    return LoginResponse(access_token=token, expires_in=ADMIN_SESSION_TTL_MINUTES * 60)
