"""
Signed capability tokens for verification links and admin sessions.

Two kinds of token are minted with the same HS256 secret but a different
``purpose`` claim, so a form link can never be replayed as an admin session
and vice versa:

  verification_form   {sub, kind, nonce, iat, exp}
                      ``kind`` says whether ``sub`` is an email address or an
                      asset serial number.
  admin_session       {sub, nonce, iat, exp}

The random nonce makes two links for the same employee bitwise distinct.  It is
not a single-use registry: a link stays valid until ``exp``, so single
submission is enforced by the record store, not here.

Environment variables
---------------------
FORM_TOKEN_SECRET          HS256 signing secret (required for any token op).
FORM_TOKEN_TTL_HOURS       Lifetime of verification links (default: 168).
FORM_BASE_URL              Page that hosts the verification form.
ADMIN_SESSION_TTL_MINUTES  Lifetime of admin sessions (default: 60).
"""

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from dotenv import load_dotenv
from jose import ExpiredSignatureError, JWTError, jwt

from app.services.errors import ConfigurationError, TokenExpired, TokenInvalid

load_dotenv()

logger = logging.getLogger(__name__)

FORM_TOKEN_SECRET: Optional[str] = os.getenv("FORM_TOKEN_SECRET") or None
FORM_TOKEN_TTL_HOURS = int(os.getenv("FORM_TOKEN_TTL_HOURS", "168"))
FORM_BASE_URL = os.getenv("FORM_BASE_URL", "http://localhost:3000/form")
ADMIN_SESSION_TTL_MINUTES = int(os.getenv("ADMIN_SESSION_TTL_MINUTES", "60"))

_ALGORITHM = "HS256"

PURPOSE_FORM = "verification_form"
PURPOSE_ADMIN = "admin_session"

KIND_EMAIL = "email"
KIND_SERIAL = "serial_number"
TOKEN_KINDS = {KIND_EMAIL, KIND_SERIAL}


@dataclass(frozen=True)
class FormTokenClaims:
    """What a verified verification-form token grants access to."""
    identifier: str
    kind: str


def _secret() -> str:
    if not FORM_TOKEN_SECRET:
        raise ConfigurationError("FORM_TOKEN_SECRET is not configured")
    return FORM_TOKEN_SECRET


def _encode(claims: dict, expires_in: timedelta, now: Optional[datetime]) -> str:
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        **claims,
        "nonce": secrets.token_urlsafe(16),
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + expires_in).timestamp()),
    }
    return jwt.encode(payload, _secret(), algorithm=_ALGORITHM)


def _decode(token: str, purpose: str) -> dict:
    if not token:
        raise TokenInvalid("Token missing")
    secret = _secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpired("Token expired")
    except JWTError:
        raise TokenInvalid("Invalid token")

    if payload.get("purpose") != purpose:
        raise TokenInvalid("Invalid token")
    if not payload.get("sub"):
        raise TokenInvalid("Invalid token")
    return payload


# ---------------------------------------------------------------------------
# Verification form links
# ---------------------------------------------------------------------------

def issue_form_token(
    identifier: str,
    kind: str = KIND_EMAIL,
    expires_in: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Mint a verification-form token for an employee email or asset serial.

    Args:
        identifier: Email address (kind="email") or serial number
            (kind="serial_number").
        kind: Which lookup the submission handler should use.
        expires_in: Lifetime; defaults to FORM_TOKEN_TTL_HOURS.
        now: Issue time override, used to mint already-expired tokens in tests.

    Raises:
        ValueError: unknown kind or empty identifier.
        ConfigurationError: FORM_TOKEN_SECRET not set.
    """
    if kind not in TOKEN_KINDS:
        raise ValueError(f"Unknown token kind '{kind}'")
    if not identifier:
        raise ValueError("identifier must not be empty")

    lifetime = expires_in if expires_in is not None else timedelta(hours=FORM_TOKEN_TTL_HOURS)
    return _encode(
        {"sub": identifier, "kind": kind, "purpose": PURPOSE_FORM},
        lifetime,
        now,
    )


def verify_form_token(token: str) -> FormTokenClaims:
    """
    Verify a verification-form token.

    Raises:
        TokenExpired: signature fine but ``exp`` has passed.
        TokenInvalid: anything else (bad signature, malformed, wrong purpose,
            unknown kind).
    """
    payload = _decode(token, PURPOSE_FORM)
    kind = payload.get("kind")
    if kind not in TOKEN_KINDS:
        raise TokenInvalid("Invalid token")
    return FormTokenClaims(identifier=payload["sub"], kind=kind)


def build_form_link(token: str, base_url: Optional[str] = None) -> str:
    """
    Return the verification form URL carrying ``token`` in its query string.

    Existing query parameters on the base URL are preserved.
    """
    parsed = urlparse(base_url or FORM_BASE_URL)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.append(("token", token))
    return urlunparse(parsed._replace(query=urlencode(query)))


# ---------------------------------------------------------------------------
# Admin sessions
# ---------------------------------------------------------------------------

def issue_admin_token(username: str, now: Optional[datetime] = None) -> str:
    """Mint a short-lived admin session token."""
    return _encode(
        {"sub": username, "purpose": PURPOSE_ADMIN},
        timedelta(minutes=ADMIN_SESSION_TTL_MINUTES),
        now,
    )


def verify_admin_token(token: str) -> str:
    """Verify an admin session token and return the admin username."""
    return _decode(token, PURPOSE_ADMIN)["sub"]
