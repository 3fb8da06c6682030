"""
Dashboard authentication

Issues and validates HS256 bearer tokens for the single demo account that
gates the dashboard and the manual sync trigger.
"""

import secrets
from datetime import timedelta
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from shopsync.config import Settings, get_settings
from shopsync.database.models import utcnow

logger = structlog.get_logger(__name__)

# 401 is raised below instead of the scheme's own error
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Authenticated dashboard user"""
    email: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


def authenticate_demo_user(email: str, password: str, settings: Optional[Settings] = None) -> bool:
    """Constant-time check against the configured demo credentials."""
    security_settings = (settings or get_settings()).security
    email_ok = _same(email.strip().lower(), security_settings.demo_email.lower())
    password_ok = _same(password, security_settings.demo_password.get_secret_value())
    return email_ok and password_ok


def _same(given: str, expected: str) -> bool:
    # compare_digest only accepts ASCII str, so compare the UTF-8 bytes
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def create_access_token(subject: str, settings: Optional[Settings] = None) -> Token:
    """Sign a bearer token for ``subject``."""
    security_settings = (settings or get_settings()).security
    expires = timedelta(hours=security_settings.jwt_expiration_hours)
    issued_at = utcnow()
    payload = {
        "sub": subject,
        "iat": issued_at,
        "exp": issued_at + expires,
    }
    token = jwt.encode(
        payload,
        security_settings.jwt_secret_key.get_secret_value(),
        algorithm=security_settings.jwt_algorithm,
    )
    return Token(access_token=token, expires_in=int(expires.total_seconds()))


def decode_access_token(token: str, settings: Optional[Settings] = None) -> CurrentUser:
    """
    Validate a bearer token.

    Raises:
        JWTError: If the signature, expiry or claims are invalid
    """
    security_settings = (settings or get_settings()).security
    payload = jwt.decode(
        token,
        security_settings.jwt_secret_key.get_secret_value(),
        algorithms=[security_settings.jwt_algorithm],
    )
    subject = payload.get("sub")
    if not subject:
        raise JWTError("token has no subject")
    return CurrentUser(email=subject)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    FastAPI dependency resolving the caller from the Authorization header.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise credentials_exception

    try:
        return decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning("JWT validation failed", error=str(e))
        raise credentials_exception
