"""
Authentication Endpoints
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from shopsync.serving.api.auth import (
    CurrentUser,
    Token,
    authenticate_demo_user,
    create_access_token,
    get_current_user,
)

router = APIRouter()
logger = structlog.get_logger(__name__)


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/token", response_model=Token)
async def login(credentials: LoginRequest) -> Token:
    """Exchange the demo credentials for a bearer token."""
    if not authenticate_demo_user(credentials.email, credentials.password):
        logger.warning("Login rejected", email=credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info("Login succeeded", email=credentials.email)
    return create_access_token(credentials.email.strip().lower())


@router.get("/me", response_model=CurrentUser)
async def me(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    return user
