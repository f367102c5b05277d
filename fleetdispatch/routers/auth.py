"""
Auth router — POST /v1/auth/login, GET /v1/auth/me
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from fleetdispatch.middleware.auth import get_current_actor, issue_token
from fleetdispatch.schemas.schemas import LoginRequest, TokenResponse, UserResponse
from fleetdispatch.services.lifecycle import Actor
from fleetdispatch.services.store import TripStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/auth", tags=["Auth"])


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, store: TripStore = Depends(get_store)):
    """Log in with email or phone and the user's password."""
    user = await store.authenticate(payload.identifier.strip(), payload.password)
    if user is None:
        logger.info("Failed login for %s", payload.identifier)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return TokenResponse(access_token=issue_token(user), user_id=user.id, name=user.name, role=user.role)


@router.get("/me", response_model=UserResponse)
async def me(actor: Actor = Depends(get_current_actor), store: TripStore = Depends(get_store)):
    user = await store.get_user(actor.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(user)
