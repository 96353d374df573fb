import logging

from fastapi import APIRouter, Depends, status

import directory
import models
from database import get_db
from errors import AuthenticationError, InactiveAccountError
from utils.dependencies import get_current_user
from utils.security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", response_model=models.UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user: models.UserCreate, db=Depends(get_db)):
    # Self-registration always yields a regular member
    new_user = await directory.create_user(db, user, role="user")
    return directory.to_response(new_user)


@router.post("/login", response_model=models.Token)
async def login(credentials: models.LoginRequest, db=Depends(get_db)):
    user = await directory.authenticate(db, credentials.membership_id, credentials.password)
    if not user:
        logger.warning("Failed login for %s", credentials.membership_id)
        raise AuthenticationError("Invalid credentials")
    if not user.get("is_active", True):
        raise InactiveAccountError()

    token = create_access_token({
        "sub": str(user["_id"]),
        "membership_id": user["membership_id"],
        "role": user["role"],
        "name": user["name"],
    })
    return models.Token(access_token=token, user=directory.to_response(user))


@router.get("/profile", response_model=models.UserResponse)
async def get_profile(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    """Get current user information"""
    return directory.to_response(await directory.get_user(db, current_user["id"]))


@router.put("/profile", response_model=models.UserResponse)
async def update_profile(profile: models.ProfileUpdate, current_user: dict = Depends(get_current_user),
                         db=Depends(get_db)):
    updated = await directory.update_user(db, current_user["id"], profile.model_dump())
    return directory.to_response(updated)


@router.put("/change-password", response_model=models.MessageResponse)
async def change_password(body: models.PasswordChange, current_user: dict = Depends(get_current_user),
                          db=Depends(get_db)):
    await directory.change_password(db, current_user["id"], body.current_password, body.new_password)
    return models.MessageResponse(message="Password changed successfully")
