from typing import Optional

from fastapi import APIRouter, Depends, status

import directory
import lifecycle
import models
from database import get_db
from utils.dependencies import admin_required, ensure_self_or_admin, get_current_user

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=list[models.UserResponse])
async def list_users(search: Optional[str] = None, membership_type: Optional[models.MembershipType] = None,
                     admin=Depends(admin_required), db=Depends(get_db)):
    """Get all users (Admin only)"""
    users = await directory.list_users(db, search=search, membership_type=membership_type)
    return [directory.to_response(u) for u in users]


@router.post("", response_model=models.UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(user: models.AdminUserCreate, admin=Depends(admin_required), db=Depends(get_db)):
    """Create a member or another admin (Admin only)"""
    return directory.to_response(await directory.create_user(db, user, role=user.role))


@router.get("/{user_id}", response_model=models.UserResponse)
async def get_user(user_id: str, admin=Depends(admin_required), db=Depends(get_db)):
    """Get a specific user by ID (Admin only)"""
    return directory.to_response(await directory.get_user(db, user_id))


@router.put("/{user_id}", response_model=models.UserResponse)
async def update_user(user_id: str, user: models.UserUpdate, admin=Depends(admin_required), db=Depends(get_db)):
    """Update a user's details, role or active flag (Admin only)"""
    updated = await directory.update_user(db, user_id, user.model_dump(exclude_unset=True))
    return directory.to_response(updated)


@router.delete("/{user_id}")
async def delete_user(user_id: str, current_admin=Depends(admin_required), db=Depends(get_db)):
    """Delete a user (Admin only)"""
    user = await directory.delete_user(db, user_id, current_admin_id=current_admin["id"])
    return {
        "message": f"User '{user['name']}' ({user['membership_id']}) has been deleted successfully",
        "deleted_user_id": user_id,
    }


@router.get("/{user_id}/borrowings", response_model=list[models.BorrowingResponse])
async def get_user_borrowings(user_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    """Borrowing history for a user, newest first (Admin or the user themselves)"""
    user = await directory.get_user(db, user_id)
    ensure_self_or_admin(current_user, user["_id"])
    records = await lifecycle.list_borrowings(db, user_id=user["_id"])
    return await lifecycle.project(db, records)
