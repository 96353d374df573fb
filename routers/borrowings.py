from typing import Optional

from fastapi import APIRouter, Depends, status

import lifecycle
import models
from database import get_db
from errors import AuthorizationError
from utils.dependencies import admin_required, ensure_self_or_admin, get_current_user

router = APIRouter(prefix="/borrowings", tags=["Borrowings"])


@router.get("", response_model=list[models.BorrowingResponse])
async def list_borrowings(status: Optional[models.BorrowingStatus] = None, overdue: bool = False,
                          current_user=Depends(get_current_user), db=Depends(get_db)):
    # Members only ever see their own records
    user_id = None if current_user["role"] == "admin" else current_user["id"]
    records = await lifecycle.list_borrowings(db, status=status, overdue=overdue, user_id=user_id)
    return await lifecycle.project(db, records)


@router.post("", response_model=models.BorrowingResponse, status_code=status.HTTP_201_CREATED)
async def request_borrowing(body: models.BorrowingCreate, current_user=Depends(get_current_user),
                            db=Depends(get_db)):
    user_id = body.user_id or current_user["id"]
    if user_id != current_user["id"] and current_user["role"] != "admin":
        raise AuthorizationError("Cannot request a book for someone else")

    record = await lifecycle.create_borrowing(db, user_id, body.book_id, due_date=body.due_date, notes=body.notes)
    return await lifecycle.project_one(db, record)


@router.get("/{borrowing_id}", response_model=models.BorrowingResponse)
async def get_borrowing(borrowing_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    record = await lifecycle.get_borrowing(db, borrowing_id)
    ensure_self_or_admin(current_user, record["user_id"])
    return await lifecycle.project_one(db, record)


@router.put("/{borrowing_id}/approve", response_model=models.BorrowingResponse)
async def approve_borrowing(borrowing_id: str, admin=Depends(admin_required), db=Depends(get_db)):
    record = await lifecycle.approve_borrowing(db, borrowing_id)
    return await lifecycle.project_one(db, record)


@router.put("/{borrowing_id}/reject", response_model=models.BorrowingResponse)
async def reject_borrowing(borrowing_id: str, admin=Depends(admin_required), db=Depends(get_db)):
    record = await lifecycle.reject_borrowing(db, borrowing_id)
    return await lifecycle.project_one(db, record)


@router.put("/{borrowing_id}/return", response_model=models.BorrowingResponse)
async def return_borrowing(borrowing_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    record = await lifecycle.get_borrowing(db, borrowing_id)
    ensure_self_or_admin(current_user, record["user_id"], "Cannot return someone else's book")

    updated = await lifecycle.return_borrowing(db, borrowing_id, record=record)
    return await lifecycle.project_one(db, updated)


@router.put("/{borrowing_id}/calculate-fine", response_model=models.BorrowingResponse)
async def calculate_fine(borrowing_id: str, admin=Depends(admin_required), db=Depends(get_db)):
    record = await lifecycle.calculate_fine(db, borrowing_id)
    return await lifecycle.project_one(db, record)


@router.put("/{borrowing_id}", response_model=models.BorrowingResponse)
async def extend_due_date(borrowing_id: str, body: models.DueDateExtension, admin=Depends(admin_required),
                          db=Depends(get_db)):
    record = await lifecycle.extend_due_date(db, borrowing_id, body.due_date)
    return await lifecycle.project_one(db, record)


@router.delete("/{borrowing_id}", response_model=models.MessageResponse)
async def delete_borrowing(borrowing_id: str, admin=Depends(admin_required), db=Depends(get_db)):
    await lifecycle.delete_borrowing(db, borrowing_id)
    return models.MessageResponse(message="Borrowing record deleted successfully")
