"""Member directory: registration, lookup, edits and deletion of users."""

import logging
import re
from typing import List

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import models
from database import obj_to_str, parse_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from lifecycle import BORROWED, PENDING, REJECTED
from utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Phone number or membership ID already exists"


def normalize_membership_id(value: str) -> str:
    return value.strip().upper()


def to_response(user: dict) -> models.UserResponse:
    return models.UserResponse(
        **{k: v for k, v in user.items() if k not in ("_id", "password")},
        id=obj_to_str(user["_id"]),
    )


async def _ensure_unique(db, membership_id: str = None, phone: str = None, exclude=None):
    clauses = []
    if membership_id:
        clauses.append({"membership_id": membership_id})
    if phone:
        clauses.append({"phone": phone})
    if not clauses:
        return
    query = {"$or": clauses}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if await db.users.find_one(query, {"_id": 1}):
        raise ConflictError(DUPLICATE_MESSAGE)


async def create_user(db, data: models.UserCreate, role: str = "user") -> dict:
    membership_id = normalize_membership_id(data.membership_id)
    await _ensure_unique(db, membership_id, data.phone)

    now = utcnow()
    user = {
        "name": data.name,
        "phone": data.phone,
        "address": data.address,
        "membership_type": data.membership_type,
        "membership_id": membership_id,
        "password": await hash_password(data.password),
        "role": role,
        "join_date": now,
        "is_active": True,
        "borrowed_books": [],
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await db.users.insert_one(user)
    except DuplicateKeyError:
        # Lost a race with a concurrent registration
        raise ConflictError(DUPLICATE_MESSAGE)
    user["_id"] = result.inserted_id
    logger.info("Registered %s user %s", role, membership_id)
    return user


async def authenticate(db, membership_id: str, password: str):
    user = await db.users.find_one({"membership_id": normalize_membership_id(membership_id)})
    if not user or not await verify_password(password, user.get("password")):
        return None
    return user


async def get_user(db, user_id) -> dict:
    user = await db.users.find_one({"_id": parse_object_id(user_id, "user")})
    if not user:
        raise NotFoundError("User not found")
    return user


async def list_users(db, search: str = None, membership_type: str = None) -> List[dict]:
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"phone": pattern}, {"membership_id": pattern}]
    if membership_type:
        query["membership_type"] = membership_type

    users = []
    async for u in db.users.find(query, sort=[("created_at", DESCENDING)]):
        users.append(u)

    # borrowed_books reflects what is actually out right now
    if users:
        on_loan = {}
        async for b in db.borrowings.find({"user_id": {"$in": [u["_id"] for u in users]}, "status": BORROWED},
                                          {"_id": 1, "user_id": 1}):
            on_loan.setdefault(b["user_id"], []).append(b["_id"])
        for u in users:
            u["borrowed_books"] = on_loan.get(u["_id"], [])
    return users


async def update_user(db, user_id, changes: dict) -> dict:
    user = await get_user(db, user_id)
    changes = {k: v for k, v in changes.items() if v is not None}
    for field in ("name", "phone", "membership_id"):
        if field in changes:
            changes[field] = changes[field].strip()
            if not changes[field]:
                raise ValidationError(f"{field} must not be blank")
    if "membership_id" in changes:
        changes["membership_id"] = normalize_membership_id(changes["membership_id"])
    await _ensure_unique(db, changes.get("membership_id"), changes.get("phone"), exclude=user["_id"])

    try:
        updated = await db.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$set": {**changes, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ConflictError(DUPLICATE_MESSAGE)
    if updated is None:
        raise NotFoundError("User not found")
    return updated


async def change_password(db, user_id, current_password: str, new_password: str):
    user = await get_user(db, user_id)
    if not await verify_password(current_password, user.get("password")):
        raise ValidationError("Current password is incorrect")
    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"password": await hash_password(new_password), "updated_at": utcnow()}},
    )
    logger.info("Password changed for %s", user["membership_id"])


async def delete_user(db, user_id, current_admin_id: str = None) -> dict:
    user = await get_user(db, user_id)
    if current_admin_id is not None and str(user["_id"]) == current_admin_id:
        raise ValidationError("You cannot delete your own account")

    if await db.borrowings.find_one({"user_id": user["_id"], "status": BORROWED}):
        raise ConflictError("Cannot delete user with active borrowings")

    result = await db.users.delete_one({"_id": user["_id"]})
    if result.deleted_count == 0:
        raise NotFoundError("User not found")

    # Nobody is left to hand the book to
    closed = await db.borrowings.update_many(
        {"user_id": user["_id"], "status": PENDING},
        {"$set": {"status": REJECTED, "updated_at": utcnow()}, "$unset": {"open_key": ""}},
    )
    logger.info("Deleted user %s, rejected %d pending requests", user["membership_id"], closed.modified_count)
    return user
