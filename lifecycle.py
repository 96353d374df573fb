"""Borrowing lifecycle engine.

A borrowing moves ``pending -> borrowed | rejected`` and ``borrowed ->
returned``. Overdue is never stored: it is a ``borrowed`` record whose due
date has passed. A copy of the book is reserved only when a request is
approved, and every status change is a conditional update on the status the
record is expected to have, so racing requests cannot both win.

Every operation takes an optional ``now`` so the clock can be pinned.
"""

import logging
import math
import random
from datetime import datetime, timedelta
from typing import List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import models
from config import settings
from database import obj_to_str, parse_object_id, to_utc, utcnow
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PENDING = "pending"
BORROWED = "borrowed"
RETURNED = "returned"
REJECTED = "rejected"

TOKEN_ATTEMPTS = 5


def generate_token_number(now: datetime) -> str:
    millis = int(now.timestamp() * 1000)
    return f"REQ-{str(millis)[-8:]}-{random.randint(0, 999):03d}"


def compute_fine(due_date: datetime, now: datetime, daily_rate: float = None) -> float:
    """Whole days late (rounded up) times the daily rate."""
    if daily_rate is None:
        daily_rate = settings.fine_per_day
    return round(days_overdue(due_date, now) * daily_rate, 2)


def days_overdue(due_date: datetime, now: datetime) -> int:
    late = (now - due_date).total_seconds()
    if late <= 0:
        return 0
    return math.ceil(late / timedelta(days=1).total_seconds())


def is_overdue(record: dict, now: datetime) -> bool:
    return record["status"] == BORROWED and record["due_date"] < now


async def _load(db, borrowing_id) -> dict:
    record = await db.borrowings.find_one({"_id": parse_object_id(borrowing_id, "borrowing")})
    if not record:
        raise NotFoundError("Borrowing record not found")
    return record


def open_key(user_id, book_id) -> str:
    # Held only while a record is pending or borrowed; unique sparse index
    return f"{user_id}:{book_id}"


async def _transition(db, record: dict, expected: str, changes: dict, error: str, closes: bool = False) -> dict:
    """Apply ``changes`` only if the record still has status ``expected``."""
    update = {"$set": changes}
    if closes:
        update["$unset"] = {"open_key": ""}
    updated = await db.borrowings.find_one_and_update(
        {"_id": record["_id"], "status": expected},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidStateError(error)
    return updated


async def _release_copy(db, record: dict, now: datetime):
    await db.books.update_one(
        {"_id": record["book_id"]},
        {"$inc": {"available_copies": 1}, "$set": {"updated_at": now}},
    )
    await db.users.update_one(
        {"_id": record["user_id"]},
        {"$pull": {"borrowed_books": record["_id"]}},
    )


async def _ensure_no_open_request(db, key: str):
    existing = await db.borrowings.find_one({"open_key": key}, {"status": 1})
    if existing:
        if existing["status"] == PENDING:
            raise ConflictError("You already have a pending request for this book")
        raise ConflictError("You already have this book borrowed")


# ---------- Commands ----------
async def create_borrowing(db, user_id, book_id, due_date: datetime = None, notes: str = "",
                           now: datetime = None) -> dict:
    now = now or utcnow()
    user_obj_id = parse_object_id(user_id, "user")
    book_obj_id = parse_object_id(book_id, "book")

    if due_date is not None:
        due_date = to_utc(due_date)
        if due_date <= now:
            raise ValidationError("Due date must be in the future")
    else:
        due_date = now + timedelta(days=settings.default_loan_days)

    if not await db.users.find_one({"_id": user_obj_id}, {"_id": 1}):
        raise NotFoundError("User not found")

    book = await db.books.find_one({"_id": book_obj_id})
    if not book:
        raise NotFoundError("Book not found")
    if book.get("available_copies", 0) <= 0:
        raise ConflictError("Book is not available")

    key = open_key(user_obj_id, book_obj_id)
    await _ensure_no_open_request(db, key)

    record = {
        "open_key": key,
        "user_id": user_obj_id,
        "book_id": book_obj_id,
        "borrow_date": None,
        "due_date": due_date,
        "return_date": None,
        "status": PENDING,
        "fine": 0,
        "notes": notes or "",
        "created_at": now,
        "updated_at": now,
    }

    for _ in range(TOKEN_ATTEMPTS):
        record["token_number"] = generate_token_number(now)
        record.pop("_id", None)
        try:
            result = await db.borrowings.insert_one(record)
        except DuplicateKeyError:
            # Either a concurrent request for the same book won, or the token clashed
            await _ensure_no_open_request(db, key)
            logger.warning("Token number collision on %s, retrying", record["token_number"])
            continue
        record["_id"] = result.inserted_id
        logger.info("Borrowing %s requested: user=%s book=%s", record["token_number"], user_id, book_id)
        return record

    raise ConflictError("Could not allocate a unique token number")


async def approve_borrowing(db, borrowing_id, now: datetime = None) -> dict:
    now = now or utcnow()
    record = await _load(db, borrowing_id)
    if record["status"] != PENDING:
        raise InvalidStateError("Only pending requests can be approved")
    if not await db.users.find_one({"_id": record["user_id"]}, {"_id": 1}):
        raise NotFoundError("User not found")

    # Claim a copy first; the filter makes check-and-decrement one step
    book = await db.books.find_one_and_update(
        {"_id": record["book_id"], "available_copies": {"$gt": 0}},
        {"$inc": {"available_copies": -1}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if book is None:
        if not await db.books.find_one({"_id": record["book_id"]}, {"_id": 1}):
            raise NotFoundError("Book not found")
        raise ConflictError("Book is no longer available")

    try:
        updated = await _transition(
            db, record, PENDING,
            {"status": BORROWED, "borrow_date": now, "updated_at": now},
            "Only pending requests can be approved",
        )
    except InvalidStateError:
        await db.books.update_one({"_id": record["book_id"]}, {"$inc": {"available_copies": 1}})
        raise

    await db.users.update_one({"_id": record["user_id"]}, {"$addToSet": {"borrowed_books": record["_id"]}})
    logger.info("Borrowing %s approved, %s copies left", record["token_number"], book["available_copies"])
    return updated


async def reject_borrowing(db, borrowing_id, now: datetime = None) -> dict:
    now = now or utcnow()
    record = await _load(db, borrowing_id)
    if record["status"] != PENDING:
        raise InvalidStateError("Only pending requests can be rejected")
    updated = await _transition(
        db, record, PENDING,
        {"status": REJECTED, "updated_at": now},
        "Only pending requests can be rejected",
        closes=True,
    )
    logger.info("Borrowing %s rejected", record["token_number"])
    return updated


async def return_borrowing(db, borrowing_id, now: datetime = None, record: dict = None) -> dict:
    now = now or utcnow()
    record = record or await _load(db, borrowing_id)
    if record["status"] != BORROWED:
        raise InvalidStateError("Only borrowed books can be returned")

    fine = compute_fine(record["due_date"], now)
    updated = await _transition(
        db, record, BORROWED,
        {"status": RETURNED, "return_date": now, "fine": fine, "updated_at": now},
        "Only borrowed books can be returned",
        closes=True,
    )
    await _release_copy(db, record, now)
    logger.info("Borrowing %s returned, fine %.2f", record["token_number"], fine)
    return updated


async def extend_due_date(db, borrowing_id, new_due_date: datetime, now: datetime = None) -> dict:
    now = now or utcnow()
    new_due_date = to_utc(new_due_date)
    if new_due_date <= now:
        raise ValidationError("New due date must be in the future")

    record = await _load(db, borrowing_id)
    if record["status"] != BORROWED:
        raise InvalidStateError("Only borrowed books can have their due date extended")
    updated = await _transition(
        db, record, BORROWED,
        {"due_date": new_due_date, "updated_at": now},
        "Only borrowed books can have their due date extended",
    )
    logger.info("Borrowing %s due date moved to %s", record["token_number"], new_due_date.isoformat())
    return updated


async def calculate_fine(db, borrowing_id, now: datetime = None) -> dict:
    now = now or utcnow()
    record = await _load(db, borrowing_id)
    if record["status"] != BORROWED:
        raise InvalidStateError("Fine can only be calculated for borrowed books")
    if record["due_date"] >= now:
        raise InvalidStateError("Book is not overdue yet")

    return await _transition(
        db, record, BORROWED,
        {"fine": compute_fine(record["due_date"], now), "updated_at": now},
        "Fine can only be calculated for borrowed books",
    )


async def delete_borrowing(db, borrowing_id, now: datetime = None) -> dict:
    """Administrative removal; a book still out goes back on the shelf."""
    now = now or utcnow()
    record = await _load(db, borrowing_id)
    # The conditional delete decides who releases the copy when a return races it
    result = await db.borrowings.delete_one({"_id": record["_id"], "status": record["status"]})
    if result.deleted_count == 0:
        raise InvalidStateError("Borrowing record changed, try again")
    if record["status"] == BORROWED:
        try:
            await _release_copy(db, record, now)
        except Exception:
            logger.exception(
                "Deleted borrowing %s but could not release its copy: book=%s user=%s",
                record["token_number"], record["book_id"], record["user_id"],
            )
            raise
    logger.info("Borrowing %s deleted (was %s)", record["token_number"], record["status"])
    return record


# ---------- Read side ----------
def _user_summary(user: Optional[dict]) -> Optional[models.UserSummary]:
    if not user:
        return None
    return models.UserSummary(
        id=str(user["_id"]),
        name=user.get("name", ""),
        phone=user.get("phone", ""),
        membership_id=user.get("membership_id", ""),
    )


def _book_summary(book: Optional[dict]) -> Optional[models.BookSummary]:
    if not book:
        return None
    return models.BookSummary(
        id=str(book["_id"]),
        title=book.get("title", ""),
        author=book.get("author", ""),
        isbn=book.get("isbn", ""),
        cover_image=book.get("cover_image"),
    )


def to_view(record: dict, user: Optional[dict], book: Optional[dict], now: datetime = None) -> models.BorrowingResponse:
    now = now or utcnow()
    overdue = is_overdue(record, now)
    return models.BorrowingResponse(
        id=obj_to_str(record["_id"]),
        user_id=obj_to_str(record["user_id"]),
        book_id=obj_to_str(record["book_id"]),
        user=_user_summary(user),
        book=_book_summary(book),
        token_number=record["token_number"],
        borrow_date=record.get("borrow_date"),
        due_date=record["due_date"],
        return_date=record.get("return_date"),
        status=record["status"],
        fine=record.get("fine", 0),
        notes=record.get("notes", ""),
        is_overdue=overdue,
        days_overdue=days_overdue(record["due_date"], now) if overdue else 0,
        created_at=record.get("created_at"),
        updated_at=record.get("updated_at"),
    )


async def project(db, records: List[dict], now: datetime = None) -> List[models.BorrowingResponse]:
    """Join borrowings with their user and book in two batched lookups."""
    user_ids = list({r["user_id"] for r in records})
    book_ids = list({r["book_id"] for r in records})
    users = {}
    books = {}
    if user_ids:
        async for u in db.users.find({"_id": {"$in": user_ids}}, {"password": 0}):
            users[u["_id"]] = u
    if book_ids:
        async for b in db.books.find({"_id": {"$in": book_ids}}):
            books[b["_id"]] = b
    return [to_view(r, users.get(r["user_id"]), books.get(r["book_id"]), now) for r in records]


async def project_one(db, record: dict, now: datetime = None) -> models.BorrowingResponse:
    return (await project(db, [record], now))[0]


async def get_borrowing(db, borrowing_id) -> dict:
    return await _load(db, borrowing_id)


async def list_borrowings(db, status: str = None, overdue: bool = False, user_id=None, book_id=None,
                          now: datetime = None) -> List[dict]:
    now = now or utcnow()
    if overdue and status not in (None, BORROWED):
        raise ValidationError("The overdue filter only applies to borrowed records")
    query = {}
    if status:
        query["status"] = status
    if overdue:
        query["status"] = BORROWED
        query["due_date"] = {"$lt": now}
    if user_id is not None:
        query["user_id"] = parse_object_id(user_id, "user")
    if book_id is not None:
        query["book_id"] = parse_object_id(book_id, "book")

    records = []
    async for record in db.borrowings.find(query, sort=[("created_at", DESCENDING)]):
        records.append(record)
    return records
