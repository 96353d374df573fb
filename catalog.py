"""Book catalog operations."""

import logging
import re
from typing import List

from pymongo import DESCENDING, ReturnDocument

import models
from database import obj_to_str, parse_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from lifecycle import BORROWED

logger = logging.getLogger(__name__)


def to_response(book: dict) -> models.BookResponse:
    return models.BookResponse(
        **{k: v for k, v in book.items() if k != "_id"},
        id=obj_to_str(book["_id"]),
        is_available=book.get("available_copies", 0) > 0,
    )


def _contains(term: str) -> dict:
    return {"$regex": re.escape(term), "$options": "i"}


async def create_book(db, data: models.BookCreate) -> dict:
    available = data.total_copies if data.available_copies is None else data.available_copies
    if available > data.total_copies:
        raise ValidationError("Available copies cannot exceed total copies")

    now = utcnow()
    book = {
        **data.model_dump(exclude={"available_copies"}),
        "available_copies": available,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.books.insert_one(book)
    book["_id"] = result.inserted_id
    logger.info("Added book '%s' with %d copies", book["title"], book["total_copies"])
    return book


async def list_books(db, search: str = None, genre: str = None, available: bool = None) -> List[dict]:
    query = {}
    if search:
        query["$or"] = [
            {"title": _contains(search)},
            {"author": _contains(search)},
            {"isbn": _contains(search)},
        ]
    if genre:
        query["genre"] = _contains(genre)
    if available:
        query["available_copies"] = {"$gt": 0}

    books = []
    async for b in db.books.find(query, sort=[("created_at", DESCENDING)]):
        books.append(b)
    return books


async def get_book(db, book_id) -> dict:
    book = await db.books.find_one({"_id": parse_object_id(book_id, "book")})
    if not book:
        raise NotFoundError("Book not found")
    return book


async def update_book(db, book_id, data: models.BookUpdate) -> dict:
    book = await get_book(db, book_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    for field in ("title", "author", "isbn", "genre"):
        if field in changes:
            changes[field] = changes[field].strip()
            if not changes[field]:
                raise ValidationError(f"{field} must not be blank")

    update = {"$set": {**changes, "updated_at": utcnow()}}
    query = {"_id": book["_id"]}

    if "total_copies" in changes:
        delta = changes.pop("total_copies") - book["total_copies"]
        update["$set"].pop("total_copies")
        update["$inc"] = {"total_copies": delta, "available_copies": delta}
        query["total_copies"] = book["total_copies"]
        if delta < 0:
            # Only shrink copies that are on the shelf
            query["available_copies"] = {"$gte": -delta}

    updated = await db.books.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    if updated is None:
        on_loan = book["total_copies"] - book["available_copies"]
        raise ConflictError(f"Cannot reduce copies below the {on_loan} currently borrowed")
    return updated


async def delete_book(db, book_id) -> dict:
    book = await get_book(db, book_id)
    if await db.borrowings.find_one({"book_id": book["_id"], "status": BORROWED}):
        raise ConflictError("Cannot delete book that is currently borrowed")

    result = await db.books.delete_one({"_id": book["_id"]})
    if result.deleted_count == 0:
        raise NotFoundError("Book not found")
    logger.info("Deleted book '%s'", book.get("title"))
    return book
