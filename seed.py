"""
Reset the library database and load a small demo dataset.

Everything goes through the catalog, directory and lifecycle functions so
copy counts and borrowed_books stay consistent with the borrowing records.

Usage:
    python seed.py
"""

import asyncio
import logging
from datetime import timedelta

from motor.motor_asyncio import AsyncIOMotorClient

import catalog
import directory
import lifecycle
import models
from config import settings
from database import ensure_indexes, utcnow

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "admin123"

BOOKS = [
    {
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "isbn": "978-0-7432-7356-5",
        "genre": "Fiction",
        "publication_year": 1925,
        "publisher": "Scribner",
        "description": "A classic American novel about the Jazz Age.",
        "total_copies": 5,
    },
    {
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "isbn": "978-0-06-112008-4",
        "genre": "Fiction",
        "publication_year": 1960,
        "publisher": "J.B. Lippincott & Co.",
        "description": "A gripping tale of racial injustice and childhood innocence.",
        "total_copies": 4,
    },
    {
        "title": "1984",
        "author": "George Orwell",
        "isbn": "978-0-452-28423-4",
        "genre": "Dystopian",
        "publication_year": 1949,
        "publisher": "Secker & Warburg",
        "description": "A dystopian social science fiction novel about totalitarian control.",
        "total_copies": 3,
    },
]

USERS = [
    {"name": "Admin User", "phone": "+1-555-0000", "address": "Library Admin Office",
     "membership_type": "staff", "membership_id": "ADMIN", "role": "admin"},
    {"name": "John Doe", "phone": "+1-555-0123", "address": "123 Main St, Anytown, USA",
     "membership_type": "student", "membership_id": "STUDENT001", "role": "user"},
    {"name": "Jane Smith", "phone": "+1-555-0124", "address": "456 Oak Ave, Somewhere, USA",
     "membership_type": "student", "membership_id": "STUDENT002", "role": "user"},
    {"name": "Mike Johnson", "phone": "+1-555-0125", "address": "789 Pine St, Elsewhere, USA",
     "membership_type": "staff", "membership_id": "STAFF001", "role": "user"},
]


async def seed_data(db):
    for name in ("borrowings", "books", "users"):
        await db[name].delete_many({})
    await ensure_indexes(db)

    books = [await catalog.create_book(db, models.BookCreate(**b)) for b in BOOKS]
    users = []
    for u in USERS:
        data = models.AdminUserCreate(**u, password=DEMO_PASSWORD)
        users.append(await directory.create_user(db, data, role=data.role))

    # One loan approved long enough ago to be six days overdue
    now = utcnow()
    requested_at = now - timedelta(days=settings.default_loan_days + 6, hours=-1)
    record = await lifecycle.create_borrowing(db, users[1]["_id"], books[2]["_id"], now=requested_at)
    await lifecycle.approve_borrowing(db, record["_id"], now=requested_at)

    logger.info("Created %d books, %d users and 1 borrowing record", len(books), len(users))
    return {"books": books, "users": users, "borrowings": [record]}


async def main():
    client = AsyncIOMotorClient(settings.mongo_url)
    try:
        await seed_data(client[settings.mongo_db])
    finally:
        client.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    logger.info("Library Management System - seeding %s", settings.mongo_db)
    asyncio.run(main())
