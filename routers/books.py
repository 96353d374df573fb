from typing import Optional

from fastapi import APIRouter, Depends, status

import catalog
import models
from database import get_db
from utils.dependencies import admin_required

router = APIRouter(prefix="/books", tags=["Books"])


@router.get("", response_model=list[models.BookResponse])
async def list_books(search: Optional[str] = None, genre: Optional[str] = None,
                     available: Optional[bool] = None, db=Depends(get_db)):
    books = await catalog.list_books(db, search=search, genre=genre, available=available)
    return [catalog.to_response(b) for b in books]


@router.post("", response_model=models.BookResponse, status_code=status.HTTP_201_CREATED)
async def add_book(book: models.BookCreate, admin=Depends(admin_required), db=Depends(get_db)):
    return catalog.to_response(await catalog.create_book(db, book))


@router.get("/{book_id}", response_model=models.BookResponse)
async def get_book(book_id: str, db=Depends(get_db)):
    return catalog.to_response(await catalog.get_book(db, book_id))


@router.put("/{book_id}", response_model=models.BookResponse)
async def update_book(book_id: str, book: models.BookUpdate, admin=Depends(admin_required), db=Depends(get_db)):
    """Update book details; changing total_copies shifts available_copies by the same amount."""
    return catalog.to_response(await catalog.update_book(db, book_id, book))


@router.delete("/{book_id}")
async def delete_book(book_id: str, admin=Depends(admin_required), db=Depends(get_db)):
    """Remove a book (only if no copies are currently borrowed)"""
    book = await catalog.delete_book(db, book_id)
    return {
        "message": f"Book '{book.get('title', 'Unknown')}' deleted successfully",
        "book": catalog.to_response(book),
    }
