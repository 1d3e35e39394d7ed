"""
Book catalog routes.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from api.database import BookStore
from api.dependencies import get_book_store, get_current_user, require_admin
from api.errors import AppError
from api.features import QueryFeatures, QuerySpec, casters_for
from api.models import BookCreate, serialize_document

router = APIRouter(prefix="/api/v1/book", tags=["Books"])

BOOK_CASTERS = {
    **casters_for(BookCreate),
    "createdAt": datetime.fromisoformat,
    "updatedAt": datetime.fromisoformat,
}


def _not_found() -> AppError:
    return AppError("There is no book with this ID", status.HTTP_404_NOT_FOUND)


@router.get("")
async def get_all_books(request: Request, books: BookStore = Depends(get_book_store)):
    """
    Get books with filtering, sorting, pagination and field projection.

    - **<field>=value**: equality filter on any field
    - **<field>[gt|gte|lt|lte]=value**: comparison filter
    - **sort**: comma-separated fields, prefix with - for descending
    - **page** / **limit**: pagination window (defaults 1 / 50)
    - **fields**: comma-separated projection
    """
    features = (
        QueryFeatures(QuerySpec(), request.query_params.multi_items(), casters=BOOK_CASTERS)
        .filter()
        .sort()
        .paginate()
        .fields()
    )
    all_books = await books.find(features.query)

    return {
        "status": "success",
        "results": len(all_books),
        "data": {"books": [serialize_document(book) for book in all_books]},
    }


@router.post("", dependencies=[Depends(require_admin)])
async def add_book(payload: Dict[str, Any] = Body(...), books: BookStore = Depends(get_book_store)):
    """Create a book (admin only)."""
    book = await books.create(payload)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"status": "ok", "data": {"book": serialize_document(book)}},
    )


@router.get("/{book_id}", dependencies=[Depends(get_current_user)])
async def get_book(book_id: str, books: BookStore = Depends(get_book_store)):
    """Get a single book by ID."""
    book = await books.get(book_id)
    if not book:
        raise _not_found()
    return {"status": "ok", "data": {"book": serialize_document(book)}}


@router.patch("/{book_id}", dependencies=[Depends(require_admin)])
async def update_book(
    book_id: str,
    payload: Dict[str, Any] = Body(...),
    books: BookStore = Depends(get_book_store),
):
    """Partially update a book; the merged document is validated again."""
    book = await books.update(book_id, payload)
    if not book:
        raise _not_found()
    return {"status": "ok", "data": {"book": serialize_document(book)}}


@router.delete("/{book_id}", dependencies=[Depends(require_admin)])
async def delete_book(book_id: str, books: BookStore = Depends(get_book_store)):
    """Delete a book (admin only)."""
    if not await books.delete(book_id):
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
