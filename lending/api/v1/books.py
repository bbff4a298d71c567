import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lending.auth.actor import Actor
from lending.auth.dependencies import require_action
from lending.db.session import get_db
from lending.schemas.book import BookCreate, BookListResponse, BookResponse, BookUpdate, CopiesUpdate
from lending.services.catalog import create_book, get_book, list_books, update_book
from lending.services.inventory import delete_book, resize
from lending.services.policy import Action

router = APIRouter(prefix="/api/v1/books", tags=["books"])

# Shared error response definitions
_LIBRARIAN_RESPONSES: dict = {
    401: {"description": "Missing, invalid, or expired Bearer token."},
    403: {"description": "Forbidden — Librarian or Admin role required."},
}
_NOT_FOUND_RESPONSE: dict = {
    404: {"description": "Book not found."},
}


@router.get(
    "",
    response_model=BookListResponse,
    summary="List books",
    description=(
        "Returns a **paginated, filterable** list of books from the catalogue.\n\n"
        "This endpoint is **public** — no authentication required.\n\n"
        "**Filters (all optional, combinable):**\n\n"
        "| Parameter | Behaviour |\n"
        "|-----------|----------|\n"
        "| `q` | Case-insensitive substring match across title, ISBN and author name |\n"
        "| `author_id` | Books by this author |\n"
        "| `category_id` | Books in this category |\n"
        "| `available` | `true` — only books with at least one copy on the shelf |\n\n"
        "Results are ordered by `created_at` descending (newest first)."
    ),
    response_description="Paginated book list with total count and page metadata.",
)
async def list_books_endpoint(
    q: str | None = Query(
        None,
        description="Free-text search across title, ISBN and author name (case-insensitive).",
        examples=["Herbert"],
    ),
    author_id: int | None = Query(None, ge=1, description="Filter by author ID."),
    category_id: int | None = Query(None, ge=1, description="Filter by category ID."),
    available: bool | None = Query(None, description="Only books with available copies."),
    page: int = Query(1, ge=1, description="Page number (1-based)."),
    page_size: int = Query(20, ge=1, le=100, description="Number of items per page (1–100)."),
    db: AsyncSession = Depends(get_db),
) -> BookListResponse:
    return await list_books(
        db,
        q=q,
        author_id=author_id,
        category_id=category_id,
        available=available,
        page=page,
        page_size=page_size,
    )


@router.post(
    "",
    response_model=BookResponse,
    status_code=201,
    summary="Create a book",
    description=(
        "Adds a new book to the catalogue with all of its copies available.\n\n"
        "`author_id` and `category_id` must reference existing records.\n\n"
        "**Requires:** Librarian or Admin role."
    ),
    response_description="The newly created book record.",
    responses={
        **_LIBRARIAN_RESPONSES,
        404: {"description": "Author or category not found."},
        409: {"description": "A book with the same ISBN already exists."},
        422: {"description": "Validation error — check field types and constraints."},
    },
)
async def create_book_endpoint(
    data: BookCreate,
    actor: Actor = require_action(Action.CREATE_BOOK),
    db: AsyncSession = Depends(get_db),
) -> BookResponse:
    book = await create_book(db, actor=actor, data=data)
    return BookResponse.model_validate(book)


@router.get(
    "/{book_id}",
    response_model=BookResponse,
    summary="Get a book",
    description=(
        "Returns the full details of a single book by its UUID, including its "
        "current copy counts.\n\n"
        "This endpoint is **public** — no authentication required."
    ),
    response_description="The requested book record.",
    responses={
        **_NOT_FOUND_RESPONSE,
    },
)
async def get_book_endpoint(
    book_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> BookResponse:
    book = await get_book(db, book_id)
    return BookResponse.model_validate(book)


@router.put(
    "/{book_id}",
    response_model=BookResponse,
    summary="Update a book",
    description=(
        "Partially updates a book's metadata using the provided fields.\n\n"
        "Only fields included in the request body are changed; omitted fields keep "
        "their current values. Copy counts are changed through "
        "`PATCH /api/v1/books/{book_id}/copies`.\n\n"
        "**Requires:** Librarian or Admin role."
    ),
    response_description="The updated book record.",
    responses={
        **_LIBRARIAN_RESPONSES,
        404: {"description": "Book, author or category not found."},
        409: {"description": "Another book already has this ISBN."},
        422: {"description": "Validation error — check field types and constraints."},
    },
)
async def update_book_endpoint(
    book_id: uuid.UUID,
    data: BookUpdate,
    actor: Actor = require_action(Action.UPDATE_BOOK),
    db: AsyncSession = Depends(get_db),
) -> BookResponse:
    book = await update_book(db, actor=actor, book_id=book_id, data=data)
    return BookResponse.model_validate(book)


@router.patch(
    "/{book_id}/copies",
    response_model=BookResponse,
    summary="Change a book's copy count",
    description=(
        "Sets the total number of copies the library owns.\n\n"
        "`available_copies` is recomputed as `total_copies` minus the copies "
        "currently on loan. Shrinking below the number of copies on loan fails "
        "with `409 below_active_loans`.\n\n"
        "**Requires:** Librarian or Admin role."
    ),
    response_description="The updated book record.",
    responses={
        **_LIBRARIAN_RESPONSES,
        **_NOT_FOUND_RESPONSE,
        409: {"description": "New total is lower than the number of copies on loan."},
        422: {"description": "Validation error — `total_copies` out of range."},
    },
)
async def resize_book_endpoint(
    book_id: uuid.UUID,
    body: CopiesUpdate,
    actor: Actor = require_action(Action.RESIZE_BOOK),
    db: AsyncSession = Depends(get_db),
) -> BookResponse:
    book = await resize(db, book_id, body.total_copies, actor=actor)
    return BookResponse.model_validate(book)


@router.delete(
    "/{book_id}",
    status_code=204,
    summary="Delete a book",
    description=(
        "Permanently removes a book from the catalogue.\n\n"
        "Rejected with `409 book_has_active_loans` while any copy is on loan. "
        "Returned loans are kept in the ledger with `book_id` cleared.\n\n"
        "**Requires:** Librarian or Admin role."
    ),
    response_description="No content — the book was successfully deleted.",
    responses={
        **_LIBRARIAN_RESPONSES,
        **_NOT_FOUND_RESPONSE,
        409: {"description": "The book still has copies on loan."},
    },
)
async def delete_book_endpoint(
    book_id: uuid.UUID,
    actor: Actor = require_action(Action.DELETE_BOOK),
    db: AsyncSession = Depends(get_db),
) -> None:
    await delete_book(db, book_id, actor=actor)
