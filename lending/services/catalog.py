"""Catalogue reference data: books, authors and categories.

Plain lookups and inserts.  Copy counts are initialised here when a book is
created and are owned by :mod:`lending.services.inventory` from then on.
"""

import math
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lending.auth.actor import Actor
from lending.core.errors import AuthorNotFound, BookNotFound, CategoryNotFound, DuplicateCategory, DuplicateIsbn
from lending.db.session import run_in_transaction
from lending.models.book import Book
from lending.models.catalog import Author, Category
from lending.schemas.book import BookCreate, BookListResponse, BookResponse, BookUpdate
from lending.schemas.catalog import AuthorCreate, CategoryCreate
from lending.services.policy import Action, require


async def list_books(
    db: AsyncSession,
    *,
    q: str | None = None,
    author_id: int | None = None,
    category_id: int | None = None,
    available: bool | None = None,
    page: int = 1,
    page_size: int = 20,
) -> BookListResponse:
    stmt = select(Book)

    if q:
        author_match = (
            select(Author.id)
            .where(or_(Author.first_name.ilike(f"%{q}%"), Author.last_name.ilike(f"%{q}%")))
            .scalar_subquery()
        )
        stmt = stmt.where(
            or_(
                Book.title.ilike(f"%{q}%"),
                Book.isbn.ilike(f"%{q}%"),
                Book.author_id.in_(author_match),
            )
        )
    if author_id is not None:
        stmt = stmt.where(Book.author_id == author_id)
    if category_id is not None:
        stmt = stmt.where(Book.category_id == category_id)
    if available:
        stmt = stmt.where(Book.available_copies > 0)

    total: int = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    data_stmt = (
        stmt.order_by(Book.created_at.desc(), Book.title)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    rows = (await db.execute(data_stmt)).scalars().all()

    pages = math.ceil(total / page_size) if page_size else 1

    return BookListResponse(
        items=[BookResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


async def get_book(db: AsyncSession, book_id: uuid.UUID) -> Book:
    book = await db.scalar(
        select(Book).where(Book.id == book_id).execution_options(populate_existing=True)
    )
    if book is None:
        raise BookNotFound()
    return book


async def create_book(db: AsyncSession, *, actor: Actor, data: BookCreate) -> Book:
    require(actor, Action.CREATE_BOOK)

    async def _create() -> Book:
        if await db.get(Author, data.author_id) is None:
            raise AuthorNotFound()
        if await db.get(Category, data.category_id) is None:
            raise CategoryNotFound()
        book = Book(
            title=data.title,
            isbn=data.isbn,
            published_year=data.published_year,
            description=data.description,
            total_copies=data.total_copies,
            available_copies=data.total_copies,
            author_id=data.author_id,
            category_id=data.category_id,
        )
        db.add(book)
        await db.flush()
        return book

    try:
        book = await run_in_transaction(db, _create)
    except IntegrityError:
        raise DuplicateIsbn()
    await db.refresh(book)
    return book


async def update_book(
    db: AsyncSession, *, actor: Actor, book_id: uuid.UUID, data: BookUpdate
) -> Book:
    """Change a book's metadata. Copy counts go through ``inventory.resize``."""
    require(actor, Action.UPDATE_BOOK)
    update_data = data.model_dump(exclude_unset=True)

    async def _update() -> Book:
        book = await get_book(db, book_id)
        if "author_id" in update_data and await db.get(Author, update_data["author_id"]) is None:
            raise AuthorNotFound()
        if "category_id" in update_data and await db.get(Category, update_data["category_id"]) is None:
            raise CategoryNotFound()
        for field, value in update_data.items():
            setattr(book, field, value)
        await db.flush()
        return book

    try:
        book = await run_in_transaction(db, _update)
    except IntegrityError:
        raise DuplicateIsbn()
    await db.refresh(book)
    return book


async def list_authors(db: AsyncSession) -> list[tuple[Author, int]]:
    """Authors with the number of books each has in the catalogue."""
    book_count = func.count(Book.id)
    rows = await db.execute(
        select(Author, book_count)
        .outerjoin(Book, Book.author_id == Author.id)
        .group_by(Author.id)
        .order_by(Author.last_name, Author.first_name)
    )
    return [(author, count) for author, count in rows.all()]


async def get_author(db: AsyncSession, author_id: int) -> tuple[Author, int]:
    row = (
        await db.execute(
            select(Author, func.count(Book.id))
            .outerjoin(Book, Book.author_id == Author.id)
            .where(Author.id == author_id)
            .group_by(Author.id)
        )
    ).one_or_none()
    if row is None:
        raise AuthorNotFound()
    author, count = row
    return author, count


async def create_author(db: AsyncSession, *, actor: Actor, data: AuthorCreate) -> Author:
    require(actor, Action.CREATE_AUTHOR)
    author = Author(**data.model_dump())

    async def _create() -> Author:
        db.add(author)
        await db.flush()
        return author

    return await run_in_transaction(db, _create)


async def list_categories(db: AsyncSession) -> list[tuple[Category, int]]:
    book_count = func.count(Book.id)
    rows = await db.execute(
        select(Category, book_count)
        .outerjoin(Book, Book.category_id == Category.id)
        .group_by(Category.id)
        .order_by(Category.name)
    )
    return [(category, count) for category, count in rows.all()]


async def create_category(db: AsyncSession, *, actor: Actor, data: CategoryCreate) -> Category:
    require(actor, Action.CREATE_CATEGORY)
    category = Category(**data.model_dump())

    async def _create() -> Category:
        db.add(category)
        await db.flush()
        return category

    try:
        return await run_in_transaction(db, _create)
    except IntegrityError:
        raise DuplicateCategory()
