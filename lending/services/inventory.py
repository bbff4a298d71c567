"""
Book inventory, the single writer of ``Book.total_copies`` / ``available_copies``.

Every copy-count change is a single conditional UPDATE, so the check and the
write happen atomically inside the store whatever the backend:

* PostgreSQL: the book row is additionally locked with ``SELECT ... FOR
  UPDATE`` so check-then-write sequences in the ledger serialize per book.
* SQLite: ``FOR UPDATE`` is a no-op, but the conditional UPDATE still takes
  the database write lock and re-evaluates its WHERE clause against committed
  data.

Operations on different books never contend for the same row.
"""

import logging
import uuid

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lending.auth.actor import Actor
from lending.core.config import settings
from lending.core.errors import (
    BelowActiveLoans,
    BookHasActiveLoans,
    BookNotFound,
    InvalidCopyCount,
    InventoryCorrupted,
    OutOfStock,
)
from lending.db.session import run_in_transaction
from lending.models.book import Book
from lending.models.loan import Loan, LoanStatus
from lending.services.policy import Action, require

logger = logging.getLogger(__name__)


def _active_loans_of(book_id: uuid.UUID):
    return select(func.count()).select_from(Loan).where(
        Loan.book_id == book_id, Loan.status == LoanStatus.ACTIVE
    )


async def lock_book(db: AsyncSession, book_id: uuid.UUID) -> Book:
    """Load *book_id* with a row lock held until the surrounding transaction ends."""
    book = await db.scalar(
        select(Book)
        .where(Book.id == book_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if book is None:
        raise BookNotFound()
    return book


async def active_loan_count(db: AsyncSession, book_id: uuid.UUID) -> int:
    return (await db.scalar(_active_loans_of(book_id))) or 0


async def reserve_copy(db: AsyncSession, book_id: uuid.UUID) -> None:
    """
    Take one copy of *book_id* off the shelf.

    Runs inside the caller's transaction and does not commit.  If two callers
    race for the last copy, the store serializes the UPDATEs and the second
    one matches zero rows.
    """
    result = await db.execute(
        update(Book)
        .where(Book.id == book_id, Book.available_copies > 0)
        .values(available_copies=Book.available_copies - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    found = await db.scalar(select(Book.id).where(Book.id == book_id))
    if found is None:
        raise BookNotFound()
    raise OutOfStock()


async def release_copy(db: AsyncSession, book_id: uuid.UUID) -> None:
    """Put one copy back. Called exactly once per ACTIVE -> RETURNED transition."""
    result = await db.execute(
        update(Book)
        .where(Book.id == book_id, Book.available_copies < Book.total_copies)
        .values(available_copies=Book.available_copies + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Only reachable if copy counts were written outside this module.
        logger.error("release_copy matched no row for book %s; rolling back", book_id)
        raise InventoryCorrupted()


async def can_delete(db: AsyncSession, book_id: uuid.UUID) -> bool:
    return await active_loan_count(db, book_id) == 0


async def resize(
    db: AsyncSession, book_id: uuid.UUID, new_total_copies: int, *, actor: Actor
) -> Book:
    """
    Change the number of copies the library owns.

    ``available_copies`` is recomputed as ``new_total - active loans`` in the
    same statement that sets the total, and the statement only matches when
    the new total still covers every copy currently on loan.
    """
    require(actor, Action.RESIZE_BOOK)
    if not 1 <= new_total_copies <= settings.MAX_TOTAL_COPIES:
        raise InvalidCopyCount(
            f"Total copies must be between 1 and {settings.MAX_TOTAL_COPIES}"
        )

    async def _resize() -> Book:
        book = await lock_book(db, book_id)
        active = _active_loans_of(book_id).scalar_subquery()
        result = await db.execute(
            update(Book)
            .where(Book.id == book_id, active <= new_total_copies)
            .values(total_copies=new_total_copies, available_copies=new_total_copies - active)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            on_loan = await active_loan_count(db, book_id)
            raise BelowActiveLoans(
                f"Cannot reduce total copies to {new_total_copies}: {on_loan} copies are on loan"
            )
        return book

    book = await run_in_transaction(db, _resize)
    await db.refresh(book)
    logger.info(
        "Resized book %s to %d copies (%d available)",
        book_id,
        book.total_copies,
        book.available_copies,
    )
    return book


async def delete_book(db: AsyncSession, book_id: uuid.UUID, *, actor: Actor) -> None:
    """
    Remove a book from the catalogue.

    Rejected while any copy is on loan.  Returned loans stay in the ledger;
    their ``book_id`` is cleared by the foreign key's ON DELETE SET NULL.
    """
    require(actor, Action.DELETE_BOOK)

    async def _delete() -> Book:
        book = await lock_book(db, book_id)
        has_active = exists().where(Loan.book_id == book_id, Loan.status == LoanStatus.ACTIVE)
        result = await db.execute(
            delete(Book)
            .where(Book.id == book_id, ~has_active)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BookHasActiveLoans()
        return book

    book = await run_in_transaction(db, _delete)
    db.expunge(book)
    logger.info("Deleted book %s", book_id)
