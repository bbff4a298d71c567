"""
Loan ledger: creation, return and listing of loans.

A loan moves exactly once from ACTIVE to RETURNED.  Overdue is not a stored
state: :func:`effective_status` derives it from ``(status, due_date, now)``
every time a loan is read, and reads never write it back.

Copy counts are only ever touched through :mod:`lending.services.inventory`,
inside the same transaction as the loan row they belong to.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lending.auth.actor import Actor
from lending.core.config import settings
from lending.core.errors import AlreadyReturned, DuplicateActiveLoan, InvalidDuration, LendingError, LoanNotFound
from lending.db.session import run_in_transaction
from lending.models.book import Book
from lending.models.loan import EffectiveStatus, Loan, LoanStatus
from lending.services.inventory import lock_book, release_copy, reserve_copy
from lending.services.policy import Action, loan_scope, require

logger = logging.getLogger(__name__)


@dataclass
class LoanView:
    loan: Loan
    status: EffectiveStatus
    book_title: str | None = None


@dataclass
class LoanPage:
    items: list[LoanView] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def effective_status(status: LoanStatus, due_date: datetime, now: datetime) -> EffectiveStatus:
    if status == LoanStatus.RETURNED:
        return EffectiveStatus.RETURNED
    if now > due_date:
        return EffectiveStatus.OVERDUE
    return EffectiveStatus.ACTIVE


def view_of(loan: Loan, now: datetime | None = None, book_title: str | None = None) -> LoanView:
    return LoanView(
        loan=loan,
        status=effective_status(loan.status, loan.due_date, now or _utcnow()),
        book_title=book_title,
    )


async def describe(db: AsyncSession, loan: Loan, now: datetime | None = None) -> LoanView:
    """View of *loan* carrying its book's title, ``None`` once the book is deleted."""
    title = None
    if loan.book_id is not None:
        title = await db.scalar(select(Book.title).where(Book.id == loan.book_id))
    return view_of(loan, now, title)


def _status_clause(status: EffectiveStatus, now: datetime):
    """SQL equivalent of :func:`effective_status` == *status* at *now*."""
    if status == EffectiveStatus.RETURNED:
        return Loan.status == LoanStatus.RETURNED
    if status == EffectiveStatus.OVERDUE:
        return and_(Loan.status == LoanStatus.ACTIVE, Loan.due_date < now)
    return and_(Loan.status == LoanStatus.ACTIVE, Loan.due_date >= now)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def create_loan(
    db: AsyncSession,
    *,
    actor: Actor,
    book_id: uuid.UUID,
    duration_days: int,
    now: datetime | None = None,
) -> Loan:
    """
    Lend one copy of *book_id* to *actor* for *duration_days* days.

    The duplicate check, the copy reservation and the loan insert commit
    together or not at all.  The partial unique index on
    ``(holder_id, book_id) WHERE status = 'ACTIVE'`` backs up the duplicate
    check when two requests from the same holder race each other.
    """
    require(actor, Action.BORROW)
    if not 1 <= duration_days <= settings.MAX_LOAN_DAYS:
        raise InvalidDuration(f"Loan duration must be between 1 and {settings.MAX_LOAN_DAYS} days")
    now = now or _utcnow()

    async def _create() -> Loan:
        await lock_book(db, book_id)

        duplicate = await db.scalar(
            select(Loan.id)
            .where(
                Loan.holder_id == actor.id,
                Loan.book_id == book_id,
                Loan.status == LoanStatus.ACTIVE,
            )
            .limit(1)
        )
        if duplicate is not None:
            raise DuplicateActiveLoan()

        await reserve_copy(db, book_id)

        loan = Loan(
            book_id=book_id,
            holder_id=actor.id,
            loan_date=now,
            due_date=now + timedelta(days=duration_days),
            status=LoanStatus.ACTIVE,
        )
        db.add(loan)
        await db.flush()
        return loan

    try:
        loan = await run_in_transaction(db, _create)
    except IntegrityError:
        logger.info("Loan rejected for holder %s on book %s: duplicate_active_loan", actor.id, book_id)
        raise DuplicateActiveLoan()
    except LendingError as exc:
        logger.info("Loan rejected for holder %s on book %s: %s", actor.id, book_id, exc.code)
        raise

    logger.info("Loan %s created: holder=%s book=%s due=%s", loan.id, actor.id, book_id, loan.due_date)
    return loan


async def return_loan(
    db: AsyncSession,
    *,
    loan_id: uuid.UUID,
    actor: Actor,
    now: datetime | None = None,
) -> Loan:
    """
    Close an active loan and put its copy back on the shelf.

    - Readers can only return their own loans.
    - Librarians and Admins can return any loan.
    """
    now = now or _utcnow()

    async def _return() -> Loan:
        loan = await db.scalar(
            select(Loan)
            .where(Loan.id == loan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if loan is None:
            raise LoanNotFound()
        require(actor, Action.RETURN_LOAN, loan.holder_id, message="Cannot return another user's loan")
        if loan.status == LoanStatus.RETURNED:
            raise AlreadyReturned()

        # Conditional on ACTIVE so two concurrent returns release one copy.
        result = await db.execute(
            update(Loan)
            .where(Loan.id == loan_id, Loan.status == LoanStatus.ACTIVE)
            .values(status=LoanStatus.RETURNED, return_date=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyReturned()

        await release_copy(db, loan.book_id)
        return loan

    try:
        loan = await run_in_transaction(db, _return)
    except LendingError as exc:
        logger.info("Return of loan %s rejected for actor %s: %s", loan_id, actor.id, exc.code)
        raise

    await db.refresh(loan)
    logger.info("Loan %s returned by actor %s", loan_id, actor.id)
    return loan


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_loan(
    db: AsyncSession,
    *,
    loan_id: uuid.UUID,
    actor: Actor,
    now: datetime | None = None,
) -> LoanView:
    row = (
        await db.execute(
            select(Loan, Book.title)
            .outerjoin(Book, Book.id == Loan.book_id)
            .where(Loan.id == loan_id)
            .execution_options(populate_existing=True)
        )
    ).one_or_none()
    if row is None:
        raise LoanNotFound()
    loan, title = row
    require(actor, Action.VIEW_LOAN, loan.holder_id, message="Cannot view another user's loan")
    return view_of(loan, now, title)


async def list_loans(
    db: AsyncSession,
    *,
    actor: Actor,
    status: EffectiveStatus | None = None,
    page: int = 1,
    page_size: int = 20,
    now: datetime | None = None,
) -> LoanPage:
    """
    List loans visible to *actor*, newest first.

    - READER sees only their own loans.
    - LIBRARIAN / ADMIN see all loans.

    Every item's status is recomputed against *now*, so the same stored row
    can read ACTIVE on one call and OVERDUE on the next.
    """
    now = now or _utcnow()

    base = select(Loan)
    holder_id = loan_scope(actor)
    if holder_id is not None:
        base = base.where(Loan.holder_id == holder_id)
    if status is not None:
        base = base.where(_status_clause(status, now))

    total: int = (await db.scalar(select(func.count()).select_from(base.subquery()))) or 0

    rows = await db.execute(
        base.add_columns(Book.title)
        .outerjoin(Book, Book.id == Loan.book_id)
        .order_by(Loan.loan_date.desc(), Loan.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    items = [view_of(loan, now, title) for loan, title in rows.all()]
    return LoanPage(items=items, total=total, page=page, page_size=page_size)
