import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lending.auth.actor import Actor
from lending.auth.dependencies import get_current_actor
from lending.db.session import get_db
from lending.models.loan import EffectiveStatus
from lending.schemas.loan import LoanCreate, LoanListResponse, LoanResponse
from lending.services.ledger import create_loan, describe, get_loan, list_loans, return_loan

router = APIRouter(prefix="/api/v1/loans", tags=["loans"])

_AUTH_RESPONSES: dict = {
    401: {"description": "Missing, invalid, or expired Bearer token."},
}


async def _view(db: AsyncSession, loan) -> LoanResponse:
    return LoanResponse.from_view(await describe(db, loan))


@router.post(
    "",
    response_model=LoanResponse,
    status_code=201,
    summary="Borrow a book",
    description=(
        "Creates a new loan and takes one copy of the book off the shelf.\n\n"
        "**Business rules:**\n"
        "- The book must have at least one available copy, otherwise `409 out_of_stock`.\n"
        "- A user may hold at most **one active loan per book**; a second borrow of the "
        "same book before returning it fails with `409 duplicate_active_loan`.\n"
        "- `duration_days` must be between 1 and the configured maximum (default 90).\n\n"
        "**Concurrency:** two users racing for the last copy — exactly one succeeds.\n\n"
        "**Requires:** any authenticated user."
    ),
    response_description="The new loan record with status `ACTIVE`.",
    responses={
        **_AUTH_RESPONSES,
        404: {"description": "Book not found."},
        409: {"description": "Out of stock, or the caller already has this book on loan."},
        422: {"description": "Validation error — bad `book_id` or `duration_days` out of range."},
    },
)
async def create_loan_endpoint(
    body: LoanCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await create_loan(
        db, actor=actor, book_id=body.book_id, duration_days=body.duration_days
    )
    return await _view(db, loan)


@router.post(
    "/{loan_id}/return",
    response_model=LoanResponse,
    summary="Return a book",
    description=(
        "Closes an active loan and puts the copy back on the shelf.\n\n"
        "**Business rules:**\n"
        "- Already-returned loans fail with `409 already_returned`; copy counts are unchanged.\n"
        "- **Readers** may only return their **own** loans — `403 Forbidden` otherwise.\n"
        "- **Librarians** and **Admins** may return any loan.\n\n"
        "**Requires:** any authenticated user."
    ),
    response_description="The closed loan with status `RETURNED` and its `return_date`.",
    responses={
        **_AUTH_RESPONSES,
        403: {"description": "Forbidden — Readers may only return their own loans."},
        404: {"description": "Loan not found."},
        409: {"description": "Loan already returned."},
    },
)
async def return_loan_endpoint(
    loan_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await return_loan(db, loan_id=loan_id, actor=actor)
    return await _view(db, loan)


@router.get(
    "",
    response_model=LoanListResponse,
    summary="List loans",
    description=(
        "Returns a paginated list of loans, newest first.\n\n"
        "**Role-based filtering:**\n"
        "- **Readers** see only their **own** loans.\n"
        "- **Librarians** and **Admins** see **all** loans.\n\n"
        "`status` is computed at request time: an unreturned loan past its due date is "
        "reported as `OVERDUE`. Listing never modifies stored loans.\n\n"
        "**Requires:** any authenticated user."
    ),
    response_description="Paginated loan list.",
    responses={
        **_AUTH_RESPONSES,
    },
)
async def list_loans_endpoint(
    status: EffectiveStatus | None = Query(
        None, description="Filter by computed status: `ACTIVE`, `OVERDUE` or `RETURNED`."
    ),
    page: int = Query(1, ge=1, description="Page number (1-based)."),
    page_size: int = Query(20, ge=1, le=100, description="Items per page (1–100)."),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanListResponse:
    result = await list_loans(db, actor=actor, status=status, page=page, page_size=page_size)
    return LoanListResponse(
        items=[LoanResponse.from_view(view) for view in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get(
    "/{loan_id}",
    response_model=LoanResponse,
    summary="Get a loan",
    description=(
        "Returns one loan with its computed status.\n\n"
        "**Requires:** the loan's holder, or a Librarian / Admin."
    ),
    responses={
        **_AUTH_RESPONSES,
        403: {"description": "Forbidden — Readers may only view their own loans."},
        404: {"description": "Loan not found."},
    },
)
async def get_loan_endpoint(
    loan_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    view = await get_loan(db, loan_id=loan_id, actor=actor)
    return LoanResponse.from_view(view)
