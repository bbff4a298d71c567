import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from lending.core.config import settings
from lending.models.loan import EffectiveStatus
from lending.services.ledger import LoanView

_EXAMPLE_BOOK_ID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"
_EXAMPLE_LOAN_ID = "8a1bc234-9876-4def-b3fc-1a2b3c4d5e6f"
_EXAMPLE_HOLDER_ID = "1b2c3d4e-5f6a-7b8c-9d0e-1f2a3b4c5d6e"


class LoanCreate(BaseModel):
    book_id: uuid.UUID = Field(
        ...,
        description="UUID of the book to borrow. The book must have at least one available copy.",
        examples=[_EXAMPLE_BOOK_ID],
    )
    # Range is enforced by the ledger so the configured maximum applies.
    duration_days: int = Field(
        settings.DEFAULT_LOAN_DAYS,
        description=f"Loan length in days (1–{settings.MAX_LOAN_DAYS}).",
        examples=[14],
    )

    model_config = ConfigDict(
        json_schema_extra={"example": {"book_id": _EXAMPLE_BOOK_ID, "duration_days": 14}}
    )


class LoanResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Unique loan identifier (UUID v4).")
    book_id: uuid.UUID | None = Field(
        ..., description="UUID of the borrowed book. `null` if the book was later deleted."
    )
    book_title: str | None = Field(
        None, description="Title of the borrowed book. `null` if the book was later deleted."
    )
    holder_id: uuid.UUID = Field(..., description="ID of the user holding the loan.")
    loan_date: datetime = Field(..., description="UTC timestamp when the loan was created.")
    due_date: datetime = Field(..., description="UTC timestamp when the copy is due back.")
    return_date: datetime | None = Field(
        None,
        description="UTC timestamp when the copy was returned. `null` while still on loan.",
    )
    status: EffectiveStatus = Field(
        ...,
        description=(
            "`ACTIVE` — on loan and not yet due; `OVERDUE` — on loan past its due date; "
            "`RETURNED` — closed. Computed at read time."
        ),
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": _EXAMPLE_LOAN_ID,
                "book_id": _EXAMPLE_BOOK_ID,
                "book_title": "Dune",
                "holder_id": _EXAMPLE_HOLDER_ID,
                "loan_date": "2024-01-20T09:00:00Z",
                "due_date": "2024-02-03T09:00:00Z",
                "return_date": None,
                "status": "ACTIVE",
            }
        },
    )

    @classmethod
    def from_view(cls, view: LoanView) -> "LoanResponse":
        loan = view.loan
        return cls(
            id=loan.id,
            book_id=loan.book_id,
            book_title=view.book_title,
            holder_id=loan.holder_id,
            loan_date=loan.loan_date,
            due_date=loan.due_date,
            return_date=loan.return_date,
            status=view.status,
        )


class LoanListResponse(BaseModel):
    items: list[LoanResponse] = Field(..., description="Loans on the current page.")
    total: int = Field(..., description="Total number of loans matching the current query.")
    page: int = Field(..., description="Current page number (1-based).")
    page_size: int = Field(..., description="Maximum items returned per page.")

    model_config = ConfigDict(
        json_schema_extra={"example": {"items": [], "total": 0, "page": 1, "page_size": 20}}
    )
