import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Uuid, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from lending.db.base import Base
from lending.db.types import UTCDateTime


class LoanStatus(str, enum.Enum):
    """Stored status. Overdue is never stored; see ``EffectiveStatus``."""

    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


class EffectiveStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"


class Loan(Base):
    __tablename__ = "loans"

    __table_args__ = (
        # A holder may have at most one active loan per book.
        Index(
            "uq_active_loan_per_holder_book",
            "holder_id",
            "book_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_loans_book_status", "book_id", "status"),
        CheckConstraint("due_date >= loan_date", name="ck_loans_due_after_loan"),
        CheckConstraint(
            "(status = 'RETURNED') = (return_date IS NOT NULL)",
            name="ck_loans_return_date_matches_status",
        ),
        CheckConstraint(
            "status = 'RETURNED' OR book_id IS NOT NULL",
            name="ck_loans_active_has_book",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Cleared when a book with no active loans is deleted; the loan history stays.
    book_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("books.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Opaque actor id from the identity provider; there is no local users table.
    holder_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    loan_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    return_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[LoanStatus] = mapped_column(
        SAEnum(LoanStatus, name="loanstatus"),
        nullable=False,
        default=LoanStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )

    def __repr__(self) -> str:
        return f"<Loan id={self.id} book_id={self.book_id} status={self.status}>"
