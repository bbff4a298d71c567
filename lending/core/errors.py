"""Failure taxonomy for the loan ledger and book inventory.

Services raise these; the HTTP layer renders them via the handler registered
in ``lending.main``. Each class carries the status code and a stable
machine-readable ``code`` so clients never have to parse messages.
"""


class LendingError(Exception):
    status_code: int = 400
    code: str = "lending_error"
    message: str = "Request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class ValidationError(LendingError):
    status_code = 422
    code = "validation_error"


class NotFoundError(LendingError):
    status_code = 404
    code = "not_found"


class ConflictError(LendingError):
    status_code = 409
    code = "conflict"


class AuthorizationError(LendingError):
    status_code = 403
    code = "forbidden"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidDuration(ValidationError):
    code = "invalid_duration"
    message = "Loan duration is out of range"


class InvalidCopyCount(ValidationError):
    code = "invalid_copy_count"
    message = "Total copies is out of range"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class BookNotFound(NotFoundError):
    code = "book_not_found"
    message = "Book not found"


class LoanNotFound(NotFoundError):
    code = "loan_not_found"
    message = "Loan not found"


class AuthorNotFound(NotFoundError):
    code = "author_not_found"
    message = "Author not found"


class CategoryNotFound(NotFoundError):
    code = "category_not_found"
    message = "Category not found"


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class OutOfStock(ConflictError):
    code = "out_of_stock"
    message = "No copies of this book are available"


class DuplicateActiveLoan(ConflictError):
    code = "duplicate_active_loan"
    message = "You already have an active loan for this book"


class AlreadyReturned(ConflictError):
    code = "already_returned"
    message = "Loan has already been returned"


class BelowActiveLoans(ConflictError):
    code = "below_active_loans"
    message = "Total copies cannot be lower than the number of copies on loan"


class BookHasActiveLoans(ConflictError):
    code = "book_has_active_loans"
    message = "Cannot delete a book that has copies on loan"


class DuplicateIsbn(ConflictError):
    code = "duplicate_isbn"
    message = "A book with this ISBN already exists"


class DuplicateCategory(ConflictError):
    code = "duplicate_category"
    message = "A category with this name already exists"


# ---------------------------------------------------------------------------
# Store integrity
# ---------------------------------------------------------------------------


class InventoryCorrupted(LendingError):
    status_code = 500
    code = "inventory_corrupted"
    message = "Copy counts for this book are inconsistent"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Forbidden(AuthorizationError):
    message = "Insufficient permissions"
