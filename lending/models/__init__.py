from lending.models.book import Book
from lending.models.catalog import Author, Category
from lending.models.loan import EffectiveStatus, Loan, LoanStatus

__all__ = ["Author", "Book", "Category", "EffectiveStatus", "Loan", "LoanStatus"]
