from lending.schemas.book import BookCreate, BookListResponse, BookResponse, BookUpdate, CopiesUpdate
from lending.schemas.catalog import AuthorCreate, AuthorResponse, CategoryCreate, CategoryResponse
from lending.schemas.loan import LoanCreate, LoanListResponse, LoanResponse

__all__ = [
    "BookCreate",
    "BookResponse",
    "BookListResponse",
    "BookUpdate",
    "CopiesUpdate",
    "AuthorCreate",
    "AuthorResponse",
    "CategoryCreate",
    "CategoryResponse",
    "LoanCreate",
    "LoanResponse",
    "LoanListResponse",
]
