import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

_BOOK_EXAMPLE = {
    "title": "Dune",
    "isbn": "978-0441013593",
    "published_year": 1965,
    "description": "A science fiction epic set on the desert planet Arrakis.",
    "total_copies": 3,
    "author_id": 1,
    "category_id": 1,
}


class BookCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500, description="Book title.", examples=["Dune"])
    isbn: str = Field(
        ...,
        min_length=10,
        max_length=20,
        description="ISBN-10 or ISBN-13. Must be unique across all books.",
        examples=["978-0441013593"],
    )
    published_year: int | None = Field(
        None,
        ge=1000,
        le=2100,
        description="Year the book was first published.",
        examples=[1965],
    )
    description: str | None = Field(
        None,
        max_length=1000,
        description="Short synopsis or notes about the book.",
    )
    total_copies: int = Field(
        1,
        ge=1,
        le=1000,
        description="Number of copies the library owns. All start out available.",
        examples=[3],
    )
    author_id: int = Field(..., ge=1, description="ID of an existing author.", examples=[1])
    category_id: int = Field(..., ge=1, description="ID of an existing category.", examples=[1])

    model_config = ConfigDict(json_schema_extra={"example": _BOOK_EXAMPLE})


class BookUpdate(BaseModel):
    title: str | None = Field(
        None, min_length=1, max_length=500, description="New title. Omit to keep the current value."
    )
    isbn: str | None = Field(
        None, min_length=10, max_length=20, description="New ISBN. Omit to keep the current value."
    )
    published_year: int | None = Field(
        None,
        ge=1000,
        le=2100,
        description="New publication year. Omit to keep the current value, `null` to clear it.",
    )
    description: str | None = Field(
        None,
        max_length=1000,
        description="New description. Omit to keep the current value, `null` to clear it.",
    )
    author_id: int | None = Field(None, ge=1, description="Move the book to another author.")
    category_id: int | None = Field(None, ge=1, description="Move the book to another category.")

    model_config = ConfigDict(
        json_schema_extra={"example": {"description": "Updated synopsis of the Dune novel."}}
    )

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "BookUpdate":
        # published_year and description may be cleared; the rest may only be omitted.
        for field in ("title", "isbn", "author_id", "category_id"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class CopiesUpdate(BaseModel):
    total_copies: int = Field(
        ...,
        ge=1,
        description=(
            "New total number of copies. Must be at least the number of copies "
            "currently on loan."
        ),
        examples=[5],
    )

    model_config = ConfigDict(json_schema_extra={"example": {"total_copies": 5}})


class BookResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Unique book identifier (UUID v4).")
    title: str = Field(..., description="Book title.")
    isbn: str = Field(..., description="ISBN-10 or ISBN-13.")
    published_year: int | None = Field(None, description="Year first published.")
    description: str | None = Field(None, description="Synopsis or notes.")
    total_copies: int = Field(..., description="Number of copies the library owns.")
    available_copies: int = Field(..., description="Copies currently on the shelf.")
    author_id: int = Field(..., description="Author ID.")
    category_id: int = Field(..., description="Category ID.")
    created_at: datetime = Field(..., description="Timestamp when the record was created (UTC).")
    updated_at: datetime = Field(..., description="Timestamp of the last update (UTC).")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "3fa85f64-5717-4562-b3fc-2c963f66afa6",
                **_BOOK_EXAMPLE,
                "available_copies": 2,
                "created_at": "2024-01-15T10:30:00Z",
                "updated_at": "2024-01-15T10:30:00Z",
            }
        },
    )


class BookListResponse(BaseModel):
    items: list[BookResponse] = Field(..., description="Books on the current page.")
    total: int = Field(..., description="Total number of books matching the current filters.")
    page: int = Field(..., description="Current page number (1-based).")
    page_size: int = Field(..., description="Maximum items returned per page.")
    pages: int = Field(..., description="Total number of pages.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [],
                "total": 42,
                "page": 1,
                "page_size": 20,
                "pages": 3,
            }
        }
    )
