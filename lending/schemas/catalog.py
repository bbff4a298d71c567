from pydantic import BaseModel, ConfigDict, Field


class AuthorCreate(BaseModel):
    first_name: str = Field(..., min_length=2, max_length=100, examples=["Frank"])
    last_name: str = Field(..., min_length=2, max_length=100, examples=["Herbert"])
    biography: str | None = Field(None, max_length=2000)
    birth_year: int | None = Field(None, ge=0, le=2100, examples=[1920])


class AuthorResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    biography: str | None = None
    birth_year: int | None = None
    book_count: int = Field(0, description="Books by this author in the catalogue.")

    model_config = ConfigDict(from_attributes=True)


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100, examples=["Science fiction"])
    description: str | None = Field(None, max_length=500)


class CategoryResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    book_count: int = Field(0, description="Books in this category.")

    model_config = ConfigDict(from_attributes=True)
