from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lending.auth.actor import Actor
from lending.auth.dependencies import require_action
from lending.db.session import get_db
from lending.schemas.catalog import AuthorCreate, AuthorResponse, CategoryCreate, CategoryResponse
from lending.services.catalog import (
    create_author,
    create_category,
    get_author,
    list_authors,
    list_categories,
)
from lending.services.policy import Action

router = APIRouter(prefix="/api/v1", tags=["catalog"])

_AUTH_RESPONSES: dict = {
    401: {"description": "Missing, invalid, or expired Bearer token."},
    403: {"description": "Forbidden — role not allowed to modify the catalogue."},
}


@router.get(
    "/authors",
    response_model=list[AuthorResponse],
    summary="List authors",
    description="All authors with the number of books each has in the catalogue. Public.",
)
async def list_authors_endpoint(db: AsyncSession = Depends(get_db)) -> list[AuthorResponse]:
    rows = await list_authors(db)
    return [
        AuthorResponse.model_validate(author).model_copy(update={"book_count": count})
        for author, count in rows
    ]


@router.get(
    "/authors/{author_id}",
    response_model=AuthorResponse,
    summary="Get an author",
    description="One author with the number of books they have in the catalogue. Public.",
    responses={404: {"description": "Author not found."}},
)
async def get_author_endpoint(author_id: int, db: AsyncSession = Depends(get_db)) -> AuthorResponse:
    author, count = await get_author(db, author_id)
    return AuthorResponse.model_validate(author).model_copy(update={"book_count": count})


@router.post(
    "/authors",
    response_model=AuthorResponse,
    status_code=201,
    summary="Create an author",
    description="**Requires:** Librarian or Admin role.",
    responses={**_AUTH_RESPONSES},
)
async def create_author_endpoint(
    data: AuthorCreate,
    actor: Actor = require_action(Action.CREATE_AUTHOR),
    db: AsyncSession = Depends(get_db),
) -> AuthorResponse:
    author = await create_author(db, actor=actor, data=data)
    return AuthorResponse.model_validate(author)


@router.get(
    "/categories",
    response_model=list[CategoryResponse],
    summary="List categories",
    description="All categories with the number of books in each. Public.",
)
async def list_categories_endpoint(db: AsyncSession = Depends(get_db)) -> list[CategoryResponse]:
    rows = await list_categories(db)
    return [
        CategoryResponse.model_validate(category).model_copy(update={"book_count": count})
        for category, count in rows
    ]


@router.post(
    "/categories",
    response_model=CategoryResponse,
    status_code=201,
    summary="Create a category",
    description=(
        "Category names are unique.\n\n"
        "**Requires:** Admin role (Librarians too when `CATEGORY_ADMIN_ONLY` is off)."
    ),
    responses={
        **_AUTH_RESPONSES,
        409: {"description": "A category with this name already exists."},
    },
)
async def create_category_endpoint(
    data: CategoryCreate,
    actor: Actor = require_action(Action.CREATE_CATEGORY),
    db: AsyncSession = Depends(get_db),
) -> CategoryResponse:
    category = await create_category(db, actor=actor, data=data)
    return CategoryResponse.model_validate(category)
