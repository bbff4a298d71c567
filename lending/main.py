import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from lending import __version__
from lending.api.v1.books import router as books_router
from lending.api.v1.catalog import router as catalog_router
from lending.api.v1.health import router as health_router
from lending.api.v1.loans import router as loans_router
from lending.core.config import settings
from lending.core.errors import LendingError
from lending.core.logging import setup_logging

logger = logging.getLogger(__name__)

_TAG_METADATA: list[dict[str, Any]] = [
    {
        "name": "health",
        "description": "Server liveness check. No authentication required.",
    },
    {
        "name": "books",
        "description": (
            "Book catalogue and copy inventory.\n\n"
            "- **GET** endpoints are **public**.\n"
            "- Creating, updating, resizing and deleting books requires **Librarian** or **Admin** role."
        ),
    },
    {
        "name": "loans",
        "description": (
            "Borrow and return workflows.\n\n"
            "- Any authenticated user may borrow a book with an available copy.\n"
            "- **Readers** may only see and return their **own** loans.\n"
            "- **Librarians** and **Admins** may see and return any loan.\n\n"
            "> **Business rule:** a user can hold **at most one active loan per book**. "
            "`OVERDUE` is computed when loans are read and is never stored."
        ),
    },
    {
        "name": "catalog",
        "description": "Authors and categories referenced by books.",
    },
]

_APP_DESCRIPTION = """\
Loan ledger and copy inventory for a lending library.

## Authentication

Protected endpoints expect a **Bearer JWT** issued by the library's identity
provider. The token's `sub` claim is the caller's user ID and its `role` claim
one of `READER`, `LIBRARIAN`, `ADMIN`.

## Roles & Permissions

| Role | Capabilities |
|------|--------------|
| **Admin** | Everything, including creating categories |
| **Librarian** | Manage books, authors and copy counts; see and return all loans |
| **Reader** | Browse books; borrow, list and return **own** loans |

## Errors

Domain failures return `{"detail": ..., "code": ...}` where `code` is a stable
identifier such as `out_of_stock`, `duplicate_active_loan` or
`below_active_loans`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    yield


app = FastAPI(
    title="Lending Library Ledger",
    description=_APP_DESCRIPTION,
    version=__version__,
    openapi_tags=_TAG_METADATA,
    license_info={"name": "MIT"},
    lifespan=lifespan,
)

# CORS: explicit origins plus an optional regex for dynamic URLs
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_router)
app.include_router(books_router)
app.include_router(catalog_router)
app.include_router(loans_router)


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# ---------------------------------------------------------------------------
# Custom OpenAPI schema: injects the BearerAuth security scheme so the
# "Authorize" button works in Swagger UI and ReDoc.
# ---------------------------------------------------------------------------


def _custom_openapi() -> dict[str, Any]:
    if app.openapi_schema:
        return app.openapi_schema  # type: ignore[return-value]

    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        tags=app.openapi_tags,
        license_info=app.license_info,
        routes=app.routes,
    )

    schema.setdefault("components", {}).setdefault("securitySchemes", {})["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "Access token from the identity provider (`sub` = user ID, `role` claim).",
    }

    app.openapi_schema = schema  # type: ignore[assignment]
    return schema  # type: ignore[return-value]


app.openapi = _custom_openapi  # type: ignore[method-assign]
