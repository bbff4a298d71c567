import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from lending.auth.actor import Actor, Role
from lending.core.config import settings
from lending.db.session import build_engine, get_db, init_models
from lending.main import app
from lending.models.book import Book
from lending.models.catalog import Author, Category
from lending.models.loan import Loan, LoanStatus


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database so concurrent sessions get their own connections.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'lending.db'}")
    await init_models(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(actor: Actor) -> dict[str, str]:
        token = jwt.encode(
            {"sub": str(actor.id), "role": actor.role.value},
            settings.SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def reader() -> Actor:
    return Actor(id=uuid.uuid4(), role=Role.READER)


@pytest.fixture
def librarian() -> Actor:
    return Actor(id=uuid.uuid4(), role=Role.LIBRARIAN)


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid.uuid4(), role=Role.ADMIN)


@pytest.fixture
def make_book(db):
    """Factory: insert an author, a category and a book with *total_copies* copies."""

    async def _make(total_copies: int = 1) -> Book:
        suffix = uuid.uuid4().hex[:8]
        author = Author(first_name="Test", last_name=f"Author {suffix}")
        category = Category(name=f"Category {suffix}")
        db.add_all([author, category])
        await db.flush()
        book = Book(
            title=f"Test Book {suffix}",
            isbn=f"978{uuid.uuid4().int % 10**10:010d}",
            total_copies=total_copies,
            available_copies=total_copies,
            author_id=author.id,
            category_id=category.id,
        )
        db.add(book)
        await db.commit()
        await db.refresh(book)
        return book

    return _make


@pytest.fixture
def inventory_state(db):
    """Read ``(total, available, active loans)`` for a book straight from the store."""

    async def _state(book_id: uuid.UUID) -> tuple[int, int, int]:
        row = (
            await db.execute(
                select(Book.total_copies, Book.available_copies).where(Book.id == book_id)
            )
        ).one()
        active = await db.scalar(
            select(func.count())
            .select_from(Loan)
            .where(Loan.book_id == book_id, Loan.status == LoanStatus.ACTIVE)
        )
        return row.total_copies, row.available_copies, active

    return _state


@pytest.fixture
def assert_consistent(inventory_state):
    async def _check(book_id: uuid.UUID) -> int:
        total, available, active = await inventory_state(book_id)
        assert 0 <= available <= total
        assert available == total - active
        return available

    return _check
