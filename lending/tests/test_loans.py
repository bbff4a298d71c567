"""Loan ledger tests.

Service-level tests exercise the ledger directly against a throw-away SQLite
database; HTTP tests go through the FastAPI app with real bearer tokens.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from lending.auth.actor import Actor, Role
from lending.core.errors import (
    AlreadyReturned,
    BookNotFound,
    DuplicateActiveLoan,
    Forbidden,
    InvalidDuration,
    InventoryCorrupted,
    LoanNotFound,
    OutOfStock,
)
from lending.models.book import Book
from lending.models.loan import EffectiveStatus, Loan, LoanStatus
from lending.services.ledger import create_loan, effective_status, get_loan, list_loans, return_loan

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# effective_status (pure, no DB)
# ---------------------------------------------------------------------------


def test_effective_status_active_before_due() -> None:
    assert effective_status(LoanStatus.ACTIVE, NOW + timedelta(days=1), NOW) == EffectiveStatus.ACTIVE


def test_effective_status_active_exactly_at_due() -> None:
    assert effective_status(LoanStatus.ACTIVE, NOW, NOW) == EffectiveStatus.ACTIVE


def test_effective_status_overdue_after_due() -> None:
    assert (
        effective_status(LoanStatus.ACTIVE, NOW - timedelta(seconds=1), NOW)
        == EffectiveStatus.OVERDUE
    )


def test_effective_status_returned_wins_over_due_date() -> None:
    assert (
        effective_status(LoanStatus.RETURNED, NOW - timedelta(days=30), NOW)
        == EffectiveStatus.RETURNED
    )


# ---------------------------------------------------------------------------
# create_loan
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_loan_reserves_a_copy(db, make_book, reader, assert_consistent) -> None:
    book = await make_book(total_copies=2)

    loan = await create_loan(db, actor=reader, book_id=book.id, duration_days=14, now=NOW)

    assert loan.status == LoanStatus.ACTIVE
    assert loan.holder_id == reader.id
    assert loan.loan_date == NOW
    assert loan.due_date == NOW + timedelta(days=14)
    assert loan.return_date is None
    assert await assert_consistent(book.id) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [0, -1, 91])
async def test_create_loan_rejects_duration_out_of_range(
    db, make_book, reader, assert_consistent, days
) -> None:
    book = await make_book()

    with pytest.raises(InvalidDuration):
        await create_loan(db, actor=reader, book_id=book.id, duration_days=days)

    assert await assert_consistent(book.id) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [1, 90])
async def test_create_loan_accepts_duration_bounds(db, make_book, reader, days) -> None:
    book = await make_book()
    loan = await create_loan(db, actor=reader, book_id=book.id, duration_days=days, now=NOW)
    assert loan.due_date - loan.loan_date == timedelta(days=days)


@pytest.mark.asyncio
async def test_create_loan_unknown_book(db, reader) -> None:
    with pytest.raises(BookNotFound):
        await create_loan(db, actor=reader, book_id=uuid.uuid4(), duration_days=14)


@pytest.mark.asyncio
async def test_create_loan_out_of_stock(db, make_book, assert_consistent) -> None:
    book = await make_book(total_copies=1)
    book_id = book.id
    first = Actor(id=uuid.uuid4(), role=Role.READER)
    second = Actor(id=uuid.uuid4(), role=Role.READER)

    await create_loan(db, actor=first, book_id=book_id, duration_days=14)
    with pytest.raises(OutOfStock):
        await create_loan(db, actor=second, book_id=book_id, duration_days=14)

    assert await assert_consistent(book_id) == 0
    loans = (await db.scalars(select(Loan).where(Loan.book_id == book_id))).all()
    assert len(loans) == 1


@pytest.mark.asyncio
async def test_duplicate_active_loan_then_reborrow_after_return(
    db, make_book, reader, assert_consistent
) -> None:
    book = await make_book(total_copies=3)
    book_id = book.id

    loan = await create_loan(db, actor=reader, book_id=book_id, duration_days=14)
    loan_id = loan.id
    with pytest.raises(DuplicateActiveLoan):
        await create_loan(db, actor=reader, book_id=book_id, duration_days=14)
    # The failed attempt must not have taken a copy.
    assert await assert_consistent(book_id) == 2

    await return_loan(db, loan_id=loan_id, actor=reader)
    again = await create_loan(db, actor=reader, book_id=book_id, duration_days=7)

    assert again.id != loan_id
    assert again.status == LoanStatus.ACTIVE
    assert await assert_consistent(book_id) == 2


@pytest.mark.asyncio
async def test_overdue_loan_still_blocks_duplicate(db, make_book, reader) -> None:
    book = await make_book(total_copies=2)
    book_id = book.id
    await create_loan(
        db, actor=reader, book_id=book_id, duration_days=1, now=NOW - timedelta(days=10)
    )

    with pytest.raises(DuplicateActiveLoan):
        await create_loan(db, actor=reader, book_id=book_id, duration_days=14, now=NOW)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_last_copy_race_has_exactly_one_winner(
    session_factory, make_book, assert_consistent
) -> None:
    book = await make_book(total_copies=1)
    borrowers = [Actor(id=uuid.uuid4(), role=Role.READER) for _ in range(2)]

    async def borrow(actor: Actor) -> Loan:
        async with session_factory() as session:
            return await create_loan(session, actor=actor, book_id=book.id, duration_days=14)

    results = await asyncio.gather(*(borrow(a) for a in borrowers), return_exceptions=True)

    loans = [r for r in results if isinstance(r, Loan)]
    errors = [r for r in results if isinstance(r, BaseException)]
    assert len(loans) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], OutOfStock)
    assert await assert_consistent(book.id) == 0


@pytest.mark.asyncio
async def test_many_concurrent_borrowers_never_oversell(
    session_factory, make_book, assert_consistent
) -> None:
    book = await make_book(total_copies=3)
    borrowers = [Actor(id=uuid.uuid4(), role=Role.READER) for _ in range(8)]

    async def borrow(actor: Actor) -> Loan:
        async with session_factory() as session:
            return await create_loan(session, actor=actor, book_id=book.id, duration_days=14)

    results = await asyncio.gather(*(borrow(a) for a in borrowers), return_exceptions=True)

    assert sum(isinstance(r, Loan) for r in results) == 3
    assert all(isinstance(r, (Loan, OutOfStock)) for r in results)
    assert await assert_consistent(book.id) == 0


@pytest.mark.asyncio
async def test_same_holder_racing_gets_one_loan(
    session_factory, make_book, reader, assert_consistent
) -> None:
    book = await make_book(total_copies=5)

    async def borrow() -> Loan:
        async with session_factory() as session:
            return await create_loan(session, actor=reader, book_id=book.id, duration_days=14)

    results = await asyncio.gather(borrow(), borrow(), return_exceptions=True)

    assert sum(isinstance(r, Loan) for r in results) == 1
    assert sum(isinstance(r, DuplicateActiveLoan) for r in results) == 1
    assert await assert_consistent(book.id) == 4


# ---------------------------------------------------------------------------
# return_loan
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_return_own_loan_releases_copy(db, make_book, reader, assert_consistent) -> None:
    book = await make_book(total_copies=1)
    loan = await create_loan(db, actor=reader, book_id=book.id, duration_days=14, now=NOW)

    returned = await return_loan(db, loan_id=loan.id, actor=reader, now=NOW + timedelta(days=3))

    assert returned.status == LoanStatus.RETURNED
    assert returned.return_date == NOW + timedelta(days=3)
    assert await assert_consistent(book.id) == 1


@pytest.mark.asyncio
async def test_return_twice_is_rejected_and_counts_unchanged(
    db, make_book, reader, assert_consistent
) -> None:
    book = await make_book(total_copies=2)
    book_id = book.id
    loan = await create_loan(db, actor=reader, book_id=book_id, duration_days=14)
    loan_id = loan.id
    await return_loan(db, loan_id=loan_id, actor=reader)
    before = await assert_consistent(book_id)

    with pytest.raises(AlreadyReturned):
        await return_loan(db, loan_id=loan_id, actor=reader)

    assert await assert_consistent(book_id) == before == 2


@pytest.mark.asyncio
async def test_reader_cannot_return_someone_elses_loan(
    db, make_book, reader, assert_consistent
) -> None:
    book = await make_book()
    book_id = book.id
    loan = await create_loan(db, actor=reader, book_id=book_id, duration_days=14)
    loan_id = loan.id
    other = Actor(id=uuid.uuid4(), role=Role.READER)

    with pytest.raises(Forbidden):
        await return_loan(db, loan_id=loan_id, actor=other)

    stored = await db.scalar(select(Loan.status).where(Loan.id == loan_id))
    assert stored == LoanStatus.ACTIVE
    assert await assert_consistent(book_id) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [Role.LIBRARIAN, Role.ADMIN])
async def test_staff_can_return_any_loan(db, make_book, reader, assert_consistent, role) -> None:
    book = await make_book()
    loan = await create_loan(db, actor=reader, book_id=book.id, duration_days=14)
    staff = Actor(id=uuid.uuid4(), role=role)

    returned = await return_loan(db, loan_id=loan.id, actor=staff)

    assert returned.status == LoanStatus.RETURNED
    assert await assert_consistent(book.id) == 1


@pytest.mark.asyncio
async def test_return_unknown_loan(db, reader) -> None:
    with pytest.raises(LoanNotFound):
        await return_loan(db, loan_id=uuid.uuid4(), actor=reader)


@pytest.mark.asyncio
async def test_return_rolls_back_when_no_copy_is_out(
    db, make_book, reader, inventory_state
) -> None:
    book = await make_book(total_copies=1)
    book_id = book.id
    loan = await create_loan(db, actor=reader, book_id=book_id, duration_days=14)
    loan_id = loan.id
    # Shelve the copy without going through the ledger.
    await db.execute(
        update(Book)
        .where(Book.id == book_id)
        .values(available_copies=Book.total_copies)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    with pytest.raises(InventoryCorrupted):
        await return_loan(db, loan_id=loan_id, actor=reader)

    stored = await db.scalar(select(Loan.status).where(Loan.id == loan_id))
    assert stored == LoanStatus.ACTIVE
    assert await inventory_state(book_id) == (1, 1, 1)


@pytest.mark.asyncio
async def test_concurrent_returns_release_one_copy(
    session_factory, db, make_book, reader, assert_consistent
) -> None:
    book = await make_book(total_copies=1)
    loan = await create_loan(db, actor=reader, book_id=book.id, duration_days=14)

    async def give_back() -> Loan:
        async with session_factory() as session:
            return await return_loan(session, loan_id=loan.id, actor=reader)

    results = await asyncio.gather(give_back(), give_back(), return_exceptions=True)

    assert sum(isinstance(r, Loan) for r in results) == 1
    assert sum(isinstance(r, AlreadyReturned) for r in results) == 1
    assert await assert_consistent(book.id) == 1


# ---------------------------------------------------------------------------
# Overdue is derived, not stored
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_overdue_is_computed_on_read_and_never_written(db, make_book, reader) -> None:
    book = await make_book()
    loan = await create_loan(
        db, actor=reader, book_id=book.id, duration_days=7, now=NOW - timedelta(days=30)
    )

    page = await list_loans(db, actor=reader, now=NOW)
    assert [v.status for v in page.items] == [EffectiveStatus.OVERDUE]

    # Listing performed no write-back.
    stored = await db.scalar(select(Loan.status).where(Loan.id == loan.id))
    assert stored == LoanStatus.ACTIVE

    # The same stored row reads ACTIVE at an earlier instant.
    earlier = await list_loans(db, actor=reader, now=NOW - timedelta(days=29))
    assert [v.status for v in earlier.items] == [EffectiveStatus.ACTIVE]

    await return_loan(db, loan_id=loan.id, actor=reader, now=NOW)
    after = await list_loans(db, actor=reader, now=NOW + timedelta(days=365))
    assert [v.status for v in after.items] == [EffectiveStatus.RETURNED]


@pytest.mark.asyncio
async def test_overdue_loan_still_holds_its_copy(db, make_book, reader, assert_consistent) -> None:
    book = await make_book(total_copies=1)
    book_id = book.id
    await create_loan(
        db, actor=reader, book_id=book_id, duration_days=1, now=NOW - timedelta(days=5)
    )
    other = Actor(id=uuid.uuid4(), role=Role.READER)

    with pytest.raises(OutOfStock):
        await create_loan(db, actor=other, book_id=book_id, duration_days=14, now=NOW)
    assert await assert_consistent(book_id) == 0


@pytest.mark.asyncio
async def test_list_loans_filters_by_effective_status(db, make_book, librarian) -> None:
    overdue_book = await make_book()
    active_book = await make_book()
    returned_book = await make_book()
    holder = Actor(id=uuid.uuid4(), role=Role.READER)

    await create_loan(
        db, actor=holder, book_id=overdue_book.id, duration_days=3, now=NOW - timedelta(days=10)
    )
    await create_loan(db, actor=holder, book_id=active_book.id, duration_days=14, now=NOW)
    closed = await create_loan(db, actor=holder, book_id=returned_book.id, duration_days=14, now=NOW)
    await return_loan(db, loan_id=closed.id, actor=holder, now=NOW)

    check_at = NOW + timedelta(hours=1)
    for status, book in [
        (EffectiveStatus.OVERDUE, overdue_book),
        (EffectiveStatus.ACTIVE, active_book),
        (EffectiveStatus.RETURNED, returned_book),
    ]:
        page = await list_loans(db, actor=librarian, status=status, now=check_at)
        assert page.total == 1
        assert page.items[0].loan.book_id == book.id
        assert page.items[0].status == status


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reader_lists_only_own_loans(db, make_book) -> None:
    alice = Actor(id=uuid.uuid4(), role=Role.READER)
    bob = Actor(id=uuid.uuid4(), role=Role.READER)
    book = await make_book(total_copies=2)
    await create_loan(db, actor=alice, book_id=book.id, duration_days=14)
    await create_loan(db, actor=bob, book_id=book.id, duration_days=14)

    page = await list_loans(db, actor=alice)

    assert page.total == 1
    assert {v.loan.holder_id for v in page.items} == {alice.id}


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [Role.LIBRARIAN, Role.ADMIN])
async def test_staff_list_all_loans(db, make_book, role) -> None:
    alice = Actor(id=uuid.uuid4(), role=Role.READER)
    bob = Actor(id=uuid.uuid4(), role=Role.READER)
    book = await make_book(total_copies=2)
    await create_loan(db, actor=alice, book_id=book.id, duration_days=14)
    await create_loan(db, actor=bob, book_id=book.id, duration_days=14)

    page = await list_loans(db, actor=Actor(id=uuid.uuid4(), role=role))

    assert {v.loan.holder_id for v in page.items} == {alice.id, bob.id}


@pytest.mark.asyncio
async def test_list_loans_paginates_newest_first(db, make_book, reader) -> None:
    books = [await make_book() for _ in range(3)]
    for offset, book in enumerate(books):
        await create_loan(
            db, actor=reader, book_id=book.id, duration_days=14, now=NOW + timedelta(hours=offset)
        )

    first = await list_loans(db, actor=reader, page=1, page_size=2, now=NOW)
    second = await list_loans(db, actor=reader, page=2, page_size=2, now=NOW)

    assert first.total == second.total == 3
    assert [v.loan.book_id for v in first.items] == [books[2].id, books[1].id]
    assert [v.loan.book_id for v in second.items] == [books[0].id]


@pytest.mark.asyncio
async def test_get_loan_visibility(db, make_book, reader, librarian) -> None:
    book = await make_book()
    loan = await create_loan(db, actor=reader, book_id=book.id, duration_days=14)

    assert (await get_loan(db, loan_id=loan.id, actor=reader)).loan.id == loan.id
    assert (await get_loan(db, loan_id=loan.id, actor=reader)).book_title == book.title
    assert (await get_loan(db, loan_id=loan.id, actor=librarian)).loan.id == loan.id
    with pytest.raises(Forbidden):
        await get_loan(db, loan_id=loan.id, actor=Actor(id=uuid.uuid4(), role=Role.READER))


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_loan_no_auth(client: AsyncClient) -> None:
    resp = await client.post("/api/v1/loans", json={"book_id": str(uuid.uuid4())})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_list_loans_invalid_token(client: AsyncClient) -> None:
    resp = await client.get(
        "/api/v1/loans", headers={"Authorization": "Bearer not.a.valid.token"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_borrow_and_return_over_http(
    client: AsyncClient, make_book, reader, auth_headers, assert_consistent
) -> None:
    book = await make_book(total_copies=1)
    headers = auth_headers(reader)

    resp = await client.post(
        "/api/v1/loans", json={"book_id": str(book.id), "duration_days": 10}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["book_id"] == str(book.id)
    assert body["book_title"] == book.title
    assert body["holder_id"] == str(reader.id)
    assert body["status"] == "ACTIVE"
    assert body["return_date"] is None
    assert await assert_consistent(book.id) == 0

    resp = await client.post(f"/api/v1/loans/{body['id']}/return", headers=headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "RETURNED"
    assert resp.json()["return_date"] is not None
    assert await assert_consistent(book.id) == 1

    resp = await client.post(f"/api/v1/loans/{body['id']}/return", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "already_returned"


@pytest.mark.asyncio
async def test_http_error_codes(client: AsyncClient, make_book, auth_headers) -> None:
    book = await make_book(total_copies=1)
    alice = auth_headers(Actor(id=uuid.uuid4(), role=Role.READER))
    bob = auth_headers(Actor(id=uuid.uuid4(), role=Role.READER))

    resp = await client.post("/api/v1/loans", json={"book_id": str(book.id)}, headers=alice)
    assert resp.status_code == 201
    loan_id = resp.json()["id"]

    resp = await client.post("/api/v1/loans", json={"book_id": str(book.id)}, headers=alice)
    assert resp.status_code == 409
    assert resp.json()["code"] == "duplicate_active_loan"

    resp = await client.post("/api/v1/loans", json={"book_id": str(book.id)}, headers=bob)
    assert resp.status_code == 409
    assert resp.json()["code"] == "out_of_stock"

    resp = await client.post(
        "/api/v1/loans", json={"book_id": str(book.id), "duration_days": 91}, headers=bob
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_duration"

    resp = await client.post("/api/v1/loans", json={"book_id": str(uuid.uuid4())}, headers=bob)
    assert resp.status_code == 404
    assert resp.json()["code"] == "book_not_found"

    resp = await client.post(f"/api/v1/loans/{loan_id}/return", headers=bob)
    assert resp.status_code == 403

    resp = await client.get(f"/api/v1/loans/{loan_id}", headers=bob)
    assert resp.status_code == 403

    resp = await client.post(f"/api/v1/loans/{uuid.uuid4()}/return", headers=bob)
    assert resp.status_code == 404
    assert resp.json()["code"] == "loan_not_found"


@pytest.mark.asyncio
async def test_list_loans_over_http_is_scoped(
    client: AsyncClient, db, make_book, auth_headers, librarian
) -> None:
    alice = Actor(id=uuid.uuid4(), role=Role.READER)
    bob = Actor(id=uuid.uuid4(), role=Role.READER)
    book = await make_book(total_copies=2)
    await create_loan(db, actor=alice, book_id=book.id, duration_days=14)
    await create_loan(db, actor=bob, book_id=book.id, duration_days=14)

    resp = await client.get("/api/v1/loans", headers=auth_headers(alice))
    assert resp.status_code == 200, resp.text
    assert {item["holder_id"] for item in resp.json()["items"]} == {str(alice.id)}

    resp = await client.get("/api/v1/loans", headers=auth_headers(librarian))
    assert resp.status_code == 200, resp.text
    assert {item["holder_id"] for item in resp.json()["items"]} == {str(alice.id), str(bob.id)}


@pytest.mark.asyncio
async def test_list_loans_reports_overdue_over_http(
    client: AsyncClient, db, make_book, reader, auth_headers
) -> None:
    book = await make_book()
    past = datetime.now(tz=timezone.utc) - timedelta(days=20)
    await create_loan(db, actor=reader, book_id=book.id, duration_days=5, now=past)

    resp = await client.get(
        "/api/v1/loans", params={"status": "OVERDUE"}, headers=auth_headers(reader)
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["total"] == 1
    assert resp.json()["items"][0]["status"] == "OVERDUE"
    assert resp.json()["items"][0]["book_title"] == book.title
