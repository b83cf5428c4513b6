"""Shared pytest fixtures and test helpers for the library tests."""

from __future__ import annotations

import os
from datetime import date, timedelta
from pathlib import Path
from typing import Any

# Must be set before core.database builds its module-level engine.
os.environ.setdefault("LIBRARY_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio

from core import database
from patterns.domain_config import DatabaseConfig
from verticals.library.models.schemas import (
    AccountRef,
    AccountType,
    BookRef,
    BorrowRequest,
    BorrowStatus,
    DomainNode,
    EditionRef,
    LoanRecord,
)
from verticals.library.policy import PolicySnapshot

TODAY = date(2024, 6, 15)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Session factory bound to a fresh file-backed SQLite database."""
    import verticals.library.models.db_models  # noqa: F401

    factory = database.configure(
        DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'library.db'}")
    )
    await database.init_db()
    try:
        yield factory
    finally:
        await database.close_db()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def library(session_factory) -> dict[str, int]:
    """Seeded catalog: default conditions, a small domain forest, four books.

    Domains: Science > Informatics > Algorithms, plus History and Poetry.
    Returns the ids tests need, keyed by short names.
    """
    from verticals.library.catalog import CatalogService
    from verticals.library.models.schemas import (
        AuthorCreate,
        BookCreate,
        DomainCreate,
    )

    async with session_factory() as s:
        catalog = CatalogService(s)
        await catalog.seed_default_conditions()
        author = await catalog.add_author(AuthorCreate(full_name="Mircea Eliade"))
        science = await catalog.add_domain(DomainCreate(name="Science"))
        informatics = await catalog.add_domain(
            DomainCreate(name="Informatics", parent_id=science.id)
        )
        algorithms = await catalog.add_domain(
            DomainCreate(name="Algorithms", parent_id=informatics.id)
        )
        history = await catalog.add_domain(DomainCreate(name="History"))
        poetry = await catalog.add_domain(DomainCreate(name="Poetry"))

        books = {}
        for key, title, domain_id in [
            ("algorithms", "Introduction to Algorithms", algorithms.id),
            ("informatics", "Computer Systems", informatics.id),
            ("history", "History of Religious Ideas", history.id),
            ("poetry", "Selected Poems", poetry.id),
        ]:
            books[key] = await catalog.add_book(
                BookCreate(
                    title=title,
                    author_ids=[author.id],
                    domain_ids=[domain_id],
                    editions=[edition_payload()],
                )
            )

        reader = await catalog.add_account(account_payload("Ana", "ana@library.ro"))
        librarian = await catalog.add_account(
            account_payload("Ion", "ion@library.ro", AccountType.LIBRARIAN)
        )
        both = await catalog.add_account(
            account_payload("Maria", "maria@library.ro", AccountType.LIBRARIAN_READER)
        )
        await s.commit()

    ids = {f"edition_{key}": book.editions[0].id for key, book in books.items()}
    ids.update({f"book_{key}": book.id for key, book in books.items()})
    ids.update(
        author=author.id,
        science=science.id,
        informatics=informatics.id,
        algorithms=algorithms.id,
        history=history.id,
        poetry=poetry.id,
        reader=reader.id,
        librarian=librarian.id,
        librarian_reader=both.id,
    )
    return ids


def edition_payload(copies: int = 10, reading: int = 2):
    from verticals.library.models.schemas import BookType, EditionCreate

    return EditionCreate(
        publishing_house="Humanitas",
        year=2005,
        number_of_pages=320,
        edition_number=1,
        book_type=BookType.PAPERBACK,
        copies_for_borrowing=copies,
        copies_for_reading=reading,
    )


def account_payload(
    first_name: str, email: str, account_type: AccountType = AccountType.READER
):
    from verticals.library.models.schemas import AccountCreate

    return AccountCreate(
        first_name=first_name,
        last_name="Popescu",
        address="Strada Lunga 12, Brasov",
        email=email,
        phone_number="0722123456",
        password="Secret1!pass",
        account_type=account_type,
    )

# ---------------------------------------------------------------------------
# Policy fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def policy() -> PolicySnapshot:
    """Default library policy (NMC=9, PER=30, C=3, ...)."""
    return PolicySnapshot.defaults()


# ---------------------------------------------------------------------------
# Shared test helpers (reference models for the pure engine tests)
# ---------------------------------------------------------------------------


def domain(node_id: int, name: str, parent_id: int | None = None) -> DomainNode:
    return DomainNode(id=node_id, name=name, parent_id=parent_id)


def book(book_id: int, *domains: DomainNode, title: str | None = None) -> BookRef:
    return BookRef(id=book_id, title=title or f"Book number {book_id}", domains=domains)


def edition(
    edition_id: int,
    of: BookRef,
    copies: int = 10,
    initial_stock: int | None = None,
    reading: int = 0,
) -> EditionRef:
    return EditionRef(
        id=edition_id,
        book=of,
        copies_for_borrowing=copies,
        copies_for_reading=reading,
        initial_stock=initial_stock if initial_stock is not None else copies + reading,
    )


def account(account_id: int, account_type: AccountType = AccountType.READER) -> AccountRef:
    return AccountRef(
        id=account_id,
        first_name="Ana",
        last_name="Popescu",
        account_type=account_type,
    )


def loan(
    loan_id: int,
    editions: list[EditionRef],
    borrowed: date,
    reader_id: int = 1,
    loan_days: int = 14,
    extension_days: int = 0,
    status: BorrowStatus = BorrowStatus.BORROWED,
) -> LoanRecord:
    due = borrowed + timedelta(days=loan_days)
    return LoanRecord(
        id=loan_id,
        reader_id=reader_id,
        librarian_id=99,
        editions=tuple(editions),
        borrow_date=borrowed,
        original_return_date=due,
        actual_return_date=due + timedelta(days=extension_days),
        status=status,
    )


def request_for(
    editions: list[EditionRef],
    reader: AccountRef | None = None,
    borrowed: date = TODAY,
) -> BorrowRequest:
    return BorrowRequest(
        reader=reader or account(1),
        librarian=account(99, AccountType.LIBRARIAN),
        editions=tuple(editions),
        borrow_date=borrowed,
        desired_return_date=borrowed + timedelta(days=14),
    )


def distinct_editions(count: int, start: int = 1, **kwargs: Any) -> list[EditionRef]:
    """count editions of count different books, each in its own domain."""
    return [
        edition(i, book(i, domain(i, f"Domain {i}")), **kwargs)
        for i in range(start, start + count)
    ]


class RecordingObserver:
    """DecisionObserver that keeps every reported decision."""

    def __init__(self):
        self.events: list[tuple[str, Any, dict[str, Any]]] = []

    def on_decision(self, event, decision, **context):
        self.events.append((event, decision, context))
