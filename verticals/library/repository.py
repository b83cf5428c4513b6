"""Library repositories: async database access for catalog and loans.

Extends BaseRepository with library-specific queries. Anything the lending
engine reads (domains, editions, loan history) is eagerly loaded and mapped
onto the frozen reference schemas, since async sessions cannot lazy-load
relationships later.
"""

from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from patterns.repository import BaseRepository
from verticals.library.models.db_models import (
    Account,
    Author,
    Book,
    BorrowRecord,
    Condition,
    Domain,
    Edition,
    book_authors,
    book_domains,
    loan_editions,
)
from verticals.library.models.schemas import (
    AccountRef,
    ConditionResponse,
    DomainNode,
    EditionRef,
    LoanRecord,
)


_EDITION_WITH_BOOK = selectinload(Edition.book).selectinload(Book.domains)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

class ConditionRepository(BaseRepository[Condition]):
    """Named policy values. Satisfies the ConditionStore protocol."""

    model = Condition

    async def get_row_by_name(self, name: str) -> Optional[Condition]:
        stmt = select(Condition).where(Condition.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Optional[ConditionResponse]:
        row = await self.get_row_by_name(name)
        return ConditionResponse.model_validate(row) if row else None

    async def list_all(self) -> list[ConditionResponse]:
        result = await self.session.execute(select(Condition).order_by(Condition.name))
        return [ConditionResponse.model_validate(row) for row in result.scalars().all()]


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------

class DomainRepository(BaseRepository[Domain]):
    model = Domain

    async def get_by_name(self, name: str) -> Optional[Domain]:
        stmt = select(Domain).where(Domain.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[DomainNode]:
        """The whole forest, for hierarchy resolution."""
        result = await self.session.execute(select(Domain).order_by(Domain.id))
        return [DomainNode.model_validate(row) for row in result.scalars().all()]

    async def list_children(self, parent_id: int) -> list[Domain]:
        stmt = select(Domain).where(Domain.parent_id == parent_id).order_by(Domain.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_books(self, domain_id: int) -> int:
        stmt = select(func.count()).select_from(book_domains).where(
            book_domains.c.domain_id == domain_id
        )
        return (await self.session.execute(stmt)).scalar() or 0


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class AuthorRepository(BaseRepository[Author]):
    model = Author

    async def get_by_name(self, full_name: str) -> Optional[Author]:
        stmt = select(Author).where(Author.full_name == full_name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, author_ids: Iterable[int]) -> list[Author]:
        stmt = select(Author).where(Author.id.in_(list(author_ids)))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_books(self, author_id: int) -> int:
        stmt = select(func.count()).select_from(book_authors).where(
            book_authors.c.author_id == author_id
        )
        return (await self.session.execute(stmt)).scalar() or 0


class BookRepository(BaseRepository[Book]):
    """Books with their authors, domains and editions."""

    model = Book

    def _select(self):
        return select(Book).options(
            selectinload(Book.authors),
            selectinload(Book.domains),
            selectinload(Book.editions),
        )

    async def get_full(self, book_id: int) -> Optional[Book]:
        result = await self.session.execute(self._select().where(Book.id == book_id))
        return result.scalar_one_or_none()

    async def get(self, item_id: int) -> Optional[Book]:
        # update() and delete() touch the collections, which cannot lazy-load
        return await self.get_full(item_id)

    async def list_by_title(self, title: str) -> list[Book]:
        result = await self.session.execute(self._select().where(Book.title == title))
        return list(result.scalars().all())

    async def list_in_domains(self, domain_ids: Iterable[int]) -> list[Book]:
        """Books filed under any of the given domains."""
        stmt = (
            self._select()
            .join(book_domains, book_domains.c.book_id == Book.id)
            .where(book_domains.c.domain_id.in_(list(domain_ids)))
            .distinct()
            .order_by(Book.title)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class EditionRepository(BaseRepository[Edition]):
    model = Edition

    async def get_refs(self, edition_ids: Iterable[int]) -> dict[int, EditionRef]:
        """Editions with their book and domains, keyed by id."""
        stmt = (
            select(Edition)
            .options(_EDITION_WITH_BOOK)
            .where(Edition.id.in_(list(edition_ids)))
        )
        result = await self.session.execute(stmt)
        return {row.id: EditionRef.model_validate(row) for row in result.scalars().all()}


class AccountRepository(BaseRepository[Account]):
    model = Account

    async def get_by_email(self, email: str) -> Optional[Account]:
        stmt = select(Account).where(Account.email == email)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_ref(self, account_id: int) -> Optional[AccountRef]:
        row = await self.get(account_id)
        return AccountRef.model_validate(row) if row else None


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------

class BorrowRecordRepository(BaseRepository[BorrowRecord]):
    """Loan history. Satisfies the BorrowHistoryStore protocol."""

    model = BorrowRecord

    def _with_editions(self):
        return select(BorrowRecord).options(
            selectinload(BorrowRecord.editions).options(_EDITION_WITH_BOOK)
        )

    async def get_row(self, loan_id: int, fresh: bool = False) -> Optional[BorrowRecord]:
        """Loan row with editions. fresh=True overwrites rows already in the session."""
        stmt = self._with_editions().where(BorrowRecord.id == loan_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_reader(self, reader_id: int) -> list[LoanRecord]:
        """Every loan of the reader, oldest first. Date filtering is the caller's."""
        stmt = (
            self._with_editions()
            .where(BorrowRecord.reader_id == reader_id)
            .order_by(BorrowRecord.borrow_date, BorrowRecord.id)
        )
        result = await self.session.execute(stmt)
        return [LoanRecord.model_validate(row) for row in result.scalars().all()]

    async def count_for_account(self, account_id: int) -> int:
        """Loans the account took part in, as reader or as librarian."""
        stmt = select(func.count()).select_from(BorrowRecord).where(
            or_(BorrowRecord.reader_id == account_id, BorrowRecord.librarian_id == account_id)
        )
        return (await self.session.execute(stmt)).scalar() or 0

    async def count_for_editions(self, edition_ids: Iterable[int]) -> int:
        stmt = select(func.count(func.distinct(loan_editions.c.loan_id))).where(
            loan_editions.c.edition_id.in_(list(edition_ids))
        )
        return (await self.session.execute(stmt)).scalar() or 0
