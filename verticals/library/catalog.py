"""Catalog service: conditions, domains, authors, books, editions, accounts.

Runs on a request-scoped session; the caller (or the get_session
dependency) commits. Catalog rules raise CatalogViolation:

- names/emails are unique, on create and on rename (DUPLICATE_ENTITY)
- a book is filed under at most DOMENII domains (TOO_MANY_DOMAINS)
- a book is never filed under a domain and its own ancestor (RELATED_DOMAINS)
- a domain's parent must already exist (UNKNOWN_PARENT)
- rows that loan history or other catalog rows point at stay (IN_USE)
"""

from typing import Optional

import structlog
from fastapi import Depends
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from verticals.library.config import config as library_config
from verticals.library.errors import (
    CatalogCode,
    CatalogViolation,
    EntityNotFound,
    LendingValidationError,
)
from verticals.library.hierarchy import DomainHierarchy
from verticals.library.models.db_models import (
    Account,
    Book,
    Condition,
    Domain,
    Edition,
)
from verticals.library.models.schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    AuthorCreate,
    AuthorResponse,
    AuthorUpdate,
    BookCreate,
    BookResponse,
    BookUpdate,
    ConditionCreate,
    ConditionResponse,
    ConditionUpdate,
    DomainCreate,
    DomainNode,
    DomainUpdate,
    EditionCreate,
    EditionResponse,
    EditionUpdate,
)
from verticals.library.policy import (
    DEFAULT_CONDITIONS,
    ConditionName,
    ConditionRegistry,
)
from verticals.library.repository import (
    AccountRepository,
    AuthorRepository,
    BookRepository,
    BorrowRecordRepository,
    ConditionRepository,
    DomainRepository,
    EditionRepository,
)

logger = structlog.get_logger(__name__)

_pwd_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_ctx.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return _pwd_ctx.verify(password, password_hash)


def _duplicate(entity: str, field: str, value) -> CatalogViolation:
    return CatalogViolation(
        CatalogCode.DUPLICATE_ENTITY,
        f"{entity} with {field} {value!r} already exists",
        details={"entity": entity, field: value},
    )


def _in_use(entity: str, entity_id: int, **refs: int) -> CatalogViolation:
    return CatalogViolation(
        CatalogCode.IN_USE,
        f"{entity} {entity_id} is still referenced",
        details={"entity": entity, "id": entity_id, **refs},
    )


def _edition_row(data: EditionCreate) -> Edition:
    return Edition(
        **data.model_dump(),
        initial_stock=data.copies_for_borrowing + data.copies_for_reading,
    )


class CatalogService:
    """Catalog management on one session."""

    def __init__(self, session: AsyncSession, strict_conditions: Optional[bool] = None):
        self.session = session
        self.conditions = ConditionRepository(session)
        self.domains = DomainRepository(session)
        self.authors = AuthorRepository(session)
        self.books = BookRepository(session)
        self.editions = EditionRepository(session)
        self.accounts = AccountRepository(session)
        self.loans = BorrowRecordRepository(session)
        if strict_conditions is None:
            strict_conditions = library_config.lending.strict_conditions
        self.registry = ConditionRegistry(self.conditions, strict=strict_conditions)

    # =================== CONDITIONS ===================

    async def add_condition(self, data: ConditionCreate) -> ConditionResponse:
        if await self.conditions.get_row_by_name(data.name):
            raise _duplicate("Condition", "name", data.name)
        row = await self.conditions.create(data.model_dump())
        logger.info("condition.added", name=row.name, value=row.value)
        return ConditionResponse.model_validate(row)

    async def update_condition(self, condition_id: int, data: ConditionUpdate) -> ConditionResponse:
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            existing = await self.conditions.get_row_by_name(changes["name"])
            if existing is not None and existing.id != condition_id:
                raise _duplicate("Condition", "name", changes["name"])
        row = await self.conditions.update(condition_id, changes)
        if row is None:
            raise EntityNotFound("Condition", condition_id)
        logger.info("condition.updated", name=row.name, changes=sorted(changes))
        return ConditionResponse.model_validate(row)

    async def list_conditions(self, name: Optional[str] = None) -> list[ConditionResponse]:
        if name is None:
            return await self.conditions.list_all()
        condition = await self.conditions.get_by_name(name)
        return [condition] if condition else []

    async def get_condition(self, name: str) -> ConditionResponse:
        condition = await self.conditions.get_by_name(name)
        if condition is None:
            raise EntityNotFound("Condition", name)
        return condition

    async def get_condition_by_id(self, condition_id: int) -> ConditionResponse:
        row = await self.conditions.get(condition_id)
        if row is None:
            raise EntityNotFound("Condition", condition_id)
        return ConditionResponse.model_validate(row)

    async def delete_condition(self, condition_id: int) -> None:
        """Remove a condition. Lending then fails with MissingCondition until it is re-added."""
        if not await self.conditions.delete(condition_id):
            raise EntityNotFound("Condition", condition_id)
        logger.warning("condition.deleted", condition_id=condition_id)

    async def seed_default_conditions(self) -> list[ConditionResponse]:
        """Insert every default condition that is not present yet."""
        seeded = []
        for name, (value, description) in DEFAULT_CONDITIONS.items():
            if await self.conditions.get_row_by_name(name.value):
                continue
            row = Condition(name=name.value, description=description, value=value)
            self.session.add(row)
            seeded.append(row)
        await self.session.flush()
        if seeded:
            logger.info("condition.seeded", names=[row.name for row in seeded])
        return [ConditionResponse.model_validate(row) for row in seeded]

    # =================== DOMAINS ===================

    async def add_domain(self, data: DomainCreate) -> DomainNode:
        if await self.domains.get_by_name(data.name):
            raise _duplicate("Domain", "name", data.name)
        if data.parent_id is not None and await self.domains.get(data.parent_id) is None:
            raise CatalogViolation(
                CatalogCode.UNKNOWN_PARENT,
                f"Parent domain {data.parent_id} does not exist",
                details={"parent_id": data.parent_id},
            )
        row = await self.domains.create(data.model_dump())
        node = DomainNode.model_validate(row)
        # raises CycleDetected before the insert commits
        DomainHierarchy(await self.domains.list_all())
        logger.info("domain.added", domain_id=node.id, parent_id=node.parent_id)
        return node

    async def list_domains(self, name: Optional[str] = None) -> list[DomainNode]:
        if name is None:
            return await self.domains.list_all()
        row = await self.domains.get_by_name(name)
        return [DomainNode.model_validate(row)] if row else []

    async def get_domain(self, domain_id: int) -> DomainNode:
        row = await self.domains.get(domain_id)
        if row is None:
            raise EntityNotFound("Domain", domain_id)
        return DomainNode.model_validate(row)

    async def child_domains(self, domain_id: int) -> list[DomainNode]:
        """Direct subdomains only; see domain_descendants for the whole subtree."""
        await self.get_domain(domain_id)
        rows = await self.domains.list_children(domain_id)
        return [DomainNode.model_validate(row) for row in rows]

    async def update_domain(self, domain_id: int, data: DomainUpdate) -> DomainNode:
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            existing = await self.domains.get_by_name(changes["name"])
            if existing is not None and existing.id != domain_id:
                raise _duplicate("Domain", "name", changes["name"])
        row = await self.domains.update(domain_id, changes)
        if row is None:
            raise EntityNotFound("Domain", domain_id)
        logger.info("domain.updated", domain_id=domain_id, changes=sorted(changes))
        return DomainNode.model_validate(row)

    async def delete_domain(self, domain_id: int) -> None:
        await self.get_domain(domain_id)
        children = len(await self.domains.list_children(domain_id))
        books = await self.domains.count_books(domain_id)
        if children or books:
            raise _in_use("Domain", domain_id, children=children, books=books)
        await self.domains.delete(domain_id)
        logger.info("domain.deleted", domain_id=domain_id)

    async def domain_descendants(self, domain_id: int) -> list[DomainNode]:
        target = await self.get_domain(domain_id)
        hierarchy = DomainHierarchy(await self.domains.list_all())
        return sorted(hierarchy.descendants(target), key=lambda node: node.id)

    async def books_in_domain(self, domain_id: int) -> list[BookResponse]:
        """Books filed under the domain or any of its descendants."""
        target = await self.get_domain(domain_id)
        hierarchy = DomainHierarchy(await self.domains.list_all())
        rows = await self.books.list_in_domains(hierarchy.descendant_ids(target))
        return [BookResponse.model_validate(row) for row in rows]

    # =================== AUTHORS ===================

    async def add_author(self, data: AuthorCreate) -> AuthorResponse:
        if await self.authors.get_by_name(data.full_name):
            raise _duplicate("Author", "full_name", data.full_name)
        row = await self.authors.create(data.model_dump())
        logger.info("author.added", author_id=row.id)
        return AuthorResponse.model_validate(row)

    async def list_authors(
        self, page: int = 1, limit: int = 50, name: Optional[str] = None
    ) -> tuple[list[AuthorResponse], int]:
        rows, total = await self.authors.list(page, limit, filters={"full_name": name})
        return [AuthorResponse.model_validate(row) for row in rows], total

    async def get_author(self, author_id: int) -> AuthorResponse:
        row = await self.authors.get(author_id)
        if row is None:
            raise EntityNotFound("Author", author_id)
        return AuthorResponse.model_validate(row)

    async def update_author(self, author_id: int, data: AuthorUpdate) -> AuthorResponse:
        changes = data.model_dump(exclude_unset=True)
        if "full_name" in changes:
            existing = await self.authors.get_by_name(changes["full_name"])
            if existing is not None and existing.id != author_id:
                raise _duplicate("Author", "full_name", changes["full_name"])
        row = await self.authors.update(author_id, changes)
        if row is None:
            raise EntityNotFound("Author", author_id)
        logger.info("author.updated", author_id=author_id)
        return AuthorResponse.model_validate(row)

    async def delete_author(self, author_id: int) -> None:
        await self.get_author(author_id)
        books = await self.authors.count_books(author_id)
        if books:
            raise _in_use("Author", author_id, books=books)
        await self.authors.delete(author_id)
        logger.info("author.deleted", author_id=author_id)

    # =================== BOOKS ===================

    async def _check_domains(self, domain_ids: list[int]) -> list[Domain]:
        limit = await self.registry.value(ConditionName.DOMENII)
        if len(domain_ids) > limit:
            raise CatalogViolation(
                CatalogCode.TOO_MANY_DOMAINS,
                f"A book can be filed under at most {limit} domains",
                details={"domains": len(domain_ids), "domenii": limit},
            )

        rows = []
        for domain_id in domain_ids:
            row = await self.domains.get(domain_id)
            if row is None:
                raise EntityNotFound("Domain", domain_id)
            rows.append(row)

        hierarchy = DomainHierarchy(await self.domains.list_all())
        nodes = [DomainNode.model_validate(row) for row in rows]
        for i, a in enumerate(nodes):
            for b in nodes[i + 1:]:
                if hierarchy.are_directly_related(a, b):
                    raise CatalogViolation(
                        CatalogCode.RELATED_DOMAINS,
                        f"Domains {a.name!r} and {b.name!r} are ancestor and descendant",
                        details={"domain_ids": [a.id, b.id]},
                    )
        return rows

    async def _check_title(self, title: str, author_ids: set[int], book_id: Optional[int] = None):
        for existing in await self.books.list_by_title(title):
            if existing.id == book_id:
                continue
            if {author.id for author in existing.authors} == author_ids:
                raise _duplicate("Book", "title", title)

    async def add_book(self, data: BookCreate) -> BookResponse:
        domain_ids = list(dict.fromkeys(data.domain_ids))
        author_ids = set(data.author_ids)

        authors = await self.authors.get_many(author_ids)
        missing = author_ids - {author.id for author in authors}
        if missing:
            raise EntityNotFound("Author", min(missing))

        await self._check_title(data.title, author_ids)
        domains = await self._check_domains(domain_ids)

        book = Book(
            title=data.title,
            authors=authors,
            domains=domains,
            editions=[_edition_row(edition) for edition in data.editions],
        )
        self.session.add(book)
        await self.session.flush()
        logger.info("book.added", book_id=book.id, editions=len(data.editions))
        return BookResponse.model_validate(await self.books.get_full(book.id))

    async def _book(self, book_id: int) -> Book:
        row = await self.books.get_full(book_id)
        if row is None:
            raise EntityNotFound("Book", book_id)
        return row

    async def list_books(
        self, page: int = 1, limit: int = 50, title: Optional[str] = None
    ) -> tuple[list[BookResponse], int]:
        rows, total = await self.books.list(page, limit, filters={"title": title})
        return [BookResponse.model_validate(row) for row in rows], total

    async def get_book(self, book_id: int) -> BookResponse:
        return BookResponse.model_validate(await self._book(book_id))

    async def update_book(self, book_id: int, data: BookUpdate) -> BookResponse:
        """Retitle a book or refile it under other domains. Authors are fixed."""
        book = await self._book(book_id)
        changes = data.model_dump(exclude_unset=True)
        if "title" in changes:
            await self._check_title(
                changes["title"], {author.id for author in book.authors}, book_id=book_id
            )
            book.title = changes["title"]
        if "domain_ids" in changes:
            book.domains = await self._check_domains(list(dict.fromkeys(changes["domain_ids"])))
        await self.session.flush()
        logger.info("book.updated", book_id=book_id, changes=sorted(changes))
        return BookResponse.model_validate(book)

    async def delete_book(self, book_id: int) -> None:
        """Remove a book and its editions, unless any edition was ever lent."""
        book = await self._book(book_id)
        loans = await self.loans.count_for_editions(edition.id for edition in book.editions)
        if loans:
            raise _in_use("Book", book_id, loans=loans)
        await self.books.delete(book_id)
        logger.info("book.deleted", book_id=book_id)

    # =================== EDITIONS ===================

    async def add_edition(self, book_id: int, data: EditionCreate) -> EditionResponse:
        book = await self._book(book_id)
        row = _edition_row(data)
        book.editions.append(row)
        await self.session.flush()
        logger.info("edition.added", book_id=book_id, edition_id=row.id)
        return EditionResponse.model_validate(row)

    async def get_edition(self, edition_id: int) -> EditionResponse:
        row = await self.editions.get(edition_id)
        if row is None:
            raise EntityNotFound("Edition", edition_id)
        return EditionResponse.model_validate(row)

    async def update_edition(self, edition_id: int, data: EditionUpdate) -> EditionResponse:
        changes = data.model_dump(exclude_unset=True)
        row = await self.editions.update(edition_id, changes)
        if row is None:
            raise EntityNotFound("Edition", edition_id)
        logger.info("edition.updated", edition_id=edition_id, changes=sorted(changes))
        return EditionResponse.model_validate(row)

    async def delete_edition(self, edition_id: int) -> None:
        edition = await self.get_edition(edition_id)
        loans = await self.loans.count_for_editions([edition_id])
        if loans:
            raise _in_use("Edition", edition_id, loans=loans)
        book = await self._book(edition.book_id)
        # delete-orphan removes the row on flush
        book.editions = [e for e in book.editions if e.id != edition_id]
        await self.session.flush()
        logger.info("edition.deleted", book_id=book.id, edition_id=edition_id)

    # =================== ACCOUNTS ===================

    async def add_account(self, data: AccountCreate) -> AccountResponse:
        if await self.accounts.get_by_email(data.email):
            raise _duplicate("Account", "email", data.email)
        row = Account(
            **data.model_dump(exclude={"password"}),
            password_hash=hash_password(data.password),
        )
        self.session.add(row)
        await self.session.flush()
        logger.info("account.added", account_id=row.id, account_type=row.account_type.value)
        return AccountResponse.model_validate(row)

    async def list_accounts(
        self, page: int = 1, limit: int = 50, email: Optional[str] = None
    ) -> tuple[list[AccountResponse], int]:
        rows, total = await self.accounts.list(page, limit, filters={"email": email})
        return [AccountResponse.model_validate(row) for row in rows], total

    async def _account(self, account_id: int) -> Account:
        row = await self.accounts.get(account_id)
        if row is None:
            raise EntityNotFound("Account", account_id)
        return row

    async def get_account(self, account_id: int) -> AccountResponse:
        return AccountResponse.model_validate(await self._account(account_id))

    async def update_account(self, account_id: int, data: AccountUpdate) -> AccountResponse:
        row = await self._account(account_id)
        changes = data.model_dump(exclude_unset=True, exclude={"password", "current_password"})
        if "email" in changes:
            existing = await self.accounts.get_by_email(changes["email"])
            if existing is not None and existing.id != account_id:
                raise _duplicate("Account", "email", changes["email"])
        if data.password is not None:
            if not verify_password(data.current_password, row.password_hash):
                raise LendingValidationError(
                    "Current password does not match",
                    errors=[{"field": "current_password", "message": "does not match"}],
                )
            changes["password_hash"] = hash_password(data.password)
        row = await self.accounts.update(account_id, changes)
        logger.info("account.updated", account_id=account_id, changes=sorted(changes))
        return AccountResponse.model_validate(row)

    async def delete_account(self, account_id: int) -> None:
        await self._account(account_id)
        loans = await self.loans.count_for_account(account_id)
        if loans:
            raise _in_use("Account", account_id, loans=loans)
        await self.accounts.delete(account_id)
        logger.info("account.deleted", account_id=account_id)


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------

def get_catalog_service(
    session: AsyncSession = Depends(get_session),
) -> CatalogService:
    """FastAPI dependency for CatalogService."""
    return CatalogService(session)
