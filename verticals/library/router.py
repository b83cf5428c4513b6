"""Library API router: catalog management and the loan lifecycle.

Standard router pattern:
- Thin handlers; every rule lives in CatalogService / LendingService
- Services injected via FastAPI Depends
- LibraryError subclasses propagate to the exception handlers in api.main
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from verticals.library.catalog import CatalogService, get_catalog_service
from verticals.library.lending import LendingService, get_lending_service
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
    LoanCreate,
    LoanExtension,
    LoanRecord,
)

router = APIRouter()


def _paginated(rows: list, total: int, page: int, limit: int) -> dict:
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


# ============================================================================
# Loan Endpoints
# ============================================================================

@router.post("/loans", status_code=201, response_model=LoanRecord)
async def create_loan(
    request: LoanCreate,
    service: LendingService = Depends(get_lending_service),
):
    """Borrow one or more editions, if every lending rule allows it."""
    return await service.borrow(request)


@router.patch("/loans/{loan_id}/extension", response_model=LoanRecord)
async def extend_loan(
    loan_id: int,
    request: LoanExtension,
    service: LendingService = Depends(get_lending_service),
):
    """Move a loan's return date later, within the extension budget."""
    return await service.extend(loan_id, request)


@router.post("/loans/{loan_id}/return", response_model=LoanRecord)
async def return_loan(
    loan_id: int,
    service: LendingService = Depends(get_lending_service),
):
    return await service.return_loan(loan_id)


@router.get("/readers/{reader_id}/loans")
async def list_reader_loans(
    reader_id: int,
    service: LendingService = Depends(get_lending_service),
):
    """Every loan of a reader, oldest first."""
    loans = await service.list_loans(reader_id)
    return {"data": loans, "count": len(loans)}


# ============================================================================
# Condition Endpoints
# ============================================================================

@router.get("/conditions")
async def list_conditions(
    name: Optional[str] = None,
    service: CatalogService = Depends(get_catalog_service),
):
    conditions = await service.list_conditions(name)
    return {"data": conditions, "count": len(conditions)}


@router.post("/conditions", status_code=201, response_model=ConditionResponse)
async def create_condition(
    request: ConditionCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.add_condition(request)


@router.get("/conditions/{condition_id}", response_model=ConditionResponse)
async def get_condition(
    condition_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_condition_by_id(condition_id)


@router.patch("/conditions/{condition_id}", response_model=ConditionResponse)
async def update_condition(
    condition_id: int,
    request: ConditionUpdate,
    service: CatalogService = Depends(get_catalog_service),
):
    """Change a condition's value or description."""
    return await service.update_condition(condition_id, request)


@router.delete("/conditions/{condition_id}", status_code=204)
async def delete_condition(
    condition_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    await service.delete_condition(condition_id)


# ============================================================================
# Domain Endpoints
# ============================================================================

@router.get("/domains")
async def list_domains(
    name: Optional[str] = None,
    service: CatalogService = Depends(get_catalog_service),
):
    domains = await service.list_domains(name)
    return {"data": domains, "count": len(domains)}


@router.post("/domains", status_code=201, response_model=DomainNode)
async def create_domain(
    request: DomainCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.add_domain(request)


@router.get("/domains/{domain_id}", response_model=DomainNode)
async def get_domain(
    domain_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_domain(domain_id)


@router.patch("/domains/{domain_id}", response_model=DomainNode)
async def update_domain(
    domain_id: int,
    request: DomainUpdate,
    service: CatalogService = Depends(get_catalog_service),
):
    """Rename a domain."""
    return await service.update_domain(domain_id, request)


@router.delete("/domains/{domain_id}", status_code=204)
async def delete_domain(
    domain_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    """Remove a domain with no subdomains and no books."""
    await service.delete_domain(domain_id)


@router.get("/domains/{domain_id}/children")
async def list_child_domains(
    domain_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    children = await service.child_domains(domain_id)
    return {"data": children, "count": len(children)}


@router.get("/domains/{domain_id}/books")
async def list_domain_books(
    domain_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    """Books filed under a domain or any of its subdomains."""
    books = await service.books_in_domain(domain_id)
    return {"data": books, "count": len(books)}


# ============================================================================
# Book & Edition Endpoints
# ============================================================================

@router.get("/books")
async def list_books(
    title: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
):
    """List books, optionally by exact title, with pagination."""
    books, total = await service.list_books(page, limit, title)
    return _paginated(books, total, page, limit)


@router.post("/books", status_code=201, response_model=BookResponse)
async def create_book(
    request: BookCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.add_book(request)


@router.get("/books/{book_id}", response_model=BookResponse)
async def get_book(
    book_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_book(book_id)


@router.patch("/books/{book_id}", response_model=BookResponse)
async def update_book(
    book_id: int,
    request: BookUpdate,
    service: CatalogService = Depends(get_catalog_service),
):
    """Retitle a book or refile it under other domains."""
    return await service.update_book(book_id, request)


@router.delete("/books/{book_id}", status_code=204)
async def delete_book(
    book_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    """Remove a book and its editions, if none was ever lent."""
    await service.delete_book(book_id)


@router.post("/books/{book_id}/editions", status_code=201, response_model=EditionResponse)
async def create_edition(
    book_id: int,
    request: EditionCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.add_edition(book_id, request)


@router.get("/editions/{edition_id}", response_model=EditionResponse)
async def get_edition(
    edition_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_edition(edition_id)


@router.patch("/editions/{edition_id}", response_model=EditionResponse)
async def update_edition(
    edition_id: int,
    request: EditionUpdate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.update_edition(edition_id, request)


@router.delete("/editions/{edition_id}", status_code=204)
async def delete_edition(
    edition_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    await service.delete_edition(edition_id)


# ============================================================================
# Author Endpoints
# ============================================================================

@router.get("/authors")
async def list_authors(
    name: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
):
    authors, total = await service.list_authors(page, limit, name)
    return _paginated(authors, total, page, limit)


@router.post("/authors", status_code=201, response_model=AuthorResponse)
async def create_author(
    request: AuthorCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.add_author(request)


@router.get("/authors/{author_id}", response_model=AuthorResponse)
async def get_author(
    author_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_author(author_id)


@router.patch("/authors/{author_id}", response_model=AuthorResponse)
async def update_author(
    author_id: int,
    request: AuthorUpdate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.update_author(author_id, request)


@router.delete("/authors/{author_id}", status_code=204)
async def delete_author(
    author_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    """Remove an author with no books."""
    await service.delete_author(author_id)


# ============================================================================
# Account Endpoints
# ============================================================================

@router.get("/accounts")
async def list_accounts(
    email: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
):
    accounts, total = await service.list_accounts(page, limit, email)
    return _paginated(accounts, total, page, limit)


@router.post("/accounts", status_code=201, response_model=AccountResponse)
async def create_account(
    request: AccountCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.add_account(request)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_account(account_id)


@router.patch("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: int,
    request: AccountUpdate,
    service: CatalogService = Depends(get_catalog_service),
):
    """Update a profile. Changing the password needs the current one."""
    return await service.update_account(account_id, request)


@router.delete("/accounts/{account_id}", status_code=204)
async def delete_account(
    account_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    """Remove an account that never took part in a loan."""
    await service.delete_account(account_id)
