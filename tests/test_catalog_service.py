"""Test catalog management against a real (SQLite) database."""
import pytest
from sqlalchemy import select

from core.locks import KeyedLocks
from tests.conftest import account_payload, edition_payload
from verticals.library.catalog import CatalogService, verify_password
from verticals.library.errors import (
    CatalogCode,
    CatalogViolation,
    EntityNotFound,
    LendingValidationError,
)
from verticals.library.lending import LendingService
from verticals.library.models.db_models import Account, Edition
from verticals.library.models.schemas import (
    AccountUpdate,
    AuthorCreate,
    AuthorUpdate,
    BookCreate,
    BookUpdate,
    ConditionCreate,
    ConditionUpdate,
    DomainCreate,
    DomainUpdate,
    EditionUpdate,
    LoanCreate,
)
from verticals.library.policy import DEFAULT_CONDITIONS


@pytest.mark.asyncio
async def test_seed_is_idempotent(session):
    catalog = CatalogService(session)
    first = await catalog.seed_default_conditions()
    second = await catalog.seed_default_conditions()
    assert len(first) == len(DEFAULT_CONDITIONS)
    assert second == []
    assert (await catalog.get_condition("NMC")).value == 9


@pytest.mark.asyncio
async def test_duplicate_condition_rejected(session):
    catalog = CatalogService(session)
    await catalog.add_condition(ConditionCreate(name="NMC", description="max books", value=9))
    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.add_condition(ConditionCreate(name="NMC", description="again", value=3))
    assert exc_info.value.reason == CatalogCode.DUPLICATE_ENTITY


@pytest.mark.asyncio
async def test_update_condition_value(session):
    catalog = CatalogService(session)
    created = await catalog.add_condition(ConditionCreate(name="C", description="per loan", value=3))
    updated = await catalog.update_condition(created.id, ConditionUpdate(value=5))
    assert updated.value == 5
    assert updated.description == "per loan"


@pytest.mark.asyncio
async def test_rename_condition_onto_existing_rejected(session):
    catalog = CatalogService(session)
    await catalog.add_condition(ConditionCreate(name="C", description="per loan", value=3))
    d = await catalog.add_condition(ConditionCreate(name="D", description="per domain", value=9))
    with pytest.raises(CatalogViolation):
        await catalog.update_condition(d.id, ConditionUpdate(name="C"))


@pytest.mark.asyncio
async def test_update_missing_condition(session):
    with pytest.raises(EntityNotFound):
        await CatalogService(session).update_condition(404, ConditionUpdate(value=1))


@pytest.mark.asyncio
async def test_domain_needs_existing_parent(session):
    with pytest.raises(CatalogViolation) as exc_info:
        await CatalogService(session).add_domain(DomainCreate(name="Orphan", parent_id=77))
    assert exc_info.value.reason == CatalogCode.UNKNOWN_PARENT


@pytest.mark.asyncio
async def test_duplicate_domain_rejected(session, library):
    with pytest.raises(CatalogViolation):
        await CatalogService(session).add_domain(DomainCreate(name="Poetry"))


@pytest.mark.asyncio
async def test_domain_descendants(session, library):
    nodes = await CatalogService(session).domain_descendants(library["science"])
    assert [node.name for node in nodes] == ["Science", "Informatics", "Algorithms"]


@pytest.mark.asyncio
async def test_books_in_domain_include_subdomains(session, library):
    catalog = CatalogService(session)
    titles = [b.title for b in await catalog.books_in_domain(library["science"])]
    assert titles == ["Computer Systems", "Introduction to Algorithms"]
    assert [b.title for b in await catalog.books_in_domain(library["poetry"])] == ["Selected Poems"]


@pytest.mark.asyncio
async def test_book_rejects_too_many_domains(session, library):
    catalog = CatalogService(session)
    extra = await catalog.add_domain(DomainCreate(name="Philosophy"))
    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.add_book(
            BookCreate(
                title="Everything at once",
                author_ids=[library["author"]],
                domain_ids=[library["history"], library["poetry"], library["algorithms"], extra.id],
                editions=[edition_payload()],
            )
        )
    assert exc_info.value.reason == CatalogCode.TOO_MANY_DOMAINS


@pytest.mark.asyncio
async def test_book_rejects_related_domains(session, library):
    with pytest.raises(CatalogViolation) as exc_info:
        await CatalogService(session).add_book(
            BookCreate(
                title="Algorithms for Scientists",
                author_ids=[library["author"]],
                domain_ids=[library["science"], library["algorithms"]],
                editions=[edition_payload()],
            )
        )
    assert exc_info.value.reason == CatalogCode.RELATED_DOMAINS


@pytest.mark.asyncio
async def test_book_rejects_same_title_and_authors(session, library):
    with pytest.raises(CatalogViolation) as exc_info:
        await CatalogService(session).add_book(
            BookCreate(
                title="Selected Poems",
                author_ids=[library["author"]],
                domain_ids=[library["poetry"]],
                editions=[edition_payload()],
            )
        )
    assert exc_info.value.reason == CatalogCode.DUPLICATE_ENTITY


@pytest.mark.asyncio
async def test_same_title_other_author_is_allowed(session, library):
    catalog = CatalogService(session)
    other = await catalog.add_author(AuthorCreate(full_name="Lucian Blaga"))
    created = await catalog.add_book(
        BookCreate(
            title="Selected Poems",
            author_ids=[other.id],
            domain_ids=[library["poetry"]],
            editions=[edition_payload()],
        )
    )
    assert [a.full_name for a in created.authors] == ["Lucian Blaga"]


@pytest.mark.asyncio
async def test_book_with_unknown_author(session, library):
    with pytest.raises(EntityNotFound):
        await CatalogService(session).add_book(
            BookCreate(
                title="Nobody wrote this",
                author_ids=[555],
                domain_ids=[library["poetry"]],
                editions=[edition_payload()],
            )
        )


@pytest.mark.asyncio
async def test_add_edition_computes_initial_stock(session, library):
    created = await CatalogService(session).add_edition(
        library["book_poetry"], edition_payload(copies=7, reading=3)
    )
    assert created.initial_stock == 10
    assert created.book_id == library["book_poetry"]


@pytest.mark.asyncio
async def test_add_edition_to_missing_book(session, library):
    with pytest.raises(EntityNotFound):
        await CatalogService(session).add_edition(999, edition_payload())


@pytest.mark.asyncio
async def test_account_password_is_hashed(session):
    created = await CatalogService(session).add_account(account_payload("Elena", "elena@library.ro"))
    row = (await session.execute(select(Account).where(Account.id == created.id))).scalar_one()
    assert row.password_hash != "Secret1!pass"
    assert verify_password("Secret1!pass", row.password_hash)


@pytest.mark.asyncio
async def test_duplicate_email_rejected(session, library):
    with pytest.raises(CatalogViolation):
        await CatalogService(session).add_account(account_payload("Ana", "ana@library.ro"))


async def _lend(session_factory, library, edition_key):
    service = LendingService(session_factory, locks=KeyedLocks())
    return await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library[edition_key]],
        )
    )


# =================== CONDITIONS ===================

@pytest.mark.asyncio
async def test_condition_by_id_and_name(session, library):
    catalog = CatalogService(session)
    nmc = await catalog.get_condition("NMC")
    assert (await catalog.get_condition_by_id(nmc.id)).name == "NMC"
    assert await catalog.list_conditions(name="NMC") == [nmc]
    assert await catalog.list_conditions(name="XYZ") == []


@pytest.mark.asyncio
async def test_delete_condition(session, library):
    catalog = CatalogService(session)
    nmc = await catalog.get_condition("NMC")
    await catalog.delete_condition(nmc.id)
    with pytest.raises(EntityNotFound):
        await catalog.get_condition_by_id(nmc.id)
    with pytest.raises(EntityNotFound):
        await catalog.delete_condition(nmc.id)


# =================== DOMAINS ===================

@pytest.mark.asyncio
async def test_child_domains_are_direct_only(session, library):
    catalog = CatalogService(session)
    children = await catalog.child_domains(library["science"])
    assert [node.name for node in children] == ["Informatics"]
    assert await catalog.child_domains(library["poetry"]) == []
    with pytest.raises(EntityNotFound):
        await catalog.child_domains(404)


@pytest.mark.asyncio
async def test_rename_domain(session, library):
    catalog = CatalogService(session)
    renamed = await catalog.update_domain(library["poetry"], DomainUpdate(name="Lyric Poetry"))
    assert renamed.name == "Lyric Poetry"
    assert (await catalog.list_domains(name="Lyric Poetry"))[0].id == library["poetry"]
    # keeping its own name is not a clash
    await catalog.update_domain(library["poetry"], DomainUpdate(name="Lyric Poetry"))


@pytest.mark.asyncio
async def test_rename_domain_onto_existing_rejected(session, library):
    with pytest.raises(CatalogViolation) as exc_info:
        await CatalogService(session).update_domain(library["poetry"], DomainUpdate(name="History"))
    assert exc_info.value.reason == CatalogCode.DUPLICATE_ENTITY


@pytest.mark.asyncio
async def test_delete_domain_in_use(session, library):
    catalog = CatalogService(session)
    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.delete_domain(library["science"])
    assert exc_info.value.reason == CatalogCode.IN_USE
    assert exc_info.value.details["children"] == 1

    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.delete_domain(library["poetry"])
    assert exc_info.value.details["books"] == 1


@pytest.mark.asyncio
async def test_delete_unused_domain(session, library):
    catalog = CatalogService(session)
    extra = await catalog.add_domain(DomainCreate(name="Philosophy"))
    await catalog.delete_domain(extra.id)
    with pytest.raises(EntityNotFound):
        await catalog.get_domain(extra.id)


# =================== AUTHORS ===================

@pytest.mark.asyncio
async def test_list_authors_by_name(session, library):
    catalog = CatalogService(session)
    await catalog.add_author(AuthorCreate(full_name="Lucian Blaga"))
    authors, total = await catalog.list_authors(page=1, limit=1)
    assert total == 2
    assert [a.full_name for a in authors] == ["Mircea Eliade"]
    authors, total = await catalog.list_authors(name="Lucian Blaga")
    assert total == 1


@pytest.mark.asyncio
async def test_rename_author(session, library):
    catalog = CatalogService(session)
    other = await catalog.add_author(AuthorCreate(full_name="Lucian Blaga"))
    with pytest.raises(CatalogViolation):
        await catalog.update_author(other.id, AuthorUpdate(full_name="Mircea Eliade"))
    renamed = await catalog.update_author(other.id, AuthorUpdate(full_name="Lucian V. Blaga"))
    assert (await catalog.get_author(other.id)).full_name == renamed.full_name


@pytest.mark.asyncio
async def test_delete_author(session, library):
    catalog = CatalogService(session)
    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.delete_author(library["author"])
    assert exc_info.value.details["books"] == 4

    other = await catalog.add_author(AuthorCreate(full_name="Lucian Blaga"))
    await catalog.delete_author(other.id)
    with pytest.raises(EntityNotFound):
        await catalog.get_author(other.id)


# =================== BOOKS ===================

@pytest.mark.asyncio
async def test_list_books_paginates_with_relations(session, library):
    books, total = await CatalogService(session).list_books(page=2, limit=3)
    assert total == 4
    assert [b.title for b in books] == ["Selected Poems"]
    assert [d.name for d in books[0].domains] == ["Poetry"]
    assert len(books[0].editions) == 1


@pytest.mark.asyncio
async def test_list_books_by_title(session, library):
    books, total = await CatalogService(session).list_books(title="Computer Systems")
    assert total == 1
    assert books[0].id == library["book_informatics"]


@pytest.mark.asyncio
async def test_retitle_book(session, library):
    catalog = CatalogService(session)
    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.update_book(library["book_history"], BookUpdate(title="Selected Poems"))
    assert exc_info.value.reason == CatalogCode.DUPLICATE_ENTITY

    updated = await catalog.update_book(library["book_history"], BookUpdate(title="Myth and Reality"))
    assert updated.title == "Myth and Reality"
    assert (await catalog.get_book(library["book_history"])).title == "Myth and Reality"


@pytest.mark.asyncio
async def test_refile_book(session, library):
    catalog = CatalogService(session)
    with pytest.raises(CatalogViolation) as exc_info:
        await catalog.update_book(
            library["book_history"],
            BookUpdate(domain_ids=[library["science"], library["algorithms"]]),
        )
    assert exc_info.value.reason == CatalogCode.RELATED_DOMAINS

    updated = await catalog.update_book(
        library["book_history"], BookUpdate(domain_ids=[library["history"], library["poetry"]])
    )
    assert sorted(d.name for d in updated.domains) == ["History", "Poetry"]


@pytest.mark.asyncio
async def test_delete_lent_book_refused(session_factory, session, library):
    await _lend(session_factory, library, "edition_history")
    with pytest.raises(CatalogViolation) as exc_info:
        await CatalogService(session).delete_book(library["book_history"])
    assert exc_info.value.reason == CatalogCode.IN_USE
    assert exc_info.value.details["loans"] == 1


@pytest.mark.asyncio
async def test_delete_book_removes_editions(session, library):
    catalog = CatalogService(session)
    await catalog.delete_book(library["book_poetry"])
    with pytest.raises(EntityNotFound):
        await catalog.get_book(library["book_poetry"])
    assert await session.get(Edition, library["edition_poetry"]) is None
    _, total = await catalog.list_books()
    assert total == 3


# =================== EDITIONS ===================

@pytest.mark.asyncio
async def test_update_edition_keeps_stock(session, library):
    catalog = CatalogService(session)
    updated = await catalog.update_edition(
        library["edition_poetry"], EditionUpdate(publishing_house="Polirom", edition_number=2)
    )
    assert updated.publishing_house == "Polirom"
    assert updated.edition_number == 2
    assert updated.copies_for_borrowing == 10


@pytest.mark.asyncio
async def test_delete_edition(session, library):
    catalog = CatalogService(session)
    second = await catalog.add_edition(library["book_poetry"], edition_payload())
    await catalog.delete_edition(second.id)
    with pytest.raises(EntityNotFound):
        await catalog.get_edition(second.id)
    book = await catalog.get_book(library["book_poetry"])
    assert [e.id for e in book.editions] == [library["edition_poetry"]]


@pytest.mark.asyncio
async def test_delete_lent_edition_refused(session_factory, session, library):
    await _lend(session_factory, library, "edition_poetry")
    with pytest.raises(CatalogViolation) as exc_info:
        await CatalogService(session).delete_edition(library["edition_poetry"])
    assert exc_info.value.reason == CatalogCode.IN_USE


# =================== ACCOUNTS ===================

@pytest.mark.asyncio
async def test_list_accounts_by_email(session, library):
    catalog = CatalogService(session)
    accounts, total = await catalog.list_accounts()
    assert total == 3
    accounts, total = await catalog.list_accounts(email="ion@library.ro")
    assert [a.id for a in accounts] == [library["librarian"]]
    assert accounts[0].address == "Strada Lunga 12, Brasov"


@pytest.mark.asyncio
async def test_change_email_onto_existing_rejected(session, library):
    with pytest.raises(CatalogViolation):
        await CatalogService(session).update_account(
            library["reader"], AccountUpdate(email="ion@library.ro")
        )


@pytest.mark.asyncio
async def test_update_account_profile(session, library):
    catalog = CatalogService(session)
    updated = await catalog.update_account(
        library["reader"], AccountUpdate(address="Bulevardul Eroilor 3", phone_number=None)
    )
    assert updated.address == "Bulevardul Eroilor 3"
    assert updated.phone_number is None
    assert updated.email == "ana@library.ro"


@pytest.mark.asyncio
async def test_change_password_needs_current_one(session, library):
    catalog = CatalogService(session)
    with pytest.raises(LendingValidationError):
        await catalog.update_account(
            library["reader"],
            AccountUpdate(password="N3w!secret", current_password="Wrong1!pass"),
        )

    await catalog.update_account(
        library["reader"],
        AccountUpdate(password="N3w!secret", current_password="Secret1!pass"),
    )
    row = await session.get(Account, library["reader"])
    assert verify_password("N3w!secret", row.password_hash)
    assert not verify_password("Secret1!pass", row.password_hash)


@pytest.mark.asyncio
async def test_delete_account(session_factory, session, library):
    await _lend(session_factory, library, "edition_history")
    catalog = CatalogService(session)
    for account_id in (library["reader"], library["librarian"]):
        with pytest.raises(CatalogViolation) as exc_info:
            await catalog.delete_account(account_id)
        assert exc_info.value.reason == CatalogCode.IN_USE

    await catalog.delete_account(library["librarian_reader"])
    with pytest.raises(EntityNotFound):
        await catalog.get_account(library["librarian_reader"])
