"""Test the loan lifecycle: borrow, extend, return."""
import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy import delete, func, select, update

from core.locks import KeyedLocks
from verticals.library.errors import (
    CatalogViolation,
    EntityNotFound,
    LendingValidationError,
    MissingCondition,
    PolicyViolation,
    ViolationCode,
)
from verticals.library.lending import LendingService
from verticals.library.models.db_models import BorrowRecord, Condition, Edition
from verticals.library.models.schemas import BorrowStatus, LoanCreate, LoanExtension

TODAY = date.today()


def _service(session_factory) -> LendingService:
    return LendingService(session_factory, locks=KeyedLocks())


async def _copies(session_factory, edition_id):
    async with session_factory() as s:
        return await s.scalar(
            select(Edition.copies_for_borrowing).where(Edition.id == edition_id)
        )


async def _loan_count(session_factory):
    async with session_factory() as s:
        return await s.scalar(select(func.count()).select_from(BorrowRecord))


async def _set_condition(session_factory, name, value):
    async with session_factory() as s:
        await s.execute(update(Condition).where(Condition.name == name).values(value=value))
        await s.commit()


@pytest.mark.asyncio
async def test_borrow_creates_loan_and_takes_stock(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"], library["edition_poetry"]],
        )
    )
    assert created.status == BorrowStatus.BORROWED
    assert {e.id for e in created.editions} == {
        library["edition_history"], library["edition_poetry"],
    }
    assert await _copies(session_factory, library["edition_history"]) == 9
    assert await _copies(session_factory, library["edition_poetry"]) == 9
    # the returned record reflects the stock after the loan
    assert {e.copies_for_borrowing for e in created.editions} == {9}


@pytest.mark.asyncio
async def test_default_return_date_uses_loan_length(session_factory, library):
    created = await _service(session_factory).borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"]],
        )
    )
    assert created.original_return_date == TODAY + timedelta(days=14)
    assert created.actual_return_date == created.original_return_date


@pytest.mark.asyncio
async def test_rejected_loan_leaves_no_trace(session_factory, library):
    service = _service(session_factory)
    with pytest.raises(PolicyViolation) as exc_info:
        await service.borrow(
            LoanCreate(
                reader_id=library["reader"],
                librarian_id=library["librarian"],
                edition_ids=[
                    library["edition_history"],
                    library["edition_poetry"],
                    library["edition_algorithms"],
                    library["edition_informatics"],
                ],
            )
        )
    assert exc_info.value.violation == ViolationCode.TRANSACTION_CAP_EXCEEDED
    assert await _loan_count(session_factory) == 0
    assert await _copies(session_factory, library["edition_history"]) == 10


@pytest.mark.asyncio
async def test_related_domains_form_one_family(session_factory, library):
    # Algorithms sits under Informatics: one subject family plus History
    created = await _service(session_factory).borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[
                library["edition_algorithms"],
                library["edition_informatics"],
                library["edition_history"],
            ],
        )
    )
    assert len(created.editions) == 3


@pytest.mark.asyncio
async def test_empty_edition_rejects_whole_loan(session_factory, library):
    async with session_factory() as s:
        await s.execute(
            update(Edition)
            .where(Edition.id == library["edition_poetry"])
            .values(copies_for_borrowing=0)
        )
        await s.commit()

    with pytest.raises(PolicyViolation) as exc_info:
        await _service(session_factory).borrow(
            LoanCreate(
                reader_id=library["reader"],
                librarian_id=library["librarian"],
                edition_ids=[library["edition_history"], library["edition_poetry"]],
            )
        )
    assert exc_info.value.violation == ViolationCode.OUT_OF_STOCK
    assert await _loan_count(session_factory) == 0
    assert await _copies(session_factory, library["edition_history"]) == 10


@pytest.mark.asyncio
async def test_librarian_cannot_borrow(session_factory, library):
    with pytest.raises(LendingValidationError):
        await _service(session_factory).borrow(
            LoanCreate(
                reader_id=library["librarian"],
                librarian_id=library["librarian"],
                edition_ids=[library["edition_history"]],
            )
        )


@pytest.mark.asyncio
async def test_reader_cannot_issue(session_factory, library):
    with pytest.raises(LendingValidationError):
        await _service(session_factory).borrow(
            LoanCreate(
                reader_id=library["reader"],
                librarian_id=library["reader"],
                edition_ids=[library["edition_history"]],
            )
        )


@pytest.mark.asyncio
async def test_unknown_edition(session_factory, library):
    with pytest.raises(EntityNotFound):
        await _service(session_factory).borrow(
            LoanCreate(
                reader_id=library["reader"],
                librarian_id=library["librarian"],
                edition_ids=[12345],
            )
        )


@pytest.mark.asyncio
async def test_missing_condition_is_refused(session_factory, library):
    async with session_factory() as s:
        await s.execute(delete(Condition).where(Condition.name == "NMC"))
        await s.commit()
    with pytest.raises(MissingCondition):
        await _service(session_factory).borrow(
            LoanCreate(
                reader_id=library["reader"],
                librarian_id=library["librarian"],
                edition_ids=[library["edition_history"]],
            )
        )


@pytest.mark.asyncio
async def test_concurrent_borrows_by_one_reader_are_serialized(session_factory, library):
    await _set_condition(session_factory, "NMC", 2)
    service = _service(session_factory)

    def request(*keys):
        return LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library[key] for key in keys],
        )

    outcomes = await asyncio.gather(
        service.borrow(request("edition_history", "edition_poetry")),
        service.borrow(request("edition_algorithms", "edition_informatics")),
        return_exceptions=True,
    )
    accepted = [o for o in outcomes if not isinstance(o, Exception)]
    rejected = [o for o in outcomes if isinstance(o, PolicyViolation)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert rejected[0].violation == ViolationCode.FREQUENCY_CAP_EXCEEDED
    assert await _loan_count(session_factory) == 1


@pytest.mark.asyncio
async def test_extend_within_budget(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"]],
        )
    )
    new_date = created.actual_return_date + timedelta(days=10)
    extended = await service.extend(created.id, LoanExtension(actual_return_date=new_date))
    assert extended.status == BorrowStatus.EXTENDED
    assert extended.extension_days == 10

    again = await service.extend(
        created.id, LoanExtension(actual_return_date=new_date + timedelta(days=18))
    )
    assert again.extension_days == 28


@pytest.mark.asyncio
async def test_extend_over_budget(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"]],
        )
    )
    with pytest.raises(PolicyViolation) as exc_info:
        await service.extend(
            created.id,
            LoanExtension(actual_return_date=created.actual_return_date + timedelta(days=29)),
        )
    assert exc_info.value.violation == ViolationCode.EXTENSION_BUDGET_EXCEEDED

    loans = await service.list_loans(library["reader"])
    assert loans[0].status == BorrowStatus.BORROWED
    assert loans[0].extension_days == 0


@pytest.mark.asyncio
async def test_librarian_reader_gets_double_extension(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["librarian_reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_poetry"]],
        )
    )
    extended = await service.extend(
        created.id,
        LoanExtension(actual_return_date=created.actual_return_date + timedelta(days=56)),
    )
    assert extended.extension_days == 56


@pytest.mark.asyncio
async def test_extend_cannot_move_date_earlier(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"]],
        )
    )
    with pytest.raises(LendingValidationError):
        await service.extend(
            created.id,
            LoanExtension(actual_return_date=created.actual_return_date - timedelta(days=1)),
        )


@pytest.mark.asyncio
async def test_return_releases_stock(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"]],
        )
    )
    returned = await service.return_loan(created.id)
    assert returned.status == BorrowStatus.RETURNED
    assert returned.actual_return_date == created.actual_return_date
    assert await _copies(session_factory, library["edition_history"]) == 10


@pytest.mark.asyncio
async def test_returned_loan_cannot_be_extended_or_returned(session_factory, library):
    service = _service(session_factory)
    created = await service.borrow(
        LoanCreate(
            reader_id=library["reader"],
            librarian_id=library["librarian"],
            edition_ids=[library["edition_history"]],
        )
    )
    await service.return_loan(created.id)
    with pytest.raises(CatalogViolation):
        await service.extend(
            created.id,
            LoanExtension(actual_return_date=created.actual_return_date + timedelta(days=1)),
        )
    with pytest.raises(CatalogViolation):
        await service.return_loan(created.id)
    assert await _copies(session_factory, library["edition_history"]) == 10


@pytest.mark.asyncio
async def test_unknown_loan(session_factory, library):
    with pytest.raises(EntityNotFound):
        await _service(session_factory).return_loan(4242)


@pytest.mark.asyncio
async def test_list_loans_for_unknown_reader(session_factory, library):
    with pytest.raises(EntityNotFound):
        await _service(session_factory).list_loans(4242)
