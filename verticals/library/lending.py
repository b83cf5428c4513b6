"""Lending service: borrow, extend and return.

Every operation that can change a reader's quotas runs under that reader's
lock and commits before releasing it, so two concurrent requests from one
reader are evaluated one after the other against committed history. Stock
changes go through the InventoryLedger on the same session as the loan
row: either both commit or neither does.

The service owns its transactions, so it takes a session factory rather
than a request-scoped session.
"""

from datetime import date
from typing import Optional

import structlog
from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session_factory
from core.locks import KeyedLocks
from patterns.domain_config import LendingConfig
from patterns.workflow_states import LoanState
from verticals.library.config import config as library_config
from verticals.library.eligibility import (
    BorrowEligibilityEvaluator,
    ExtensionPolicyEvaluator,
)
from verticals.library.errors import EntityNotFound, LendingValidationError
from verticals.library.hierarchy import DomainHierarchy
from verticals.library.inventory import InventoryLedger
from verticals.library.models.db_models import BorrowRecord, Edition
from verticals.library.models.schemas import (
    READER_ACCOUNTS,
    STAFF_ACCOUNTS,
    AccountRef,
    BorrowRequest,
    BorrowStatus,
    LoanCreate,
    LoanExtension,
    LoanRecord,
)
from verticals.library.policy import ConditionRegistry, PolicySnapshot
from verticals.library.repository import (
    AccountRepository,
    BorrowRecordRepository,
    ConditionRepository,
    DomainRepository,
    EditionRepository,
)

logger = structlog.get_logger(__name__)

# Shared by every LendingService in this process.
reader_locks = KeyedLocks()


class LendingService:
    """Loan lifecycle on top of the eligibility engine.

    Usage::

        service = LendingService(async_session_factory)
        loan = await service.borrow(LoanCreate(reader_id=1, librarian_id=2,
                                               edition_ids=[10, 11]))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: Optional[LendingConfig] = None,
        evaluator: Optional[BorrowEligibilityEvaluator] = None,
        extension_evaluator: Optional[ExtensionPolicyEvaluator] = None,
        ledger: Optional[InventoryLedger] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.session_factory = session_factory
        self.config = config or library_config.lending
        self.evaluator = evaluator or BorrowEligibilityEvaluator.from_config(self.config)
        self.extension_evaluator = (
            extension_evaluator or ExtensionPolicyEvaluator.from_config(self.config)
        )
        self.ledger = ledger or InventoryLedger.from_config(self.config)
        self.locks = locks or reader_locks

    # -- Helpers --

    async def _policy(self, session: AsyncSession) -> PolicySnapshot:
        registry = ConditionRegistry(
            ConditionRepository(session), strict=self.config.strict_conditions
        )
        return await registry.snapshot()

    async def _account(self, session: AsyncSession, account_id: int) -> AccountRef:
        account = await AccountRepository(session).get_ref(account_id)
        if account is None:
            raise EntityNotFound("Account", account_id)
        return account

    async def _hydrate(
        self, session: AsyncSession, loan: LoanCreate, policy: PolicySnapshot
    ) -> BorrowRequest:
        reader = await self._account(session, loan.reader_id)
        if reader.account_type not in READER_ACCOUNTS:
            raise LendingValidationError(
                f"Account {reader.id} cannot borrow books",
                errors=[{"loc": ["reader_id"], "msg": "not a reader account"}],
            )
        librarian = await self._account(session, loan.librarian_id)
        if librarian.account_type not in STAFF_ACCOUNTS:
            raise LendingValidationError(
                f"Account {librarian.id} cannot issue loans",
                errors=[{"loc": ["librarian_id"], "msg": "not a librarian account"}],
            )

        editions = await EditionRepository(session).get_refs(loan.edition_ids)
        for edition_id in loan.edition_ids:
            if edition_id not in editions:
                raise EntityNotFound("Edition", edition_id)

        try:
            return BorrowRequest(
                reader=reader,
                librarian=librarian,
                editions=tuple(editions[i] for i in loan.edition_ids),
                borrow_date=loan.borrow_date,
                desired_return_date=loan.resolved_return_date(policy.timpimp),
            )
        except ValidationError as e:
            errors = e.errors(include_url=False, include_context=False)
            raise LendingValidationError("Invalid loan request", errors=errors) from e

    async def _reader_of(self, loan_id: int) -> int:
        async with self.session_factory() as session:
            row = await BorrowRecordRepository(session).get(loan_id)
            if row is None:
                raise EntityNotFound("Loan", loan_id)
            return row.reader_id

    # -- Borrow --

    async def borrow(self, loan: LoanCreate, today: Optional[date] = None) -> LoanRecord:
        """Evaluate a loan and, if accepted, persist it and take the stock.

        Raises PolicyViolation on rejection, StockUpdateConflict when the
        stock kept changing under us.
        """
        today = today or date.today()
        async with self.locks.hold(loan.reader_id):
            async with self.session_factory() as session:
                async with session.begin():
                    policy = await self._policy(session)
                    request = await self._hydrate(session, loan, policy)
                    loans = BorrowRecordRepository(session)
                    history = await loans.list_for_reader(loan.reader_id)
                    hierarchy = DomainHierarchy(await DomainRepository(session).list_all())

                    decision = self.evaluator.evaluate(
                        request, history, policy, today=today, hierarchy=hierarchy
                    )
                    decision.raise_for_rejection()

                    record = BorrowRecord(
                        reader_id=request.reader.id,
                        librarian_id=request.librarian.id,
                        borrow_date=request.borrow_date,
                        original_return_date=request.desired_return_date,
                        actual_return_date=request.desired_return_date,
                        status=BorrowStatus.BORROWED,
                        editions=[await session.get(Edition, e.id) for e in request.editions],
                    )
                    session.add(record)
                    await session.flush()
                    for edition in request.editions:
                        await self.ledger.decrement_with_retry(session, edition.id)

                    created = LoanRecord.model_validate(await loans.get_row(record.id, fresh=True))

        logger.info(
            "loan.created",
            loan_id=created.id,
            reader_id=created.reader_id,
            edition_ids=[e.id for e in created.editions],
        )
        return created

    # -- Extend --

    async def extend(
        self, loan_id: int, extension: LoanExtension, today: Optional[date] = None
    ) -> LoanRecord:
        """Move a loan's return date later, within the extension budget."""
        today = today or date.today()
        reader_id = await self._reader_of(loan_id)
        async with self.locks.hold(reader_id):
            async with self.session_factory() as session:
                async with session.begin():
                    loans = BorrowRecordRepository(session)
                    row = await loans.get_row(loan_id)
                    if row is None:
                        raise EntityNotFound("Loan", loan_id)

                    state = LoanState(loan_id=row.id, current_state=row.status)
                    state.transition(BorrowStatus.EXTENDED, actor=f"reader:{row.reader_id}")
                    if extension.actual_return_date < row.actual_return_date:
                        raise LendingValidationError(
                            "An extension cannot move the return date earlier",
                            errors=[{
                                "loc": ["actual_return_date"],
                                "msg": f"must not precede {row.actual_return_date.isoformat()}",
                            }],
                        )

                    policy = await self._policy(session)
                    reader = await self._account(session, row.reader_id)
                    updated = LoanRecord.model_validate(row).model_copy(
                        update={
                            "actual_return_date": extension.actual_return_date,
                            "status": BorrowStatus.EXTENDED,
                        }
                    )
                    history = await loans.list_for_reader(row.reader_id)
                    decision = self.extension_evaluator.evaluate(
                        updated, history, policy, reader.account_type, today=today
                    )
                    decision.raise_for_rejection()

                    row.actual_return_date = extension.actual_return_date
                    row.status = state.current_state

        logger.info(
            "loan.extended",
            loan_id=updated.id,
            reader_id=updated.reader_id,
            extension_days=updated.extension_days,
        )
        return updated

    # -- Return --

    async def return_loan(self, loan_id: int) -> LoanRecord:
        """Close a loan and put its copies back on the shelf."""
        reader_id = await self._reader_of(loan_id)
        async with self.locks.hold(reader_id):
            async with self.session_factory() as session:
                async with session.begin():
                    loans = BorrowRecordRepository(session)
                    row = await loans.get_row(loan_id)
                    if row is None:
                        raise EntityNotFound("Loan", loan_id)

                    state = LoanState(loan_id=row.id, current_state=row.status)
                    state.transition(BorrowStatus.RETURNED)
                    row.status = state.current_state
                    await session.flush()
                    for edition in row.editions:
                        await self.ledger.release(session, edition.id)

                    returned = LoanRecord.model_validate(await loans.get_row(loan_id, fresh=True))

        logger.info("loan.returned", loan_id=loan_id, reader_id=reader_id)
        return returned

    # -- Queries --

    async def list_loans(self, reader_id: int) -> list[LoanRecord]:
        async with self.session_factory() as session:
            await self._account(session, reader_id)
            return await BorrowRecordRepository(session).list_for_reader(reader_id)


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------

def get_lending_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> LendingService:
    """FastAPI dependency for LendingService."""
    return LendingService(session_factory)
