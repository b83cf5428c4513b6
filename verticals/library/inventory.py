"""Per-edition stock bookkeeping.

Decrements are a compare-and-swap against the value just read:

    UPDATE editions
       SET copies_for_borrowing = copies_for_borrowing - 1
     WHERE id = :id AND copies_for_borrowing = :expected

If another writer got there first the UPDATE matches no row and the caller
gets StockUpdateConflict; the read value is never trusted past the swap.
All work happens on the caller's session, so it commits or rolls back with
the loan record it belongs to.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from core.resilience.retry import RetryPolicy
from patterns.domain_config import LendingConfig
from verticals.library.errors import (
    EntityNotFound,
    PolicyViolation,
    StockUpdateConflict,
    ViolationCode,
)
from verticals.library.models.db_models import Edition

logger = structlog.get_logger(__name__)


class InventoryLedger:
    """Atomic check-and-decrement of lendable copies."""

    def __init__(
        self,
        reserve_percent: int = 10,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
    ):
        self.reserve_percent = reserve_percent
        self.retry = RetryPolicy(
            max_attempts=retry_attempts,
            backoff_base=retry_backoff,
            retry_on=(StockUpdateConflict,),
        )

    @classmethod
    def from_config(cls, config: LendingConfig) -> "InventoryLedger":
        return cls(
            reserve_percent=config.reserve_percent,
            retry_attempts=config.stock_retry_attempts,
            retry_backoff=config.stock_retry_backoff,
        )

    async def _read(self, session: AsyncSession, edition_id: int) -> tuple[int, int, int]:
        # Column select, not session.get(): the identity map would hand back
        # a stale copies_for_borrowing.
        stmt = select(
            Edition.copies_for_borrowing,
            Edition.copies_for_reading,
            Edition.initial_stock,
        ).where(Edition.id == edition_id)
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise EntityNotFound("Edition", edition_id)
        return row.copies_for_borrowing, row.copies_for_reading, row.initial_stock

    async def _swap(
        self, session: AsyncSession, edition_id: int, expected: int, delta: int
    ) -> None:
        stmt = (
            update(Edition)
            .where(Edition.id == edition_id, Edition.copies_for_borrowing == expected)
            .values(copies_for_borrowing=Edition.copies_for_borrowing + delta)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise StockUpdateConflict(edition_id)

    async def decrement(self, session: AsyncSession, edition_id: int) -> int:
        """Take one copy. Returns the count that remains.

        Raises PolicyViolation (OUT_OF_STOCK, LOW_STOCK_RESERVE) when the
        floor would be crossed, StockUpdateConflict when the swap loses.
        """
        available, _, initial_stock = await self._read(session, edition_id)
        if available <= 0:
            raise PolicyViolation(
                ViolationCode.OUT_OF_STOCK,
                f"Edition {edition_id} has no copies left to lend",
                details={"edition_id": edition_id, "available": available},
            )
        if available * 100 < initial_stock * self.reserve_percent:
            raise PolicyViolation(
                ViolationCode.LOW_STOCK_RESERVE,
                f"Edition {edition_id} is below the {self.reserve_percent}% lending reserve",
                details={
                    "edition_id": edition_id,
                    "available": available,
                    "initial_stock": initial_stock,
                },
            )
        await self._swap(session, edition_id, available, -1)
        logger.debug("stock.decremented", edition_id=edition_id, remaining=available - 1)
        return available - 1

    async def decrement_with_retry(self, session: AsyncSession, edition_id: int) -> int:
        """decrement(), retrying lost swaps with exponential backoff."""
        try:
            return await self.retry.call(self.decrement, session, edition_id)
        except StockUpdateConflict as e:
            logger.warning(
                "stock.conflict",
                edition_id=edition_id,
                attempts=self.retry.max_attempts,
            )
            raise StockUpdateConflict(edition_id, attempts=self.retry.max_attempts) from e

    async def release(self, session: AsyncSession, edition_id: int) -> int:
        """Put one copy back on return. Returns the new count.

        Never raises the count above the lendable share of the initial
        stock (initial_stock - copies_for_reading).
        """
        for _ in range(self.retry.max_attempts):
            available, reading, initial_stock = await self._read(session, edition_id)
            ceiling = initial_stock - reading
            if available >= ceiling:
                logger.warning(
                    "stock.release_capped", edition_id=edition_id, available=available
                )
                return available
            try:
                await self._swap(session, edition_id, available, 1)
            except StockUpdateConflict:
                continue
            logger.debug("stock.released", edition_id=edition_id, available=available + 1)
            return available + 1
        raise StockUpdateConflict(edition_id, attempts=self.retry.max_attempts)
