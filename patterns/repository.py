"""Async repository pattern for database access.

Provides a generic base repository with get/list/create/update/delete
and pagination. Verticals subclass this to add domain-specific queries and to
map rows onto their pydantic schemas.

Deleting a row that loan history still references is refused one layer up,
in the catalog service.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository with CRUD + pagination.

    Subclass and set `model` to your SQLAlchemy model::

        class AuthorRepository(BaseRepository[Author]):
            model = Author

            async def get_by_name(self, full_name: str) -> Author | None:
                stmt = select(self.model).where(self.model.full_name == full_name)
                result = await self.session.execute(stmt)
                return result.scalar_one_or_none()
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    def _select(self):
        """Base SELECT for list(). Override to add eager loads."""
        return select(self.model)

    # -- List with pagination --

    async def list(
        self,
        page: int = 1,
        limit: int = 50,
        filters: dict[str, Any] | None = None,
    ) -> tuple[list[ModelT], int]:
        """List rows with pagination and optional equality filters.

        Returns (rows, total_count).
        """
        stmt = self._select()
        count_stmt = select(func.count()).select_from(self.model)

        if filters:
            for col_name, value in filters.items():
                if hasattr(self.model, col_name) and value is not None:
                    stmt = stmt.where(getattr(self.model, col_name) == value)
                    count_stmt = count_stmt.where(getattr(self.model, col_name) == value)

        offset = (page - 1) * limit
        stmt = stmt.order_by(self.model.id).offset(offset).limit(limit)

        result = await self.session.execute(stmt)
        rows = list(result.scalars().all())

        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        return rows, total

    # -- Get by ID --

    async def get(self, item_id: int) -> ModelT | None:
        """Get a single row by primary key."""
        return await self.session.get(self.model, item_id)

    # -- Create --

    async def create(self, data: dict[str, Any]) -> ModelT:
        """Insert a new row and flush so its id is populated."""
        item = self.model(**data)
        self.session.add(item)
        await self.session.flush()
        return item

    # -- Update --

    async def update(self, item_id: int, data: dict[str, Any]) -> ModelT | None:
        """Update an existing row. Returns None if not found."""
        item = await self.get(item_id)
        if item is None:
            return None

        for key, value in data.items():
            if hasattr(item, key) and key not in ("id", "created_at"):
                setattr(item, key, value)

        await self.session.flush()
        return item

    # -- Delete --

    async def delete(self, item_id: int) -> bool:
        """Delete a row. Returns True if deleted, False if not found."""
        item = await self.get(item_id)
        if not item:
            return False

        await self.session.delete(item)
        await self.session.flush()
        return True
