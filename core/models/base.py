"""Base model and mixins for all SQLAlchemy models.

Provides:
- Base: Declarative base class for all models
- AuditMixin: Adds an integer primary key and audit timestamps

Every catalog and lending model inherits from Base and includes AuditMixin.
Loan history is append/mutate-only, so nothing here supports soft deletes.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all library models."""
    pass


class AuditMixin:
    """Mixin providing the primary key and standard audit columns.

    Adds:
    - id: Integer primary key (autoincrement)
    - created_at: Timestamp set on insert
    - updated_at: Timestamp updated on every change
    """

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
