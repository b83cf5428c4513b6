"""SQLAlchemy models for the library vertical.

Each model inherits from Base and uses AuditMixin for its primary key and
timestamps. Many-to-many links (book authors, book domains, loan editions)
are plain association tables.
"""

from datetime import date

from sqlalchemy import Column, Date, Enum, ForeignKey, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import AuditMixin, Base
from verticals.library.models.schemas import AccountType, BookType, BorrowStatus


book_authors = Table(
    "book_authors",
    Base.metadata,
    Column("book_id", ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True),
)

book_domains = Table(
    "book_domains",
    Base.metadata,
    Column("book_id", ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("domain_id", ForeignKey("domains.id", ondelete="CASCADE"), primary_key=True),
)

loan_editions = Table(
    "loan_editions",
    Base.metadata,
    Column("loan_id", ForeignKey("borrow_records.id", ondelete="CASCADE"), primary_key=True),
    Column("edition_id", ForeignKey("editions.id"), primary_key=True),
)


class Condition(AuditMixin, Base):
    """A named, librarian-tunable policy value (NMC, PER, ...)."""

    __tablename__ = "conditions"

    name: Mapped[str] = mapped_column(String(10), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(150), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)


class Domain(AuditMixin, Base):
    """A subject category. parent_id is fixed once the row exists."""

    __tablename__ = "domains"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("domains.id"), nullable=True, index=True
    )


class Author(AuditMixin, Base):
    __tablename__ = "authors"

    full_name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)


class Book(AuditMixin, Base):
    """A catalog title; physical stock lives on its editions."""

    __tablename__ = "books"

    title: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    authors: Mapped[list[Author]] = relationship(secondary=book_authors)
    domains: Mapped[list[Domain]] = relationship(secondary=book_domains)
    editions: Mapped[list["Edition"]] = relationship(
        back_populates="book", cascade="all, delete-orphan"
    )


class Edition(AuditMixin, Base):
    """One printing of a book, with its borrowable and reading-room copies."""

    __tablename__ = "editions"

    book_id: Mapped[int] = mapped_column(ForeignKey("books.id"), nullable=False, index=True)
    publishing_house: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_pages: Mapped[int] = mapped_column(Integer, nullable=False)
    edition_number: Mapped[int] = mapped_column(Integer, nullable=False)
    book_type: Mapped[BookType] = mapped_column(Enum(BookType), nullable=False)
    copies_for_borrowing: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    copies_for_reading: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    book: Mapped[Book] = relationship(back_populates="editions")


class Account(AuditMixin, Base):
    """A reader, a librarian, or both."""

    __tablename__ = "accounts"

    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    address: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(Enum(AccountType), nullable=False)


class BorrowRecord(AuditMixin, Base):
    """One loan transaction. Rows are updated on extension/return, never deleted."""

    __tablename__ = "borrow_records"

    reader_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    librarian_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    borrow_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    original_return_date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_return_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BorrowStatus] = mapped_column(
        Enum(BorrowStatus), nullable=False, default=BorrowStatus.BORROWED
    )

    editions: Mapped[list[Edition]] = relationship(secondary=loan_editions)
