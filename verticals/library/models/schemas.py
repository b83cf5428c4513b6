"""Pydantic schemas for request validation and engine inputs.

Two families live here:
- Create/update models: field-level validation at the API boundary.
- Reference models (DomainNode, BookRef, EditionRef, AccountRef, LoanRecord,
  BorrowRequest): frozen snapshots of persisted entities. The lending engine
  only ever sees these, never ORM rows.
"""

import re
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AccountType(str, Enum):
    READER = "reader"
    LIBRARIAN = "librarian"
    LIBRARIAN_READER = "librarian_reader"


class BookType(str, Enum):
    HARDCOVER = "hardcover"
    PAPERBACK = "paperback"


class BorrowStatus(str, Enum):
    BORROWED = "borrowed"
    EXTENDED = "extended"
    RETURNED = "returned"


READER_ACCOUNTS = (AccountType.READER, AccountType.LIBRARIAN_READER)
STAFF_ACCOUNTS = (AccountType.LIBRARIAN, AccountType.LIBRARIAN_READER)


# ---------------------------------------------------------------------------
# Reference models (engine inputs)
# ---------------------------------------------------------------------------

class DomainNode(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    parent_id: Optional[int] = None


class BookRef(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    title: str
    domains: tuple[DomainNode, ...] = ()


class EditionRef(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    book: BookRef
    copies_for_borrowing: int
    copies_for_reading: int
    initial_stock: int


class AccountRef(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    first_name: str
    last_name: str
    account_type: AccountType


class LoanRecord(BaseModel):
    """A persisted borrow record."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    reader_id: int
    librarian_id: int
    editions: tuple[EditionRef, ...]
    borrow_date: date
    original_return_date: date
    actual_return_date: date
    status: BorrowStatus

    @property
    def extension_days(self) -> int:
        return (self.actual_return_date - self.original_return_date).days

    @property
    def book_ids(self) -> set[int]:
        return {edition.book.id for edition in self.editions}


class BorrowRequest(BaseModel):
    """A hydrated loan request, ready for the eligibility pipeline."""

    model_config = ConfigDict(frozen=True)

    reader: AccountRef
    librarian: AccountRef
    editions: tuple[EditionRef, ...] = Field(..., min_length=1)
    borrow_date: date
    desired_return_date: date

    @model_validator(mode="after")
    def _chronological(self) -> "BorrowRequest":
        if self.desired_return_date < self.borrow_date:
            raise ValueError("desired_return_date must not precede borrow_date")
        return self

    @property
    def books(self) -> list[BookRef]:
        return [edition.book for edition in self.editions]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

_PASSWORD_CLASSES = (r"[0-9]", r"[A-Z]", r"[a-z]", r"[!@#$%^&*?_]")


class ConditionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=10)
    description: str = Field(..., min_length=1, max_length=150)
    value: int


def _not_null(value):
    # fields may be omitted from a PATCH body but never cleared
    if value is None:
        raise ValueError("field may be omitted but not set to null")
    return value


def _check_year(year: int) -> int:
    if year > date.today().year:
        raise ValueError("year cannot be in the future")
    return year


def _check_password(password: str) -> str:
    if not all(re.search(pattern, password) for pattern in _PASSWORD_CLASSES):
        raise ValueError(
            "password needs a digit, an uppercase letter, a lowercase letter "
            "and one of !@#$%^&*?_"
        )
    return password


class ConditionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=10)
    description: Optional[str] = Field(None, min_length=1, max_length=150)
    value: Optional[int] = None

    @field_validator("name", "description", "value")
    @classmethod
    def _reject_null(cls, value):
        return _not_null(value)


_DOMAIN_NAME = r"^[A-Za-zăâîșțĂÂÎȘȚ\s]+$"
_AUTHOR_NAME = r"^[A-Z][a-z]+(\s[A-Z]\.)?\s[A-Z][a-z]+$"
_PERSON_NAME = r"^[A-Z][a-z]+$"
_EMAIL = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class DomainCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=50, pattern=_DOMAIN_NAME)
    parent_id: Optional[int] = None


class DomainUpdate(BaseModel):
    """Renames a domain. The parent link is fixed at creation."""

    name: Optional[str] = Field(None, min_length=3, max_length=50, pattern=_DOMAIN_NAME)

    @field_validator("name")
    @classmethod
    def _reject_null(cls, value):
        return _not_null(value)


class AuthorCreate(BaseModel):
    full_name: str = Field(..., min_length=6, max_length=50, pattern=_AUTHOR_NAME)


class AuthorUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=6, max_length=50, pattern=_AUTHOR_NAME)

    @field_validator("full_name")
    @classmethod
    def _reject_null(cls, value):
        return _not_null(value)


class EditionCreate(BaseModel):
    publishing_house: str = Field(..., min_length=1, max_length=100)
    year: int = Field(..., ge=1000)
    number_of_pages: int = Field(..., ge=1, le=5000)
    edition_number: int = Field(..., ge=1, le=30)
    book_type: BookType
    copies_for_borrowing: int = Field(..., ge=0, le=100)
    copies_for_reading: int = Field(..., ge=0, le=100)

    @field_validator("year")
    @classmethod
    def _not_in_future(cls, year: int) -> int:
        return _check_year(year)


class EditionUpdate(BaseModel):
    """Descriptive edition fields. Copy counts move only through loans."""

    publishing_house: Optional[str] = Field(None, min_length=1, max_length=100)
    year: Optional[int] = Field(None, ge=1000)
    number_of_pages: Optional[int] = Field(None, ge=1, le=5000)
    edition_number: Optional[int] = Field(None, ge=1, le=30)
    book_type: Optional[BookType] = None

    @field_validator("publishing_house", "number_of_pages", "edition_number", "book_type")
    @classmethod
    def _reject_null(cls, value):
        return _not_null(value)

    @field_validator("year")
    @classmethod
    def _not_in_future(cls, year):
        return _check_year(_not_null(year))


class BookCreate(BaseModel):
    title: str = Field(..., min_length=6, max_length=50)
    author_ids: list[int] = Field(..., min_length=1)
    domain_ids: list[int] = Field(..., min_length=1)
    editions: list[EditionCreate] = Field(..., min_length=1)


class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=6, max_length=50)
    domain_ids: Optional[list[int]] = Field(None, min_length=1)

    @field_validator("title", "domain_ids")
    @classmethod
    def _reject_null(cls, value):
        return _not_null(value)


class AccountCreate(BaseModel):
    first_name: str = Field(..., min_length=3, max_length=50, pattern=_PERSON_NAME)
    last_name: str = Field(..., min_length=3, max_length=50, pattern=_PERSON_NAME)
    address: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., min_length=8, max_length=100, pattern=_EMAIL)
    phone_number: Optional[str] = Field(None, min_length=3, max_length=10, pattern=r"^\+?\d+$")
    password: str = Field(..., min_length=8, max_length=30)
    account_type: AccountType

    @field_validator("password")
    @classmethod
    def _strong_password(cls, password: str) -> str:
        return _check_password(password)


class AccountUpdate(BaseModel):
    """Profile changes. A new password must come with the current one.

    phone_number is the only field that may be cleared with null.
    account_type is fixed at creation.
    """

    first_name: Optional[str] = Field(None, min_length=3, max_length=50, pattern=_PERSON_NAME)
    last_name: Optional[str] = Field(None, min_length=3, max_length=50, pattern=_PERSON_NAME)
    address: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[str] = Field(None, min_length=8, max_length=100, pattern=_EMAIL)
    phone_number: Optional[str] = Field(None, min_length=3, max_length=10, pattern=r"^\+?\d+$")
    password: Optional[str] = Field(None, min_length=8, max_length=30)
    current_password: Optional[str] = None

    @field_validator("first_name", "last_name", "address", "email")
    @classmethod
    def _reject_null(cls, value):
        return _not_null(value)

    @field_validator("password")
    @classmethod
    def _strong_password(cls, password):
        return _check_password(_not_null(password))

    @model_validator(mode="after")
    def _current_password_given(self) -> "AccountUpdate":
        if self.password is not None and not self.current_password:
            raise ValueError("current_password is required to change the password")
        return self


class LoanCreate(BaseModel):
    """A loan request as submitted by a librarian.

    return_date may be omitted; the lending service then applies the
    TIMPIMP loan length.
    """

    reader_id: int
    librarian_id: int
    edition_ids: list[int] = Field(..., min_length=1)
    borrow_date: date = Field(default_factory=date.today)
    return_date: Optional[date] = None

    @field_validator("edition_ids")
    @classmethod
    def _unique_editions(cls, edition_ids: list[int]) -> list[int]:
        if len(set(edition_ids)) != len(edition_ids):
            raise ValueError("edition_ids must not repeat")
        return edition_ids

    @model_validator(mode="after")
    def _chronological(self) -> "LoanCreate":
        if self.return_date is not None and self.return_date < self.borrow_date:
            raise ValueError("return_date must not precede borrow_date")
        return self

    def resolved_return_date(self, loan_days: int) -> date:
        if self.return_date is not None:
            return self.return_date
        return self.borrow_date + timedelta(days=loan_days)


class LoanExtension(BaseModel):
    actual_return_date: date


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class ConditionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    value: int


class AuthorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    address: str
    email: str
    phone_number: Optional[str] = None
    account_type: AccountType


class EditionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    book_id: int
    publishing_house: str
    year: int
    number_of_pages: int
    edition_number: int
    book_type: BookType
    copies_for_borrowing: int
    copies_for_reading: int
    initial_stock: int


class BookResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    authors: list[AuthorResponse] = []
    domains: list[DomainNode] = []
    editions: list[EditionResponse] = []
