"""Lending rules as pure functions.

Each check takes plain inputs (request editions, reader history, policy
values, the evaluation day) and returns a RuleResult. A failing result
carries its ViolationCode in `code`. No database, no logging, no clock:
the caller supplies `today`, so every rule is deterministic.

Time windows are inclusive of their first day: a record counts when
`borrow_date >= today - window`.
"""

import calendar
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from patterns.rules_engine import RuleResult, failed, passed
from verticals.library.errors import ViolationCode
from verticals.library.hierarchy import DomainHierarchy
from verticals.library.models.schemas import (
    AccountType,
    BookRef,
    DomainNode,
    EditionRef,
    LoanRecord,
)


# ---------------------------------------------------------------------------
# Date windows
# ---------------------------------------------------------------------------

def months_before(day: date, months: int) -> date:
    """Same day-of-month `months` earlier, clamped to the month's last day.

    months_before(date(2024, 5, 31), 3) == date(2024, 2, 29)
    """
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def records_since(history: Iterable[LoanRecord], start: date) -> list[LoanRecord]:
    return [record for record in history if record.borrow_date >= start]


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

def check_stock_availability(
    editions: Sequence[EditionRef], reserve_percent: int = 10
) -> RuleResult:
    """Every edition has a copy to lend and stays above the reserve floor.

    The floor is `reserve_percent` of the initial stock; sitting exactly on
    it passes.
    """
    for edition in editions:
        available = edition.copies_for_borrowing
        if available <= 0:
            return failed(
                "stock_availability",
                ViolationCode.OUT_OF_STOCK.value,
                f"Edition {edition.id} has no copies left to lend",
                edition_id=edition.id,
                available=available,
            )
        if available * 100 < edition.initial_stock * reserve_percent:
            return failed(
                "stock_availability",
                ViolationCode.LOW_STOCK_RESERVE.value,
                f"Edition {edition.id} is below the {reserve_percent}% lending reserve",
                edition_id=edition.id,
                available=available,
                initial_stock=edition.initial_stock,
                reserve_percent=reserve_percent,
            )
    return passed("stock_availability", editions=len(editions))


# ---------------------------------------------------------------------------
# Quotas
# ---------------------------------------------------------------------------

def check_frequency_cap(
    history: Iterable[LoanRecord],
    requested: int,
    nmc: int,
    per: int,
    today: date,
) -> RuleResult:
    """At most NMC editions within the last PER days, this request included."""
    window_start = today - timedelta(days=per)
    borrowed = sum(len(r.editions) for r in records_since(history, window_start))
    total = borrowed + requested
    if total > nmc:
        return failed(
            "frequency_cap",
            ViolationCode.FREQUENCY_CAP_EXCEEDED.value,
            f"{total} editions within {per} days exceeds the limit of {nmc}",
            borrowed=borrowed,
            requested=requested,
            nmc=nmc,
            per=per,
        )
    return passed("frequency_cap", borrowed=borrowed, requested=requested, nmc=nmc)


def check_transaction_cap(requested: int, c: int) -> RuleResult:
    if requested > c:
        return failed(
            "transaction_cap",
            ViolationCode.TRANSACTION_CAP_EXCEEDED.value,
            f"{requested} editions in one loan exceeds the limit of {c}",
            requested=requested,
            c=c,
        )
    return passed("transaction_cap", requested=requested, c=c)


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------

def distinct_subjects(
    books: Iterable[BookRef], hierarchy: Optional[DomainHierarchy] = None
) -> int:
    """Number of distinct subjects across books.

    Without a hierarchy this is the number of distinct domain names. With
    one, names in an ancestor/descendant relationship count once.
    """
    by_name: dict[str, DomainNode] = {}
    for book in books:
        for domain in book.domains:
            by_name.setdefault(domain.name, domain)
    if hierarchy is None:
        return len(by_name)
    return len(hierarchy.subject_families(by_name.values()))


def check_domain_diversity(
    books: Sequence[BookRef],
    hierarchy: Optional[DomainHierarchy] = None,
    min_editions: int = 3,
    min_domains: int = 2,
) -> RuleResult:
    """Loans of min_editions or more must span at least min_domains subjects."""
    if len(books) < min_editions:
        return passed("domain_diversity", skipped=True)
    subjects = distinct_subjects(books, hierarchy)
    if subjects < min_domains:
        return failed(
            "domain_diversity",
            ViolationCode.INSUFFICIENT_DOMAIN_DIVERSITY.value,
            f"{len(books)} editions span only {subjects} distinct domain(s)",
            editions=len(books),
            subjects=subjects,
            required=min_domains,
        )
    return passed("domain_diversity", subjects=subjects)


def check_domain_frequency(
    history: Iterable[LoanRecord],
    books: Sequence[BookRef],
    d: int,
    l_months: int,
    today: date,
) -> RuleResult:
    """No domain name appears more than D times within the last L months.

    Every edition of every record in the window counts once per domain of
    its book, and so does every edition of this request.
    """
    window_start = months_before(today, l_months)
    occurrences: Counter = Counter()
    for record in records_since(history, window_start):
        for edition in record.editions:
            occurrences.update(domain.name for domain in edition.book.domains)
    for book in books:
        occurrences.update(domain.name for domain in book.domains)

    over = sorted(name for name, count in occurrences.items() if count > d)
    if over:
        return failed(
            "domain_frequency",
            ViolationCode.DOMAIN_FREQUENCY_CAP_EXCEEDED.value,
            f"Domain {over[0]} borrowed {occurrences[over[0]]} times within "
            f"{l_months} months; limit is {d}",
            domains={name: occurrences[name] for name in over},
            d=d,
            l=l_months,
        )
    return passed("domain_frequency", d=d, l=l_months)


# ---------------------------------------------------------------------------
# Repeat & daily caps
# ---------------------------------------------------------------------------

def check_repeat_book_cooldown(
    history: Iterable[LoanRecord],
    books: Sequence[BookRef],
    delta: int,
    today: date,
) -> RuleResult:
    """A book borrowed within the last DELTA days cannot be borrowed again."""
    window_start = today - timedelta(days=delta)
    recent: set[int] = set()
    for record in records_since(history, window_start):
        recent |= record.book_ids
    repeated = sorted({book.id for book in books} & recent)
    if repeated:
        return failed(
            "repeat_book_cooldown",
            ViolationCode.REPEAT_BOOK_COOLDOWN.value,
            f"Book {repeated[0]} was already borrowed within {delta} days",
            book_ids=repeated,
            delta=delta,
        )
    return passed("repeat_book_cooldown", delta=delta)


def _same_day_loans(history: Iterable[LoanRecord], today: date) -> int:
    # the request being evaluated counts as one more
    return len(records_since(history, today)) + 1


def check_daily_reader_cap(
    history: Iterable[LoanRecord],
    account_type: AccountType,
    ncz: int,
    today: date,
) -> RuleResult:
    """Plain readers take out at most NCZ loans per day."""
    if account_type != AccountType.READER:
        return passed("daily_reader_cap", skipped=True)
    loans = _same_day_loans(history, today)
    if loans > ncz:
        return failed(
            "daily_reader_cap",
            ViolationCode.DAILY_READER_CAP_EXCEEDED.value,
            f"{loans} loans today exceeds the daily reader limit of {ncz}",
            loans=loans,
            ncz=ncz,
        )
    return passed("daily_reader_cap", loans=loans, ncz=ncz)


def check_daily_issuance_cap(
    history: Iterable[LoanRecord],
    account_type: AccountType,
    persimp: int,
    today: date,
) -> RuleResult:
    """Same-day issuance cap PERSIMP.

    Counted over the reader's own loans and gated on the reader being a
    plain READER account, not on the issuing librarian. Kept separate from
    check_daily_reader_cap so the two can diverge.
    """
    if account_type != AccountType.READER:
        return passed("daily_issuance_cap", skipped=True)
    loans = _same_day_loans(history, today)
    if loans > persimp:
        return failed(
            "daily_issuance_cap",
            ViolationCode.DAILY_ISSUANCE_CAP_EXCEEDED.value,
            f"{loans} loans today exceeds the daily issuance limit of {persimp}",
            loans=loans,
            persimp=persimp,
        )
    return passed("daily_issuance_cap", loans=loans, persimp=persimp)


# ---------------------------------------------------------------------------
# Extensions
# ---------------------------------------------------------------------------

def check_extension_budget(
    history: Iterable[LoanRecord],
    updated: LoanRecord,
    lim: int,
    today: date,
    window_months: int = 3,
) -> RuleResult:
    """Extension days over the window, `updated` included once, stay within LIM.

    The stored version of `updated` is replaced by the new one so its days
    are not counted twice.
    """
    window_start = months_before(today, window_months)
    records = [
        record
        for record in records_since(history, window_start)
        if record.id != updated.id
    ]
    records.append(updated)
    total = sum(record.extension_days for record in records)
    if total > lim:
        return failed(
            "extension_budget",
            ViolationCode.EXTENSION_BUDGET_EXCEEDED.value,
            f"{total} extension days within {window_months} months exceeds "
            f"the limit of {lim}",
            extension_days=total,
            lim=lim,
            loan_id=updated.id,
        )
    return passed("extension_budget", extension_days=total, lim=lim)
