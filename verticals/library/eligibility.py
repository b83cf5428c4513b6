"""Borrow eligibility and extension evaluation.

Both evaluators are stateless: a call is a pure function of the request,
a policy snapshot and a snapshot of the reader's history, returning a
Decision. Role scaling happens once, before the first rule runs, and the
pipeline stops at the first failing rule so the reported reason is always
the earliest one:

    stock -> frequency (NMC/PER) -> transaction (C) -> domain diversity
          -> domain frequency (D/L) -> repeat cooldown (DELTA)
          -> daily reader cap (NCZ) -> daily issuance cap (PERSIMP)

Decisions are reported to an injected DecisionObserver; the default one
logs through structlog.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Protocol, Sequence

import structlog

from patterns.domain_config import LendingConfig
from patterns.rules_engine import RuleResult, RuleSetResult, evaluate_rules, run_pipeline
from verticals.library.errors import PolicyViolation, ViolationCode
from verticals.library.hierarchy import DomainHierarchy
from verticals.library.models.schemas import (
    AccountType,
    BorrowRequest,
    LoanRecord,
)
from verticals.library.policy import PolicySnapshot
from verticals.library.rules import (
    check_daily_issuance_cap,
    check_daily_reader_cap,
    check_domain_diversity,
    check_domain_frequency,
    check_extension_budget,
    check_frequency_cap,
    check_repeat_book_cooldown,
    check_stock_availability,
    check_transaction_cap,
)

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Decision:
    """Accept, or reject with the first failing rule's reason."""

    accepted: bool
    violation: Optional[ViolationCode] = None
    rule_name: Optional[str] = None
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    results: tuple[RuleResult, ...] = ()

    @classmethod
    def from_results(cls, outcome: RuleSetResult) -> "Decision":
        results = tuple(outcome.results)
        failure = outcome.first_failure
        if failure is None:
            return cls(accepted=True, message="accepted", results=results)
        return cls(
            accepted=False,
            violation=ViolationCode(failure.code),
            rule_name=failure.rule_name,
            message=failure.message,
            details=dict(failure.details),
            results=results,
        )

    def raise_for_rejection(self) -> None:
        """Raise PolicyViolation if this decision is a rejection."""
        if not self.accepted:
            raise PolicyViolation(self.violation, self.message, details=self.details)


class DecisionObserver(Protocol):
    def on_decision(self, event: str, decision: Decision, **context: Any) -> None: ...


class StructlogDecisionObserver:
    """Logs accepted decisions at info and rejections at warning."""

    def __init__(self, log=None):
        self.log = log or logger

    def on_decision(self, event: str, decision: Decision, **context: Any) -> None:
        if decision.accepted:
            self.log.info(f"{event}.accepted", **context)
        else:
            self.log.warning(
                f"{event}.rejected",
                reason=decision.violation.value,
                rule=decision.rule_name,
                detail=decision.message,
                **context,
            )


# ---------------------------------------------------------------------------
# Borrow pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BorrowContext:
    """Everything the borrow rules read, frozen for one evaluation."""

    request: BorrowRequest
    history: tuple[LoanRecord, ...]
    policy: PolicySnapshot  # already scaled for the reader's account
    today: date
    hierarchy: Optional[DomainHierarchy] = None
    reserve_percent: int = 10
    diversity_min_editions: int = 3
    diversity_min_domains: int = 2
    diversity_by_subject_family: bool = True

    @property
    def requested(self) -> int:
        return len(self.request.editions)


def _stock(ctx: BorrowContext) -> RuleResult:
    return check_stock_availability(ctx.request.editions, ctx.reserve_percent)


def _frequency(ctx: BorrowContext) -> RuleResult:
    return check_frequency_cap(
        ctx.history, ctx.requested, ctx.policy.nmc, ctx.policy.per, ctx.today
    )


def _transaction(ctx: BorrowContext) -> RuleResult:
    return check_transaction_cap(ctx.requested, ctx.policy.c)


def _diversity(ctx: BorrowContext) -> RuleResult:
    hierarchy = ctx.hierarchy if ctx.diversity_by_subject_family else None
    return check_domain_diversity(
        ctx.request.books,
        hierarchy,
        min_editions=ctx.diversity_min_editions,
        min_domains=ctx.diversity_min_domains,
    )


def _domain_frequency(ctx: BorrowContext) -> RuleResult:
    return check_domain_frequency(
        ctx.history, ctx.request.books, ctx.policy.d, ctx.policy.l, ctx.today
    )


def _cooldown(ctx: BorrowContext) -> RuleResult:
    return check_repeat_book_cooldown(
        ctx.history, ctx.request.books, ctx.policy.delta, ctx.today
    )


def _daily_reader(ctx: BorrowContext) -> RuleResult:
    return check_daily_reader_cap(
        ctx.history, ctx.request.reader.account_type, ctx.policy.ncz, ctx.today
    )


def _daily_issuance(ctx: BorrowContext) -> RuleResult:
    return check_daily_issuance_cap(
        ctx.history, ctx.request.reader.account_type, ctx.policy.persimp, ctx.today
    )


BORROW_PIPELINE: tuple[Callable[[BorrowContext], RuleResult], ...] = (
    _stock,
    _frequency,
    _transaction,
    _diversity,
    _domain_frequency,
    _cooldown,
    _daily_reader,
    _daily_issuance,
)


class BorrowEligibilityEvaluator:
    """Decides whether a loan may proceed.

    Usage::

        evaluator = BorrowEligibilityEvaluator()
        decision = evaluator.evaluate(request, history, policy, today=date.today())
        decision.raise_for_rejection()
    """

    def __init__(
        self,
        observer: Optional[DecisionObserver] = None,
        reserve_percent: int = 10,
        diversity_min_editions: int = 3,
        diversity_min_domains: int = 2,
        diversity_by_subject_family: bool = True,
    ):
        self.observer = observer or StructlogDecisionObserver()
        self.reserve_percent = reserve_percent
        self.diversity_min_editions = diversity_min_editions
        self.diversity_min_domains = diversity_min_domains
        self.diversity_by_subject_family = diversity_by_subject_family

    @classmethod
    def from_config(
        cls, config: LendingConfig, observer: Optional[DecisionObserver] = None
    ) -> "BorrowEligibilityEvaluator":
        return cls(
            observer=observer,
            reserve_percent=config.reserve_percent,
            diversity_min_editions=config.diversity_min_editions,
            diversity_min_domains=config.diversity_min_domains,
            diversity_by_subject_family=config.diversity_by_subject_family,
        )

    def evaluate(
        self,
        request: BorrowRequest,
        history: Sequence[LoanRecord],
        policy: PolicySnapshot,
        today: Optional[date] = None,
        hierarchy: Optional[DomainHierarchy] = None,
    ) -> Decision:
        context = BorrowContext(
            request=request,
            history=tuple(history),
            policy=policy.for_account(request.reader.account_type),
            today=today or date.today(),
            hierarchy=hierarchy,
            reserve_percent=self.reserve_percent,
            diversity_min_editions=self.diversity_min_editions,
            diversity_min_domains=self.diversity_min_domains,
            diversity_by_subject_family=self.diversity_by_subject_family,
        )
        decision = Decision.from_results(run_pipeline(BORROW_PIPELINE, context))
        self.observer.on_decision(
            "loan",
            decision,
            reader_id=request.reader.id,
            librarian_id=request.librarian.id,
            edition_ids=[edition.id for edition in request.editions],
        )
        return decision


# ---------------------------------------------------------------------------
# Extensions
# ---------------------------------------------------------------------------

class ExtensionPolicyEvaluator:
    """Checks a moved return date against the rolling extension budget.

    `updated` is the record as it would be after the change; any stored
    version of it in `history` is ignored.
    """

    def __init__(self, observer: Optional[DecisionObserver] = None, window_months: int = 3):
        self.observer = observer or StructlogDecisionObserver()
        self.window_months = window_months

    @classmethod
    def from_config(
        cls, config: LendingConfig, observer: Optional[DecisionObserver] = None
    ) -> "ExtensionPolicyEvaluator":
        return cls(observer=observer, window_months=config.extension_window_months)

    def evaluate(
        self,
        updated: LoanRecord,
        history: Sequence[LoanRecord],
        policy: PolicySnapshot,
        account_type: AccountType,
        today: Optional[date] = None,
    ) -> Decision:
        lim = policy.for_account(account_type).lim
        result = check_extension_budget(
            history, updated, lim, today or date.today(), self.window_months
        )
        decision = Decision.from_results(evaluate_rules(result))
        self.observer.on_decision(
            "extension",
            decision,
            reader_id=updated.reader_id,
            loan_id=updated.id,
        )
        return decision
