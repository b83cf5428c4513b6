"""Pure-function rules engine.

Rules are stateless functions: (context) -> RuleResult.
No database, no side effects. Each rule reads a frozen context and says
whether it passed, with a message and details that explain why.

Two ways of combining them:
- evaluate_rules(): aggregate results that were already computed.
- run_pipeline(): call rules in order and stop at the first failure, so the
  reported reason is always the earliest one in the sequence.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, TypeVar

ContextT = TypeVar("ContextT")

Rule = Callable[[ContextT], "RuleResult"]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    code: Optional[str] = None


@dataclass
class RuleSetResult:
    """Aggregate outcome of multiple rules."""

    all_passed: bool
    results: list[RuleResult]
    failed: list[RuleResult] = field(default_factory=list)

    def __post_init__(self):
        self.failed = [r for r in self.results if not r.passed]
        self.all_passed = len(self.failed) == 0

    @property
    def first_failure(self) -> Optional[RuleResult]:
        return self.failed[0] if self.failed else None


def passed(rule_name: str, message: str = "ok", **details: Any) -> RuleResult:
    return RuleResult(passed=True, rule_name=rule_name, message=message, details=details)


def failed(rule_name: str, code: str, message: str, **details: Any) -> RuleResult:
    return RuleResult(
        passed=False, rule_name=rule_name, message=message, details=details, code=code
    )


# ---------------------------------------------------------------------------
# Rule composition
# ---------------------------------------------------------------------------

def evaluate_rules(*rules: RuleResult) -> RuleSetResult:
    """Compose multiple rule results into a single aggregate.

    Example::

        result = evaluate_rules(
            check_transaction_cap(ctx),
            check_stock_availability(ctx),
        )
        if result.all_passed:
            ...
    """
    return RuleSetResult(
        all_passed=all(r.passed for r in rules),
        results=list(rules),
    )


def run_pipeline(rules: Iterable[Rule], context: ContextT) -> RuleSetResult:
    """Run rules in order, stopping at the first one that fails.

    Rules after a failure are never called. The returned results hold every
    rule that ran, the failing one last.
    """
    results: list[RuleResult] = []
    for rule in rules:
        result = rule(context)
        results.append(result)
        if not result.passed:
            break
    return RuleSetResult(all_passed=False, results=results)
