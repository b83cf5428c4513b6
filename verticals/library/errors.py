"""Library exceptions.

Every error raised by the lending engine or the catalog derives from
LibraryError and serialises through to_dict() for API responses. Policy
rejections are ordinary outcomes of the engine and carry a ViolationCode;
CycleDetected and MissingCondition are data-integrity faults.
"""

from enum import Enum
from typing import Any, Optional


class ViolationCode(str, Enum):
    """Reason a loan or extension was refused."""

    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK_RESERVE = "low_stock_reserve"
    FREQUENCY_CAP_EXCEEDED = "frequency_cap_exceeded"
    TRANSACTION_CAP_EXCEEDED = "transaction_cap_exceeded"
    INSUFFICIENT_DOMAIN_DIVERSITY = "insufficient_domain_diversity"
    DOMAIN_FREQUENCY_CAP_EXCEEDED = "domain_frequency_cap_exceeded"
    REPEAT_BOOK_COOLDOWN = "repeat_book_cooldown"
    DAILY_READER_CAP_EXCEEDED = "daily_reader_cap_exceeded"
    DAILY_ISSUANCE_CAP_EXCEEDED = "daily_issuance_cap_exceeded"
    EXTENSION_BUDGET_EXCEEDED = "extension_budget_exceeded"


class CatalogCode(str, Enum):
    """Reason a catalog change was refused."""

    DUPLICATE_ENTITY = "duplicate_entity"
    TOO_MANY_DOMAINS = "too_many_domains"
    RELATED_DOMAINS = "related_domains"
    UNKNOWN_PARENT = "unknown_parent"
    INVALID_TRANSITION = "invalid_transition"
    IN_USE = "in_use"


# =================== BASE EXCEPTION ===================

class LibraryError(Exception):
    """Base exception for all library errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "type": self.__class__.__name__,
        }
        if self.details:
            result["details"] = self.details
        return result


# =================== BOUNDARY ===================

class LendingValidationError(LibraryError):
    """Malformed or inconsistent input, rejected before any rule runs."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message, code="validation_error", details={"errors": errors or []})
        self.errors = errors or []


class EntityNotFound(LibraryError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            code="not_found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


# =================== POLICY ===================

class PolicyViolation(LibraryError):
    """A loan or extension refused by a library policy rule.

    Non-fatal: reported to the caller, never retried.
    """

    def __init__(
        self,
        violation: ViolationCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code=violation.value, details=details)
        self.violation = violation


class CatalogViolation(LibraryError):
    """A catalog change refused by a catalog rule."""

    def __init__(
        self,
        reason: CatalogCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code=reason.value, details=details)
        self.reason = reason


# =================== INTEGRITY ===================

class CycleDetected(LibraryError):
    """The domain forest contains a parent cycle."""

    def __init__(self, node_id: Any, chain: Optional[list[Any]] = None):
        super().__init__(
            f"Domain hierarchy cycle detected at node {node_id}",
            code="cycle_detected",
            details={"node_id": node_id, "chain": chain or []},
        )
        self.node_id = node_id


class MissingCondition(LibraryError):
    """One or more required policy conditions are not seeded."""

    def __init__(self, names: list[str]):
        super().__init__(
            f"Missing required conditions: {', '.join(names)}",
            code="missing_condition",
            details={"names": names},
        )
        self.names = names


# =================== CONCURRENCY ===================

class StockUpdateConflict(LibraryError):
    """A concurrent writer changed an edition's stock between read and swap.

    Transient: callers retry a bounded number of times, then surface it.
    """

    def __init__(self, edition_id: int, attempts: int = 1):
        super().__init__(
            f"Stock for edition {edition_id} changed concurrently",
            code="stock_update_conflict",
            details={"edition_id": edition_id, "attempts": attempts},
        )
        self.edition_id = edition_id
        self.attempts = attempts
