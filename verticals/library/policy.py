"""Library policy conditions and the immutable snapshot the engine reads.

Conditions are named integers stored in the conditions table and tuned by
librarians:

    NMC      max editions a reader may borrow within PER days
    PER      window, in days, for NMC
    C        max editions in a single loan
    D        max editions from one domain within L months
    L        window, in months, for D
    LIM      max extension days within the extension window
    DELTA    days before the same book may be borrowed again
    NCZ      max loans per day for a reader
    PERSIMP  max loans per day issued (legacy: gated on the reader's account)
    TIMPIMP  default loan length, in days
    DOMENII  max domains a book may be filed under

The ConditionRegistry reads them through a ConditionStore and freezes the
result into a PolicySnapshot once per request. A name that was never seeded
raises MissingCondition in strict mode; lenient mode logs a warning and
reads it as 0.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional, Protocol

import structlog

from verticals.library.errors import MissingCondition
from verticals.library.models.schemas import AccountType, ConditionResponse

logger = structlog.get_logger(__name__)


class ConditionName(str, Enum):
    NMC = "NMC"
    PER = "PER"
    C = "C"
    D = "D"
    L = "L"
    LIM = "LIM"
    DELTA = "DELTA"
    NCZ = "NCZ"
    PERSIMP = "PERSIMP"
    TIMPIMP = "TIMPIMP"
    DOMENII = "DOMENII"


BORROW_CONDITIONS: tuple[ConditionName, ...] = (
    ConditionName.NMC,
    ConditionName.PER,
    ConditionName.C,
    ConditionName.D,
    ConditionName.L,
    ConditionName.LIM,
    ConditionName.DELTA,
    ConditionName.NCZ,
    ConditionName.PERSIMP,
    ConditionName.TIMPIMP,
)

# name -> (value, description); seeded by CatalogService.seed_default_conditions
DEFAULT_CONDITIONS: dict[ConditionName, tuple[int, str]] = {
    ConditionName.DOMENII: (3, "A book cannot be filed under more than [DOMENII] domains."),
    ConditionName.NMC: (9, "A reader may borrow at most [NMC] books within <PER> days."),
    ConditionName.PER: (30, "A reader may borrow at most <NMC> books within [PER] days."),
    ConditionName.C: (3, "A single loan may hold at most [C] books."),
    ConditionName.D: (9, "At most [D] books from one domain within the last <L> months."),
    ConditionName.L: (2, "At most <D> books from one domain within the last [L] months."),
    ConditionName.LIM: (28, "Extensions in the last 3 months cannot exceed [LIM] days."),
    ConditionName.DELTA: (60, "The same book cannot be borrowed again within [DELTA] days."),
    ConditionName.NCZ: (5, "A reader may take out at most [NCZ] loans per day."),
    ConditionName.PERSIMP: (50, "Staff may issue at most [PERSIMP] loans per day."),
    ConditionName.TIMPIMP: (14, "Books are due back [TIMPIMP] days after borrowing."),
}


# ---------------------------------------------------------------------------
# Snapshot & role scaling
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolicyMultiplier:
    """Per-account scaling applied once before the pipeline runs.

    Quotas are multiplied, windows integer-divided.
    """

    quota_factor: int = 1
    window_divisor: int = 1

    @classmethod
    def for_account(cls, account_type: AccountType) -> "PolicyMultiplier":
        if account_type == AccountType.LIBRARIAN_READER:
            return cls(quota_factor=2, window_divisor=2)
        return cls()

    @property
    def is_identity(self) -> bool:
        return self.quota_factor == 1 and self.window_divisor == 1


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of every condition the lending engine reads.

    Usage::

        policy = PolicySnapshot(nmc=9, per=30, c=3, d=9, l=2, lim=28,
                                delta=60, ncz=5, persimp=50)
        scaled = policy.scaled(PolicyMultiplier.for_account(reader.account_type))
    """

    nmc: int
    per: int
    c: int
    d: int
    l: int  # noqa: E741
    lim: int
    delta: int
    ncz: int
    persimp: int
    timpimp: int = 14
    domenii: int = 3

    def scaled(self, multiplier: PolicyMultiplier) -> "PolicySnapshot":
        if multiplier.is_identity:
            return self
        return replace(
            self,
            nmc=self.nmc * multiplier.quota_factor,
            c=self.c * multiplier.quota_factor,
            d=self.d * multiplier.quota_factor,
            lim=self.lim * multiplier.quota_factor,
            per=self.per // multiplier.window_divisor,
            delta=self.delta // multiplier.window_divisor,
        )

    def for_account(self, account_type: AccountType) -> "PolicySnapshot":
        return self.scaled(PolicyMultiplier.for_account(account_type))

    @classmethod
    def from_values(cls, values: dict[ConditionName, int]) -> "PolicySnapshot":
        kwargs = {name.value.lower(): value for name, value in values.items()}
        return cls(**kwargs)

    @classmethod
    def defaults(cls) -> "PolicySnapshot":
        return cls.from_values({name: value for name, (value, _) in DEFAULT_CONDITIONS.items()})


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ConditionStore(Protocol):
    async def get_by_name(self, name: str) -> Optional[ConditionResponse]: ...

    async def list_all(self) -> list[ConditionResponse]: ...


class ConditionRegistry:
    """Read-only lookup of named policy values.

    strict=True (the default) refuses to guess a value for a name that was
    never seeded.
    """

    def __init__(self, store: ConditionStore, strict: bool = True):
        self.store = store
        self.strict = strict

    async def value(self, name: ConditionName) -> int:
        condition = await self.store.get_by_name(name.value)
        if condition is None:
            return self._missing([name])[name]
        return condition.value

    async def snapshot(
        self, required: Iterable[ConditionName] = BORROW_CONDITIONS
    ) -> PolicySnapshot:
        """Read every condition once and freeze the result."""
        required = tuple(required)
        by_name = {c.name: c.value for c in await self.store.list_all()}
        values: dict[ConditionName, int] = {}
        missing: list[ConditionName] = []
        for name in ConditionName:
            if name.value in by_name:
                values[name] = by_name[name.value]
            elif name in required:
                missing.append(name)
            else:
                values[name] = DEFAULT_CONDITIONS[name][0]
        if missing:
            values.update(self._missing(missing))
        return PolicySnapshot.from_values(values)

    def _missing(self, names: list[ConditionName]) -> dict[ConditionName, int]:
        if self.strict:
            raise MissingCondition([name.value for name in names])
        for name in names:
            logger.warning("condition.missing", name=name.value, fallback=0)
        return {name: 0 for name in names}
