"""
Core types and pure functions for the micro-lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LendingView for read-only ledger access, SmartContract for lifecycle polling
2. Immutable records: CollateralAsset, Loan, Reputation, ContractState, RiskParameters
3. Exceptions: LendingError and the stable error-code taxonomy
4. Transaction types: StateChange, PendingTransaction, Transaction
5. Canonical hashing of transaction intent

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, FrozenSet,
    runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Basis points: 10000 bps = 100%.
BPS_SCALE = 10_000

# Prices are posted in micro-units (6 decimals): 100_000_000 = $100.
PRICE_SCALE = 1_000_000

# Loan ids start at 1 and are allocated densely.
FIRST_LOAN_ID = 1

# Risk defaults (see RiskParameters)
DEFAULT_MIN_COLLATERAL_RATIO_BPS = 20_000   # 200%
DEFAULT_MIN_DURATION_BLOCKS = 1_440
DEFAULT_MAX_DURATION_BLOCKS = 525_600
DEFAULT_MAX_INTEREST_RATE_BPS = 5_000       # 50%

# Reputation defaults
MAX_REPUTATION_SCORE = 100
BASELINE_REPUTATION_SCORE = 100
DEFAULT_REPUTATION_PENALTY = 20
DEFAULT_REPUTATION_REWARD = 5

# Table names used by StateChange
TABLE_CONTRACT = "contract"
TABLE_ASSETS = "assets"
TABLE_LOANS = "loans"
TABLE_REPUTATIONS = "reputations"
TABLES = (TABLE_CONTRACT, TABLE_ASSETS, TABLE_LOANS, TABLE_REPUTATIONS)

# The contract table holds a single row under this key.
CONTRACT_STATE_KEY = "state"

# Stable error codes expected by callers.
ERR_NOT_AUTHORIZED = 1000
ERR_INSUFFICIENT_COLLATERAL = 1002
ERR_LOAN_NOT_FOUND = 1003
ERR_LOAN_ALREADY_ACTIVE = 1004
ERR_LOAN_NOT_ACTIVE = 1005
ERR_LOAN_NOT_DEFAULTED = 1006
ERR_INVALID_AMOUNT = 1008
ERR_INVALID_DURATION = 1009
ERR_INVALID_INTEREST_RATE = 1010
ERR_EMERGENCY_STOP = 1011
ERR_INVALID_PRICE = 1012
ERR_INVALID_COLLATERAL_ASSET = 1013


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque actor reference supplied by the host.
Identity = str

# Monotonic logical clock supplied by the host.
BlockHeight = int

LoanId = int


# ============================================================================
# ENUMS
# ============================================================================

class LoanStatus(str, Enum):
    """Lifecycle status of a loan. Terminal states: REPAID, LIQUIDATED."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    LIQUIDATED = "LIQUIDATED"


# Allowed status transitions. None is the "no record yet" state.
LOAN_TRANSITIONS: Dict[Optional[LoanStatus], FrozenSet[LoanStatus]] = {
    None: frozenset({LoanStatus.PENDING}),
    LoanStatus.PENDING: frozenset({LoanStatus.ACTIVE}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.REPAID, LoanStatus.LIQUIDATED}),
    LoanStatus.REPAID: frozenset(),
    LoanStatus.LIQUIDATED: frozenset(),
}


class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously applied and its
                     preconditions no longer hold (idempotent behavior).
    REJECTED: Transaction failed validation (stale snapshot, illegal
              transition, future block).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Borrower-initiated request or repayment
    ADMINISTRATIVE = "administrative"     # Owner-gated operation
    LIFECYCLE = "lifecycle"               # Automatic lifecycle event (expiry, price feed)
    SYSTEM = "system"                     # Genesis / internal


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """
    Base exception for all lending errors.

    Subclasses carry a stable numeric `code` that callers use to
    distinguish causes. Errors are recoverable: a failed call leaves
    ledger state unchanged.
    """
    code: Optional[int] = None


class NotAuthorized(LendingError):
    """Raised when the caller is not allowed to perform the operation."""
    code = ERR_NOT_AUTHORIZED


class InsufficientCollateral(LendingError):
    """Raised when collateral value is below the minimum ratio."""
    code = ERR_INSUFFICIENT_COLLATERAL


class LoanNotFound(LendingError):
    """Raised when a loan id does not exist."""
    code = ERR_LOAN_NOT_FOUND


class LoanAlreadyActive(LendingError):
    """Raised when activating a loan that is no longer PENDING."""
    code = ERR_LOAN_ALREADY_ACTIVE


class LoanNotActive(LendingError):
    """Raised when repaying a loan that is not ACTIVE."""
    code = ERR_LOAN_NOT_ACTIVE


class LoanNotDefaulted(LendingError):
    """Raised when liquidating a loan that is not ACTIVE and past its duration."""
    code = ERR_LOAN_NOT_DEFAULTED


class InvalidAmount(LendingError):
    """Raised when a loan request asks for a zero amount."""
    code = ERR_INVALID_AMOUNT


class InvalidDuration(LendingError):
    """Raised when a loan duration is outside the configured bounds."""
    code = ERR_INVALID_DURATION


class InvalidInterestRate(LendingError):
    """Raised when a loan interest rate exceeds the configured maximum."""
    code = ERR_INVALID_INTEREST_RATE


class EmergencyStopActive(LendingError):
    """Raised when creating a loan while the emergency stop is set."""
    code = ERR_EMERGENCY_STOP


class InvalidPrice(LendingError):
    """Raised when posting a zero price."""
    code = ERR_INVALID_PRICE


class InvalidCollateralAsset(LendingError):
    """Raised when an asset is not listed or has no price."""
    code = ERR_INVALID_COLLATERAL_ASSET


ERRORS_BY_CODE: Dict[int, type] = {
    cls.code: cls for cls in (
        NotAuthorized, InsufficientCollateral, LoanNotFound, LoanAlreadyActive,
        LoanNotActive, LoanNotDefaulted, InvalidAmount, InvalidDuration,
        InvalidInterestRate, EmergencyStopActive, InvalidPrice,
        InvalidCollateralAsset,
    )
}


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def _require_uint(name: str, value: Any) -> None:
    """Reject anything that is not a non-negative int (bool excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")


def _require_identity(name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} cannot be empty")


# ============================================================================
# IMMUTABLE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralAsset:
    """
    An accepted collateral asset and its latest posted price.

    Attributes:
        symbol: Asset identifier (e.g., "STX")
        price: Latest price in micro-units (0 means no price posted yet)
        listed: Whether the asset is accepted as collateral
    """
    symbol: str
    price: int = 0
    listed: bool = True

    def __post_init__(self):
        _require_identity("symbol", self.symbol)
        _require_uint("price", self.price)

    @property
    def is_priced(self) -> bool:
        return self.listed and self.price > 0


@dataclass(frozen=True, slots=True)
class Loan:
    """
    A loan record. Each lifecycle change creates a NEW instance.

    Attributes:
        id: Dense id starting at 1
        borrower: Identity that requested the loan
        amount: Principal in micro-units of the borrowed denomination
        collateral_amount: Collateral posted, in micro-units of collateral_asset
        collateral_asset: Listed asset symbol backing the loan
        duration_blocks: Agreed duration, counted from activation
        interest_rate_bps: Flat interest rate in basis points
        status: PENDING, ACTIVE, REPAID or LIQUIDATED
        created_at_block: Block of the request
        activated_at_block: Block of activation (None while PENDING)
        borrow_asset: Denomination of `amount` (None = same as collateral)
        closed_at_block: Block of repayment or liquidation
    """
    id: int
    borrower: str
    amount: int
    collateral_amount: int
    collateral_asset: str
    duration_blocks: int
    interest_rate_bps: int
    status: LoanStatus
    created_at_block: int
    activated_at_block: Optional[int] = None
    borrow_asset: Optional[str] = None
    closed_at_block: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.status, LoanStatus):
            object.__setattr__(self, 'status', LoanStatus(self.status))
        _require_uint("id", self.id)
        _require_identity("borrower", self.borrower)
        _require_uint("amount", self.amount)
        _require_uint("collateral_amount", self.collateral_amount)
        _require_identity("collateral_asset", self.collateral_asset)
        _require_uint("duration_blocks", self.duration_blocks)
        _require_uint("interest_rate_bps", self.interest_rate_bps)
        _require_uint("created_at_block", self.created_at_block)
        if self.activated_at_block is not None:
            _require_uint("activated_at_block", self.activated_at_block)
        if self.closed_at_block is not None:
            _require_uint("closed_at_block", self.closed_at_block)

    @property
    def is_open(self) -> bool:
        """True while the loan can still change state."""
        return self.status in (LoanStatus.PENDING, LoanStatus.ACTIVE)


@dataclass(frozen=True, slots=True)
class Reputation:
    """Per-identity repayment statistics. Score is bounded to [0, 100]."""
    identity: str
    completed_loans: int = 0
    defaults: int = 0
    reputation_score: int = BASELINE_REPUTATION_SCORE

    def __post_init__(self):
        _require_identity("identity", self.identity)
        _require_uint("completed_loans", self.completed_loans)
        _require_uint("defaults", self.defaults)
        _require_uint("reputation_score", self.reputation_score)
        if self.reputation_score > MAX_REPUTATION_SCORE:
            raise ValueError(
                f"reputation_score must be <= {MAX_REPUTATION_SCORE}, got {self.reputation_score}"
            )


@dataclass(frozen=True, slots=True)
class ContractState:
    """Process-wide administrative state: owner, emergency flag, id counter."""
    owner: str
    emergency_stopped: bool = False
    next_loan_id: int = FIRST_LOAN_ID

    def __post_init__(self):
        _require_identity("owner", self.owner)
        _require_uint("next_loan_id", self.next_loan_id)
        if self.next_loan_id < FIRST_LOAN_ID:
            raise ValueError(f"next_loan_id must be >= {FIRST_LOAN_ID}, got {self.next_loan_id}")


@dataclass(frozen=True, slots=True)
class RiskParameters:
    """
    Configured limits for the risk engine and reputation tracker.

    All fields are explicit - pure functions read this through the view
    instead of module globals, so tests can run with any configuration.
    """
    min_collateral_ratio_bps: int = DEFAULT_MIN_COLLATERAL_RATIO_BPS
    min_duration_blocks: int = DEFAULT_MIN_DURATION_BLOCKS
    max_duration_blocks: int = DEFAULT_MAX_DURATION_BLOCKS
    max_interest_rate_bps: int = DEFAULT_MAX_INTEREST_RATE_BPS
    reputation_penalty: int = DEFAULT_REPUTATION_PENALTY
    reputation_reward: int = DEFAULT_REPUTATION_REWARD
    baseline_reputation_score: int = BASELINE_REPUTATION_SCORE
    open_liquidation: bool = False  # True: any identity may liquidate a defaulted loan

    def __post_init__(self):
        for f in fields(self):
            if f.name != 'open_liquidation':
                _require_uint(f.name, getattr(self, f.name))
        if self.min_duration_blocks > self.max_duration_blocks:
            raise ValueError(
                f"min_duration_blocks ({self.min_duration_blocks}) cannot exceed "
                f"max_duration_blocks ({self.max_duration_blocks})"
            )
        if self.baseline_reputation_score > MAX_REPUTATION_SCORE:
            raise ValueError(
                f"baseline_reputation_score must be <= {MAX_REPUTATION_SCORE}"
            )


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LendingView(Protocol):
    """
    Read-only interface to lending state.

    Functions accepting a LendingView declare their read-only intent.
    LendingLedger implements this protocol but also provides mutation
    methods; for testing, FakeView provides a plain implementation.
    """

    @property
    def current_block(self) -> int:
        """Return the current block height."""
        ...

    @property
    def params(self) -> RiskParameters:
        """Return the configured risk parameters."""
        ...

    def get_contract_state(self) -> ContractState:
        ...

    def get_asset(self, symbol: str) -> Optional[CollateralAsset]:
        """Return the asset record, or None if never added."""
        ...

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        """Return the loan record, or None if unknown."""
        ...

    def get_reputation(self, identity: str) -> Optional[Reputation]:
        """Return the reputation record, or None if never created."""
        ...

    def list_loan_ids(self) -> List[int]:
        """Return all loan ids in ascending order."""
        ...


class SmartContract(Protocol):
    """
    Protocol for lifecycle-aware contracts polled by the LifecycleEngine.

    Contracts receive a LendingView and return a PendingTransaction directly.
    Use build_transaction() or empty_pending_transaction() to create it.
    """

    def check_lifecycle(
        self,
        view: LendingView,
        operator: str,
        loan_id: int,
        block_height: int,
        prices: Dict[str, int],
    ) -> 'PendingTransaction':
        ...


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        caller: Identity that made the call
        operation: Entry point name (e.g., "activate-loan")
        loan_id: Loan affected, if any
    """
    origin_type: OriginType
    caller: str
    operation: str
    loan_id: Optional[int] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.caller}", f"op={self.operation}"]
        if self.loan_id is not None:
            parts.append(f"loan={self.loan_id}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class StateChange:
    """
    Record of one row change for transaction logging and rollback.

    Stores complete before/after snapshots:
    - Forward replay: write new
    - Backward replay: restore old (None = row did not exist)
    - Audit queries: changed_fields()

    Attributes:
        table: One of TABLES
        key: Row key (symbol, loan id, identity, or CONTRACT_STATE_KEY)
        old: Record before the change (None for creation)
        new: Record after the change
    """
    table: str
    key: Any
    old: Any
    new: Any

    def __post_init__(self):
        if self.table not in TABLES:
            raise ValueError(f"Unknown table '{self.table}'")
        if self.new is None:
            raise ValueError("StateChange.new cannot be None (records are never deleted)")

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = _record_dict(self.old)
        new = _record_dict(self.new)
        changes = {}
        for key in sorted(set(old) | set(new)):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


def _record_dict(record: Any) -> Dict[str, Any]:
    if record is None:
        return {}
    if is_dataclass(record):
        return {f.name: getattr(record, f.name) for f in fields(record)}
    if isinstance(record, dict):
        return dict(record)
    raise TypeError(f"Unsupported record type {type(record).__name__}")


# ============================================================================
# CANONICAL HASHING
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order or nesting depth.
    """
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if is_dataclass(value) and not isinstance(value, type):
        items = _record_dict(value)
        serialized = ",".join(f"{k}:{_canonicalize(items[k])}" for k in sorted(items))
        return f"{type(value).__name__}{{{serialized}}}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    state_changes: Tuple[StateChange, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content (origin and state changes), NOT on
    block height or ledger-specific data. Same inputs always produce the
    same intent_id.
    """
    content_parts = [
        f"origin:{origin.origin_type.value}:{origin.caller}:{origin.operation}",
    ]
    if origin.loan_id is not None:
        content_parts.append(f"loan:{origin.loan_id}")

    for sc in sorted(state_changes, key=lambda s: (s.table, str(s.key))):
        content_parts.append(
            f"state_change:{sc.table}|{_canonicalize(sc.key)}|"
            f"{_canonicalize(sc.old)}|{_canonicalize(sc.new)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by compute_* functions and submitted to LendingLedger.execute().

    Attributes:
        state_changes: Row changes with old and new snapshots
        origin: Who/what created this transaction and why
        block_height: Block at which the intent was computed
        intent_id: Content-addressable hash (auto-computed)
    """
    state_changes: Tuple[StateChange, ...]
    origin: TransactionOrigin
    block_height: int
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id', _compute_intent_id(self.state_changes, self.origin)
            )

    def is_empty(self) -> bool:
        """Return True if this pending transaction changes nothing."""
        return not self.state_changes

    def changes_for(self, table: str) -> Tuple[StateChange, ...]:
        return tuple(sc for sc in self.state_changes if sc.table == table)

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.state_changes)} changes, {self.origin})"


def build_transaction(
    view: LendingView,
    state_changes: List[StateChange],
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Build a PendingTransaction from state changes.

    This is the standard way to create transactions.

    Example:
        def compute_activation(view, caller, loan_id):
            loan = view.get_loan(loan_id)
            activated = replace(loan, status=LoanStatus.ACTIVE,
                                activated_at_block=view.current_block)
            changes = [StateChange(TABLE_LOANS, loan_id, loan, activated)]
            return build_transaction(view, changes, origin)
    """
    return PendingTransaction(
        state_changes=tuple(copy.copy(sc) for sc in state_changes),
        origin=origin,
        block_height=view.current_block,
    )


def empty_pending_transaction(view: LendingView, caller: str = "noop") -> PendingTransaction:
    """
    Create an empty PendingTransaction.

    Use this when a contract function has nothing to do.
    """
    return PendingTransaction(
        state_changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, caller, "noop"),
        block_height=view.current_block,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        state_changes: Row changes with old and new snapshots
        origin: Who/what created this transaction and why
        block_height: Block at which the intent was computed
        intent_id: Content hash (from PendingTransaction)
        exec_id: Unique execution identifier
        ledger_name: Name of the ledger that executed this
        execution_block: Block at which this was applied
        sequence_number: Monotonic sequence within the ledger
    """
    state_changes: Tuple[StateChange, ...]
    origin: TransactionOrigin
    block_height: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_block: int
    sequence_number: int

    def __post_init__(self):
        if not self.state_changes:
            raise ValueError("Transaction must have state_changes")

    def to_pending(self) -> PendingTransaction:
        return PendingTransaction(
            state_changes=self.state_changes,
            origin=self.origin,
            block_height=self.block_height,
        )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id       : ' + self.intent_id)}│",
            f"│{pad('   block_height    : ' + str(self.block_height))}│",
            f"│{pad('   ledger_name     : ' + self.ledger_name)}│",
            f"│{pad('   execution_block : ' + str(self.execution_block))}│",
            f"│{pad('   sequence        : ' + str(self.sequence_number))}│",
            f"│{pad('   origin          : ' + repr(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│",
        ]
        for sc in self.state_changes:
            lines.append(f"│{pad('   [' + sc.table + ':' + str(sc.key) + ']')}│")
            for field_name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
