"""
ledger.py - Stateful Lending Ledger

The LendingLedger class is the central state manager for the micro-lending system.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LendingView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all row changes succeed or all fail)
    - Maintains assets, loans, reputations and the administrative contract state
    - Tracks block height and provides temporal operations (clone_at, replay)
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from typing import Dict, List, Set, Optional, Tuple, Any

from .core import (
    # Types
    Transaction, PendingTransaction, StateChange,
    ExecuteResult,
    CollateralAsset, Loan, Reputation, ContractState, RiskParameters,
    LoanStatus,
    # Constants
    FIRST_LOAN_ID, LOAN_TRANSITIONS, CONTRACT_STATE_KEY,
    TABLE_CONTRACT, TABLE_ASSETS, TABLE_LOANS, TABLE_REPUTATIONS,
    # Exceptions
    LendingError,
)


_RECORD_TYPES = {
    TABLE_CONTRACT: ContractState,
    TABLE_ASSETS: CollateralAsset,
    TABLE_LOANS: Loan,
    TABLE_REPUTATIONS: Reputation,
}


def _record_key(table: str, record: Any) -> Any:
    """The key a record must be stored under in its table."""
    if table == TABLE_CONTRACT:
        return CONTRACT_STATE_KEY
    if table == TABLE_ASSETS:
        return record.symbol
    if table == TABLE_LOANS:
        return record.id
    return record.identity


class LendingLedger:
    """
    Lending ledger with full validation and audit trail.

    Implements the LendingView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is checked against the current
          row snapshots, legal loan status transitions and block height.
        - Always logs: Every transaction is recorded in the audit trail, enabling
          clone_at() and replay() for historical state reconstruction.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own LendingLedger instance.

    Example:
        ledger = LendingLedger("main", owner="deployer")
        pending = compute_add_collateral_asset(ledger, "deployer", "STX")
        result = ledger.execute(pending)
    """

    def __init__(
        self,
        name: str,
        owner: str,
        initial_block: int = 0,
        params: Optional[RiskParameters] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            owner: Initial contract owner (the deployer)
            initial_block: Starting block height (default: 0)
            params: Risk parameters (default: RiskParameters())
            verbose: Enable debug output (default: True)
        """
        if isinstance(initial_block, bool) or not isinstance(initial_block, int) or initial_block < 0:
            raise ValueError(f"initial_block must be a non-negative int, got {initial_block!r}")
        self.name = name
        self._params: RiskParameters = params or RiskParameters()
        self.contract_state = ContractState(owner=owner)
        self.assets: Dict[str, CollateralAsset] = {}
        self.loans: Dict[int, Loan] = {}
        self.reputations: Dict[str, Reputation] = {}
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self._current_block: int = initial_block
        self.verbose = verbose
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Genesis, used by replay()
        self._genesis_owner = owner
        self._initial_block = initial_block

    # ========================================================================
    # LendingView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_block(self) -> int:
        """Current block height of the ledger."""
        return self._current_block

    @property
    def params(self) -> RiskParameters:
        return self._params

    def get_contract_state(self) -> ContractState:
        return self.contract_state

    def get_asset(self, symbol: str) -> Optional[CollateralAsset]:
        return self.assets.get(symbol)

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        return self.loans.get(loan_id)

    def get_reputation(self, identity: str) -> Optional[Reputation]:
        return self.reputations.get(identity)

    def list_loan_ids(self) -> List[int]:
        """List all loan ids in ascending order."""
        return sorted(self.loans.keys())

    def list_assets(self) -> List[str]:
        """List all added asset symbols."""
        return sorted(self.assets.keys())

    def list_identities(self) -> List[str]:
        """List all identities that have a reputation record."""
        return sorted(self.reputations.keys())

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Verify the structural invariants of lending state.

        Checks:
        - Loan ids are dense from FIRST_LOAN_ID and next_loan_id follows the last one
        - PENDING loans have no activation block, all others do
        - Terminal loans (REPAID, LIQUIDATED) have a closing block
        - Loans reference an asset that was added

        Returns:
            Dict with keys:
            - 'valid': bool - True if all invariants hold
            - 'violations': List[str] - Human-readable description of each violation

        Example:
            result = ledger.verify_invariants()
            assert result['valid'], result['violations']
        """
        violations = []

        loan_ids = self.list_loan_ids()
        expected_ids = list(range(FIRST_LOAN_ID, FIRST_LOAN_ID + len(loan_ids)))
        if loan_ids != expected_ids:
            violations.append(f"loan ids not dense: {loan_ids}")
        if self.contract_state.next_loan_id != FIRST_LOAN_ID + len(loan_ids):
            violations.append(
                f"next_loan_id {self.contract_state.next_loan_id} does not follow "
                f"{len(loan_ids)} loans"
            )

        for loan_id in loan_ids:
            loan = self.loans[loan_id]
            if loan.status == LoanStatus.PENDING and loan.activated_at_block is not None:
                violations.append(f"loan {loan_id}: PENDING with activation block")
            if loan.status != LoanStatus.PENDING and loan.activated_at_block is None:
                violations.append(f"loan {loan_id}: {loan.status.value} without activation block")
            if not loan.is_open and loan.closed_at_block is None:
                violations.append(f"loan {loan_id}: {loan.status.value} without closing block")
            if loan.collateral_asset not in self.assets:
                violations.append(f"loan {loan_id}: unknown asset {loan.collateral_asset}")

        return {
            'valid': len(violations) == 0,
            'violations': violations,
        }

    # ========================================================================
    # BLOCK MANAGEMENT
    # ========================================================================

    def advance_block(self, new_block: int) -> None:
        """
        Advance the ledger's logical clock to a new block height.

        Block height can only move forward, never backward.

        Raises:
            ValueError: If new_block is below the current block
        """
        if new_block < self._current_block:
            raise ValueError(
                f"Cannot move block height backwards: {new_block} < {self._current_block}"
            )
        self._current_block = new_block

    def advance_blocks(self, count: int = 1) -> int:
        """Advance the clock by `count` blocks and return the new height."""
        if count < 0:
            raise ValueError(f"count cannot be negative, got {count}")
        self.advance_block(self._current_block + count)
        return self._current_block

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{block}
        This is globally unique and monotonically increasing within a ledger.
        """
        return f"exec:{self.name}:{sequence:012d}:{self._current_block}"

    def _table(self, table: str) -> Dict[Any, Any]:
        if table == TABLE_ASSETS:
            return self.assets
        if table == TABLE_LOANS:
            return self.loans
        if table == TABLE_REPUTATIONS:
            return self.reputations
        raise LendingError(f"Unknown table '{table}'")

    def _read(self, table: str, key: Any) -> Any:
        if table == TABLE_CONTRACT:
            return self.contract_state
        return self._table(table).get(key)

    def _write(self, table: str, key: Any, record: Any) -> None:
        if table == TABLE_CONTRACT:
            self.contract_state = record
        elif record is None:
            self._table(table).pop(key, None)
        else:
            self._table(table)[key] = record

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All row changes succeed together or all fail together.

        Every `old` snapshot must equal the current row. When they do not:
        - the intent_id was applied before: ALREADY_APPLIED (idempotent retry)
        - otherwise: REJECTED (the transaction was built against stale state)

        An intent whose snapshots still match is applied even if the same
        intent was applied before (e.g. toggling a flag back and forth).

        Args:
            pending: PendingTransaction to execute

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        # Handle empty pending transactions
        if pending.is_empty():
            return ExecuteResult.APPLIED

        stale = self._find_stale_change(pending)
        if stale is not None:
            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                return ExecuteResult.ALREADY_APPLIED
            if self.verbose:
                print(f"✗ REJECTED: stale snapshot for {stale.table}:{stale.key}")
            return ExecuteResult.REJECTED

        # Full validation
        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        # Generate execution ID and sequence
        sequence = self._next_sequence
        self._next_sequence += 1
        exec_id = self._generate_exec_id(sequence)

        # Create the executed Transaction record
        tx = Transaction(
            state_changes=pending.state_changes,
            origin=pending.origin,
            block_height=pending.block_height,
            intent_id=pending.intent_id,
            exec_id=exec_id,
            ledger_name=self.name,
            execution_block=self._current_block,
            sequence_number=sequence,
        )

        # Apply row changes. Records are frozen, so no copy is needed.
        for sc in tx.state_changes:
            self._write(sc.table, sc.key, sc.new)

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _find_stale_change(self, pending: PendingTransaction) -> Optional[StateChange]:
        """Return the first change whose old snapshot differs from the current row."""
        for sc in pending.state_changes:
            if self._read(sc.table, sc.key) != sc.old:
                return sc
        return None

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """
        Print transaction details and result.

        Uses Transaction.__repr__ and appends a result line.
        """
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        # Replace the closing line with a result section
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Block check (transaction must not be from a future block)
        2. Each row is changed at most once
        3. Record type and key match the table
        4. Loan status transitions are legal

        Returns:
            Tuple of (success: bool, reason: str)
            If success is True, reason is empty string
            If success is False, reason describes the validation failure
        """
        if pending.block_height > self._current_block:
            return False, f"future block {pending.block_height} > {self._current_block}"

        seen_rows = set()
        for sc in pending.state_changes:
            row = (sc.table, sc.key)
            if row in seen_rows:
                return False, f"row {sc.table}:{sc.key} changed twice"
            seen_rows.add(row)

            if not isinstance(sc.new, _RECORD_TYPES[sc.table]):
                return False, f"{sc.table}:{sc.key} expects {_RECORD_TYPES[sc.table].__name__}"
            if _record_key(sc.table, sc.new) != sc.key:
                return False, f"{sc.table}:{sc.key} record key mismatch"

            if sc.table == TABLE_LOANS:
                old_status = sc.old.status if sc.old is not None else None
                if sc.new.status != old_status and sc.new.status not in LOAN_TRANSITIONS[old_status]:
                    return False, (
                        f"loan {sc.key}: illegal transition "
                        f"{old_status.value if old_status else None} -> {sc.new.status.value}"
                    )

        return True, ""

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> LendingLedger:
        """
        Create a copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa. Records are immutable,
        so copying the tables is enough.

        Returns:
            A new LendingLedger instance with identical state
        """
        cloned = LendingLedger.__new__(LendingLedger)
        cloned.name = self.name
        cloned._params = self._params
        cloned._current_block = self._current_block
        cloned.verbose = self.verbose
        cloned._genesis_owner = self._genesis_owner
        cloned._initial_block = self._initial_block

        cloned.contract_state = self.contract_state
        cloned.assets = dict(self.assets)
        cloned.loans = dict(self.loans)
        cloned.reputations = dict(self.reputations)

        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        return cloned

    def clone_at(self, target_block: int) -> LendingLedger:
        """
        Create a copy of this ledger as it existed at a specific past block.

        This method reconstructs historical state using an unwind algorithm:
        1. Clone the current ledger state
        2. Walk backward through all transactions executed after target_block
        3. Restore each row's old snapshot (removing rows that were created)
        4. Filter transaction log to only include transactions up to target_block

        Args:
            target_block: The block height to reconstruct

        Returns:
            A new LendingLedger instance with state as it was at target_block

        Raises:
            ValueError: If target_block is in the future or before genesis
        """
        if target_block > self._current_block:
            raise ValueError(f"Target block {target_block} is in the future")
        if target_block < self._initial_block:
            raise ValueError(f"Target block {target_block} is before genesis block {self._initial_block}")

        cloned = self.clone()
        cloned._current_block = target_block

        cloned.transaction_log = [
            tx for tx in self.transaction_log
            if tx.execution_block <= target_block
        ]
        cloned.seen_intent_ids = {tx.intent_id for tx in cloned.transaction_log}
        cloned._next_sequence = len(cloned.transaction_log)

        for tx in reversed(self.transaction_log):
            if tx.execution_block <= target_block:
                break
            for sc in reversed(tx.state_changes):
                cloned._write(sc.table, sc.key, sc.old)

        return cloned

    def replay(self) -> LendingLedger:
        """
        Create a new ledger by replaying the transaction log from genesis.

        The replay process:
        1. Create a new ledger with the same owner, genesis block and parameters
        2. Advance the block height to each transaction's execution block
        3. Re-execute each transaction from the log

        Returns:
            New LendingLedger instance with replayed state

        Raises:
            LendingError: If a logged transaction is rejected during replay
        """
        new_ledger = LendingLedger(
            name=f"{self.name}_replayed",
            owner=self._genesis_owner,
            initial_block=self._initial_block,
            params=self._params,
            verbose=self.verbose,
        )

        for tx in self.transaction_log:
            if tx.execution_block > new_ledger._current_block:
                new_ledger.advance_block(tx.execution_block)

            result = new_ledger.execute(tx.to_pending())
            if result != ExecuteResult.APPLIED:
                raise LendingError(f"Replay failed at tx {tx.exec_id}: {result.value}")

        new_ledger.advance_block(self._current_block)
        return new_ledger
