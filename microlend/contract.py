"""
contract.py - MicroLend Entry Points and Block Simulation

MicroLend is the host-facing surface. Each mutating entry point:
1. Calls the pure compute_* function with the ledger as a read-only view
2. Executes the resulting PendingTransaction
3. Returns the operation's success value

Business failures propagate as LendingError subclasses with a stable code.

mine_block() runs a batch of calls inside one block and converts each
outcome into a Receipt, then advances the block height by one:

    app = MicroLend("deployer")
    receipts = app.mine_block([
        Call("add_collateral_asset", "deployer", ("STX",)),
        Call("update_asset_price", "deployer", ("STX", 1_500_000)),
    ])
    assert all(r.ok for r in receipts)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .core import (
    PendingTransaction, ExecuteResult, RiskParameters,
    CollateralAsset, Loan, Reputation,
    LendingError,
)
from .ledger import LendingLedger
from .access import (
    compute_set_contract_owner, compute_toggle_emergency_stop, get_contract_status,
)
from .assets import compute_add_collateral_asset, compute_update_asset_price
from .loans import (
    compute_create_loan_request, compute_activate_loan, compute_repay_loan,
    compute_total_due, get_loans_by_borrower, created_loan_id,
)
from .liquidation import compute_liquidation
from .reputation import get_user_reputation


# ============================================================================
# BLOCK SIMULATION TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Call:
    """
    One entry-point invocation inside a block.

    Attributes:
        operation: Entry point name ("create_loan_request" or "create-loan-request")
        caller: Identity making the call
        args: Positional arguments after the caller
    """
    operation: str
    caller: str
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class Receipt:
    """
    Result of one call: ok(value) or err(error_code).

    A call rejected before reaching the ledger because its arguments are
    malformed (negative integers, empty identities, wrong arity) carries
    error_code=None and the reason in error.
    """
    ok: bool
    value: Any = None
    error_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def malformed(self) -> bool:
        return not self.ok and self.error_code is None

    def expect_ok(self) -> Any:
        """Return the value, or raise ValueError if the call failed."""
        if not self.ok:
            raise ValueError(f"expected ok, got err({self.error_code or self.error})")
        return self.value

    def expect_err(self) -> Optional[int]:
        """Return the error code (None for a malformed call), or raise ValueError if the call succeeded."""
        if self.ok:
            raise ValueError(f"expected err, got ok({self.value!r})")
        return self.error_code


# Entry points callable through mine_block()
MUTATING_OPERATIONS = frozenset({
    "add_collateral_asset",
    "update_asset_price",
    "create_loan_request",
    "activate_loan",
    "liquidate_loan",
    "repay_loan",
    "toggle_emergency_stop",
    "set_contract_owner",
})


# ============================================================================
# FACADE
# ============================================================================

class MicroLend:
    """
    Entry-point table over a LendingLedger.

    Example:
        app = MicroLend("deployer")
        app.add_collateral_asset("deployer", "STX")
        app.update_asset_price("deployer", "STX", 1_500_000)
        loan_id = app.create_loan_request("wallet_1", 1_000_000_000, 2_000_000_000,
                                          "STX", 1440, 1000)
        app.activate_loan("deployer", loan_id)
    """

    def __init__(
        self,
        owner: str,
        initial_block: int = 0,
        params: Optional[RiskParameters] = None,
        verbose: bool = False,
        name: str = "micro-lend",
    ):
        self.ledger = LendingLedger(
            name, owner, initial_block=initial_block, params=params, verbose=verbose,
        )

    @property
    def block_height(self) -> int:
        return self.ledger.current_block

    def _submit(self, pending: PendingTransaction) -> None:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise LendingError(f"{pending.origin.operation} rejected by ledger")

    # ========================================================================
    # ASSET REGISTRY
    # ========================================================================

    def add_collateral_asset(self, caller: str, symbol: str) -> bool:
        self._submit(compute_add_collateral_asset(self.ledger, caller, symbol))
        return True

    def update_asset_price(self, caller: str, symbol: str, price: int) -> bool:
        self._submit(compute_update_asset_price(self.ledger, caller, symbol, price))
        return True

    def get_asset(self, symbol: str) -> Optional[CollateralAsset]:
        return self.ledger.get_asset(symbol)

    # ========================================================================
    # LOANS
    # ========================================================================

    def create_loan_request(
        self,
        caller: str,
        amount: int,
        collateral_amount: int,
        collateral_asset: str,
        duration_blocks: int,
        interest_rate_bps: int,
        borrow_asset: Optional[str] = None,
    ) -> int:
        """Request a loan; returns the new loan id."""
        pending = compute_create_loan_request(
            self.ledger, caller, amount, collateral_amount, collateral_asset,
            duration_blocks, interest_rate_bps, borrow_asset,
        )
        self._submit(pending)
        return created_loan_id(pending)

    def activate_loan(self, caller: str, loan_id: int) -> bool:
        self._submit(compute_activate_loan(self.ledger, caller, loan_id))
        return True

    def repay_loan(self, caller: str, loan_id: int) -> int:
        """Close the loan as REPAID; returns the total due."""
        total_due = compute_total_due(self.ledger, loan_id)
        self._submit(compute_repay_loan(self.ledger, caller, loan_id))
        return total_due

    def liquidate_loan(self, caller: str, loan_id: int) -> bool:
        self._submit(compute_liquidation(self.ledger, caller, loan_id))
        return True

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        return self.ledger.get_loan(loan_id)

    def get_loans_by_borrower(self, identity: str) -> List[int]:
        return get_loans_by_borrower(self.ledger, identity)

    def calculate_total_due(self, loan_id: int) -> int:
        return compute_total_due(self.ledger, loan_id)

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def toggle_emergency_stop(self, caller: str) -> bool:
        """Flip the emergency stop; returns the new flag."""
        self._submit(compute_toggle_emergency_stop(self.ledger, caller))
        return get_contract_status(self.ledger)

    def set_contract_owner(self, caller: str, new_owner: str) -> bool:
        self._submit(compute_set_contract_owner(self.ledger, caller, new_owner))
        return True

    def get_contract_status(self) -> bool:
        return get_contract_status(self.ledger)

    def get_user_reputation(self, identity: str) -> Optional[Reputation]:
        return get_user_reputation(self.ledger, identity)

    # ========================================================================
    # BLOCK SIMULATION
    # ========================================================================

    def _operation_name(self, call: Call) -> str:
        operation = call.operation.replace("-", "_")
        if operation not in MUTATING_OPERATIONS:
            raise ValueError(f"Unknown operation '{call.operation}'")
        return operation

    def transact(self, call: Call) -> Receipt:
        """
        Run one call at the current block and wrap the outcome.

        Business failures become err(code). Malformed arguments (ValueError,
        TypeError from the entry point) become a receipt with error_code=None;
        the pure functions raise these before anything is executed, so the
        ledger is unchanged.

        Raises:
            ValueError: If the operation is not a mutating entry point
        """
        operation = self._operation_name(call)
        try:
            value = getattr(self, operation)(call.caller, *call.args)
        except LendingError as e:
            return Receipt(ok=False, error_code=e.code)
        except (ValueError, TypeError) as e:
            if self.ledger.verbose:
                print(f"✗ MALFORMED {call.operation}: {e}")
            return Receipt(ok=False, error=f"{type(e).__name__}: {e}")
        return Receipt(ok=True, value=value)

    def mine_block(self, calls: List[Call]) -> List[Receipt]:
        """
        Run calls in order at the current block, then advance one block.

        Operation names are checked before any call runs, so an unknown
        operation rejects the whole block. After that a failing call does
        not affect the others and every call gets a receipt.

        Raises:
            ValueError: If any call names an unknown operation
        """
        for call in calls:
            self._operation_name(call)
        receipts = [self.transact(call) for call in calls]
        self.ledger.advance_blocks(1)
        return receipts

    def mine_empty_blocks(self, count: int) -> int:
        """Advance the block height; returns the new height."""
        return self.ledger.advance_blocks(count)

    def state_summary(self) -> Dict[str, Any]:
        state = self.ledger.get_contract_state()
        return {
            'block_height': self.block_height,
            'owner': state.owner,
            'emergency_stopped': state.emergency_stopped,
            'next_loan_id': state.next_loan_id,
            'loans': len(self.ledger.loans),
            'transactions': len(self.ledger.transaction_log),
        }
