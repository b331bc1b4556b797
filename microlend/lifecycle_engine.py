"""
lifecycle_engine.py - Lifecycle Engine

Combines price publication, scheduled events and smart contract polling into
a block-driven lifecycle engine.

Execution order each step():
1. Advance ledger block height
2. Publish prices (from the argument or the pricing source) into the registry
3. Process scheduled events (in priority order)
4. Run smart contract polling over loans (discovery)
5. Repeat 3-4 until no more events fire (cascading effects)

Every transaction is submitted as the engine's operator, which must hold the
rights the operation needs (the owner, unless liquidation is open).
The transaction log is the audit trail - no separate event status tracking needed.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Callable, Iterable

from .core import (
    PendingTransaction, Transaction, LoanStatus,
    ExecuteResult, LendingError,
    SmartContract,
)
from .ledger import LendingLedger
from .assets import compute_update_asset_prices
from .liquidation import liquidation_contract
from .pricing_source import PricingSource
from .scheduled_events import Event, EventScheduler, loan_expiry_event
from .event_handlers import create_default_scheduler


class LifecycleEngine:
    """
    Lifecycle engine combining scheduled events and smart contract polling.

    Features:
    - Price publication from a PricingSource
    - Scheduled event processing with proper sequencing
    - Smart contract polling for event discovery (expired loans)
    - Cascading event support (repeat until stable)
    - Full audit trail via transaction log
    """

    def __init__(
        self,
        ledger: LendingLedger,
        operator: str,
        scheduler: Optional[EventScheduler] = None,
        contracts: Optional[Dict[LoanStatus, SmartContract]] = None,
        pricing_source: Optional[PricingSource] = None,
    ):
        """
        Initialize lifecycle engine.

        Args:
            ledger: The ledger to operate on
            operator: Identity that submits lifecycle transactions
            scheduler: Event scheduler (created with default handlers if not provided)
            contracts: Smart contracts for polling (loan status -> contract).
                       Defaults to the liquidation contract for ACTIVE loans.
            pricing_source: Optional price feed published at every step
        """
        self.ledger = ledger
        self.operator = operator
        self.scheduler = scheduler or create_default_scheduler()
        if contracts is None:
            contracts = {LoanStatus.ACTIVE: liquidation_contract}
        self.contracts: Dict[LoanStatus, SmartContract] = contracts
        self.pricing_source = pricing_source

        # Configuration
        self.max_passes = 10  # Safety limit for cascading events
        self.verbose = ledger.verbose

    def register(self, status: LoanStatus, contract: SmartContract) -> None:
        """Register a smart contract polled for every loan in the given status."""
        self.contracts[status] = contract

    def schedule(self, event: Event) -> str:
        return self.scheduler.schedule(event)

    def schedule_many(self, events: List[Event]) -> List[str]:
        return self.scheduler.schedule_many(events)

    def schedule_expiry(self, loan_id: int) -> str:
        """
        Schedule the expiry event of an activated loan.

        Raises:
            ValueError: If the loan does not exist or has not been activated
        """
        loan = self.ledger.get_loan(loan_id)
        if loan is None:
            raise ValueError(f"loan {loan_id} not found")
        return self.scheduler.schedule(loan_expiry_event(loan))

    def step(
        self,
        block_height: int,
        prices: Optional[Dict[str, int]] = None,
    ) -> List[Transaction]:
        """
        Advance to block_height and execute all pending lifecycle events.

        Args:
            block_height: New block height
            prices: Prices to publish (default: read from the pricing source)

        Returns:
            List of executed transactions
        """
        self.ledger.advance_block(block_height)
        executed: List[Transaction] = []

        if prices is None and self.pricing_source is not None:
            prices = self.pricing_source.get_prices(self.ledger.list_assets(), block_height)
        prices = prices or {}

        if prices:
            published = compute_update_asset_prices(
                self.ledger, self.operator, prices, only_known=True,
            )
            self._submit(published, executed, "price publication")

        for _ in range(self.max_passes):
            pass_executed: List[Transaction] = []

            # Phase 1: Process scheduled events
            pass_executed.extend(self._process_scheduled_events(block_height, prices))

            # Phase 2: Smart contract polling
            pass_executed.extend(self._process_smart_contracts(block_height, prices))

            executed.extend(pass_executed)

            # If no events fired this pass, we're done
            if not pass_executed:
                break

        return executed

    def _submit(self, pending: PendingTransaction, executed: List[Transaction], what: str) -> None:
        if pending.is_empty():
            return
        exec_result = self.ledger.execute(pending)
        if exec_result == ExecuteResult.REJECTED:
            raise LendingError(f"Lifecycle event failed for {what}: execution rejected")
        if exec_result == ExecuteResult.APPLIED:
            executed.append(self.ledger.transaction_log[-1])

    def _process_scheduled_events(
        self,
        block_height: int,
        prices: Dict[str, int],
    ) -> List[Transaction]:
        """Process all scheduled events due at or before block_height, one at a time."""
        executed: List[Transaction] = []

        for event in self.scheduler.get_due(block_height):
            pending = self.scheduler.execute(event, self.ledger, self.operator, prices)
            if pending is None:
                continue
            if self.verbose:
                if pending.is_empty():
                    print(f"[SCHEDULED] {event.event_id}: nothing to apply")
                else:
                    print(f"[SCHEDULED] {event.event_id}")
            self._submit(pending, executed, event.event_id)

        return executed

    def _process_smart_contracts(
        self,
        block_height: int,
        prices: Dict[str, int],
    ) -> List[Transaction]:
        """Run smart contract polling for event discovery."""
        executed: List[Transaction] = []

        # Loan ids are sorted for deterministic iteration order
        for loan_id in self.ledger.list_loan_ids():
            loan = self.ledger.get_loan(loan_id)
            contract = self.contracts.get(loan.status)
            if not contract:
                continue

            # Support both callables and objects with check_lifecycle method
            if hasattr(contract, 'check_lifecycle'):
                pending = contract.check_lifecycle(self.ledger, self.operator, loan_id, block_height, prices)
            else:
                pending = contract(self.ledger, self.operator, loan_id, block_height, prices)

            if not isinstance(pending, PendingTransaction):
                raise LendingError(
                    f"Contract for loan {loan_id} must return PendingTransaction, got {type(pending)}"
                )

            self._submit(pending, executed, f"loan {loan_id}")

        return executed

    def run(
        self,
        blocks: Iterable[int],
        get_prices_at_block: Optional[Callable[[int], Dict[str, int]]] = None,
    ) -> List[Transaction]:
        """
        Run engine through a sequence of block heights.

        Args:
            blocks: Block heights to process, ascending
            get_prices_at_block: Callable returning prices for a block
                                 (default: the pricing source)

        Returns:
            All executed transactions
        """
        all_transactions: List[Transaction] = []

        for block_height in blocks:
            prices = get_prices_at_block(block_height) if get_prices_at_block else None
            all_transactions.extend(self.step(block_height, prices))

        return all_transactions

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def pending_event_count(self) -> int:
        return self.scheduler.pending_count()

    def peek_next_event(self) -> Optional[Event]:
        return self.scheduler.peek_next()
