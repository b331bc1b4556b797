"""
scheduled_events.py - Block-Driven Event Scheduler

Simple heap-based scheduling:
- Events are just data, handlers are just functions
- The transaction log IS the audit trail (no separate event status tracking)

Core concepts:
1. Event: Immutable specification of what should happen and at which block
2. EventScheduler: Priority queue for due event retrieval
3. Handlers: Plain functions that process events -> PendingTransaction
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Callable, Any
import heapq

from .core import LendingView, PendingTransaction, Loan
from .liquidation import expiry_block


# Execution phases within a block
PRIORITY_PRICE_UPDATE = 0
PRIORITY_EXPIRY = 40


# ============================================================================
# EVENT DATA STRUCTURE
# ============================================================================

@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable scheduled lifecycle event.

    Sorting: by trigger_block, then priority (lower=first), then loan_id.

    Attributes:
        trigger_block: Block height at which this event should execute
        priority: Execution order within the same block (0=first)
        loan_id: Loan this event affects (0 for registry events)
        action: Event type string ("expiry", "price_update")
        params: Event-specific parameters as frozen tuple of (key, value) pairs
    """
    trigger_block: int
    priority: int = 0
    loan_id: int = 0
    action: str = ""
    params: tuple = ()  # Frozen for hashability: (("key1", "val1"), ("key2", "val2"))

    def __lt__(self, other: 'Event') -> bool:
        """Enable heap ordering: block, then priority, then loan id, then action."""
        if self.trigger_block != other.trigger_block:
            return self.trigger_block < other.trigger_block
        if self.priority != other.priority:
            return self.priority < other.priority
        if self.loan_id != other.loan_id:
            return self.loan_id < other.loan_id
        return self.event_id < other.event_id

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    @property
    def event_id(self) -> str:
        """Deterministic ID for deduplication (includes params for uniqueness)."""
        params_str = "|".join(f"{k}={v}" for k, v in sorted(self.params))
        return f"{self.action}:{self.loan_id}:{self.trigger_block}:{params_str}"


# ============================================================================
# EVENT SCHEDULER
# ============================================================================

# Handler type: (event, view, operator, prices) -> PendingTransaction
EventHandler = Callable[[Event, LendingView, str, Dict[str, int]], PendingTransaction]


class EventScheduler:
    """
    Event scheduler using a priority queue.

    Design:
    - Events are scheduled in advance
    - get_due() returns events ready to execute
    - After execution, the TRANSACTION LOG is the audit trail
    """

    def __init__(self):
        self._heap: List[Event] = []
        self._handlers: Dict[str, EventHandler] = {}
        self._executed: set = set()  # Track executed event_ids for deduplication

    def register(self, action: str, handler: EventHandler) -> None:
        """Register a handler function for an action type."""
        self._handlers[action] = handler

    def schedule(self, event: Event) -> str:
        """
        Add an event to the pending queue.

        Returns the event_id.
        """
        heapq.heappush(self._heap, event)
        return event.event_id

    def schedule_many(self, events: List[Event]) -> List[str]:
        return [self.schedule(event) for event in events]

    def get_due(self, as_of: int) -> List[Event]:
        """
        Get and remove events due for execution.

        Returns events with trigger_block <= as_of, in execution order.
        Already-executed events are skipped.
        """
        due = []
        while self._heap and self._heap[0].trigger_block <= as_of:
            event = heapq.heappop(self._heap)
            if event.event_id not in self._executed:
                due.append(event)
        return due

    def execute(
        self,
        event: Event,
        view: LendingView,
        operator: str,
        prices: Dict[str, int],
    ) -> Optional[PendingTransaction]:
        """
        Execute a single event via its registered handler.

        Returns PendingTransaction or None if no handler registered.

        Raises:
            Exception: Any exception raised by the handler propagates unchanged.
        """
        handler = self._handlers.get(event.action)
        if not handler:
            return None

        result = handler(event, view, operator, prices)
        self._executed.add(event.event_id)
        return result

    def pending_count(self) -> int:
        """Number of pending events."""
        return len(self._heap)

    def peek_next(self) -> Optional[Event]:
        """Peek at next scheduled event without removing it."""
        return self._heap[0] if self._heap else None

    def clear_executed(self) -> None:
        """Clear the executed event tracking (for testing/reset)."""
        self._executed.clear()


# ============================================================================
# EVENT FACTORY FUNCTIONS
# ============================================================================

def expiry_event(loan_id: int, trigger_block: int) -> Event:
    """Create a loan expiry event (liquidation check)."""
    return Event(
        trigger_block=trigger_block,
        priority=PRIORITY_EXPIRY,
        loan_id=loan_id,
        action="expiry",
    )


def loan_expiry_event(loan: Loan) -> Event:
    """
    Create the expiry event for an activated loan.

    Raises:
        ValueError: If the loan has not been activated
    """
    trigger = expiry_block(loan)
    if trigger is None:
        raise ValueError(f"loan {loan.id} has not been activated")
    return expiry_event(loan.id, trigger)


def price_update_event(symbol: str, trigger_block: int, price: int) -> Event:
    """Create a scheduled price posting for a listed asset."""
    return Event(
        trigger_block=trigger_block,
        priority=PRIORITY_PRICE_UPDATE,
        action="price_update",
        params=(("symbol", symbol), ("price", price)),
    )
