"""
access.py - Ownership and Emergency-Stop Administration

A single owner identity gates administrative operations. The owner can:
- hand ownership to another identity (set-contract-owner)
- flip the emergency stop that blocks new loan requests (toggle-emergency-stop)

Only loan creation is blocked by the emergency stop. Activation, repayment,
liquidation and asset administration keep working while it is set.
"""

from __future__ import annotations
from dataclasses import replace

from .core import (
    LendingView, PendingTransaction, StateChange, TransactionOrigin, OriginType,
    TABLE_CONTRACT, CONTRACT_STATE_KEY,
    NotAuthorized, EmergencyStopActive,
    build_transaction,
    _require_identity,
)


# ============================================================================
# CHECKS
# ============================================================================

def is_owner(view: LendingView, caller: str) -> bool:
    return view.get_contract_state().owner == caller


def require_owner(view: LendingView, caller: str) -> None:
    """
    Raises:
        NotAuthorized: If caller is not the current owner
    """
    if not is_owner(view, caller):
        raise NotAuthorized(f"{caller} is not the contract owner")


def is_emergency_stopped(view: LendingView) -> bool:
    return view.get_contract_state().emergency_stopped


def require_not_stopped(view: LendingView) -> None:
    """
    Raises:
        EmergencyStopActive: If the emergency stop is set
    """
    if is_emergency_stopped(view):
        raise EmergencyStopActive("emergency stop is active")


def get_contract_status(view: LendingView) -> bool:
    """Return the emergency-stop flag."""
    return is_emergency_stopped(view)


# ============================================================================
# ADMINISTRATIVE TRANSACTIONS
# ============================================================================

def compute_set_contract_owner(
    view: LendingView,
    caller: str,
    new_owner: str,
) -> PendingTransaction:
    """
    Transfer ownership to new_owner. The previous owner loses all rights.

    Args:
        view: Read-only ledger access
        caller: Identity making the call (must be the owner)
        new_owner: Identity that becomes the owner

    Returns:
        PendingTransaction replacing the contract state

    Raises:
        NotAuthorized: If caller is not the owner
        ValueError: If new_owner is empty
    """
    require_owner(view, caller)
    _require_identity("new_owner", new_owner)

    state = view.get_contract_state()
    changes = [StateChange(TABLE_CONTRACT, CONTRACT_STATE_KEY, state, replace(state, owner=new_owner))]
    origin = TransactionOrigin(OriginType.ADMINISTRATIVE, caller, "set-contract-owner")
    return build_transaction(view, changes, origin)


def compute_toggle_emergency_stop(view: LendingView, caller: str) -> PendingTransaction:
    """
    Flip the emergency-stop flag.

    Raises:
        NotAuthorized: If caller is not the owner
    """
    require_owner(view, caller)

    state = view.get_contract_state()
    toggled = replace(state, emergency_stopped=not state.emergency_stopped)
    changes = [StateChange(TABLE_CONTRACT, CONTRACT_STATE_KEY, state, toggled)]
    origin = TransactionOrigin(OriginType.ADMINISTRATIVE, caller, "toggle-emergency-stop")
    return build_transaction(view, changes, origin)
