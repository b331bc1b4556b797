"""
test_ledger_operations.py - Unit tests for LendingLedger operations

Tests:
- Ledger creation and configuration
- Block management
- Transaction execution and the audit log
- Stale snapshots, ALREADY_APPLIED and legitimate repeats
- Structural validation of pending transactions
- clone / clone_at / replay
- verify_invariants
"""

import pytest

from microlend import (
    LendingLedger, ExecuteResult, LoanStatus, RiskParameters,
    PendingTransaction, StateChange, TransactionOrigin, OriginType,
    compute_add_collateral_asset, compute_update_asset_price,
    compute_toggle_emergency_stop, compute_create_loan_request, compute_activate_loan,
)
from microlend.core import TABLE_ASSETS, TABLE_LOANS
from tests.fake_view import FakeView
from tests.helpers import (
    DEPLOYER, BORROWER, STX_PRICE, LOAN_AMOUNT, COLLATERAL, DURATION, RATE_BPS,
    stx_asset, make_loan, ledger_snapshot,
)


def _manual(*changes, block=0):
    origin = TransactionOrigin(OriginType.SYSTEM, "test", "manual")
    return PendingTransaction(state_changes=tuple(changes), origin=origin, block_height=block)


def _request(ledger):
    return compute_create_loan_request(
        ledger, BORROWER, LOAN_AMOUNT, COLLATERAL, "STX", DURATION, RATE_BPS,
    )


class TestLedgerCreation:

    def test_defaults(self):
        ledger = LendingLedger("test", owner=DEPLOYER)
        assert ledger.name == "test"
        assert ledger.current_block == 0
        assert ledger.verbose is True
        assert ledger.params == RiskParameters()
        state = ledger.get_contract_state()
        assert state.owner == DEPLOYER
        assert state.emergency_stopped is False
        assert state.next_loan_id == 1

    def test_initial_block(self):
        assert LendingLedger("t", DEPLOYER, initial_block=500, verbose=False).current_block == 500

    @pytest.mark.parametrize("block", [-1, 1.5, True])
    def test_invalid_initial_block(self, block):
        with pytest.raises(ValueError):
            LendingLedger("t", DEPLOYER, initial_block=block)

    def test_empty_tables(self, ledger):
        assert ledger.list_assets() == []
        assert ledger.list_loan_ids() == []
        assert ledger.list_identities() == []
        assert ledger.transaction_log == []


class TestBlockManagement:

    def test_advance_block(self, ledger):
        ledger.advance_block(10)
        assert ledger.current_block == 10
        ledger.advance_block(10)
        assert ledger.current_block == 10

    def test_cannot_move_backwards(self, ledger):
        ledger.advance_block(10)
        with pytest.raises(ValueError):
            ledger.advance_block(9)

    def test_advance_blocks(self, ledger):
        assert ledger.advance_blocks() == 1
        assert ledger.advance_blocks(1500) == 1501
        with pytest.raises(ValueError):
            ledger.advance_blocks(-1)


class TestExecute:

    def test_apply_and_log(self, ledger):
        result = ledger.execute(compute_add_collateral_asset(ledger, DEPLOYER, "STX"))
        assert result == ExecuteResult.APPLIED
        assert ledger.get_asset("STX").listed
        (tx,) = ledger.transaction_log
        assert tx.exec_id == "exec:test:000000000000:0"
        assert tx.sequence_number == 0
        assert tx.execution_block == 0
        assert tx.ledger_name == "test"

    def test_empty_transaction_is_applied_without_log(self, stx_ledger):
        before = len(stx_ledger.transaction_log)
        pending = compute_add_collateral_asset(stx_ledger, DEPLOYER, "STX")
        assert stx_ledger.execute(pending) == ExecuteResult.APPLIED
        assert len(stx_ledger.transaction_log) == before

    def test_same_pending_twice_is_already_applied(self, ledger):
        pending = compute_add_collateral_asset(ledger, DEPLOYER, "STX")
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert len(ledger.transaction_log) == 1

    def test_stale_snapshot_rejected(self, stx_ledger):
        """Two intents built against the same state: the second one is stale."""
        first = compute_update_asset_price(stx_ledger, DEPLOYER, "STX", 2_000_000)
        second = compute_update_asset_price(stx_ledger, DEPLOYER, "STX", 3_000_000)
        assert stx_ledger.execute(first) == ExecuteResult.APPLIED
        assert stx_ledger.execute(second) == ExecuteResult.REJECTED
        assert stx_ledger.get_asset("STX").price == 2_000_000

    def test_concurrent_loan_requests_cannot_share_an_id(self, stx_ledger):
        first = _request(stx_ledger)
        second = compute_create_loan_request(
            stx_ledger, "wallet_3", LOAN_AMOUNT, COLLATERAL, "STX", DURATION, RATE_BPS,
        )
        assert stx_ledger.execute(first) == ExecuteResult.APPLIED
        assert stx_ledger.execute(second) == ExecuteResult.REJECTED
        assert stx_ledger.list_loan_ids() == [1]

    def test_legitimate_repeat_is_applied(self, ledger):
        """Toggling on, off and on again repeats an earlier intent against matching state."""
        on = compute_toggle_emergency_stop(ledger, DEPLOYER)
        assert ledger.execute(on) == ExecuteResult.APPLIED
        assert ledger.execute(compute_toggle_emergency_stop(ledger, DEPLOYER)) == ExecuteResult.APPLIED
        again = compute_toggle_emergency_stop(ledger, DEPLOYER)
        assert again.intent_id == on.intent_id
        assert ledger.execute(again) == ExecuteResult.APPLIED
        assert ledger.get_contract_state().emergency_stopped is True
        assert len(ledger.transaction_log) == 3

    def test_sequence_numbers_monotonic(self, stx_ledger):
        stx_ledger.execute(_request(stx_ledger))
        sequences = [tx.sequence_number for tx in stx_ledger.transaction_log]
        assert sequences == list(range(len(sequences)))

    def test_verbose_output(self, capsys):
        ledger = LendingLedger("loud", DEPLOYER)
        pending = compute_add_collateral_asset(ledger, DEPLOYER, "STX")
        ledger.execute(pending)
        ledger.execute(pending)
        out = capsys.readouterr().out
        assert "✓ APPLIED" in out
        assert "ALREADY_APPLIED" in out
        assert "listed" in out


class TestValidation:

    def test_future_block_rejected(self, ledger):
        pending = compute_add_collateral_asset(FakeView(block=5), DEPLOYER, "STX")
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.get_asset("STX") is None

    def test_row_changed_twice_rejected(self, ledger):
        pending = _manual(
            StateChange(TABLE_ASSETS, "STX", None, stx_asset()),
            StateChange(TABLE_ASSETS, "STX", None, stx_asset(7)),
        )
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_record_type_mismatch_rejected(self, ledger):
        pending = _manual(StateChange(TABLE_ASSETS, "STX", None, make_loan()))
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_record_key_mismatch_rejected(self, ledger):
        pending = _manual(StateChange(TABLE_ASSETS, "BTC", None, stx_asset()))
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_illegal_loan_transition_rejected(self, ledger):
        loan = make_loan(status=LoanStatus.ACTIVE, activated_at_block=0)
        assert ledger.execute(_manual(StateChange(TABLE_LOANS, 1, None, loan))) == ExecuteResult.REJECTED

    def test_terminal_loan_cannot_reopen(self, ledger):
        repaid = make_loan(status=LoanStatus.REPAID, activated_at_block=0, closed_at_block=0)
        ledger.loans[1] = repaid
        active = make_loan(status=LoanStatus.ACTIVE, activated_at_block=0)
        assert ledger.execute(_manual(StateChange(TABLE_LOANS, 1, repaid, active))) == ExecuteResult.REJECTED

    def test_rejection_leaves_state_untouched(self, stx_ledger):
        before = ledger_snapshot(stx_ledger)
        pending = _manual(
            StateChange(TABLE_ASSETS, "BTC", None, stx_asset()),
        )
        stx_ledger.execute(pending)
        assert ledger_snapshot(stx_ledger) == before


# ============================================================================
# CLONE / CLONE_AT / REPLAY
# ============================================================================

@pytest.fixture
def history():
    """
    Block 0: STX listed and priced
    Block 10: loan 1 requested
    Block 20: loan 1 activated, price moves
    """
    ledger = LendingLedger("hist", DEPLOYER, verbose=False)
    ledger.execute(compute_add_collateral_asset(ledger, DEPLOYER, "STX"))
    ledger.execute(compute_update_asset_price(ledger, DEPLOYER, "STX", STX_PRICE))
    ledger.advance_block(10)
    ledger.execute(_request(ledger))
    ledger.advance_block(20)
    ledger.execute(compute_activate_loan(ledger, DEPLOYER, 1))
    ledger.execute(compute_update_asset_price(ledger, DEPLOYER, "STX", 2_000_000))
    ledger.advance_block(25)
    return ledger


class TestCloneAndReplay:

    def test_clone_is_independent(self, history):
        cloned = history.clone()
        assert ledger_snapshot(cloned) == ledger_snapshot(history)
        cloned.execute(compute_toggle_emergency_stop(cloned, DEPLOYER))
        assert history.get_contract_state().emergency_stopped is False
        assert len(history.transaction_log) == 5

    def test_clone_at_before_loan(self, history):
        past = history.clone_at(5)
        assert past.current_block == 5
        assert past.list_loan_ids() == []
        assert past.get_contract_state().next_loan_id == 1
        assert past.get_asset("STX").price == STX_PRICE
        assert len(past.transaction_log) == 2

    def test_clone_at_pending_loan(self, history):
        past = history.clone_at(15)
        assert past.get_loan(1).status == LoanStatus.PENDING
        assert past.get_loan(1).activated_at_block is None

    def test_clone_at_current_block(self, history):
        assert ledger_snapshot(history.clone_at(25)) == ledger_snapshot(history)

    def test_clone_at_genesis(self, history):
        genesis = history.clone_at(0)
        assert genesis.get_asset("STX").price == STX_PRICE

    def test_clone_at_bounds(self, history):
        with pytest.raises(ValueError):
            history.clone_at(26)
        late = LendingLedger("late", DEPLOYER, initial_block=100, verbose=False)
        with pytest.raises(ValueError):
            late.clone_at(99)

    def test_clone_at_can_continue(self, history):
        """A reconstructed ledger accepts new transactions."""
        past = history.clone_at(15)
        assert past.execute(compute_activate_loan(past, DEPLOYER, 1)) == ExecuteResult.APPLIED
        assert past.get_loan(1).activated_at_block == 15

    def test_replay_reproduces_state(self, history):
        replayed = history.replay()
        assert replayed.name == "hist_replayed"
        assert ledger_snapshot(replayed) == ledger_snapshot(history)
        assert [tx.intent_id for tx in replayed.transaction_log] == \
            [tx.intent_id for tx in history.transaction_log]


class TestVerifyInvariants:

    def test_valid_history(self, history):
        assert history.verify_invariants() == {'valid': True, 'violations': []}

    def test_detects_gap_in_loan_ids(self, history):
        history.loans[3] = make_loan(3)
        result = history.verify_invariants()
        assert not result['valid']
        assert any("dense" in v for v in result['violations'])

    def test_detects_closed_loan_without_closing_block(self, history):
        history.loans[1] = make_loan(status=LoanStatus.REPAID, activated_at_block=20)
        result = history.verify_invariants()
        assert any("closing block" in v for v in result['violations'])
