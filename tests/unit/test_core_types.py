"""
test_core_types.py - Unit tests for core records, errors and transaction types

Tests:
- Record validation (Loan, CollateralAsset, Reputation, ContractState, RiskParameters)
- Error taxonomy and stable codes
- StateChange.changed_fields()
- Intent hashing (deterministic, content-based)
- build_transaction / empty_pending_transaction
"""

import pytest
from dataclasses import replace

from microlend import (
    CollateralAsset, Reputation, ContractState, RiskParameters, LoanStatus,
    StateChange, TransactionOrigin, OriginType, PendingTransaction,
    build_transaction, empty_pending_transaction,
    LendingError, NotAuthorized, InsufficientCollateral, LoanNotFound,
    LoanAlreadyActive, LoanNotActive, LoanNotDefaulted, InvalidAmount,
    InvalidDuration, InvalidInterestRate, EmergencyStopActive, InvalidPrice,
    InvalidCollateralAsset, ERRORS_BY_CODE,
)
from microlend.core import (
    TABLE_LOANS, TABLE_ASSETS, TABLE_CONTRACT, CONTRACT_STATE_KEY, LOAN_TRANSITIONS,
    _canonicalize,
)
from tests.fake_view import FakeView
from tests.helpers import make_loan, BORROWER, DEPLOYER


# ============================================================================
# ERROR TAXONOMY
# ============================================================================

class TestErrorCodes:
    """Stable numeric codes on every LendingError subclass."""

    @pytest.mark.parametrize("error_class, code", [
        (NotAuthorized, 1000),
        (InsufficientCollateral, 1002),
        (LoanNotFound, 1003),
        (LoanAlreadyActive, 1004),
        (LoanNotActive, 1005),
        (LoanNotDefaulted, 1006),
        (InvalidAmount, 1008),
        (InvalidDuration, 1009),
        (InvalidInterestRate, 1010),
        (EmergencyStopActive, 1011),
        (InvalidPrice, 1012),
        (InvalidCollateralAsset, 1013),
    ])
    def test_error_code(self, error_class, code):
        """Each error carries its code on the class and the instance."""
        assert error_class.code == code
        assert error_class("boom").code == code
        assert issubclass(error_class, LendingError)

    def test_codes_are_unique(self):
        """ERRORS_BY_CODE maps every code to exactly one class."""
        assert len(ERRORS_BY_CODE) == 12
        assert ERRORS_BY_CODE[1003] is LoanNotFound

    def test_base_error_has_no_code(self):
        assert LendingError("x").code is None


# ============================================================================
# RECORDS
# ============================================================================

class TestLoanRecord:
    """Loan record validation."""

    def test_status_coerced_from_string(self):
        """A plain status string is converted to LoanStatus."""
        loan = make_loan(status="ACTIVE", activated_at_block=5)
        assert loan.status is LoanStatus.ACTIVE

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="amount"):
            make_loan(amount=-1)

    def test_bool_is_not_an_int(self):
        """Booleans are rejected where integers are expected."""
        with pytest.raises(ValueError):
            make_loan(duration_blocks=True)

    def test_empty_borrower_rejected(self):
        with pytest.raises(ValueError, match="borrower"):
            make_loan(borrower="  ")

    def test_is_open(self):
        assert make_loan().is_open
        assert make_loan(status=LoanStatus.ACTIVE, activated_at_block=1).is_open
        assert not make_loan(status=LoanStatus.REPAID, activated_at_block=1).is_open

    def test_loans_are_immutable(self):
        loan = make_loan()
        with pytest.raises(AttributeError):
            loan.amount = 5


class TestOtherRecords:
    """CollateralAsset, Reputation, ContractState, RiskParameters."""

    def test_asset_priced_only_when_listed_with_price(self):
        assert CollateralAsset("STX", 1, True).is_priced
        assert not CollateralAsset("STX", 0, True).is_priced
        assert not CollateralAsset("STX", 5, False).is_priced

    def test_reputation_defaults(self):
        rep = Reputation(BORROWER)
        assert (rep.completed_loans, rep.defaults, rep.reputation_score) == (0, 0, 100)

    def test_reputation_score_bounded(self):
        with pytest.raises(ValueError):
            Reputation(BORROWER, reputation_score=101)

    def test_contract_state_defaults(self):
        state = ContractState(DEPLOYER)
        assert state.next_loan_id == 1
        assert state.emergency_stopped is False

    def test_contract_state_requires_positive_next_id(self):
        with pytest.raises(ValueError):
            ContractState(DEPLOYER, next_loan_id=0)

    def test_risk_parameter_defaults(self):
        params = RiskParameters()
        assert params.min_collateral_ratio_bps == 20_000
        assert params.min_duration_blocks == 1_440
        assert params.max_duration_blocks == 525_600
        assert params.max_interest_rate_bps == 5_000
        assert params.reputation_penalty == 20
        assert params.reputation_reward == 5
        assert params.baseline_reputation_score == 100
        assert params.open_liquidation is False

    def test_risk_parameters_min_above_max_rejected(self):
        with pytest.raises(ValueError, match="min_duration_blocks"):
            RiskParameters(min_duration_blocks=10, max_duration_blocks=5)


class TestLoanTransitions:
    """Allowed loan status transitions."""

    def test_forward_only(self):
        assert LOAN_TRANSITIONS[None] == {LoanStatus.PENDING}
        assert LOAN_TRANSITIONS[LoanStatus.PENDING] == {LoanStatus.ACTIVE}
        assert LOAN_TRANSITIONS[LoanStatus.ACTIVE] == {LoanStatus.REPAID, LoanStatus.LIQUIDATED}

    def test_terminal_states(self):
        assert not LOAN_TRANSITIONS[LoanStatus.REPAID]
        assert not LOAN_TRANSITIONS[LoanStatus.LIQUIDATED]


# ============================================================================
# STATE CHANGES AND HASHING
# ============================================================================

class TestStateChange:
    """StateChange validation and diffing."""

    def test_changed_fields_on_update(self):
        loan = make_loan()
        active = replace(loan, status=LoanStatus.ACTIVE, activated_at_block=7)
        sc = StateChange(TABLE_LOANS, 1, loan, active)
        assert sc.changed_fields() == {
            'activated_at_block': (None, 7),
            'status': (LoanStatus.PENDING, LoanStatus.ACTIVE),
        }

    def test_changed_fields_on_creation(self):
        """Creation reports every field against None."""
        asset = CollateralAsset("STX")
        sc = StateChange(TABLE_ASSETS, "STX", None, asset)
        assert sc.changed_fields()['symbol'] == (None, "STX")

    def test_unknown_table_rejected(self):
        with pytest.raises(ValueError, match="Unknown table"):
            StateChange("wallets", "x", None, CollateralAsset("STX"))

    def test_new_cannot_be_none(self):
        with pytest.raises(ValueError):
            StateChange(TABLE_ASSETS, "STX", CollateralAsset("STX"), None)


class TestCanonicalization:
    """Canonical string form used for intent hashing."""

    def test_dict_order_irrelevant(self):
        assert _canonicalize({'a': 1, 'b': 2}) == _canonicalize({'b': 2, 'a': 1})

    def test_types_distinguished(self):
        assert _canonicalize(1) != _canonicalize("1")
        assert _canonicalize(True) != _canonicalize(1)
        assert _canonicalize(None) != _canonicalize("null")

    def test_enum_uses_value(self):
        assert _canonicalize(LoanStatus.ACTIVE) == "E:ACTIVE"

    def test_records_canonicalized_by_fields(self):
        assert _canonicalize(make_loan()) == _canonicalize(make_loan())
        assert _canonicalize(make_loan()) != _canonicalize(make_loan(amount=1))


class TestIntentId:
    """Content-addressed intent ids."""

    def _pending(self, block=0, caller=DEPLOYER, new_owner="alice"):
        state = ContractState(DEPLOYER)
        changes = (StateChange(TABLE_CONTRACT, CONTRACT_STATE_KEY, state, replace(state, owner=new_owner)),)
        origin = TransactionOrigin(OriginType.ADMINISTRATIVE, caller, "set-contract-owner")
        return PendingTransaction(changes, origin, block)

    def test_same_content_same_id(self):
        assert self._pending().intent_id == self._pending().intent_id

    def test_block_height_not_part_of_intent(self):
        """A retried intent at a later block hashes identically."""
        assert self._pending(block=1).intent_id == self._pending(block=99).intent_id

    def test_different_content_different_id(self):
        assert self._pending().intent_id != self._pending(new_owner="bob").intent_id
        assert self._pending().intent_id != self._pending(caller="mallory").intent_id

    def test_intent_id_is_short_hex(self):
        intent_id = self._pending().intent_id
        assert len(intent_id) == 16
        int(intent_id, 16)


class TestBuildTransaction:
    """build_transaction and empty_pending_transaction helpers."""

    def test_build_uses_view_block(self):
        view = FakeView(block=42)
        asset = CollateralAsset("STX")
        origin = TransactionOrigin(OriginType.ADMINISTRATIVE, DEPLOYER, "add-collateral-asset")
        pending = build_transaction(view, [StateChange(TABLE_ASSETS, "STX", None, asset)], origin)
        assert pending.block_height == 42
        assert not pending.is_empty()
        assert len(pending.changes_for(TABLE_ASSETS)) == 1
        assert pending.changes_for(TABLE_LOANS) == ()

    def test_empty_pending(self):
        pending = empty_pending_transaction(FakeView(block=3))
        assert pending.is_empty()
        assert pending.block_height == 3
