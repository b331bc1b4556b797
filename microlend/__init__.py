"""
microlend - Collateralized Micro-Lending Ledger

An in-memory lending ledger: the owner lists collateral assets and posts
prices, borrowers request loans against collateral, the owner activates
them, and expired unpaid loans are liquidated. A reputation score tracks
each borrower's repayment history.

Usage:
    from microlend import MicroLend, Call

    app = MicroLend("deployer")
    app.mine_block([
        Call("add_collateral_asset", "deployer", ("STX",)),
        Call("update_asset_price", "deployer", ("STX", 1_500_000)),
    ])
    loan_id = app.create_loan_request("wallet_1", 1_000_000_000, 2_000_000_000,
                                      "STX", 1440, 1000)
    app.activate_loan("deployer", loan_id)

Lower level (pure functions + ledger):
    from microlend import LendingLedger, compute_add_collateral_asset

    ledger = LendingLedger("main", owner="deployer")
    result = ledger.execute(compute_add_collateral_asset(ledger, "deployer", "STX"))
"""

# Core types
from .core import (
    LendingView,
    SmartContract,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    StateChange,
    build_transaction,
    empty_pending_transaction,
    ExecuteResult,
    LoanStatus,
    CollateralAsset,
    Loan,
    Reputation,
    ContractState,
    RiskParameters,
    LendingError,
    NotAuthorized,
    InsufficientCollateral,
    LoanNotFound,
    LoanAlreadyActive,
    LoanNotActive,
    LoanNotDefaulted,
    InvalidAmount,
    InvalidDuration,
    InvalidInterestRate,
    EmergencyStopActive,
    InvalidPrice,
    InvalidCollateralAsset,
    ERRORS_BY_CODE,
    BPS_SCALE,
    PRICE_SCALE,
)

# Ledger
from .ledger import LendingLedger

# Components
from .access import (
    compute_set_contract_owner,
    compute_toggle_emergency_stop,
    get_contract_status,
    require_owner,
)
from .assets import (
    compute_add_collateral_asset,
    compute_update_asset_price,
    compute_update_asset_prices,
    get_asset,
)
from .risk import (
    calculate_collateral_ratio_bps,
    calculate_total_due,
    validate_loan_request,
)
from .loans import (
    compute_create_loan_request,
    compute_activate_loan,
    compute_repay_loan,
    compute_total_due,
    get_loan,
    get_loans_by_borrower,
)
from .liquidation import (
    compute_liquidation,
    liquidation_contract,
    is_defaulted,
    expiry_block,
)
from .reputation import get_user_reputation, apply_default, apply_completion

# Lifecycle
from .scheduled_events import Event, EventScheduler, expiry_event, price_update_event
from .event_handlers import DEFAULT_HANDLERS, create_default_scheduler
from .lifecycle_engine import LifecycleEngine
from .pricing_source import PricingSource, StaticPricingSource, BlockSeriesPricingSource

# Reporting
from .risk_report import calculate_portfolio_summary, stress_test

# Entry points
from .contract import MicroLend, Call, Receipt


__all__ = [
    # Core
    'LendingView', 'SmartContract', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'StateChange',
    'build_transaction', 'empty_pending_transaction', 'ExecuteResult',
    'LoanStatus', 'CollateralAsset', 'Loan', 'Reputation', 'ContractState',
    'RiskParameters', 'BPS_SCALE', 'PRICE_SCALE',
    # Errors
    'LendingError', 'NotAuthorized', 'InsufficientCollateral', 'LoanNotFound',
    'LoanAlreadyActive', 'LoanNotActive', 'LoanNotDefaulted', 'InvalidAmount',
    'InvalidDuration', 'InvalidInterestRate', 'EmergencyStopActive', 'InvalidPrice',
    'InvalidCollateralAsset', 'ERRORS_BY_CODE',
    # Ledger
    'LendingLedger',
    # Components
    'compute_set_contract_owner', 'compute_toggle_emergency_stop',
    'get_contract_status', 'require_owner',
    'compute_add_collateral_asset', 'compute_update_asset_price',
    'compute_update_asset_prices', 'get_asset',
    'calculate_collateral_ratio_bps', 'calculate_total_due', 'validate_loan_request',
    'compute_create_loan_request', 'compute_activate_loan', 'compute_repay_loan',
    'compute_total_due', 'get_loan', 'get_loans_by_borrower',
    'compute_liquidation', 'liquidation_contract', 'is_defaulted', 'expiry_block',
    'get_user_reputation', 'apply_default', 'apply_completion',
    # Lifecycle
    'Event', 'EventScheduler', 'expiry_event', 'price_update_event',
    'DEFAULT_HANDLERS', 'create_default_scheduler', 'LifecycleEngine',
    'PricingSource', 'StaticPricingSource', 'BlockSeriesPricingSource',
    # Reporting
    'calculate_portfolio_summary', 'stress_test',
    # Entry points
    'MicroLend', 'Call', 'Receipt',
]

__version__ = '1.0.0'
