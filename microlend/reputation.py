"""
reputation.py - Per-Identity Repayment Reputation

A reputation record is created lazily, the first time an identity defaults
or completes a loan, from the baseline score. Scores stay within [0, 100]:

    default:    defaults += 1,         score = max(0, score - penalty)
    completion: completed_loans += 1,  score = min(100, score + reward)

Only the liquidation and repayment paths change reputation, and always in
the same transaction as the loan status change.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional

from .core import (
    LendingView, Reputation, RiskParameters, StateChange,
    MAX_REPUTATION_SCORE, TABLE_REPUTATIONS,
)


def get_user_reputation(view: LendingView, identity: str) -> Optional[Reputation]:
    return view.get_reputation(identity)


def initial_reputation(identity: str, params: RiskParameters) -> Reputation:
    return Reputation(identity=identity, reputation_score=params.baseline_reputation_score)


def apply_default(rep: Optional[Reputation], identity: str, params: RiskParameters) -> Reputation:
    """Return the record after one default. Score is floored at 0."""
    current = rep if rep is not None else initial_reputation(identity, params)
    return replace(
        current,
        defaults=current.defaults + 1,
        reputation_score=max(0, current.reputation_score - params.reputation_penalty),
    )


def apply_completion(rep: Optional[Reputation], identity: str, params: RiskParameters) -> Reputation:
    """Return the record after one completed loan. Score is capped at 100."""
    current = rep if rep is not None else initial_reputation(identity, params)
    return replace(
        current,
        completed_loans=current.completed_loans + 1,
        reputation_score=min(MAX_REPUTATION_SCORE, current.reputation_score + params.reputation_reward),
    )


def default_change(view: LendingView, identity: str) -> StateChange:
    """StateChange penalizing identity for one default."""
    current = view.get_reputation(identity)
    return StateChange(TABLE_REPUTATIONS, identity, current, apply_default(current, identity, view.params))


def completion_change(view: LendingView, identity: str) -> StateChange:
    """StateChange rewarding identity for one completed loan."""
    current = view.get_reputation(identity)
    return StateChange(TABLE_REPUTATIONS, identity, current, apply_completion(current, identity, view.params))
