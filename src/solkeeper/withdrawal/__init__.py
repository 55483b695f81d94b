"""Withdrawal module for the guided send flow.

This module handles the withdrawal sessions and the state machine that
signs and submits transfers from a user's active wallet.
"""

from solkeeper.withdrawal.engine import WithdrawalEngine, WithdrawalReply
from solkeeper.withdrawal.sessions import SessionStore, TokenOption, WithdrawalState

__all__ = [
    "SessionStore",
    "TokenOption",
    "WithdrawalEngine",
    "WithdrawalReply",
    "WithdrawalState",
]
