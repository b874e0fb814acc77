"""
Transaction State Machine

Legal statuses and transitions of a purchase log row.

    PENDING ──> STORED ──> CONSUMING <──> COMMITTING ──> COMPLETE
       │          │            │              │
       └──────────┴────────────┴──────────────┴──> CANCELED

PENDING and STORED are the entry states; COMPLETE and CANCELED are terminal;
CONSUMING and COMMITTING are retried by resend. No transition leads back to an
entry state once settlement has started.
"""
from enum import Enum
from typing import Dict, FrozenSet

from ..exceptions import InvalidTransitionError
from ..models.transactions import TransactionStatus


class SettlementOutcome(str, Enum):
    """
    Forced outcome for the settlement step.

    SUCCESS runs consume and commit normally; the other two simulate a failure
    of the respective step (the resend pass always forces SUCCESS).
    """

    SUCCESS = "SUCCESS"
    NOT_CONSUMED = "NOT_CONSUMED"
    NOT_COMMITTED = "NOT_COMMITTED"


TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.STORED,
        TransactionStatus.CANCELED,
    }),
    TransactionStatus.STORED: frozenset({
        TransactionStatus.CONSUMING,
        TransactionStatus.COMMITTING,
        TransactionStatus.COMPLETE,
        TransactionStatus.CANCELED,
    }),
    TransactionStatus.CONSUMING: frozenset({
        TransactionStatus.COMMITTING,
        TransactionStatus.COMPLETE,
        TransactionStatus.CANCELED,
    }),
    TransactionStatus.COMMITTING: frozenset({
        TransactionStatus.CONSUMING,
        TransactionStatus.COMPLETE,
        TransactionStatus.CANCELED,
    }),
    TransactionStatus.COMPLETE: frozenset(),
    TransactionStatus.CANCELED: frozenset(),
}

TERMINAL_STATES = frozenset({TransactionStatus.COMPLETE, TransactionStatus.CANCELED})
RESEND_STATES = frozenset({TransactionStatus.CONSUMING, TransactionStatus.COMMITTING})
SETTLEABLE_STATES = frozenset({TransactionStatus.STORED}) | RESEND_STATES


def initial_status(is_pending: bool) -> TransactionStatus:
    """Status of a transaction the log has not seen before."""
    return TransactionStatus.PENDING if is_pending else TransactionStatus.STORED


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """
    Check a status change against the transition table.

    Re-applying the current status is allowed and means "no change".
    """
    if current == target:
        return True
    return target in TRANSITIONS[current]


def assert_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Illegal transaction transition: {current.value} -> {target.value}",
            details={"from": current.value, "to": target.value}
        )


def is_terminal(status: TransactionStatus) -> bool:
    return status in TERMINAL_STATES


def settlement_status(consumed: bool, committed: bool) -> TransactionStatus:
    """
    Map a settlement result onto the status it leaves behind.

    Args:
        consumed: Consume step succeeded (or was already done)
        committed: Downstream commit succeeded

    Returns:
        COMPLETE on full success, CONSUMING when consume failed,
        COMMITTING when consume succeeded but commit did not
    """
    if not consumed:
        return TransactionStatus.CONSUMING
    if not committed:
        return TransactionStatus.COMMITTING
    return TransactionStatus.COMPLETE
