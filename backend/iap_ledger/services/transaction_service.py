"""
Transaction Service

Access contract for the purchase log (log_table).

- Rows are keyed by the store's order_id; a second insert for the same order is rejected
- The receipt columns are write-once: only status is ever updated
- Status updates are validated against the transaction state machine
"""
from typing import List, Optional
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..db.models import PurchaseLogModel
from ..exceptions import DuplicateOrderError, TransactionNotFoundError
from ..models.transactions import PurchaseLogEntry, TransactionStatus
from .state_machine import RESEND_STATES, assert_transition

logger = logging.getLogger(__name__)


# ============================================================================
# Insert
# ============================================================================

async def insert_transaction(
    db: AsyncSession,
    order_id: str,
    receipt_json: str,
    signature: str,
    status: TransactionStatus
) -> PurchaseLogEntry:
    """
    Store a receipt seen for the first time.

    Args:
        db: Database session
        order_id: Store order identifier
        receipt_json: Receipt JSON exactly as signed by the store
        signature: Store signature
        status: Entry status (PENDING or STORED)

    Returns:
        Created log entry

    Raises:
        DuplicateOrderError: If the order is already in the log
    """
    existing = await _get_model(db, order_id)
    if existing is not None:
        raise DuplicateOrderError(
            f"Order already logged: {order_id}",
            details={"order_id": order_id, "status": existing.status}
        )

    db_entry = PurchaseLogModel(
        order_id=order_id,
        receipt_json=receipt_json,
        signature=signature,
        status=status.value
    )

    db.add(db_entry)
    try:
        await db.commit()
    except IntegrityError as e:
        # Lost a race with another writer for the same order
        await db.rollback()
        raise DuplicateOrderError(
            f"Order already logged: {order_id}",
            details={"order_id": order_id}
        ) from e
    await db.refresh(db_entry)

    logger.info(f"Logged transaction: {order_id}, status={status.value}")

    return PurchaseLogEntry.model_validate(db_entry)


# ============================================================================
# Status Update
# ============================================================================

async def update_status(
    db: AsyncSession,
    order_id: str,
    status: TransactionStatus
) -> bool:
    """
    Change the status of an existing row. Nothing else is touched.

    Args:
        db: Database session
        order_id: Store order identifier
        status: Target status

    Returns:
        True if the row changed, False if it already had the target status

    Raises:
        TransactionNotFoundError: If the order is not in the log
        InvalidTransitionError: If the transition table forbids the change
    """
    db_entry = await _get_model(db, order_id)
    if db_entry is None:
        raise TransactionNotFoundError(
            f"No logged transaction with order ID: {order_id}",
            details={"order_id": order_id}
        )

    current = TransactionStatus(db_entry.status)
    assert_transition(current, status)

    if current == status:
        return False

    db_entry.status = status.value
    await db.commit()

    logger.info(f"Updated transaction {order_id}: {current.value} -> {status.value}")
    return True


async def cancel_transaction(db: AsyncSession, order_id: str) -> bool:
    """
    Mark a transaction CANCELED (administrative invalidation of a purchase).

    Raises:
        TransactionNotFoundError: If the order is not in the log
        InvalidTransitionError: If the transaction already reached COMPLETE
    """
    return await update_status(db, order_id, TransactionStatus.CANCELED)


# ============================================================================
# Retrieval
# ============================================================================

async def find_by_order_id(
    db: AsyncSession,
    order_id: str
) -> Optional[PurchaseLogEntry]:
    """
    Retrieve a log entry by order ID.

    Returns:
        Log entry or None if not found
    """
    db_entry = await _get_model(db, order_id)
    if db_entry is None:
        return None
    return PurchaseLogEntry.model_validate(db_entry)


async def get_all(db: AsyncSession) -> List[PurchaseLogEntry]:
    """Every log entry in insertion order."""
    result = await db.execute(
        select(PurchaseLogModel).order_by(PurchaseLogModel.id)
    )
    return [PurchaseLogEntry.model_validate(e) for e in result.scalars().all()]


async def get_resend_candidates(db: AsyncSession) -> List[PurchaseLogEntry]:
    """
    Entries whose settlement failed part-way (CONSUMING or COMMITTING).
    """
    result = await db.execute(
        select(PurchaseLogModel)
        .where(PurchaseLogModel.status.in_([s.value for s in RESEND_STATES]))
        .order_by(PurchaseLogModel.id)
    )
    return [PurchaseLogEntry.model_validate(e) for e in result.scalars().all()]


# ============================================================================
# Bulk Delete
# ============================================================================

async def delete_all(db: AsyncSession) -> int:
    """
    Wipe the log (administrative).

    Returns:
        Number of rows deleted
    """
    result = await db.execute(delete(PurchaseLogModel))
    await db.commit()

    logger.warning(f"Deleted all logged transactions ({result.rowcount} rows)")
    return result.rowcount


async def _get_model(db: AsyncSession, order_id: str) -> Optional[PurchaseLogModel]:
    result = await db.execute(
        select(PurchaseLogModel).where(PurchaseLogModel.order_id == order_id)
    )
    return result.scalar_one_or_none()
