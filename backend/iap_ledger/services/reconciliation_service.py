"""
Reconciliation Service

Merges the store's view of outstanding purchases into the local purchase log
and drives settlement (consume on the store, then commit downstream).

Merge rules, per remote transaction:
- unknown order: insert as PENDING or STORED
- local PENDING, store no longer pending: promote to STORED
- anything else: leave alone

Merge never deletes, never rewrites a receipt and never marks COMPLETE;
only settlement moves a row past STORED. Every log operation runs in its own
short session.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..exceptions import BillingError, CommitFailure, ConsumeFailure, DuplicateOrderError, TransactionNotFoundError
from ..models.reports import QueryReport, RemoteReceipt, ResendReport, SettlementResult
from ..models.transactions import PurchaseLogEntry, Transaction, TransactionStatus
from ..providers.base import BillingProvider
from . import transaction_service
from .commit_service import CommitGateway
from .state_machine import SETTLEABLE_STATES, SettlementOutcome, initial_status, settlement_status

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Reconciles remote and local purchase state.

    merge() and resend_all() hold the engine lock, so two passes never
    interleave. settle() and cancel() hold a per-order lock, so settlements
    of one order run one after the other and each starts from the status
    the previous one wrote. record_purchase() runs unguarded; concurrent
    inserts of one order are resolved by the unique order_id.
    """

    def __init__(
        self,
        provider: BillingProvider,
        session_factory: async_sessionmaker,
        commit_gateway: CommitGateway
    ):
        self.provider = provider
        self.commit_gateway = commit_gateway
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._order_locks: Dict[str, asyncio.Lock] = {}
        self._order_lock_users: Dict[str, int] = {}

    # ========================================================================
    # Query / merge
    # ========================================================================

    async def query_purchase_data(self) -> QueryReport:
        """Query the store and merge the result into the log."""
        remote = await self.provider.query_purchases()
        logger.debug(f"Query done: {len(remote)} store receipts")
        return await self.merge(remote)

    async def merge(self, remote: List[Transaction]) -> QueryReport:
        async with self._lock:
            return await self._merge(remote)

    async def _merge(self, remote: List[Transaction]) -> QueryReport:
        report = QueryReport()

        for transaction in remote:
            status, action = await self._upsert(transaction)
            if action == "inserted":
                report.inserted.append(transaction.order_id)
            elif action == "updated":
                report.updated.append(transaction.order_id)

            report.remote.append(RemoteReceipt(
                order_id=transaction.order_id,
                status=status,
                pending=transaction.is_pending,
                has_developer_payload=bool(transaction.developer_payload)
            ))

        async with self._session_factory() as db:
            report.local_candidates = await transaction_service.get_resend_candidates(db)

        if report.mutation_count:
            logger.info(
                f"Merged {len(remote)} store receipts: "
                f"{len(report.inserted)} inserted, {len(report.updated)} promoted to STORED"
            )
        return report

    async def record_purchase(self, transaction: Transaction) -> TransactionStatus:
        """
        Log a transaction returned by a purchase flow.

        Returns:
            Status of the log row afterwards
        """
        status, _ = await self._upsert(transaction)
        return status

    async def _upsert(self, transaction: Transaction) -> Tuple[TransactionStatus, Optional[str]]:
        """
        Apply the merge rules to one transaction.

        Returns:
            (status after merge, "inserted" | "updated" | None)
        """
        async with self._session_factory() as db:
            entry = await transaction_service.find_by_order_id(db, transaction.order_id)

            if entry is None:
                status = initial_status(transaction.is_pending)
                try:
                    await transaction_service.insert_transaction(
                        db,
                        order_id=transaction.order_id,
                        receipt_json=transaction.original_json,
                        signature=transaction.signature,
                        status=status
                    )
                    return status, "inserted"
                except DuplicateOrderError:
                    # Another writer logged the order since the lookup
                    logger.info(f"Order {transaction.order_id} logged concurrently; merging with the stored row")
                    entry = await transaction_service.find_by_order_id(db, transaction.order_id)
                    if entry is None:
                        return status, None

            if entry.status == TransactionStatus.PENDING and not transaction.is_pending:
                await transaction_service.update_status(db, transaction.order_id, TransactionStatus.STORED)
                return TransactionStatus.STORED, "updated"

            return entry.status, None

    # ========================================================================
    # Settlement
    # ========================================================================

    async def settle(
        self,
        transaction: Transaction,
        outcome: SettlementOutcome = SettlementOutcome.SUCCESS
    ) -> SettlementResult:
        """
        Consume the purchase on the store and commit it downstream.

        Args:
            transaction: Transaction with a row in the log
            outcome: Forced outcome (NOT_CONSUMED / NOT_COMMITTED simulate a
                failure of that step)

        Returns:
            Settlement result; skipped=True when the row is not in a
            settleable status (PENDING, COMPLETE, CANCELED)

        Raises:
            TransactionNotFoundError: If the order is not in the log
        """
        async with self._order_guard(transaction.order_id):
            return await self._settle(transaction, outcome)

    async def _settle(self, transaction: Transaction, outcome: SettlementOutcome) -> SettlementResult:
        async with self._session_factory() as db:
            entry = await transaction_service.find_by_order_id(db, transaction.order_id)
        if entry is None:
            raise TransactionNotFoundError(
                f"No logged transaction with order ID: {transaction.order_id}",
                details={"order_id": transaction.order_id}
            )

        previous = entry.status
        result = SettlementResult(
            order_id=transaction.order_id,
            previous_status=previous,
            status=previous
        )

        if previous not in SETTLEABLE_STATES:
            logger.info(f"Skipping settlement of {transaction.order_id}: status {previous.value}")
            result.skipped = True
            return result

        try:
            if outcome == SettlementOutcome.NOT_CONSUMED:
                logger.info(f"Consume of {transaction.order_id} skipped ({outcome.value})")
            else:
                result.consumed = await self._consume(transaction, previous)
                if outcome == SettlementOutcome.NOT_COMMITTED:
                    logger.info(f"Commit of {transaction.order_id} skipped ({outcome.value})")
                else:
                    await self.commit_gateway.commit(transaction)
                    result.committed = True
        except ConsumeFailure as e:
            logger.warning(f"{e.error_code} - {e.message}")
            result.consumed = False
        except CommitFailure as e:
            logger.warning(f"{e.error_code} - {e.message}")
            result.committed = False

        status = settlement_status(bool(result.consumed), bool(result.committed))
        async with self._session_factory() as db:
            await transaction_service.update_status(db, transaction.order_id, status)
        result.status = status

        logger.info(f"Settled {transaction.order_id}: {previous.value} -> {status.value}")
        return result

    @asynccontextmanager
    async def _order_guard(self, order_id: str):
        lock = self._order_locks.setdefault(order_id, asyncio.Lock())
        self._order_lock_users[order_id] = self._order_lock_users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._order_lock_users[order_id] -= 1
            if not self._order_lock_users[order_id]:
                del self._order_lock_users[order_id]
                del self._order_locks[order_id]

    async def _consume(self, transaction: Transaction, previous: TransactionStatus) -> bool:
        """
        Raises:
            ConsumeFailure: The store refused the consume
        """
        if await self.provider.consume(transaction):
            return True

        if previous == TransactionStatus.COMMITTING:
            # Consumed by the earlier attempt; the store no longer owns the token
            logger.info(f"Consume of {transaction.order_id} failed after an earlier consume succeeded; continuing to commit")
            return True

        raise ConsumeFailure(
            f"Consume failed for {transaction.order_id}",
            details={"order_id": transaction.order_id, "sku": transaction.sku}
        )

    # ========================================================================
    # Resend
    # ========================================================================

    async def resend_all(self) -> ResendReport:
        """
        Settle everything still outstanding, always with SUCCESS.

        The store's unconsumed purchases are merged first so each has a row,
        then settled unless still pending. Local CONSUMING/COMMITTING rows
        not covered by the store pass are settled from their stored receipt.
        """
        async with self._lock:
            report = ResendReport()

            remote = await self.provider.query_purchases()
            await self._merge(remote)

            remote_ids = set()
            for transaction in remote:
                remote_ids.add(transaction.order_id)
                if transaction.is_pending:
                    report.still_pending.append(transaction.order_id)
                    continue
                result = await self._settle_for_resend(transaction.order_id, lambda: transaction)
                if result is not None and not result.skipped:
                    report.remote.append(result)

            async with self._session_factory() as db:
                candidates = await transaction_service.get_resend_candidates(db)

            for record in candidates:
                if record.order_id in remote_ids:
                    report.deduplicated.append(record.order_id)
                    continue
                result = await self._settle_for_resend(record.order_id, lambda: self.provider.create_transaction(record))
                if result is not None and not result.skipped:
                    report.local.append(result)

        logger.info(
            f"Resend done: {len(report.remote)} store, {len(report.local)} local, "
            f"{len(report.still_pending)} still pending"
        )
        return report

    async def _settle_for_resend(
        self,
        order_id: str,
        build: Callable[[], Transaction]
    ) -> Optional[SettlementResult]:
        # One bad row must not stop the pass
        try:
            transaction = build()
        except ValueError as e:
            logger.warning(f"Resend of {order_id} failed: stored receipt is unreadable: {e}")
            return None

        try:
            return await self.settle(transaction, SettlementOutcome.SUCCESS)
        except BillingError as e:
            logger.warning(f"Resend of {order_id} failed: {e.error_code} - {e.message}")
            return None

    # ========================================================================
    # Log access
    # ========================================================================

    async def history(self) -> List[PurchaseLogEntry]:
        async with self._session_factory() as db:
            return await transaction_service.get_all(db)

    async def delete_all(self) -> int:
        async with self._session_factory() as db:
            return await transaction_service.delete_all(db)

    async def cancel(self, order_id: str) -> bool:
        async with self._order_guard(order_id):
            async with self._session_factory() as db:
                return await transaction_service.cancel_transaction(db, order_id)
