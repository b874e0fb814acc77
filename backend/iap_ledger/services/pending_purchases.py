"""
Pending Purchase Tracker

Bridges store callbacks into awaitable purchase results. Holds at most one
open purchase flow per SKU; each flow is a one-shot asyncio future resolved
with the Transaction the store reported, or None on cancel/error/teardown.

Store callbacks may arrive on a thread other than the one running the event
loop, so the registry is guarded by a lock and futures are completed through
the owning loop.
"""
import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Union

from ..exceptions import BillingError
from ..models.transactions import Transaction

logger = logging.getLogger(__name__)


def _set_result_if_pending(future: asyncio.Future, value: Any) -> None:
    if not future.done():
        future.set_result(value)


def resolve_future(future: asyncio.Future, value: Any) -> None:
    """
    Complete a future from any thread. A second resolution is a no-op.

    Args:
        future: Future created on some event loop
        value: Result to deliver
    """
    loop = future.get_loop()
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None

    if running is loop:
        _set_result_if_pending(future, value)
        return

    try:
        loop.call_soon_threadsafe(_set_result_if_pending, future, value)
    except RuntimeError:
        # Loop already closed: nobody is awaiting the result anymore
        logger.warning("Dropped callback result: event loop is closed")


class PendingPurchaseTracker:
    """
    Registry of purchase flows in progress, keyed by SKU.
    """

    def __init__(self):
        # {sku: future resolved with Optional[Transaction]}
        self._flows: Dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()

    def register(self, sku: str) -> asyncio.Future:
        """
        Open a purchase flow for a SKU.

        Must be called from a coroutine; the returned future belongs to the
        running loop. A flow already open for the SKU is replaced and its
        caller receives None.
        """
        future = asyncio.get_running_loop().create_future()

        with self._lock:
            displaced = self._flows.get(sku)
            self._flows[sku] = future

        if displaced is not None:
            logger.warning(f"Purchase flow for {sku} replaced by a newer request")
            resolve_future(displaced, None)

        logger.debug(f"Registered purchase flow: {sku}")
        return future

    def resolve(self, sku: str, transaction: Optional[Transaction]) -> bool:
        """
        Complete the flow for a SKU.

        Returns:
            True if an open flow was completed, False if none was open
            (already resolved, drained, or a purchase finished outside the app)
        """
        with self._lock:
            future = self._flows.pop(sku, None)

        if future is None:
            logger.debug(f"No open purchase flow for {sku}")
            return False

        resolve_future(future, transaction)
        outcome = transaction.order_id if transaction is not None else "none"
        logger.info(f"Resolved purchase flow: {sku} -> {outcome}")
        return True

    def drain_all(self, reason: Union[BillingError, str, None] = None) -> int:
        """
        Resolve every open flow with None and clear the registry.

        Called when the provider disconnects or reports a failure that cannot
        be attributed to a single SKU.

        Returns:
            Number of flows drained
        """
        with self._lock:
            flows = list(self._flows.items())
            self._flows.clear()

        for sku, future in flows:
            resolve_future(future, None)

        if flows:
            if isinstance(reason, BillingError):
                reason = f"{reason.error_code} - {reason.message}"
            logger.info(
                f"Drained {len(flows)} purchase flows "
                f"({', '.join(sku for sku, _ in flows)}): {reason or 'no reason given'}"
            )
        return len(flows)

    def is_pending(self, sku: str) -> bool:
        with self._lock:
            return sku in self._flows

    def __len__(self) -> int:
        with self._lock:
            return len(self._flows)
