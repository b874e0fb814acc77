"""
Mock Billing Client (modern client library)

Mirrors the shape of a store client library: one purchases-updated listener
registered at construction, a connection state listener, and callback-based
query/consume calls. Every callback is delivered on the client's own worker
thread, never on the caller's event loop.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Protocol

from .play_store import BillingResponseCode, BillingResult, ProductDetails, StoreBackend, StorePurchase

logger = logging.getLogger(__name__)


PurchasesUpdatedListener = Callable[[BillingResult, Optional[List[StorePurchase]]], None]


class BillingClientStateListener(Protocol):
    def on_billing_setup_finished(self, result: BillingResult) -> None: ...

    def on_billing_service_disconnected(self) -> None: ...


class FakeBillingClient:
    """
    Billing client backed by a StoreBackend.
    """

    def __init__(
        self,
        store: StoreBackend,
        purchases_updated_listener: PurchasesUpdatedListener,
        callback_delay: float = 0.0
    ):
        self._store = store
        self._listener = purchases_updated_listener
        self._callback_delay = callback_delay
        self._state_listener: Optional[BillingClientStateListener] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._ready = False

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def start_connection(self, state_listener: BillingClientStateListener) -> None:
        self._state_listener = state_listener
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="billing-client")
        self._store.attach(self)

        def finish_setup():
            result = self._store.connect()
            self._ready = result.is_ok
            state_listener.on_billing_setup_finished(result)

        self._dispatch(finish_setup)

    def end_connection(self) -> None:
        self._ready = False
        self._store.detach(self)
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def simulate_disconnect(self) -> None:
        """Store side dropped the service connection."""
        self._ready = False
        if self._state_listener is not None:
            self._dispatch(self._state_listener.on_billing_service_disconnected)

    # ------------------------------------------------------------------
    # Store calls
    # ------------------------------------------------------------------

    def query_sku_details_async(
        self,
        skus: Iterable[str],
        listener: Callable[[BillingResult, List[ProductDetails]], None]
    ) -> None:
        skus = list(skus)
        self._dispatch(lambda: listener(*self._store.product_details(skus)))

    def launch_billing_flow(self, details: ProductDetails, obfuscated_account_id: str = "") -> BillingResult:
        """
        Start a purchase. The outcome arrives on the purchases-updated listener.
        """
        if not self._ready:
            return BillingResult(BillingResponseCode.SERVICE_DISCONNECTED, "Client not connected")

        def run_flow():
            result, purchase = self._store.purchase(details.sku)
            self._listener(result, [purchase] if purchase is not None else None)

        self._dispatch(run_flow)
        return BillingResult(BillingResponseCode.OK)

    def query_purchases_async(
        self,
        listener: Callable[[BillingResult, List[StorePurchase]], None]
    ) -> None:
        if not self._ready:
            self._dispatch(lambda: listener(
                BillingResult(BillingResponseCode.SERVICE_DISCONNECTED, "Client not connected"), []
            ))
            return
        self._dispatch(lambda: listener(*self._store.query_purchases()))

    def consume_async(
        self,
        purchase_token: str,
        listener: Callable[[BillingResult, str], None]
    ) -> None:
        if not self._ready:
            self._dispatch(lambda: listener(
                BillingResult(BillingResponseCode.SERVICE_DISCONNECTED, "Client not connected"), purchase_token
            ))
            return
        self._dispatch(lambda: listener(self._store.consume(purchase_token), purchase_token))

    # ------------------------------------------------------------------

    def _dispatch(self, callback: Callable[[], None]) -> None:
        if self._executor is None:
            raise RuntimeError("Billing client is not connected; call start_connection() first")
        self._executor.submit(self._run_callback, callback)

    def _run_callback(self, callback: Callable[[], None]) -> None:
        if self._callback_delay:
            time.sleep(self._callback_delay)
        try:
            callback()
        except Exception:
            logger.exception("Billing client callback raised")
