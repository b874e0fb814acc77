"""
Mock IAB Helper (legacy callback helper)

Mirrors the legacy in-app billing helper: one listener per call, no pending
purchase concept, and only one asynchronous operation at a time. Callbacks
are delivered on the event loop that created the helper.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..models.transactions import PurchaseState
from .play_store import BillingResponseCode, StoreBackend

logger = logging.getLogger(__name__)


ITEM_TYPE_INAPP = "inapp"

BILLING_RESPONSE_RESULT_OK = 0
IABHELPER_USER_CANCELLED = -1005
IABHELPER_UNKNOWN_PURCHASE_RESPONSE = -1006
IABHELPER_SETUP_NOT_DONE = -1008


class IabAsyncInProgressError(Exception):
    """Raised when an operation starts while another one is in flight."""


@dataclass(frozen=True)
class IabResult:
    response: int
    message: str = ""

    @property
    def is_success(self) -> bool:
        return self.response == BILLING_RESPONSE_RESULT_OK

    @property
    def is_failure(self) -> bool:
        return not self.is_success

    def __str__(self) -> str:
        return f"IabResult: {self.message} (response: {self.response})"


class IabPurchase:
    """Purchase as the legacy helper reports it."""

    def __init__(self, item_type: str, original_json: str, signature: str):
        self.item_type = item_type
        self.original_json = original_json
        self.signature = signature
        data = json.loads(original_json)
        self.order_id: str = data.get("orderId", "")
        self.sku: str = data.get("productId", "")
        self.token: str = data.get("purchaseToken", "")
        self.developer_payload: str = data.get("developerPayload") or ""

    def __repr__(self) -> str:
        return f"IabPurchase(type={self.item_type}, orderId={self.order_id}, sku={self.sku})"


class Inventory:
    def __init__(self, purchases: Optional[Dict[str, IabPurchase]] = None):
        self._purchases = purchases or {}

    def all_purchases(self) -> List[IabPurchase]:
        return list(self._purchases.values())


def _result_for(code: BillingResponseCode, message: str = "") -> IabResult:
    if code == BillingResponseCode.OK:
        return IabResult(BILLING_RESPONSE_RESULT_OK, message or "Success")
    if code == BillingResponseCode.USER_CANCELED:
        return IabResult(IABHELPER_USER_CANCELLED, message or "User canceled")
    return IabResult(int(code), message or code.name)


class FakeIabHelper:
    """
    Legacy helper backed by a StoreBackend.
    """

    def __init__(self, store: StoreBackend, callback_delay: float = 0.0):
        self._store = store
        self._callback_delay = callback_delay
        self._loop = asyncio.get_running_loop()
        self._setup_done = False
        self._async_operation: Optional[str] = None

    # ------------------------------------------------------------------

    def start_setup(self, listener: Callable[[IabResult], None]) -> None:
        def finish():
            billing_result = self._store.connect()
            self._setup_done = billing_result.is_ok
            listener(_result_for(billing_result.response_code, billing_result.debug_message))

        self._schedule(finish)

    def launch_purchase_flow(
        self,
        sku: str,
        request_code: int,
        listener: Callable[[IabResult, Optional[IabPurchase]], None],
        extra_data: str = ""
    ) -> None:
        if not self._setup_done:
            self._schedule(lambda: listener(IabResult(IABHELPER_SETUP_NOT_DONE, "Setup not done"), None))
            return
        self._flag_start("launchPurchaseFlow")

        def finish():
            self._flag_end()
            billing_result, purchase = self._store.purchase(sku, developer_payload=extra_data)
            if not billing_result.is_ok:
                listener(_result_for(billing_result.response_code, billing_result.debug_message), None)
            elif purchase.purchase_state != PurchaseState.PURCHASED:
                # The legacy API has no pending state
                listener(IabResult(IABHELPER_UNKNOWN_PURCHASE_RESPONSE, "Purchase not completed"), None)
            else:
                listener(
                    IabResult(BILLING_RESPONSE_RESULT_OK, "Success"),
                    IabPurchase(ITEM_TYPE_INAPP, purchase.original_json, purchase.signature)
                )

        self._schedule(finish)

    def query_inventory_async(self, listener: Callable[[IabResult, Optional[Inventory]], None]) -> None:
        """
        Raises:
            IabAsyncInProgressError: If another helper operation is in flight
        """
        self._flag_start("queryInventory")

        def finish():
            self._flag_end()
            billing_result, purchases = self._store.query_purchases()
            if not billing_result.is_ok:
                listener(_result_for(billing_result.response_code, billing_result.debug_message), None)
                return
            inventory = Inventory({
                p.sku: IabPurchase(ITEM_TYPE_INAPP, p.original_json, p.signature)
                for p in purchases
                if p.purchase_state == PurchaseState.PURCHASED
            })
            listener(IabResult(BILLING_RESPONSE_RESULT_OK, "Inventory refresh successful."), inventory)

        self._schedule(finish)

    def consume_async(
        self,
        purchase: IabPurchase,
        listener: Callable[[IabPurchase, IabResult], None]
    ) -> None:
        """
        Raises:
            IabAsyncInProgressError: If another helper operation is in flight
        """
        self._flag_start("consume")

        def finish():
            self._flag_end()
            billing_result = self._store.consume(purchase.token)
            listener(purchase, _result_for(billing_result.response_code, billing_result.debug_message))

        self._schedule(finish)

    def dispose(self) -> None:
        self._setup_done = False

    # ------------------------------------------------------------------

    def _flag_start(self, operation: str) -> None:
        if self._async_operation is not None:
            raise IabAsyncInProgressError(
                f"Can't start async operation ({operation}) because another async "
                f"operation ({self._async_operation}) is in progress."
            )
        self._async_operation = operation

    def _flag_end(self) -> None:
        self._async_operation = None

    def _schedule(self, callback: Callable[[], None]) -> None:
        self._loop.call_later(self._callback_delay, callback)
