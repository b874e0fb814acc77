"""
Legacy Billing Provider

Adapter for the callback-style IAB helper. The helper has no pending
purchase state and refuses to start an operation while another is running;
both conditions surface here as "no result" rather than exceptions.
"""
import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..config import settings
from ..exceptions import ProviderSetupFailure, QueryFailure
from ..mocks.iab_helper import (
    IABHELPER_USER_CANCELLED,
    ITEM_TYPE_INAPP,
    FakeIabHelper,
    IabAsyncInProgressError,
    IabPurchase,
    IabResult,
)
from ..models.transactions import PurchaseLogEntry, Transaction
from ..services.pending_purchases import PendingPurchaseTracker, resolve_future
from .base import EnabledState

logger = logging.getLogger(__name__)


# Arbitrary request code for the purchase flow
PURCHASE_REQUEST_CODE = 10001
DEVELOPER_PAYLOAD = "sample_developer_payload"


def _default_helper_factory(context: Any) -> FakeIabHelper:
    return FakeIabHelper(context, callback_delay=settings.store_callback_delay_seconds)


class LegacyBillingProvider:
    variant = "legacy"

    def __init__(
        self,
        tracker: Optional[PendingPurchaseTracker] = None,
        helper_factory: Optional[Callable[[Any], Any]] = None
    ):
        self.tracker = tracker or PendingPurchaseTracker()
        self.enabled = EnabledState(False)
        self.setup_error: Optional[ProviderSetupFailure] = None
        self._helper_factory = helper_factory or _default_helper_factory
        self._helper = None

    async def initialize(self, context: Any) -> EnabledState:
        self._helper = self._helper_factory(context)
        future = asyncio.get_running_loop().create_future()

        def on_setup_finished(result: IabResult):
            logger.info("Setup finished.")
            if result.is_failure:
                logger.error(f"Problem setting up in-app billing: {result}")
                self.setup_error = ProviderSetupFailure(
                    "Billing setup failed",
                    details={"response": result.response, "message": result.message}
                )
                self.enabled.set(False)
            else:
                logger.info("Setup successful.")
                self.setup_error = None
                self.enabled.set(True)
            resolve_future(future, self.enabled.value)

        self._helper.start_setup(on_setup_finished)
        await future
        return self.enabled

    def is_supported(self) -> bool:
        return self._helper is not None and self.enabled.value

    async def purchase(self, sku: str) -> Optional[Transaction]:
        if self._helper is None:
            logger.error(f"Cannot purchase {sku}: IAB helper not initialized")
            return None

        flow = self.tracker.register(sku)

        def on_purchase_finished(result: IabResult, info: Optional[IabPurchase]):
            logger.info(f"Purchase finished: {result}, purchase: {info}")
            if result.is_failure:
                if result.response == IABHELPER_USER_CANCELLED:
                    logger.info("User cancelled.")
                else:
                    logger.error(f"Error purchasing: {result}")
                self.tracker.resolve(sku, None)
                return

            logger.info(f"payload = {info.developer_payload}")
            self.tracker.resolve(sku, self._to_transaction(info))

        try:
            self._helper.launch_purchase_flow(sku, PURCHASE_REQUEST_CODE, on_purchase_finished, DEVELOPER_PAYLOAD)
        except IabAsyncInProgressError as e:
            logger.error(f"Error launching purchase flow. {e}")
            self.tracker.resolve(sku, None)

        return await flow

    async def query_purchases(self) -> List[Transaction]:
        logger.info("Querying inventory.")
        try:
            purchases = await self._query_inventory()
        except QueryFailure as e:
            logger.warning(f"{e.error_code} - {e.message}")
            return []

        for purchase in purchases:
            logger.info(f"payload = {purchase.developer_payload}")
        return [self._to_transaction(purchase) for purchase in purchases]

    async def _query_inventory(self) -> List[IabPurchase]:
        if self._helper is None:
            raise QueryFailure("IAB helper not initialized")

        future = asyncio.get_running_loop().create_future()

        def on_query_finished(result: IabResult, inventory):
            logger.debug("Query inventory finished.")
            resolve_future(future, (result, inventory))

        try:
            self._helper.query_inventory_async(on_query_finished)
        except IabAsyncInProgressError as e:
            raise QueryFailure(
                "Error querying inventory. Another async operation in progress.",
                details={"error": str(e)}
            ) from e

        result, inventory = await future
        if result.is_failure:
            raise QueryFailure(f"Failed to query inventory: {result}", details={"response": result.response})
        return inventory.all_purchases()

    async def consume(self, transaction: Transaction) -> bool:
        if self._helper is None:
            logger.warning(f"Cannot consume {transaction.order_id}: IAB helper not initialized")
            return False

        logger.info(f"Consume item: {transaction.order_id}.")
        purchase = IabPurchase(ITEM_TYPE_INAPP, transaction.original_json, transaction.signature)
        future = asyncio.get_running_loop().create_future()

        try:
            self._helper.consume_async(purchase, lambda p, result: resolve_future(future, result))
        except IabAsyncInProgressError as e:
            logger.warning(f"Error consuming {transaction.order_id}. {e}")
            return False

        result = await future
        if result.is_failure:
            logger.warning(f"Error while consuming: {result}")
            return False
        return True

    def create_transaction(self, record: PurchaseLogEntry) -> Transaction:
        return self._to_transaction(IabPurchase(ITEM_TYPE_INAPP, record.receipt_json, record.signature))

    def _to_transaction(self, purchase: IabPurchase) -> Transaction:
        return Transaction.from_receipt(purchase.original_json, purchase.signature)

    async def shutdown(self) -> None:
        self.enabled.set(False)
        self.tracker.drain_all(ProviderSetupFailure("Billing provider shut down"))
        if self._helper is not None:
            self._helper.dispose()
            self._helper = None
