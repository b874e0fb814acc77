"""
Modern Billing Provider

Adapter for the store client library. The library reports every purchase
outcome through one purchases-updated listener, so in-flight purchases are
matched to their callers by SKU through the pending purchase tracker.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import settings
from ..exceptions import ProviderSetupFailure, PurchaseOutcomeFailure, QueryFailure
from ..mocks.billing_client import FakeBillingClient
from ..mocks.play_store import BillingResponseCode, BillingResult, ProductDetails, StorePurchase
from ..models.transactions import SKU_STATIC_TEST, PurchaseLogEntry, PurchaseState, Transaction
from ..services.pending_purchases import PendingPurchaseTracker, resolve_future
from ..services.signature_service import verify_receipt
from .base import EnabledState

logger = logging.getLogger(__name__)


def _default_client_factory(context: Any, listener: Callable) -> FakeBillingClient:
    return FakeBillingClient(context, listener, callback_delay=settings.store_callback_delay_seconds)


class ModernBillingProvider:
    """
    Billing provider over the client library.

    Setup: connect, then fetch SKU details for the catalogue; only then is the
    provider enabled. A service disconnect drains open purchase flows and
    re-runs setup.
    """

    variant = "modern"

    def __init__(
        self,
        tracker: Optional[PendingPurchaseTracker] = None,
        skus: Optional[Iterable[str]] = None,
        client_factory: Optional[Callable[[Any, Callable], Any]] = None,
        verifier: Callable[[str, str], bool] = verify_receipt
    ):
        self.tracker = tracker or PendingPurchaseTracker()
        self.enabled = EnabledState(False)
        self.setup_error: Optional[ProviderSetupFailure] = None
        self._skus = list(skus if skus is not None else settings.inapp_skus)
        self._client_factory = client_factory or _default_client_factory
        self._verify = verifier
        self._client = None
        self._sku_details: Dict[str, ProductDetails] = {}
        self._setup_future: Optional[asyncio.Future] = None
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self, context: Any) -> EnabledState:
        self._shutting_down = False
        self._setup_future = asyncio.get_running_loop().create_future()
        self._client = self._client_factory(context, self._on_purchases_updated)
        self._connect()
        await self._setup_future
        return self.enabled

    def _connect(self) -> None:
        self._client.start_connection(self)

    def on_billing_setup_finished(self, result: BillingResult) -> None:
        if result.is_ok:
            logger.info("Setup successful.")
            self.setup_error = None
            # SKU details are required to launch a purchase
            self._client.query_sku_details_async(self._skus, self._on_sku_details)
            return

        logger.error(f"Problem setting up in-app billing: {result.response_code.name} {result.debug_message}")
        self.setup_error = ProviderSetupFailure(
            "Billing setup failed",
            details={"response_code": int(result.response_code), "debug_message": result.debug_message}
        )
        self.enabled.set(False)
        self._finish_setup()

    def on_billing_service_disconnected(self) -> None:
        logger.error("Problem setting up in-app billing: service disconnected")
        failure = ProviderSetupFailure("Billing service disconnected")
        self.setup_error = failure
        self.enabled.set(False)
        self.tracker.drain_all(failure)

        if not self._shutting_down:
            logger.info("Reconnecting to billing service")
            self._connect()

    def _on_sku_details(self, result: BillingResult, details: List[ProductDetails]) -> None:
        if result.is_ok:
            for item in details:
                self._sku_details[item.sku] = item
            logger.info(f"SKU details loaded: {len(details)} of {len(self._skus)}")
            self.enabled.set(True)
        else:
            logger.error(f"SKU details query failed: {result.response_code.name} {result.debug_message}")
            self.setup_error = ProviderSetupFailure(
                "SKU details query failed",
                details={"response_code": int(result.response_code)}
            )
        self._finish_setup()

    def _finish_setup(self) -> None:
        if self._setup_future is not None:
            resolve_future(self._setup_future, self.enabled.value)

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def _on_purchases_updated(
        self,
        result: BillingResult,
        purchases: Optional[List[StorePurchase]]
    ) -> None:
        code = result.response_code
        logger.debug(f"onPurchasesUpdated: {code.name}")

        if code == BillingResponseCode.OK:
            for purchase in purchases or []:
                self._handle_purchase(purchase)
            # The store has answered; any flow still open gets no further update
            self.tracker.drain_all("purchase update carried no usable purchase")
            return

        if code == BillingResponseCode.SERVICE_DISCONNECTED:
            self.tracker.drain_all(ProviderSetupFailure("Billing service disconnected during purchase"))
            if not self._shutting_down:
                self._connect()
            return

        if code == BillingResponseCode.ITEM_ALREADY_OWNED:
            # Unconsumed purchase of the same item; a query + resend settles it
            logger.info(result.debug_message)
        else:
            logger.info(f"Purchase flow ended: {code.name} {result.debug_message}")

        # The listener does not say which SKU failed
        self.tracker.drain_all(PurchaseOutcomeFailure(
            f"Purchase flow ended: {code.name}",
            details={"response_code": int(code), "debug_message": result.debug_message}
        ))

    def _handle_purchase(self, purchase: StorePurchase) -> None:
        if purchase.purchase_state == PurchaseState.PURCHASED:
            # Static responses carry no signature
            if purchase.sku == SKU_STATIC_TEST or self._verify(purchase.original_json, purchase.signature):
                logger.info(f"Purchase successful: {purchase.order_id}")
                if not self.tracker.resolve(purchase.sku, self._to_transaction(purchase)):
                    # A pending purchase completed outside the app (e.g. paid at a store counter)
                    logger.info(f"Purchase {purchase.order_id} has no open flow; picked up by the next query")
            else:
                logger.warning(f"Signature verification failed: {purchase.order_id}")
                self.tracker.resolve(purchase.sku, None)
        elif purchase.purchase_state == PurchaseState.PENDING:
            logger.info(f"Purchase is pending: {purchase.order_id}")
            self.tracker.resolve(purchase.sku, self._to_transaction(purchase))
        else:
            logger.info(f"Purchase status is unspecified: {purchase.order_id}")
            self.tracker.resolve(purchase.sku, None)

    async def purchase(self, sku: str) -> Optional[Transaction]:
        details = self._sku_details.get(sku)
        if details is None:
            logger.error(f"Cannot find sku({sku}) details from the store. Check the store catalogue.")
            return None

        flow = self.tracker.register(sku)
        result = self._client.launch_billing_flow(details, obfuscated_account_id="accountId")
        if not result.is_ok:
            logger.error(f"launchBillingFlow failed: {result.response_code.name} {result.debug_message}")
            self.tracker.resolve(sku, None)

        return await flow

    # ------------------------------------------------------------------
    # Query / consume
    # ------------------------------------------------------------------

    async def query_purchases(self) -> List[Transaction]:
        logger.info("Querying purchases.")
        try:
            purchases = await self._fetch_purchases()
        except QueryFailure as e:
            logger.warning(f"{e.error_code} - {e.message}")
            return []

        transactions = []
        for purchase in purchases:
            if purchase.purchase_state == PurchaseState.PURCHASED:
                if purchase.developer_payload:
                    # Receipt issued through the legacy helper
                    logger.info(f"payload = {purchase.developer_payload}")
                transactions.append(self._to_transaction(purchase))
            elif purchase.purchase_state == PurchaseState.PENDING:
                logger.info(f"Received a pending purchase of SKU: {purchase.sku}")
                transactions.append(self._to_transaction(purchase))
        return transactions

    async def _fetch_purchases(self) -> List[StorePurchase]:
        if self._client is None:
            raise QueryFailure("Billing client not initialized")

        future = asyncio.get_running_loop().create_future()
        self._client.query_purchases_async(
            lambda result, purchases: resolve_future(future, (result, purchases))
        )
        result, purchases = await future

        if not result.is_ok:
            raise QueryFailure(
                f"Purchase query failed: {result.response_code.name}",
                details={"response_code": int(result.response_code), "debug_message": result.debug_message}
            )
        return purchases

    async def consume(self, transaction: Transaction) -> bool:
        if self._client is None:
            logger.warning(f"Cannot consume {transaction.order_id}: billing client not initialized")
            return False

        logger.info(f"Consume item: {transaction.order_id}.")
        future = asyncio.get_running_loop().create_future()
        self._client.consume_async(
            transaction.purchase_token,
            lambda result, token: resolve_future(future, result)
        )
        result = await future

        if not result.is_ok:
            logger.warning(f"Consume failed for {transaction.order_id}: {result.response_code.name} {result.debug_message}")
            return False
        return True

    # ------------------------------------------------------------------

    def is_supported(self) -> bool:
        return self._client is not None and self.enabled.value

    def create_transaction(self, record: PurchaseLogEntry) -> Transaction:
        return Transaction.from_receipt(record.receipt_json, record.signature)

    def _to_transaction(self, purchase: StorePurchase) -> Transaction:
        return Transaction.from_receipt(purchase.original_json, purchase.signature)

    async def shutdown(self) -> None:
        self._shutting_down = True
        self.enabled.set(False)
        self.tracker.drain_all(ProviderSetupFailure("Billing provider shut down"))
        if self._client is not None:
            self._client.end_connection()
            self._client = None
