"""
Mock Store Backend

In-memory billing authority shared by the fake billing client (modern) and
the fake IAB helper (legacy). Issues signed receipts, keeps the set of owned
(unconsumed) purchases and lets a demo or test script the next outcomes.

Mock Behavior:
- One-time consumable products: a SKU cannot be bought again until consumed
- Purchases succeed unless an outcome or failure was queued for them
- Pending purchases stay pending until complete_pending() is called
- The static test SKU returns an unsigned receipt
"""
import itertools
import logging
import threading
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from ..models.transactions import SKU_STATIC_TEST, PurchaseState
from ..services.signature_service import create_canonical_json, sign_receipt

logger = logging.getLogger(__name__)


class BillingResponseCode(IntEnum):
    """Store response codes."""

    SERVICE_DISCONNECTED = -1
    OK = 0
    USER_CANCELED = 1
    SERVICE_UNAVAILABLE = 2
    BILLING_UNAVAILABLE = 3
    ITEM_UNAVAILABLE = 4
    DEVELOPER_ERROR = 5
    ERROR = 6
    ITEM_ALREADY_OWNED = 7
    ITEM_NOT_OWNED = 8


@dataclass(frozen=True)
class BillingResult:
    response_code: BillingResponseCode
    debug_message: str = ""

    @property
    def is_ok(self) -> bool:
        return self.response_code == BillingResponseCode.OK


class PurchaseOutcome(str, Enum):
    """Scripted result of the next purchase flow for a SKU."""

    PURCHASED = "purchased"
    PENDING = "pending"
    CANCELED = "canceled"
    ERROR = "error"


@dataclass(frozen=True)
class ProductDetails:
    sku: str
    title: str
    price_micros: int
    currency: str = "USD"


@dataclass
class StorePurchase:
    """A purchase the store still reports (not yet consumed)."""

    order_id: str
    sku: str
    purchase_token: str
    purchase_state: PurchaseState
    original_json: str
    signature: str
    developer_payload: str = ""
    purchase_time_millis: int = field(default_factory=lambda: int(time.time() * 1000))


OPERATIONS = ("setup", "sku_details", "purchase", "query", "consume")


class StoreBackend:
    """
    Thread-safe in-memory store.

    Callbacks from the fake client run on worker threads, so every public
    method takes the store lock.
    """

    def __init__(
        self,
        package_name: str = "com.example.billingsample",
        signing_secret: Optional[str] = None
    ):
        self.package_name = package_name
        self._signing_secret = signing_secret
        self._lock = threading.RLock()
        self._products: Dict[str, ProductDetails] = {}
        # Owned purchases: {purchase_token: StorePurchase}
        self._owned: Dict[str, StorePurchase] = {}
        self._outcomes: Dict[str, Deque[PurchaseOutcome]] = defaultdict(deque)
        self._failures: Dict[str, Deque[BillingResponseCode]] = defaultdict(deque)
        self._order_seq = itertools.count(1)
        self._clients: List = []

    @classmethod
    def with_catalogue(cls, skus: Iterable[str], **kwargs) -> "StoreBackend":
        store = cls(**kwargs)
        for i, sku in enumerate(skus):
            store.add_product(sku, price_micros=(i + 1) * 990_000)
        return store

    # ------------------------------------------------------------------
    # Demo / test controls
    # ------------------------------------------------------------------

    def add_product(self, sku: str, title: Optional[str] = None, price_micros: int = 990_000) -> None:
        with self._lock:
            self._products[sku] = ProductDetails(sku=sku, title=title or sku, price_micros=price_micros)

    def queue_outcome(self, sku: str, outcome: PurchaseOutcome) -> None:
        """Script the result of the next purchase flow for a SKU."""
        with self._lock:
            self._outcomes[sku].append(PurchaseOutcome(outcome))
        logger.info(f"Queued purchase outcome for {sku}: {outcome}")

    def fail_next(
        self,
        operation: str,
        code: BillingResponseCode = BillingResponseCode.ERROR
    ) -> None:
        """Make the next call of an operation fail with the given response code."""
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown store operation: {operation}. Must be one of {', '.join(OPERATIONS)}")
        with self._lock:
            self._failures[operation].append(BillingResponseCode(code))
        logger.info(f"Queued failure for {operation}: {BillingResponseCode(code).name}")

    def complete_pending(self, order_id: str) -> Optional[StorePurchase]:
        """
        Clear a pending purchase (delayed payment received).

        The store re-issues the receipt with the PURCHASED state.
        """
        with self._lock:
            purchase = self._find(order_id)
            if purchase is None or purchase.purchase_state != PurchaseState.PENDING:
                return None
            cleared = self._issue(
                purchase.sku,
                PurchaseState.PURCHASED,
                purchase.developer_payload,
                order_id=purchase.order_id,
                purchase_token=purchase.purchase_token,
            )
            self._owned[cleared.purchase_token] = cleared
        logger.info(f"Pending purchase cleared: {order_id}")
        return cleared

    def attach(self, client) -> None:
        """Register a connected client so disconnect() can reach it."""
        with self._lock:
            if client not in self._clients:
                self._clients.append(client)

    def detach(self, client) -> None:
        with self._lock:
            if client in self._clients:
                self._clients.remove(client)

    def disconnect(self) -> int:
        """Drop every connected client's service connection."""
        with self._lock:
            clients = list(self._clients)
        for client in clients:
            client.simulate_disconnect()
        logger.info(f"Disconnected {len(clients)} billing clients")
        return len(clients)

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def connect(self) -> BillingResult:
        failure = self._take_failure("setup")
        if failure is not None:
            return BillingResult(failure, "Billing setup failed")
        return BillingResult(BillingResponseCode.OK)

    def product_details(self, skus: Iterable[str]) -> Tuple[BillingResult, List[ProductDetails]]:
        failure = self._take_failure("sku_details")
        if failure is not None:
            return BillingResult(failure, "SKU details query failed"), []
        with self._lock:
            details = [self._products[sku] for sku in skus if sku in self._products]
        return BillingResult(BillingResponseCode.OK), details

    def purchase(
        self,
        sku: str,
        developer_payload: str = ""
    ) -> Tuple[BillingResult, Optional[StorePurchase]]:
        """
        Run a purchase flow.

        Returns:
            (result, purchase); purchase is None unless the result is OK
        """
        failure = self._take_failure("purchase")
        if failure is not None:
            return BillingResult(failure, "Purchase flow failed"), None

        with self._lock:
            if sku not in self._products:
                return BillingResult(BillingResponseCode.ITEM_UNAVAILABLE, f"Unknown SKU: {sku}"), None

            if any(p.sku == sku for p in self._owned.values()):
                return BillingResult(
                    BillingResponseCode.ITEM_ALREADY_OWNED,
                    f"Item already owned: {sku}"
                ), None

            queued = self._outcomes.get(sku)
            outcome = queued.popleft() if queued else PurchaseOutcome.PURCHASED

            if outcome == PurchaseOutcome.CANCELED:
                return BillingResult(BillingResponseCode.USER_CANCELED, "User canceled"), None
            if outcome == PurchaseOutcome.ERROR:
                return BillingResult(BillingResponseCode.ERROR, "Store error"), None

            state = PurchaseState.PENDING if outcome == PurchaseOutcome.PENDING else PurchaseState.PURCHASED
            purchase = self._issue(sku, state, developer_payload)
            self._owned[purchase.purchase_token] = purchase

        logger.info(f"Store purchase: {purchase.order_id} ({sku}) state={state.name}")
        return BillingResult(BillingResponseCode.OK), purchase

    def query_purchases(self) -> Tuple[BillingResult, List[StorePurchase]]:
        """Every owned purchase, purchased or pending."""
        failure = self._take_failure("query")
        if failure is not None:
            return BillingResult(failure, "Purchase query failed"), []
        with self._lock:
            return BillingResult(BillingResponseCode.OK), list(self._owned.values())

    def consume(self, purchase_token: str) -> BillingResult:
        failure = self._take_failure("consume")
        if failure is not None:
            return BillingResult(failure, "Consume failed")

        with self._lock:
            purchase = self._owned.get(purchase_token)
            if purchase is None:
                return BillingResult(BillingResponseCode.ITEM_NOT_OWNED, "Item not owned")
            if purchase.purchase_state == PurchaseState.PENDING:
                return BillingResult(BillingResponseCode.DEVELOPER_ERROR, "Pending purchases cannot be consumed")
            del self._owned[purchase_token]

        logger.info(f"Store consumed: {purchase.order_id}")
        return BillingResult(BillingResponseCode.OK)

    def owned(self) -> List[StorePurchase]:
        with self._lock:
            return list(self._owned.values())

    # ------------------------------------------------------------------

    def _take_failure(self, operation: str) -> Optional[BillingResponseCode]:
        with self._lock:
            queued = self._failures.get(operation)
            return queued.popleft() if queued else None

    def _find(self, order_id: str) -> Optional[StorePurchase]:
        for purchase in self._owned.values():
            if purchase.order_id == order_id:
                return purchase
        return None

    def _issue(
        self,
        sku: str,
        state: PurchaseState,
        developer_payload: str,
        order_id: Optional[str] = None,
        purchase_token: Optional[str] = None
    ) -> StorePurchase:
        if purchase_token is None:
            purchase_token = uuid.uuid4().hex
        if order_id is None:
            order_id = (
                f"GPA.{purchase_token[:4]}-{purchase_token[4:8]}-"
                f"{purchase_token[8:12]}-{next(self._order_seq):05d}"
            )
        purchase_time = int(time.time() * 1000)

        original_json = create_canonical_json({
            "orderId": order_id,
            "packageName": self.package_name,
            "productId": sku,
            "purchaseTime": purchase_time,
            "purchaseState": int(state),
            "purchaseToken": purchase_token,
            "developerPayload": developer_payload,
        })
        # Static responses carry no signature
        signature = "" if sku == SKU_STATIC_TEST else sign_receipt(original_json, self._signing_secret)

        return StorePurchase(
            order_id=order_id,
            sku=sku,
            purchase_token=purchase_token,
            purchase_state=state,
            original_json=original_json,
            signature=signature,
            developer_payload=developer_payload,
            purchase_time_millis=purchase_time,
        )
