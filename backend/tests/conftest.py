"""
Pytest configuration and fixtures for purchase ledger tests.
"""
import itertools
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from iap_ledger.db.init_db import build_engine, build_session_factory, initialize_database
from iap_ledger.exceptions import CommitFailure
from iap_ledger.mocks.billing_client import FakeBillingClient
from iap_ledger.mocks.commit_api import CommitApi
from iap_ledger.mocks.iab_helper import FakeIabHelper
from iap_ledger.mocks.play_store import StoreBackend
from iap_ledger.models.transactions import SKU_ITEM_100, PurchaseLogEntry, PurchaseState, Transaction
from iap_ledger.providers.base import EnabledState
from iap_ledger.providers.legacy import LegacyBillingProvider
from iap_ledger.providers.modern import ModernBillingProvider
from iap_ledger.services.billing_service import BillingService
from iap_ledger.services.pending_purchases import PendingPurchaseTracker
from iap_ledger.services.reconciliation_service import ReconciliationEngine
from iap_ledger.services.signature_service import create_canonical_json, sign_receipt, verify_receipt


TEST_SECRET = "test_store_secret"
TEST_SKUS = ["com.example.item.100", "com.example.item.10000", "android.test.purchased"]


# ============================================================================
# Purchase log
# ============================================================================

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh log file built by the startup bootstrap."""
    database_path = str(tmp_path / "ledger.db")
    initialize_database(database_path)
    engine = build_engine(database_path)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Transactions
# ============================================================================

_order_seq = itertools.count(1)


@pytest.fixture
def make_transaction():
    """
    Factory for signed store transactions.

    Usage:
        txn = make_transaction(pending=True)
        txn = make_transaction(order_id="GPA.0001", sku="com.example.item.10000")
    """
    def _make(
        order_id: Optional[str] = None,
        sku: str = SKU_ITEM_100,
        pending: bool = False,
        developer_payload: str = ""
    ) -> Transaction:
        seq = next(_order_seq)
        order_id = order_id or f"GPA.TEST-0000-0000-{seq:05d}"
        original_json = create_canonical_json({
            "orderId": order_id,
            "packageName": "com.example.billingsample",
            "productId": sku,
            "purchaseTime": 1700000000000 + seq,
            "purchaseState": int(PurchaseState.PENDING if pending else PurchaseState.PURCHASED),
            "purchaseToken": f"token-{order_id}",
            "developerPayload": developer_payload,
        })
        return Transaction.from_receipt(original_json, sign_receipt(original_json, TEST_SECRET))

    return _make


# ============================================================================
# Scripted collaborators
# ============================================================================

class ScriptedProvider:
    """
    Billing provider whose store responses are set by the test.

    remote: what query_purchases() returns
    purchase_results: {sku: Transaction or None}
    consume_results: {order_id: bool}, default True
    """

    variant = "scripted"

    def __init__(self):
        self.tracker = PendingPurchaseTracker()
        self.enabled = EnabledState(True)
        self.setup_error = None
        self.remote: List[Transaction] = []
        self.purchase_results: Dict[str, Optional[Transaction]] = {}
        self.consume_results: Dict[str, bool] = {}
        self.consumed: List[str] = []
        self.query_count = 0

    async def initialize(self, context):
        return self.enabled

    async def purchase(self, sku: str) -> Optional[Transaction]:
        return self.purchase_results.get(sku)

    async def query_purchases(self) -> List[Transaction]:
        self.query_count += 1
        return list(self.remote)

    async def consume(self, transaction: Transaction) -> bool:
        self.consumed.append(transaction.order_id)
        return self.consume_results.get(transaction.order_id, True)

    def is_supported(self) -> bool:
        return self.enabled.value

    def create_transaction(self, record: PurchaseLogEntry) -> Transaction:
        return Transaction.from_receipt(record.receipt_json, record.signature)

    async def shutdown(self) -> None:
        self.enabled.set(False)


class RecordingGateway:
    """Commit gateway that accepts everything except orders in `reject`."""

    def __init__(self):
        self.committed: List[str] = []
        self.reject = set()

    async def commit(self, transaction: Transaction):
        if transaction.order_id in self.reject:
            raise CommitFailure(
                f"Commit rejected for {transaction.order_id}",
                details={"order_id": transaction.order_id}
            )
        self.committed.append(transaction.order_id)
        return {"status": "committed", "order_id": transaction.order_id}


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def engine(provider, session_factory, gateway):
    return ReconciliationEngine(provider, session_factory, gateway)


@pytest.fixture
def billing(provider, engine):
    return BillingService(provider, engine)


# ============================================================================
# Demo store
# ============================================================================

@pytest.fixture
def store():
    return StoreBackend.with_catalogue(TEST_SKUS, signing_secret=TEST_SECRET)


@pytest.fixture
def commit_api():
    return CommitApi(TEST_SECRET)


@pytest.fixture
def store_verifier():
    """Receipt verifier keyed with the test store secret."""
    return lambda original_json, signature: verify_receipt(original_json, signature, TEST_SECRET)


@pytest.fixture
def modern_factory(store, store_verifier):
    """
    Build (not initialize) a modern provider over the demo store.

    Usage:
        provider = modern_factory(verifier=lambda j, s: False)
        await provider.initialize(store)
    """
    created = []

    def _make(**kwargs) -> ModernBillingProvider:
        kwargs.setdefault("verifier", store_verifier)
        provider = ModernBillingProvider(
            skus=TEST_SKUS,
            client_factory=lambda context, listener: FakeBillingClient(context, listener, callback_delay=0),
            **kwargs
        )
        created.append(provider)
        return provider

    yield _make
    for provider in created:
        if provider._client is not None:
            provider._client.end_connection()


@pytest_asyncio.fixture
async def modern_provider(store, modern_factory):
    provider = modern_factory()
    await provider.initialize(store)
    yield provider
    await provider.shutdown()


@pytest_asyncio.fixture
async def legacy_provider(store):
    provider = LegacyBillingProvider(helper_factory=lambda context: FakeIabHelper(context, callback_delay=0))
    await provider.initialize(store)
    yield provider
    await provider.shutdown()
