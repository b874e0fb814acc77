"""
Billing provider tests against the in-process store.

Modern provider: client callbacks arrive on the client's worker thread.
Legacy provider: helper callbacks arrive on the event loop, one operation at a time.
"""
import asyncio

import pytest

from iap_ledger.mocks.iab_helper import FakeIabHelper
from iap_ledger.mocks.play_store import BillingResponseCode, BillingResult, PurchaseOutcome, StorePurchase
from iap_ledger.models.transactions import SKU_ITEM_100, SKU_ITEM_10000, SKU_STATIC_TEST, PurchaseState, TransactionStatus
from iap_ledger.providers import BillingProvider, EnabledState, LegacyBillingProvider, ModernBillingProvider, create_provider
from iap_ledger.services import transaction_service


# ============================================================================
# EnabledState
# ============================================================================

@pytest.mark.asyncio
async def test_enabled_state_notifies_on_change_only():
    state = EnabledState(False)
    seen = []
    unsubscribe = state.subscribe(seen.append)

    state.set(True)
    state.set(True)
    state.set(False)
    unsubscribe()
    state.set(True)

    assert seen == [True, False]
    assert state.value is True


@pytest.mark.asyncio
async def test_enabled_state_wait_for():
    state = EnabledState(False)

    assert await state.wait_for(True, timeout=0.05) is False

    waiter = asyncio.ensure_future(state.wait_for(True, timeout=1))
    await asyncio.to_thread(state.set, True)
    assert await waiter is True
    assert await state.wait_for(True) is True


def test_create_provider():
    assert isinstance(create_provider("legacy"), LegacyBillingProvider)
    assert isinstance(create_provider("modern"), ModernBillingProvider)
    with pytest.raises(ValueError):
        create_provider("aidl")


# ============================================================================
# Modern provider
# ============================================================================

@pytest.mark.asyncio
async def test_modern_setup(modern_provider):
    assert isinstance(modern_provider, BillingProvider)
    assert modern_provider.enabled.value is True
    assert modern_provider.is_supported()
    assert modern_provider.setup_error is None


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["setup", "sku_details"])
async def test_modern_setup_failure(store, modern_factory, operation):
    store.fail_next(operation)
    provider = modern_factory()

    enabled = await provider.initialize(store)

    assert enabled.value is False
    assert not provider.is_supported()
    assert provider.setup_error.error_code == "billing:provider:setup_failed"
    # No SKU details: nothing can be launched
    assert await provider.purchase(SKU_ITEM_100) is None


@pytest.mark.asyncio
async def test_modern_purchase_success(modern_provider, store, store_verifier):
    txn = await modern_provider.purchase(SKU_ITEM_100)

    assert txn is not None
    assert txn.sku == SKU_ITEM_100
    assert txn.purchase_state == PurchaseState.PURCHASED
    assert store_verifier(txn.original_json, txn.signature)
    assert [p.order_id for p in store.owned()] == [txn.order_id]
    assert len(modern_provider.tracker) == 0


@pytest.mark.asyncio
async def test_modern_purchase_pending(modern_provider, store):
    store.queue_outcome(SKU_ITEM_100, PurchaseOutcome.PENDING)

    txn = await modern_provider.purchase(SKU_ITEM_100)

    assert txn is not None
    assert txn.is_pending


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [PurchaseOutcome.CANCELED, PurchaseOutcome.ERROR])
async def test_modern_purchase_cancel_or_error(modern_provider, store, outcome):
    store.queue_outcome(SKU_ITEM_100, outcome)

    assert await modern_provider.purchase(SKU_ITEM_100) is None
    assert len(modern_provider.tracker) == 0
    assert store.owned() == []


@pytest.mark.asyncio
async def test_modern_purchase_item_already_owned(modern_provider):
    assert await modern_provider.purchase(SKU_ITEM_100) is not None
    assert await modern_provider.purchase(SKU_ITEM_100) is None


@pytest.mark.asyncio
async def test_modern_purchase_without_sku_details(modern_provider, store):
    assert await modern_provider.purchase("com.example.not_in_catalogue") is None
    assert len(modern_provider.tracker) == 0
    assert store.owned() == []


@pytest.mark.asyncio
async def test_modern_signature_check(store, modern_factory):
    provider = modern_factory(verifier=lambda original_json, signature: False)
    await provider.initialize(store)

    assert await provider.purchase(SKU_ITEM_100) is None
    # Static test responses are unsigned and exempt
    static = await provider.purchase(SKU_STATIC_TEST)
    assert static is not None
    assert static.signature == ""


@pytest.mark.asyncio
async def test_modern_disconnect_drains_and_reconnects(modern_provider, store):
    transitions = []
    modern_provider.enabled.subscribe(transitions.append)
    flow = modern_provider.tracker.register(SKU_ITEM_100)

    assert store.disconnect() == 1

    assert await asyncio.wait_for(flow, timeout=1) is None
    assert await modern_provider.enabled.wait_for(True, timeout=1) is True
    assert transitions == [False, True]
    assert await modern_provider.purchase(SKU_ITEM_100) is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("purchases", [
    None,
    [],
    [StorePurchase("GPA.1", SKU_ITEM_100, "token-1", PurchaseState.CANCELED, "{}", "")],
    [StorePurchase("GPA.2", SKU_ITEM_10000, "token-2", PurchaseState.CANCELED, "{}", "")],
])
async def test_modern_ok_update_without_usable_purchase_ends_flow(modern_factory, purchases):
    provider = modern_factory()
    flow = provider.tracker.register(SKU_ITEM_100)

    provider._on_purchases_updated(BillingResult(BillingResponseCode.OK), purchases)

    assert await asyncio.wait_for(flow, timeout=1) is None
    assert len(provider.tracker) == 0


@pytest.mark.asyncio
async def test_modern_query(modern_provider, store):
    store.queue_outcome(SKU_ITEM_10000, PurchaseOutcome.PENDING)
    purchased = await modern_provider.purchase(SKU_ITEM_100)
    pending = await modern_provider.purchase(SKU_ITEM_10000)

    txns = await modern_provider.query_purchases()

    assert {t.order_id for t in txns} == {purchased.order_id, pending.order_id}
    assert [t.is_pending for t in txns if t.order_id == pending.order_id] == [True]


@pytest.mark.asyncio
async def test_modern_query_failure_returns_empty(modern_provider, store):
    await modern_provider.purchase(SKU_ITEM_100)
    store.fail_next("query")

    assert await modern_provider.query_purchases() == []
    assert len(await modern_provider.query_purchases()) == 1


@pytest.mark.asyncio
async def test_modern_consume_twice(modern_provider, store):
    txn = await modern_provider.purchase(SKU_ITEM_100)

    assert await modern_provider.consume(txn) is True
    assert await modern_provider.consume(txn) is False
    assert store.owned() == []


@pytest.mark.asyncio
async def test_modern_consume_pending_fails(modern_provider, store):
    store.queue_outcome(SKU_ITEM_100, PurchaseOutcome.PENDING)
    txn = await modern_provider.purchase(SKU_ITEM_100)

    assert await modern_provider.consume(txn) is False


@pytest.mark.asyncio
async def test_modern_create_transaction_round_trips_log_record(modern_provider, session_factory):
    txn = await modern_provider.purchase(SKU_ITEM_100)
    async with session_factory() as db:
        entry = await transaction_service.insert_transaction(
            db, txn.order_id, txn.original_json, txn.signature, TransactionStatus.STORED
        )

    assert modern_provider.create_transaction(entry) == txn


# ============================================================================
# Legacy provider
# ============================================================================

@pytest.mark.asyncio
async def test_legacy_setup(legacy_provider):
    assert isinstance(legacy_provider, BillingProvider)
    assert legacy_provider.is_supported()


@pytest.mark.asyncio
async def test_legacy_setup_failure(store):
    store.fail_next("setup")
    provider = LegacyBillingProvider(helper_factory=lambda context: FakeIabHelper(context))

    enabled = await provider.initialize(store)

    assert enabled.value is False
    assert not provider.is_supported()
    assert provider.setup_error is not None


@pytest.mark.asyncio
async def test_legacy_purchase_carries_developer_payload(legacy_provider):
    txn = await legacy_provider.purchase(SKU_ITEM_100)

    assert txn is not None
    assert txn.developer_payload == "sample_developer_payload"
    assert not txn.is_pending


@pytest.mark.asyncio
async def test_legacy_canceled_purchase(legacy_provider, store):
    store.queue_outcome(SKU_ITEM_100, PurchaseOutcome.CANCELED)

    assert await legacy_provider.purchase(SKU_ITEM_100) is None
    assert len(legacy_provider.tracker) == 0


@pytest.mark.asyncio
async def test_legacy_pending_surfaces_after_clearing(legacy_provider, store):
    store.queue_outcome(SKU_ITEM_100, PurchaseOutcome.PENDING)

    # No pending state in the legacy API: the flow reports a failure
    assert await legacy_provider.purchase(SKU_ITEM_100) is None
    assert await legacy_provider.query_purchases() == []

    order_id = store.owned()[0].order_id
    store.complete_pending(order_id)

    assert [t.order_id for t in await legacy_provider.query_purchases()] == [order_id]


@pytest.mark.asyncio
async def test_legacy_query_collision_returns_empty(legacy_provider, store):
    store.purchase(SKU_ITEM_100)

    first, second = await asyncio.gather(
        legacy_provider.query_purchases(),
        legacy_provider.query_purchases()
    )

    assert len(first) == 1
    assert second == []


@pytest.mark.asyncio
async def test_legacy_consume_twice(legacy_provider):
    txn = await legacy_provider.purchase(SKU_ITEM_100)

    assert await legacy_provider.consume(txn) is True
    assert await legacy_provider.consume(txn) is False


@pytest.mark.asyncio
async def test_modern_calls_after_shutdown(modern_factory, store):
    provider = modern_factory()
    await provider.initialize(store)
    txn = await provider.purchase(SKU_ITEM_100)

    await provider.shutdown()

    assert not provider.is_supported()
    assert await provider.consume(txn) is False
    assert await provider.query_purchases() == []
    assert [p.order_id for p in store.owned()] == [txn.order_id]
