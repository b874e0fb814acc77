"""
Store Controls API (demo mode only)

Scripts the in-process store so every reconciliation scenario can be
reproduced by hand: cancelled and pending purchases, delayed payments
clearing, store and commit failures, service disconnects.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Dict, Any
import logging

from ..mocks.commit_api import CommitApi
from ..mocks.play_store import OPERATIONS, BillingResponseCode, PurchaseOutcome, StoreBackend
from .dependencies import get_commit_api, get_store, require_demo_mode

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_demo_mode)])


class QueueOutcomeRequest(BaseModel):
    sku: str
    outcome: PurchaseOutcome


class InjectFailureRequest(BaseModel):
    operation: str = Field(..., description=f"One of: {', '.join(OPERATIONS)}, commit")
    code: str = Field("ERROR", description="Store response code name (ignored for commit)")
    count: int = Field(1, ge=1)


@router.get("/purchases")
async def list_store_purchases_endpoint(
    store: StoreBackend = Depends(get_store)
) -> Dict[str, Any]:
    """Purchases the store still owns (not consumed)."""
    return {
        "purchases": [
            {
                "order_id": p.order_id,
                "sku": p.sku,
                "purchase_state": p.purchase_state.name,
                "developer_payload": p.developer_payload,
            }
            for p in store.owned()
        ]
    }


@router.post("/outcomes")
async def queue_outcome_endpoint(
    request: QueueOutcomeRequest,
    store: StoreBackend = Depends(get_store)
) -> Dict[str, Any]:
    """
    Script the next purchase flow for a SKU.

    Request Body:
        {"sku": "com.example.item.100", "outcome": "pending"}
    """
    store.queue_outcome(request.sku, request.outcome)
    return {"sku": request.sku, "outcome": request.outcome.value}


@router.post("/pending/{order_id}/complete")
async def complete_pending_endpoint(
    order_id: str,
    store: StoreBackend = Depends(get_store)
) -> Dict[str, Any]:
    """Clear a pending purchase as if the delayed payment arrived."""
    purchase = store.complete_pending(order_id)
    if purchase is None:
        raise HTTPException(
            status_code=404,
            detail={
                "error_code": "pending_purchase_not_found",
                "message": f"No pending store purchase with order ID: {order_id}"
            }
        )
    return {"order_id": purchase.order_id, "purchase_state": purchase.purchase_state.name}


@router.post("/failures")
async def inject_failure_endpoint(
    request: InjectFailureRequest,
    store: StoreBackend = Depends(get_store),
    commit_api: CommitApi = Depends(get_commit_api)
) -> Dict[str, Any]:
    """
    Make the next calls of a store operation (or the commit API) fail.

    Request Body:
        {"operation": "consume", "code": "ERROR", "count": 1}
    """
    if request.operation == "commit":
        commit_api.fail_next(request.count)
        return {"operation": "commit", "count": request.count}

    if request.code not in BillingResponseCode.__members__:
        raise ValueError(f"Unknown response code: {request.code}")
    code = BillingResponseCode[request.code]

    for _ in range(request.count):
        store.fail_next(request.operation, code)
    return {"operation": request.operation, "code": code.name, "count": request.count}


@router.post("/disconnect")
async def disconnect_endpoint(
    store: StoreBackend = Depends(get_store)
) -> Dict[str, Any]:
    """Drop the billing service connection of every connected client."""
    count = store.disconnect()
    return {"disconnected_clients": count}
