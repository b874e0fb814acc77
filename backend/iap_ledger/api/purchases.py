"""
Purchases API Endpoints

Operator entry points of the purchase ledger: buy an item, reconcile with
the store, resend unfinished settlements and administer the local log.
Every endpoint returns the diagnostic summary text alongside structured data.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Dict, Any
import logging

from ..services.billing_service import BillingService
from ..services.state_machine import SettlementOutcome
from .dependencies import get_billing_service

logger = logging.getLogger(__name__)

router = APIRouter()


class SettlementOutcomeRequest(BaseModel):
    outcome: SettlementOutcome


# Fixed paths are declared before /{sku} so they are not captured as SKUs

@router.get("/query")
async def query_purchases_endpoint(
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Query the store and merge its receipts into the local log.

    Example:
        GET /api/purchases/query
    """
    summary = await billing.query_purchase_data()
    return {"summary": summary}


@router.post("/resend")
async def resend_all_endpoint(
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Consume and commit every outstanding purchase (always with SUCCESS).

    Example:
        POST /api/purchases/resend
    """
    logger.info("Resend requested")
    summary = await billing.resend_all()
    return {"summary": summary}


@router.get("/history")
async def history_endpoint(
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    entries = await billing.history()
    return {
        "summary": await billing.get_all_history(),
        "records": [entry.model_dump() for entry in entries],
    }


@router.delete("")
async def delete_all_endpoint(
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Wipe the local log. Store receipts are untouched and come back on the
    next query.
    """
    summary = await billing.delete_all_data()
    return {"summary": summary}


@router.put("/settlement-outcome")
async def set_settlement_outcome_endpoint(
    request: SettlementOutcomeRequest,
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Select the forced outcome for the next settlements.

    Request Body:
        {"outcome": "SUCCESS" | "NOT_CONSUMED" | "NOT_COMMITTED"}
    """
    outcome = billing.set_settlement_outcome(request.outcome)
    return {"settlement_outcome": outcome.value}


@router.post("/{order_id}/cancel")
async def cancel_endpoint(
    order_id: str,
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Mark a logged order CANCELED.

    Errors:
        404 billing:log:not_found, 409 billing:state:invalid_transition
    """
    summary = await billing.cancel(order_id)
    return {"summary": summary, "order_id": order_id}


@router.post("/{sku}")
async def purchase_endpoint(
    sku: str,
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Buy one item and settle it with the selected outcome.

    Path Parameters:
        sku: Product identifier (e.g. com.example.item.100)

    Returns:
        {"success": bool, "sku": ..., "order_id": ..., "status": ..., "summary": ...}

    Example:
        POST /api/purchases/com.example.item.100
    """
    logger.info(f"Purchase requested: {sku}")
    result = await billing.purchase(sku)
    return result.model_dump(mode="json")
