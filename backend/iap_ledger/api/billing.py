"""
Billing status endpoint.
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any

from ..services.billing_service import BillingService
from .dependencies import get_billing_service

router = APIRouter()


@router.get("/status")
async def billing_status_endpoint(
    billing: BillingService = Depends(get_billing_service)
) -> Dict[str, Any]:
    """
    Provider variant, readiness and the recorded setup error (if any).

    Example:
        GET /api/billing/status
    """
    return billing.status()
