"""
Shared API dependencies.

The lifespan builds the billing stack once and stores it on app.state;
routers reach it through these functions so tests can override them.
"""
from fastapi import HTTPException, Request

from ..config import settings
from ..mocks.commit_api import CommitApi
from ..mocks.play_store import StoreBackend
from ..services.billing_service import BillingService


def get_billing_service(request: Request) -> BillingService:
    return request.app.state.billing


def get_store(request: Request) -> StoreBackend:
    return request.app.state.store


def get_commit_api(request: Request) -> CommitApi:
    return request.app.state.commit_api


def require_demo_mode() -> None:
    if not settings.demo_mode:
        raise HTTPException(
            status_code=404,
            detail={
                "error_code": "demo_mode_disabled",
                "message": "Store controls are only available in demo mode"
            }
        )
