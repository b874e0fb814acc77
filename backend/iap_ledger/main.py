"""
IAP Ledger Backend - FastAPI Application

Purchase ledger that reconciles in-app purchases reported by a store with a
local persisted log. Serves the operator entry points (purchase, query,
resend, delete, history) and, in demo mode, controls for the in-process store.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from . import __version__
from .config import settings
from .exceptions import BillingError
from .db.init_db import AsyncSessionLocal, engine as db_engine, initialize_database
from .mocks.commit_api import CommitApi
from .mocks.play_store import StoreBackend
from .providers import create_provider
from .services.billing_service import BillingService
from .services.commit_service import ReceiptCommitGateway
from .services.reconciliation_service import ReconciliationEngine
from .services.scheduler import start_scheduler, shutdown_scheduler
from .api.billing import router as billing_router
from .api.purchases import router as purchases_router
from .api.store import router as store_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    - Startup: initialize the log, build the billing stack, set up the
      provider, start background reconciliation
    - Shutdown: stop the scheduler, release the provider and the engine
    """
    logger.info("Starting IAP Ledger backend server...")
    logger.info(f"Demo mode: {settings.demo_mode}")
    logger.info(f"Billing provider: {settings.billing_provider}")

    try:
        initialize_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    store = StoreBackend.with_catalogue(settings.inapp_skus, signing_secret=settings.store_signing_secret)
    commit_api = CommitApi(settings.store_signing_secret)
    provider = create_provider(settings.billing_provider)
    engine = ReconciliationEngine(provider, AsyncSessionLocal, ReceiptCommitGateway(commit_api))
    billing = BillingService(provider, engine)

    app.state.store = store
    app.state.commit_api = commit_api
    app.state.billing = billing

    # A failed setup leaves billing disabled; the API still serves the log
    await billing.initialize(store)

    try:
        start_scheduler(billing)
        logger.info("APScheduler started for background reconciliation")
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")
        if not settings.demo_mode:
            raise
        logger.warning("Continuing without scheduler in demo mode")

    logger.info("Server startup complete")

    yield

    logger.info("Shutting down IAP Ledger backend server...")

    try:
        shutdown_scheduler(wait=True)
        logger.info("Scheduler shutdown complete")
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}")

    await billing.shutdown()
    await db_engine.dispose()


app = FastAPI(
    title="IAP Ledger API",
    description="In-app purchase reconciliation against a local purchase log",
    version=__version__,
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    """
    Handle billing errors with the standard error response format.

    The status code comes from the exception class (404 unknown order,
    409 duplicate order or illegal transition, 503 provider unavailable).
    """
    logger.warning(
        f"Billing error: {exc.error_code} - {exc.message}",
        extra={"details": exc.details}
    )

    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict()
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Input validation failures not caught by Pydantic."""
    logger.warning(f"Validation error: {str(exc)}")

    return JSONResponse(
        status_code=400,
        content={
            "error_code": "validation_error",
            "message": str(exc),
            "details": {}
        }
    )


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unexpected errors.

    Logs full exception for debugging but returns generic message to client.
    """
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "internal_error",
            "message": "An unexpected error occurred",
            "details": {"error_type": type(exc).__name__} if settings.demo_mode else {}
        }
    )


@app.get("/api/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Server status and version information
    """
    return {
        "status": "healthy",
        "version": __version__,
        "demo_mode": settings.demo_mode,
        "billing_provider": settings.billing_provider,
    }


app.include_router(purchases_router, prefix="/api/purchases", tags=["Purchases"])
app.include_router(billing_router, prefix="/api/billing", tags=["Billing"])
app.include_router(store_router, prefix="/api/store", tags=["Store Controls"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "iap_ledger.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.demo_mode,
        log_level=settings.log_level.lower()
    )
