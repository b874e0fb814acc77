"""
Database package for IAP Ledger.

Exports database initialization, models, and session management.
"""
from .init_db import (
    AsyncSessionLocal,
    build_engine,
    build_session_factory,
    initialize_database,
)
from .models import Base, PurchaseLogModel

__all__ = [
    "AsyncSessionLocal",
    "build_engine",
    "build_session_factory",
    "initialize_database",
    "Base",
    "PurchaseLogModel",
]
