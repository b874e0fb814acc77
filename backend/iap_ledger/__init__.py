"""
IAP Ledger - in-app purchase reconciliation backend.

Tracks store purchases in a local log and reconciles them with the store:
pending purchase flows, the transaction state machine, query/merge and resend.
"""

__version__ = "0.1.0"
