"""
SQLAlchemy ORM Models for IAP Ledger

Defines the purchase log model matching the schema in init_db.py.
"""
from sqlalchemy import Column, String, Integer, Text, CheckConstraint
from sqlalchemy.orm import declarative_base

from ..models.transactions import TransactionStatus

Base = declarative_base()

STATUS_VALUES = ", ".join(f"'{status.value}'" for status in TransactionStatus)


class PurchaseLogModel(Base):
    """
    ORM model for log_table.

    One row per store order. The receipt columns (json, signature) are written
    once at insert; only status is updated afterwards.
    """
    __tablename__ = "log_table"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, nullable=False, unique=True, index=True)
    receipt_json = Column("json", Text, nullable=False)
    signature = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(f"status IN ({STATUS_VALUES})", name="status_check"),
    )
