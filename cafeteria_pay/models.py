"""
SQLAlchemy models for the payment subsystem.

- Orders (the unit of payment reconciliation)
- Payment Notifications (raw inbound webhook log)
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, func

from .db import Base


# =====================================================
# ORDER MODEL
# =====================================================

class OrderRecord(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    user_type = Column(String(16), nullable=False, default="apoderado")  # apoderado | funcionario
    week_start = Column(String(10), nullable=False, index=True)           # ISO date of the Monday

    selections = Column(JSON, nullable=False, default=list)
    total = Column(Integer, nullable=False, default=0)                    # CLP

    status = Column(String(32), nullable=False, default="draft", index=True)
    version = Column(Integer, nullable=False, default=0)                  # compare-and-swap counter

    payment_id = Column(String(128), nullable=True, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(),
                        onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<OrderRecord(id={self.id}, status={self.status}, version={self.version})>"


# =====================================================
# PAYMENT NOTIFICATION LOG
# =====================================================

class PaymentNotification(Base):
    __tablename__ = "payment_notifications"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(32), nullable=True, index=True)  # getnet, netget

    headers = Column(JSON, nullable=True)
    payload = Column(JSON, nullable=False)

    status = Column(String(32), default="received", nullable=False, index=True)  # received, processed, failed, rejected
    order_id = Column(String(64), nullable=True, index=True)
    error = Column(Text, nullable=True)

    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PaymentNotification(id={self.id}, provider={self.provider}, status={self.status})>"
