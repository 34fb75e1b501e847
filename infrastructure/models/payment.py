"""
Payment database models - SQLAlchemy ORM
Infrastructure detail only; business rules live in domain.payment.entity
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, Boolean, text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    One payment attempt. Several attempts may share a gateway order id;
    refund mirrors carry a negative amount.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning order",
    )

    # gateway identifiers
    gateway = Column(String(50), nullable=False, default="razorpay", comment="Payment gateway")
    gateway_transaction_id = Column(String(200), nullable=False, index=True, comment="Gateway order id")
    gateway_payment_id = Column(String(200), nullable=True, index=True, comment="Gateway payment id")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Amount (negative for refund mirrors)")
    currency = Column(String(3), nullable=False, default="INR", comment="ISO-4217 currency code")

    status = Column(
        String(30),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/authorized/captured/failed/refunded",
    )

    payment_method = Column(String(50), nullable=True)
    card_last4 = Column(String(4), nullable=True)
    card_brand = Column(String(50), nullable=True)
    error_code = Column(String(100), nullable=True)
    error_description = Column(Text, nullable=True)
    refund_reason = Column(Text, nullable=True)
    risk_score = Column(Integer, nullable=True, comment="Fraud score 0-100 recorded at first screening")
    risk_level = Column(String(20), nullable=True)
    gateway_response = Column(JSON, nullable=True, comment="Last gateway payload")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="Creation time",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Last update time",
    )
    authorized_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    refunds = relationship("RefundModel", back_populates="payment", lazy="select")

    __table_args__ = (
        Index("ix_payments_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, order_id={self.order_id}, "
            f"gateway_transaction_id='{self.gateway_transaction_id}', amount={self.amount}, status='{self.status}')>"
        )


class RefundModel(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(
        Integer,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Refunded payment",
    )
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    gateway_refund_id = Column(String(200), nullable=True, index=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Refund amount")
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default="pending", index=True, comment="pending/success/failed")
    reason = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)
    restock_items = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Creation time",
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)

    payment = relationship("PaymentModel", back_populates="refunds")

    __table_args__ = (
        Index("ix_refunds_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return (
            f"<RefundModel(id={self.id}, payment_id={self.payment_id}, "
            f"amount={self.amount}, status='{self.status}')>"
        )
