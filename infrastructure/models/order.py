"""
Order database models - SQLAlchemy ORM
Infrastructure detail only; business rules live in domain.order.entity.Order
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, text,
)
from sqlalchemy.orm import relationship

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, comment="Human readable order number")
    email = Column(String(255), nullable=False, index=True, comment="Customer email")
    currency = Column(String(3), nullable=False, default="INR", comment="ISO-4217 currency code")

    # money (Numeric keeps exact amounts)
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Order total")
    refunded_amount = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Sum of successful refunds",
    )

    # status dimensions
    status = Column(String(30), nullable=False, default="pending", index=True,
                    comment="pending/confirmed/processing/shipped/delivered/cancelled/payment_failed")
    payment_status = Column(String(30), nullable=False, default="pending", index=True,
                            comment="pending/authorized/paid/partially_refunded/refunded/failed/cancelled")
    fulfillment_status = Column(String(30), nullable=False, default="unfulfilled",
                                comment="unfulfilled/partially_fulfilled/fulfilled/returned/cancelled")
    inventory_state = Column(String(20), nullable=False, default="unreserved",
                             comment="unreserved/reserved/committed/released")

    # customer context used by fraud screening
    shipping_address = Column(JSON, nullable=True, comment="Shipping address")
    billing_address = Column(JSON, nullable=True, comment="Billing address")
    ip_address = Column(String(64), nullable=True, comment="Checkout IP address")
    user_agent = Column(String(512), nullable=True, comment="Checkout user agent")

    tracking_number = Column(String(100), nullable=True, comment="Carrier tracking number")
    tracking_url = Column(String(500), nullable=True, comment="Carrier tracking URL")
    carrier = Column(String(100), nullable=True, comment="Carrier name")
    cancel_reason = Column(Text, nullable=True, comment="Cancellation reason")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Creation time",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Last update time",
    )
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_email_created", "email", "created_at"),
        Index("ix_orders_created_at", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_number='{self.order_number}', "
            f"status='{self.status}', payment_status='{self.payment_status}')>"
        )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning order",
    )
    variant_id = Column(String(100), nullable=True, comment="Product variant (null for non-stock items)")
    location_id = Column(String(100), nullable=True, comment="Stock location, default location when null")
    sku = Column(String(100), nullable=True)
    title = Column(String(255), nullable=True)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    quantity = Column(Integer, nullable=False, comment="Ordered quantity")
    fulfilled_quantity = Column(Integer, nullable=False, default=0, server_default=text("0"))
    restocked_quantity = Column(Integer, nullable=False, default=0, server_default=text("0"))

    order = relationship("OrderModel", back_populates="items")


class OrderStatusHistoryModel(Base):
    """Append-only status history; admin notes use from/to = 'note'."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning order",
    )
    from_status = Column(String(50), nullable=False)
    to_status = Column(String(50), nullable=False)
    note = Column(Text, nullable=True)
    changed_by = Column(String(100), nullable=True, comment="Actor id or 'system'")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )
