# -*- coding: utf-8 -*-
"""
Order Model

The central record of a purchase: who bought how many stars, what it costs,
and where the order is in its payment / delivery lifecycle.
"""
import uuid
from enum import Enum
from typing import Dict, Any

from sqlalchemy import Column, String, Integer, Numeric, DateTime, Text, Index

from starfall.database import db
from starfall.utils.clock import utcnow
from starfall.utils.handles import bare_handle


class OrderStatus(str, Enum):
    NEW = "new"
    PENDING = "pending"
    PAID = "paid"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses from which a payment confirmation may still be applied
PAYABLE_STATUSES = (OrderStatus.NEW.value, OrderStatus.PENDING.value)

# Statuses the delivery worker may (re)start an attempt from
DELIVERABLE_STATUSES = (OrderStatus.PAID.value, OrderStatus.DELIVERING.value)

TERMINAL_STATUSES = (
    OrderStatus.DELIVERED.value,
    OrderStatus.FAILED.value,
    OrderStatus.CANCELLED.value,
)


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status_updated", "status", "updated_at"),
        {"extend_existing": True},
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    buyer_id = Column(String(64), nullable=False, index=True)
    buyer_handle = Column(String(64), nullable=False, default="")
    gift_recipient = Column(String(128), nullable=True)

    quantity = Column(Integer, nullable=False)
    price_primary = Column(Numeric(12, 2), nullable=False)     # RUB
    price_secondary = Column(Numeric(12, 2), nullable=False)   # USDT

    status = Column(String(16), nullable=False, default=OrderStatus.NEW.value, index=True)
    currency = Column(String(8), nullable=True)

    payment_provider = Column(String(32), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    provider_tx = Column(String(128), nullable=True)
    delivery_tx = Column(String(128), nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    admin_thread_ref = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def recipient(self) -> str:
        """Delivery target: the gift recipient if given, else the buyer."""
        if self.is_gift:
            return bare_handle(self.gift_recipient)
        return bare_handle(self.buyer_handle)

    @property
    def is_gift(self) -> bool:
        return bool(bare_handle(self.gift_recipient))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "buyer_handle": self.buyer_handle,
            "gift_recipient": self.gift_recipient,
            "quantity": self.quantity,
            "price_primary": str(self.price_primary),
            "price_secondary": str(self.price_secondary),
            "status": self.status,
            "currency": self.currency,
            "payment_provider": self.payment_provider,
            "payment_reference": self.payment_reference,
            "provider_tx": self.provider_tx,
            "delivery_tx": self.delivery_tx,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Order {self.id} {self.status} qty={self.quantity}>"
