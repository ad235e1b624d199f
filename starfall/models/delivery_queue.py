# -*- coding: utf-8 -*-
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey

from starfall.database import db
from starfall.utils.clock import utcnow


class DeliveryQueueEntry(db.Model):
    """One row per paid order awaiting fulfillment, oldest updated_at first."""
    __tablename__ = "delivery_queue"
    __table_args__ = {"extend_existing": True}

    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True)
    try_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<DeliveryQueueEntry {self.order_id} tries={self.try_count}>"
