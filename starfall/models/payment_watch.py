# -*- coding: utf-8 -*-
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from starfall.database import db
from starfall.utils.clock import utcnow


class PaymentWatchEntry(db.Model):
    """An order whose invoice status is re-polled until paid or given up."""
    __tablename__ = "payment_watch"
    __table_args__ = {"extend_existing": True}

    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True)
    operation_reference = Column(String(128), nullable=False)
    tries = Column(Integer, nullable=False, default=0)
    next_check_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<PaymentWatchEntry {self.order_id} tries={self.tries}>"
