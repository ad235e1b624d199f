# -*- coding: utf-8 -*-
"""
Payment Watch Job

Pull side of payment confirmation: re-polls invoices that support status
lookup until they are paid, the order leaves pending, or the polling budget
runs out. Paid results go through PaymentGateway.mark_paid, the same path
as webhooks.
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from starfall.models.order import PAYABLE_STATUSES
from starfall.models.payment_watch import PaymentWatchEntry
from starfall.services import messages
from starfall.services.errors import PaymentProviderError
from starfall.services.metrics import get_metrics_service
from starfall.services.payment_gateway import PaymentGateway
from starfall.services.structured_logging import get_logger
from starfall.utils.clock import utcnow

logger = get_logger('starfall.payments')


def next_delay(tries: int, base: int = 15, cap: int = 60) -> int:
    """Linear backoff in base-second steps, capped."""
    return min(cap, base * max(tries, 1))


class PaymentWatchWorker:

    def __init__(self, gateway: PaymentGateway,
                 batch: int = 10,
                 base_delay: int = 15,
                 max_delay: int = 60,
                 max_tries: int = 40,
                 error_delay: int = 30):
        self.gateway = gateway
        self.store = gateway.store
        self.session = gateway.session
        self.notifier = gateway.notifier
        self.batch = batch
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_tries = max_tries
        self.error_delay = error_delay
        self._lock = threading.Lock()

    def tick(self, now: Optional[datetime] = None) -> Optional[Dict[str, int]]:
        """
        Check one batch of due watch entries.

        Returns a count per outcome, or None if a previous tick is still
        running.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Payment watch tick skipped, previous tick still running")
            return None
        try:
            return self._tick(now or utcnow())
        finally:
            self._lock.release()

    def _tick(self, now: datetime) -> Dict[str, int]:
        due_ids = list(self.session.execute(
            select(PaymentWatchEntry.order_id)
            .where(PaymentWatchEntry.next_check_at <= now)
            .order_by(PaymentWatchEntry.next_check_at.asc(), PaymentWatchEntry.order_id.asc())
            .limit(self.batch)
        ).scalars())

        counts: Dict[str, int] = {}
        for order_id in due_ids:
            try:
                outcome = self._check(order_id, now)
            except Exception:
                self.session.rollback()
                logger.exception("Payment watch check crashed", order_id=order_id)
                self._defer(order_id, now)
                outcome = "error"
            if outcome is None:
                continue
            counts[outcome] = counts.get(outcome, 0) + 1
            metrics = get_metrics_service()
            if metrics:
                metrics.record_payment_poll(outcome)
        return counts

    def _delete(self, order_id: str) -> None:
        try:
            self.session.execute(delete(PaymentWatchEntry).where(PaymentWatchEntry.order_id == order_id))
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def _defer(self, order_id: str, now: datetime) -> None:
        """Push the next check back by error_delay after a crashed check."""
        try:
            self.session.execute(
                update(PaymentWatchEntry)
                .where(PaymentWatchEntry.order_id == order_id)
                .values(next_check_at=now + timedelta(seconds=self.error_delay), updated_at=now)
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Could not reschedule watch entry", order_id=order_id)

    def _check(self, order_id: str, now: datetime) -> Optional[str]:
        entry = self.session.get(PaymentWatchEntry, order_id)
        if entry is None:
            return None

        order = self.store.get(order_id)
        if order is None or order.status not in PAYABLE_STATUSES:
            self._delete(order_id)
            logger.debug("Watch entry dropped, order no longer payable", order_id=order_id)
            return "dropped"

        try:
            poll = self.gateway.poll_once(entry)
        except PaymentProviderError as e:
            entry.next_check_at = now + timedelta(seconds=self.error_delay)
            entry.updated_at = now
            self.session.commit()
            logger.warning("Payment status check failed", order_id=order_id, error=str(e),
                           retry_in=self.error_delay)
            return "error"

        if poll.paid:
            provider = self.gateway.provider
            self.gateway.mark_paid(order_id, provider.currency, entry.operation_reference,
                                   channel=provider.name)
            return "paid"

        tries = entry.tries + 1
        if tries >= self.max_tries:
            self._delete(order_id)
            logger.warning("Payment watch budget exhausted", order_id=order_id, tries=tries,
                           payment_status=poll.status_label)
            self.notifier.notify_admin(messages.admin_watch_exhausted_text(order_id, tries),
                                       order=order)
            return "exhausted"

        delay = next_delay(tries, self.base_delay, self.max_delay)
        entry.tries = tries
        entry.next_check_at = now + timedelta(seconds=delay)
        entry.updated_at = now
        self.session.commit()
        logger.debug("Payment still pending", order_id=order_id, tries=tries,
                     payment_status=poll.status_label, next_in=delay)
        return "pending"
