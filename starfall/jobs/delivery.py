# -*- coding: utf-8 -*-
"""
Delivery Job

Drives paid orders to delivered through the configured delivery provider,
one order per tick, oldest first. Delivery is at-least-once: a crash between
the provider call and the delivered transition may repeat the call, and the
provider dedupes on the order id.

Attempts are bounded: retry_count is bumped when an attempt starts, and the
attempt that brings it to max_retries + 1 is the last one.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from starfall.models.delivery_queue import DeliveryQueueEntry
from starfall.models.order import Order, OrderStatus, DELIVERABLE_STATUSES
from starfall.services import messages
from starfall.services.delivery_providers import DeliveryProvider, DeliveryResult
from starfall.services.metrics import get_metrics_service
from starfall.services.notifier import SafeNotifier
from starfall.services.order_store import OrderStore, TransitionResult
from starfall.services.structured_logging import get_logger
from starfall.utils.clock import utcnow

logger = get_logger('starfall.delivery')

DELIVERED = "delivered"
RETRY = "retry"
FAILED = "failed"


class DeliveryWorker:
    """Single-flight delivery loop body; call tick() on a timer."""

    def __init__(self, store: OrderStore, provider: DeliveryProvider,
                 notifier: SafeNotifier, max_retries: int = 4):
        self.store = store
        self.session = store.session
        self.provider = provider
        self.notifier = notifier
        self.max_retries = max_retries
        self._lock = threading.Lock()

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def tick(self, now: Optional[datetime] = None) -> Optional[str]:
        """
        Run at most one delivery attempt.

        Returns the attempt outcome ("delivered", "retry", "failed"), or
        None when there was nothing to do or another tick is running.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Delivery tick skipped, previous tick still running")
            return None
        try:
            return self._tick(now or utcnow())
        finally:
            self._lock.release()

    def _tick(self, now: datetime) -> Optional[str]:
        self.fail_stale(now)

        order = self._next_order()
        if order is None:
            return None
        order_id = order.id

        result = self.store.transition(
            order_id,
            DELIVERABLE_STATUSES,
            OrderStatus.DELIVERING,
            fields={"retry_count": Order.retry_count + 1},
            guard=[Order.retry_count < self.max_attempts],
        )
        if result is not TransitionResult.APPLIED:
            logger.debug("Lost delivery race", order_id=order_id, result=result.value)
            return None

        order = self.store.get(order_id)
        attempt = order.retry_count
        recipient = order.recipient

        if not recipient:
            outcome = DeliveryResult(ok=False, reason="no recipient")
        else:
            try:
                outcome = self.provider.deliver(order.id, order.quantity, recipient)
            except Exception as e:
                outcome = DeliveryResult(ok=False, reason=str(e) or e.__class__.__name__)

        if outcome.ok:
            return self._on_success(order, recipient, outcome)
        return self._on_failure(order, attempt, outcome.reason or "unknown", now)

    def _next_order(self) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(or_(
                Order.status == OrderStatus.PAID.value,
                and_(Order.status == OrderStatus.DELIVERING.value,
                     Order.retry_count < self.max_attempts),
            ))
            .order_by(Order.updated_at.asc(), Order.created_at.asc(), Order.id.asc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def _drop_queue_entry(self, order_id: str) -> None:
        self.session.execute(delete(DeliveryQueueEntry).where(DeliveryQueueEntry.order_id == order_id))

    def fail_stale(self, now: Optional[datetime] = None) -> List[str]:
        """
        Close out delivering orders that already used their last attempt.

        These are attempts interrupted by a crash or restart; no tick will
        ever pick them up again.
        """
        stale_ids = list(self.session.execute(
            select(Order.id).where(
                Order.status == OrderStatus.DELIVERING.value,
                Order.retry_count >= self.max_attempts,
            )
        ).scalars())

        failed = []
        for order_id in stale_ids:
            try:
                result = self.store.transition(
                    order_id,
                    [OrderStatus.DELIVERING],
                    OrderStatus.FAILED,
                    guard=[Order.retry_count >= self.max_attempts],
                    commit=False,
                )
                if result is TransitionResult.APPLIED:
                    self._drop_queue_entry(order_id)
                self.session.commit()
            except SQLAlchemyError:
                self.session.rollback()
                logger.exception("Failed to close stale delivery", order_id=order_id)
                continue

            if result is not TransitionResult.APPLIED:
                continue
            failed.append(order_id)
            order = self.store.get(order_id)
            reason = order.last_error or "attempt interrupted"
            logger.warning("Stale delivery marked failed", order_id=order_id,
                           attempts=order.retry_count)
            self._record(FAILED)
            self.notifier.notify_user(order.buyer_id, messages.user_delivery_failed_text(order))
            self.notifier.notify_admin(
                messages.admin_delivery_failed_text(order, order.retry_count, reason), order=order)
        return failed

    def _on_success(self, order: Order, recipient: str, outcome: DeliveryResult) -> Optional[str]:
        order_id = order.id
        try:
            result = self.store.transition(
                order_id,
                [OrderStatus.DELIVERING],
                OrderStatus.DELIVERED,
                fields={"delivery_tx": outcome.tx, "last_error": None},
                commit=False,
            )
            if result is TransitionResult.APPLIED:
                self._drop_queue_entry(order_id)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to record delivery", order_id=order_id, tx=outcome.tx)
            raise

        if result is not TransitionResult.APPLIED:
            logger.warning("Delivered order changed state underneath", order_id=order_id,
                           result=result.value)
            return None

        order = self.store.get(order_id)
        logger.log_order_event("delivered", order_id, recipient=recipient, tx=outcome.tx,
                               attempt=order.retry_count)
        self._record(DELIVERED)
        self.notifier.notify_user(order.buyer_id, messages.user_delivered_text(order))
        self.notifier.notify_admin(
            messages.admin_delivered_text(order, recipient, outcome.tx), order=order)
        return DELIVERED

    def _on_failure(self, order: Order, attempt: int, reason: str, now: datetime) -> str:
        order_id = order.id
        terminal = attempt >= self.max_attempts

        try:
            self.session.execute(
                update(DeliveryQueueEntry)
                .where(DeliveryQueueEntry.order_id == order_id)
                .values(try_count=attempt, last_error=reason, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if terminal:
                result = self.store.transition(
                    order_id,
                    [OrderStatus.DELIVERING],
                    OrderStatus.FAILED,
                    fields={"last_error": reason},
                    commit=False,
                )
                if result is TransitionResult.APPLIED:
                    self._drop_queue_entry(order_id)
                self.session.commit()
            else:
                # touch=False keeps the order's place in line
                self.store.annotate(order_id, touch=False, last_error=reason)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to record delivery failure", order_id=order_id)
            raise

        order = self.store.get(order_id)
        if not terminal:
            logger.warning("Delivery attempt failed", order_id=order_id, attempt=attempt,
                           max_attempts=self.max_attempts, reason=reason)
            self._record(RETRY)
            self.notifier.notify_admin(
                messages.admin_delivery_retry_text(order, attempt, self.max_attempts, reason),
                order=order)
            return RETRY

        logger.error("Delivery failed permanently", order_id=order_id, attempts=attempt,
                     reason=reason)
        self._record(FAILED)
        self.notifier.notify_user(order.buyer_id, messages.user_delivery_failed_text(order))
        self.notifier.notify_admin(
            messages.admin_delivery_failed_text(order, attempt, reason), order=order)
        return FAILED

    def _record(self, outcome: str) -> None:
        metrics = get_metrics_service()
        if metrics:
            metrics.record_delivery(outcome)
