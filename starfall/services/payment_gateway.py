# -*- coding: utf-8 -*-
"""
Payment Confirmation Gateway

Everything between an order and the money:

- issue invoices through the configured provider
- validate and normalize payment webhooks (push)
- query invoice status for the watch worker (pull)
- mark_paid: the single idempotent paid transition both paths feed into

mark_paid writes the order, the delivery queue entry and the watch entry
removal in one commit. Notifications go out after the commit and never
affect its outcome.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from starfall.models.delivery_queue import DeliveryQueueEntry
from starfall.models.order import Order, OrderStatus, PAYABLE_STATUSES
from starfall.models.payment_watch import PaymentWatchEntry
from starfall.schemas.webhook import WebhookPayload
from starfall.services import messages
from starfall.services.errors import PaymentProviderError, UnknownChannelError
from starfall.services.metrics import get_metrics_service
from starfall.services.notifier import SafeNotifier
from starfall.services.order_store import OrderStore, TransitionResult
from starfall.services.payment_providers import Invoice, InvoiceProvider, sanitize_purpose
from starfall.services.structured_logging import get_logger, log_webhook_rejected
from starfall.utils.clock import utcnow

logger = get_logger('starfall.payments')

# channel -> settlement currency
CHANNELS: Dict[str, str] = {
    "rub": "RUB",
    "crypto": "USDT",
    "sbp": "RUB",
}

PAID_STATUSES = frozenset({"paid", "success", "succeeded", "confirmed"})


class WebhookOutcome(str, Enum):
    OK = "ok"
    ALREADY_APPLIED = "already_applied"
    UNAUTHORIZED = "unauthorized"
    MALFORMED = "malformed"
    ORDER_NOT_FOUND = "order_not_found"


class MarkPaidResult(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOT_FOUND = "not_found"


@dataclass
class PollResult:
    paid: bool
    status_label: str


class PaymentGateway:
    """Invoice issuing and payment confirmation for orders."""

    def __init__(self,
                 store: OrderStore,
                 notifier: SafeNotifier,
                 provider: Optional[InvoiceProvider] = None,
                 secrets: Optional[Dict[str, str]] = None,
                 public_base: str = "",
                 paid_status_code: int = 1,
                 purpose_max_len: int = 140,
                 eta_minutes: int = 15,
                 first_check_delay: int = 15):
        self.store = store
        self.session = store.session
        self.notifier = notifier
        self.provider = provider
        self.secrets = dict(secrets or {})
        self.public_base = (public_base or "").rstrip("/")
        self.paid_status_code = paid_status_code
        self.purpose_max_len = purpose_max_len
        self.eta_minutes = eta_minutes
        self.first_check_delay = first_check_delay

    @property
    def can_poll(self) -> bool:
        return self.provider is not None and self.provider.supports_polling

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def notification_url(self) -> str:
        return f"{self.public_base}/webhook/sbp"

    def create_invoice(self, order: Order) -> Optional[Invoice]:
        """
        Request an invoice for the order from the configured provider.

        Returns None when no provider is configured or the provider fails;
        the order stays usable through the checkout links. A pollable
        invoice registers a payment watch entry.
        """
        if self.provider is None:
            return None

        description = sanitize_purpose(
            f"Stars x{order.quantity}, order {order.id}", self.purpose_max_len)
        amount = order.price_primary if self.provider.currency == "RUB" else order.price_secondary

        try:
            invoice = self.provider.create_invoice(
                order_reference=order.id,
                amount=amount,
                currency=self.provider.currency,
                notification_url=self.notification_url(),
                description=description,
            )
        except PaymentProviderError as e:
            logger.warning("Invoice creation failed", order_id=order.id,
                           provider=self.provider.name, error=str(e))
            return None

        # the pollable operation id is what we need to correlate later
        reference = invoice.poll_operation_id or invoice.reference
        self.store.annotate(order.id, payment_provider=invoice.provider,
                            payment_reference=reference)

        if invoice.poll_operation_id and self.provider.supports_polling:
            self._upsert_watch(order.id, invoice.poll_operation_id,
                               next_check_at=utcnow() + timedelta(seconds=self.first_check_delay))

        logger.log_order_event("invoice_created", order.id, provider=invoice.provider,
                               payment_reference=reference)
        return invoice

    # ------------------------------------------------------------------
    # Watch entries
    # ------------------------------------------------------------------

    def _upsert_watch(self, order_id: str, operation_reference: str, next_check_at) -> None:
        now = utcnow()
        try:
            entry = self.session.get(PaymentWatchEntry, order_id)
            if entry is None:
                self.session.add(PaymentWatchEntry(
                    order_id=order_id,
                    operation_reference=operation_reference,
                    tries=0,
                    next_check_at=next_check_at,
                    updated_at=now,
                ))
            else:
                entry.operation_reference = operation_reference
                entry.next_check_at = next_check_at
                entry.updated_at = now
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to register payment watch", order_id=order_id)
            raise

    def rearm_watch(self, order: Order) -> bool:
        """
        Schedule an immediate status check for an unpaid order.

        Only orders with a pollable invoice from the configured provider
        qualify. Returns True when an entry was inserted or re-armed.
        """
        if not self.can_poll or order.status not in PAYABLE_STATUSES:
            return False
        if order.payment_provider != self.provider.name or not order.payment_reference:
            return False
        self._upsert_watch(order.id, order.payment_reference, next_check_at=utcnow())
        logger.debug("Payment watch re-armed", order_id=order.id)
        return True

    def drop_watch(self, order_id: str, commit: bool = True) -> None:
        self.session.execute(delete(PaymentWatchEntry).where(PaymentWatchEntry.order_id == order_id))
        if commit:
            self.session.commit()

    # ------------------------------------------------------------------
    # Push: webhooks
    # ------------------------------------------------------------------

    def _authorized(self, channel: str, claimed_secret: Optional[str]) -> bool:
        secret = self.secrets.get(channel) or ""
        if not secret or not claimed_secret:
            return False
        return hmac.compare_digest(secret.encode("utf-8"), str(claimed_secret).encode("utf-8"))

    def handle_webhook(self, channel: str, payload: Any,
                       claimed_secret: Optional[str]) -> WebhookOutcome:
        """
        Validate and apply a payment notification.

        Args:
            channel: Payment channel name (rub, crypto, sbp)
            payload: Decoded JSON body
            claimed_secret: Value of the X-Sign header

        Returns:
            WebhookOutcome

        Raises:
            UnknownChannelError: channel is not one of CHANNELS
        """
        if channel not in CHANNELS:
            raise UnknownChannelError(channel)

        outcome = self._handle_webhook(channel, payload, claimed_secret)

        metrics = get_metrics_service()
        if metrics:
            metrics.record_webhook(channel, outcome.value)
        return outcome

    def _handle_webhook(self, channel, payload, claimed_secret) -> WebhookOutcome:
        # authorization first; nothing about the body is looked at before this
        if not self._authorized(channel, claimed_secret):
            log_webhook_rejected(channel, "bad_signature")
            return WebhookOutcome.UNAUTHORIZED

        if not isinstance(payload, dict):
            log_webhook_rejected(channel, "malformed_body")
            return WebhookOutcome.MALFORMED
        try:
            data = WebhookPayload.model_validate(payload)
        except ValidationError as e:
            log_webhook_rejected(channel, "malformed_body", errors=e.error_count())
            return WebhookOutcome.MALFORMED
        if not data.order_reference:
            log_webhook_rejected(channel, "missing_order_reference")
            return WebhookOutcome.MALFORMED

        order = self.store.get(data.order_reference)
        if order is None:
            logger.warning("Webhook for unknown order", webhook_channel=channel,
                           order_id=data.order_reference)
            return WebhookOutcome.ORDER_NOT_FOUND

        status = (data.status or "").lower()
        if status in PAID_STATUSES:
            result = self.mark_paid(order.id, CHANNELS[channel], data.tx_reference, channel=channel)
            if result is MarkPaidResult.APPLIED:
                return WebhookOutcome.OK
            if result is MarkPaidResult.ALREADY_APPLIED:
                return WebhookOutcome.ALREADY_APPLIED
            return WebhookOutcome.ORDER_NOT_FOUND

        logger.info("Webhook with non-paid status", webhook_channel=channel,
                    order_id=order.id, payment_status=status or None)
        self.rearm_watch(order)
        return WebhookOutcome.OK

    # ------------------------------------------------------------------
    # Pull: status polling
    # ------------------------------------------------------------------

    def poll_once(self, entry: PaymentWatchEntry) -> PollResult:
        """Ask the provider whether the watched invoice is paid."""
        if self.provider is None:
            raise PaymentProviderError("no invoice provider configured")
        status = self.provider.get_status(entry.operation_reference)
        return PollResult(paid=status.status_code == self.paid_status_code,
                          status_label=status.status_label)

    def check_now(self, order: Order) -> Optional[PollResult]:
        """
        On-demand status check for one order (the buyer's "check payment").

        Returns None when the order has nothing pollable. A paid answer is
        applied through mark_paid before returning.
        """
        if not self.can_poll or order.payment_provider != self.provider.name \
                or not order.payment_reference:
            return None
        status = self.provider.get_status(order.payment_reference)
        result = PollResult(paid=status.status_code == self.paid_status_code,
                            status_label=status.status_label)
        if result.paid:
            self.mark_paid(order.id, self.provider.currency, order.payment_reference,
                           channel=self.provider.name)
        return result

    # ------------------------------------------------------------------
    # The paid transition
    # ------------------------------------------------------------------

    def mark_paid(self, order_id: str, currency: str, tx_ref: Optional[str],
                  channel: Optional[str] = None) -> MarkPaidResult:
        """
        Move an order from new/pending to paid and enqueue it for delivery.

        Safe to call any number of times, from any producer: only the
        first call applies and notifies.
        """
        now = utcnow()
        try:
            result = self.store.transition(
                order_id,
                PAYABLE_STATUSES,
                OrderStatus.PAID,
                fields={"currency": currency, "provider_tx": tx_ref},
                commit=False,
            )
            if result is TransitionResult.APPLIED:
                self.session.add(DeliveryQueueEntry(order_id=order_id, try_count=0, updated_at=now))
                self.drop_watch(order_id, commit=False)
                self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("mark_paid failed", order_id=order_id)
            raise

        if result is TransitionResult.NOT_FOUND:
            logger.warning("Payment for unknown order", order_id=order_id, currency=currency)
            return MarkPaidResult.NOT_FOUND

        if result is not TransitionResult.APPLIED:
            order = self.store.get(order_id)
            if order is not None and order.status in (OrderStatus.CANCELLED.value,
                                                      OrderStatus.FAILED.value):
                logger.warning("Payment received for closed order", order_id=order_id,
                               current_status=order.status, tx=tx_ref)
                self.notifier.notify_admin(
                    f"⚠️ Payment ({currency}, tx {tx_ref or '-'}) arrived for "
                    f"<code>{order_id}</code> in status {order.status}", order=order)
            else:
                logger.debug("Payment already applied", order_id=order_id)
            return MarkPaidResult.ALREADY_APPLIED

        order = self.store.get(order_id)
        logger.log_order_event("paid", order_id, currency=currency, tx=tx_ref,
                               channel=channel)

        metrics = get_metrics_service()
        if metrics:
            metrics.record_order_paid(channel or currency.lower())

        self.notifier.notify_admin(messages.admin_paid_text(order, currency, tx_ref), order=order)
        self.notifier.notify_user(order.buyer_id, messages.user_paid_text(order, self.eta_minutes))
        return MarkPaidResult.APPLIED
