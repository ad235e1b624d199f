# -*- coding: utf-8 -*-
"""
Checkout orchestration.

Turns a buyer's pick into a payable order: create the order, try the
invoice provider, add hosted checkout links, move the order to pending and
open the admin thread for it.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlencode

from starfall.models.order import Order, OrderStatus, PAYABLE_STATUSES
from starfall.services import messages
from starfall.services.metrics import get_metrics_service
from starfall.services.notifier import SafeNotifier
from starfall.services.order_store import Buyer, OrderStore, TransitionResult
from starfall.services.payment_gateway import PaymentGateway
from starfall.services.payment_providers import Invoice
from starfall.services.structured_logging import get_logger

logger = get_logger('starfall.orders')


@dataclass
class CheckoutLink:
    label: str
    url: str
    currency: str


@dataclass
class PlacedOrder:
    order: Order
    invoice: Optional[Invoice] = None
    links: List[CheckoutLink] = field(default_factory=list)

    @property
    def payable(self) -> bool:
        return self.invoice is not None or bool(self.links)


class CheckoutService:

    def __init__(self, store: OrderStore, gateway: PaymentGateway, notifier: SafeNotifier,
                 checkout_rub: str = "", checkout_crypto: str = ""):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.checkout_rub = checkout_rub
        self.checkout_crypto = checkout_crypto

    def checkout_links(self, order: Order) -> List[CheckoutLink]:
        links = []
        if self.checkout_rub:
            links.append(CheckoutLink(
                label="💳 Pay in RUB",
                url=_with_query(self.checkout_rub, order=order.id, amount=order.price_primary),
                currency="RUB"))
        if self.checkout_crypto:
            links.append(CheckoutLink(
                label="🪙 Pay with crypto",
                url=_with_query(self.checkout_crypto, order=order.id, amount=order.price_secondary),
                currency="USDT"))
        return links

    def place_order(self, buyer: Buyer, quantity: int,
                    gift_recipient: Optional[str] = None) -> PlacedOrder:
        """
        Create an order and make it payable.

        Raises:
            OrderValidationError: quantity out of range (nothing is written)
        """
        order = self.store.create(buyer, quantity, gift_recipient=gift_recipient)

        metrics = get_metrics_service()
        if metrics:
            metrics.record_order_created()

        invoice = self.gateway.create_invoice(order)
        links = self.checkout_links(order)
        placed = PlacedOrder(order=order, invoice=invoice, links=links)

        if placed.payable:
            self.store.transition(order.id, [OrderStatus.NEW], OrderStatus.PENDING)
        else:
            logger.warning("No payment channel available", order_id=order.id)

        thread_ref = self.notifier.notify_admin(messages.admin_new_order_text(order))
        if thread_ref:
            self.store.annotate(order.id, admin_thread_ref=thread_ref)

        placed.order = self.store.get(order.id)
        return placed

    def cancel_order(self, order_id: str) -> TransitionResult:
        """Cancel an unpaid order and stop watching its invoice."""
        result = self.store.transition(order_id, PAYABLE_STATUSES, OrderStatus.CANCELLED)
        if result is TransitionResult.APPLIED:
            self.gateway.drop_watch(order_id)
            logger.log_order_event("cancelled", order_id)
        return result


def _with_query(base: str, **params) -> str:
    sep = "&" if "?" in base else "?"
    return f"{base}{sep}{urlencode({k: str(v) for k, v in params.items()})}"
