# -*- coding: utf-8 -*-
"""
Service wiring.

Builds the coordinator's services from app.config once per app and keeps
them under app.extensions['starfall']. Tests swap individual services by
assigning attributes on the container.
"""
from functools import cached_property
from typing import Optional

from flask import Flask, current_app

from starfall.jobs.delivery import DeliveryWorker
from starfall.jobs.payment_watch import PaymentWatchWorker
from starfall.services.checkout import CheckoutService
from starfall.services.delivery_providers import DeliveryProvider, build_delivery_provider
from starfall.services.notifier import SafeNotifier, build_notifier
from starfall.services.order_store import OrderStore
from starfall.services.payment_gateway import PaymentGateway
from starfall.services.payment_providers import InvoiceProvider, build_invoice_provider
from starfall.services.session_store import SessionStore


class Services:
    """Per-app service graph."""

    def __init__(self, config,
                 notifier: Optional[SafeNotifier] = None,
                 invoice_provider: Optional[InvoiceProvider] = None,
                 delivery_provider: Optional[DeliveryProvider] = None):
        self.config = config
        self.notifier = notifier or build_notifier(config)
        self.invoice_provider = invoice_provider or build_invoice_provider(config)
        self.delivery_provider = delivery_provider or build_delivery_provider(config)

    # Stores bind to the scoped db.session, so they are cheap to build per call

    @property
    def orders(self) -> OrderStore:
        c = self.config
        return OrderStore(
            rub_rate=c["RUB_PER_STAR"],
            usdt_rate=c["USDT_PER_STAR"],
            min_quantity=c["MIN_QUANTITY"],
            max_quantity=c["MAX_QUANTITY"],
        )

    @property
    def sessions(self) -> SessionStore:
        return SessionStore(ttl_seconds=self.config["SESSION_TTL_SECONDS"])

    @property
    def gateway(self) -> PaymentGateway:
        c = self.config
        return PaymentGateway(
            store=self.orders,
            notifier=self.notifier,
            provider=self.invoice_provider,
            secrets={
                "rub": c.get("WEBHOOK_SECRET_RUB", ""),
                "crypto": c.get("WEBHOOK_SECRET_CRYPTO", ""),
                "sbp": c.get("WEBHOOK_SECRET_SBP", ""),
            },
            public_base=c.get("PUBLIC_BASE", ""),
            paid_status_code=c["SBP_PAID_STATUS_CODE"],
            purpose_max_len=c["PAYMENT_PURPOSE_MAX_LEN"],
            eta_minutes=c["DELIVERY_ETA_MIN"],
            first_check_delay=c["PAYMENT_WATCH_BASE_DELAY"],
        )

    @property
    def checkout(self) -> CheckoutService:
        gateway = self.gateway
        return CheckoutService(
            store=gateway.store,
            gateway=gateway,
            notifier=self.notifier,
            checkout_rub=self.config.get("CHECKOUT_RUB", ""),
            checkout_crypto=self.config.get("CHECKOUT_CRYPTO", ""),
        )

    # Workers carry their single-flight locks, so there is exactly one of each

    @cached_property
    def delivery_worker(self) -> DeliveryWorker:
        return DeliveryWorker(
            store=self.orders,
            provider=self.delivery_provider,
            notifier=self.notifier,
            max_retries=self.config["DELIVERY_MAX_RETRIES"],
        )

    @cached_property
    def watch_worker(self) -> PaymentWatchWorker:
        c = self.config
        return PaymentWatchWorker(
            gateway=self.gateway,
            batch=c["PAYMENT_WATCH_BATCH"],
            base_delay=c["PAYMENT_WATCH_BASE_DELAY"],
            max_delay=c["PAYMENT_WATCH_MAX_DELAY"],
            max_tries=c["PAYMENT_WATCH_MAX_TRIES"],
            error_delay=c["PAYMENT_WATCH_ERROR_DELAY"],
        )


def init_services(app: Flask, **overrides) -> Services:
    services = Services(app.config, **overrides)
    app.extensions['starfall'] = services
    return services


def get_services() -> Services:
    """Service container of the current app."""
    return current_app.extensions['starfall']
