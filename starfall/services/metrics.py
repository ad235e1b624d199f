# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Provides a centralized service for creating, registering, and collecting metrics.
Also includes middleware for automatically recording HTTP request metrics.
"""

import os
import time
import uuid
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest, CONTENT_TYPE_LATEST


def init_metrics(app: Flask) -> None:
    """Initialize metrics service and endpoints."""
    # One registry per app so repeated create_app() calls don't collide
    service = MetricsService(registry=CollectorRegistry())
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def before_request():
            g.metrics_start_time = time.time()

        @app.after_request
        def after_request(response):
            started = getattr(g, 'metrics_start_time', None)
            if started is not None:
                service.record_http_request(
                    route=request.path,
                    method=request.method,
                    status_code=response.status_code,
                    duration_seconds=time.time() - started
                )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': CONTENT_TYPE_LATEST}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.enabled = os.environ.get(
            "STARFALL_METRICS_ENABLED",
            "true").lower() == "true"
        self.registry = registry if registry is not None else CollectorRegistry()

        if self.enabled:
            self.http_requests_total = Counter(
                "starfall_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "starfall_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.orders_created_total = Counter(
                "starfall_orders_created_total",
                "Total number of orders placed.",
                registry=self.registry
            )
            self.orders_paid_total = Counter(
                "starfall_orders_paid_total",
                "Total number of orders confirmed paid.",
                ["channel"],
                registry=self.registry
            )
            self.webhooks_total = Counter(
                "starfall_webhooks_total",
                "Payment webhooks received, by outcome.",
                ["channel", "outcome"],
                registry=self.registry
            )
            self.deliveries_total = Counter(
                "starfall_deliveries_total",
                "Delivery attempts, by outcome.",
                ["outcome"],
                registry=self.registry
            )
            self.payment_polls_total = Counter(
                "starfall_payment_polls_total",
                "Payment status polls, by outcome.",
                ["outcome"],
                registry=self.registry
            )

    def record_http_request(
            self,
            route: str,
            method: str,
            status_code: int,
            duration_seconds: float):
        """Record an HTTP request."""
        if self.enabled:
            normalized_route = self._normalize_route(route)
            self.http_requests_total.labels(
                route=normalized_route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=normalized_route, method=method).observe(duration_seconds)

    def get_metrics(self) -> str:
        """Get metrics data as text."""
        if self.enabled:
            return generate_latest(self.registry).decode('utf-8')
        return ""

    def record_order_created(self):
        if self.enabled:
            self.orders_created_total.inc()

    def record_order_paid(self, channel: str):
        if self.enabled:
            self.orders_paid_total.labels(channel=channel).inc()

    def record_webhook(self, channel: str, outcome: str):
        if self.enabled:
            self.webhooks_total.labels(channel=channel, outcome=outcome).inc()

    def record_delivery(self, outcome: str):
        """Record a delivery attempt outcome (delivered / retry / failed)."""
        if self.enabled:
            self.deliveries_total.labels(outcome=outcome).inc()

    def record_payment_poll(self, outcome: str):
        """Record a poll outcome (paid / pending / error / exhausted / dropped)."""
        if self.enabled:
            self.payment_polls_total.labels(outcome=outcome).inc()

    def _normalize_route(self, route: str) -> str:
        parts = route.split('/')
        for i, part in enumerate(parts):
            if part.isdigit():
                parts[i] = '{id}'
                continue
            try:
                uuid.UUID(part)
                parts[i] = '{uuid}'
            except (ValueError, AttributeError):
                pass
        return '/'.join(parts)
