# -*- coding: utf-8 -*-
"""
Delivery Providers

Fulfillment strategies behind one contract:

    deliver(order_id, quantity, recipient) -> DeliveryResult(ok, tx, reason)

Providers may either return ok=False or raise; the delivery worker treats
both as the same failure. The order id doubles as the idempotency key, so a
provider must tolerate being asked twice for the same order.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests

from starfall.services.errors import DeliveryProviderError
from starfall.services.http import requests_session, DEFAULT_TIMEOUT
from starfall.services.structured_logging import get_logger

logger = get_logger('starfall.delivery')


@dataclass
class DeliveryResult:
    ok: bool
    tx: Optional[str] = None
    reason: Optional[str] = None


class DeliveryProvider:
    name = "base"

    def deliver(self, order_id: str, quantity: int, recipient: str) -> DeliveryResult:
        raise NotImplementedError


class DemoDeliveryProvider(DeliveryProvider):
    """Pretends to deliver after a short pause; used for staging and demos."""

    name = "demo"

    def __init__(self, delay_seconds: float = 0.0):
        self.delay_seconds = delay_seconds

    def deliver(self, order_id, quantity, recipient):
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        tx = f"demo-{uuid.uuid4().hex[:12]}"
        logger.info("Demo delivery", order_id=order_id, quantity=quantity,
                    recipient=recipient, tx=tx)
        return DeliveryResult(ok=True, tx=tx)


class HttpDeliveryProvider(DeliveryProvider):
    """
    Delivery through a fulfillment HTTP service.

    POST {base}/deliveries  {"order_id", "quantity", "recipient"}
    -> {"ok": true, "tx": "..."} | {"ok": false, "reason": "..."}
    """

    name = "http"

    def __init__(self, base_url: str, api_key: str = "",
                 session: Optional[requests.Session] = None,
                 timeout=DEFAULT_TIMEOUT):
        if not base_url:
            raise ValueError("DELIVERY_HTTP_URL is required for the http delivery provider")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        # POST is not idempotent from urllib3's view; the service dedupes on Idempotency-Key
        self.session = session or requests_session(total=2, allowed_methods=("POST",))
        self.timeout = timeout

    def deliver(self, order_id, quantity, recipient):
        headers = {"Content-Type": "application/json", "Idempotency-Key": order_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = self.session.post(
                f"{self.base_url}/deliveries",
                json={"order_id": order_id, "quantity": quantity, "recipient": recipient},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DeliveryProviderError(f"delivery service unreachable: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 500:
            raise DeliveryProviderError(f"delivery service error {resp.status_code}")
        if resp.status_code >= 400 or not body.get("ok"):
            reason = body.get("reason") or body.get("error") or f"HTTP {resp.status_code}"
            return DeliveryResult(ok=False, reason=str(reason))
        return DeliveryResult(ok=True, tx=body.get("tx") or body.get("tx_id"))


def _demo(config) -> DeliveryProvider:
    return DemoDeliveryProvider()


def _http(config) -> DeliveryProvider:
    return HttpDeliveryProvider(
        base_url=config.get("DELIVERY_HTTP_URL", ""),
        api_key=config.get("DELIVERY_HTTP_API_KEY", ""),
    )


PROVIDERS: Dict[str, Callable[[dict], DeliveryProvider]] = {
    "demo": _demo,
    "http": _http,
}


def build_delivery_provider(config) -> DeliveryProvider:
    name = (config.get("DELIVERY_PROVIDER") or "demo").strip().lower()
    factory = PROVIDERS.get(name)
    if factory is None:
        raise ValueError(f"unknown delivery provider: {name}")
    return factory(config)
