# -*- coding: utf-8 -*-
"""
Payment Providers

Invoice-issuing payment providers behind one narrow contract:
create an invoice for an order, and (optionally) look up its status.
The SBP QR manager is the only provider that supports status polling;
hosted checkout pages only report back through webhooks.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from starfall.services.errors import PaymentProviderError
from starfall.services.http import requests_session, DEFAULT_TIMEOUT
from starfall.services.structured_logging import get_logger

logger = get_logger('starfall.payments')

JSON = Dict[str, Any]

_PURPOSE_UNSAFE = re.compile(r"[^\w\s.,:;!?#№()\-]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def sanitize_purpose(text: str, max_len: int = 140) -> str:
    """
    Make a free-text payment purpose acceptable to the bank.

    Drops everything but word characters, whitespace and basic punctuation,
    collapses whitespace and caps the length.
    """
    cleaned = _PURPOSE_UNSAFE.sub("", str(text or ""))
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:max_len].rstrip()


@dataclass
class Invoice:
    provider: str
    reference: str
    pay_url: Optional[str] = None
    qr_image: Optional[str] = None            # base64 PNG
    poll_operation_id: Optional[str] = None


@dataclass
class ProviderStatus:
    status_code: int
    status_label: str


class InvoiceProvider:
    """Base class for invoice-issuing payment providers."""

    name = "base"
    currency = "RUB"
    supports_polling = False

    def create_invoice(self, order_reference: str, amount: Decimal, currency: str,
                       notification_url: str, description: str) -> Invoice:
        raise NotImplementedError

    def get_status(self, operation_reference: str) -> ProviderStatus:
        raise PaymentProviderError(f"{self.name} does not support status polling")


class SbpQrProvider(InvoiceProvider):
    """
    SBP invoices issued through a QR manager HTTP API.

    Create:  POST {base}/api/invoice/create
    Status:  GET  {base}/api/invoice/<operation_id>/status
    """

    name = "sbp"
    currency = "RUB"
    supports_polling = True

    def __init__(self, base_url: str, token: str,
                 session: Optional[requests.Session] = None,
                 timeout=DEFAULT_TIMEOUT):
        if not base_url:
            raise ValueError("SBP provider base_url missing")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests_session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _json(self, resp: requests.Response, what: str) -> JSON:
        if not 200 <= resp.status_code < 300:
            raise PaymentProviderError(
                f"QR manager {what} failed: {resp.status_code} {resp.text[:200]}"
            )
        try:
            body = resp.json()
        except ValueError:
            raise PaymentProviderError(f"QR manager {what} returned non-JSON body")
        if not isinstance(body, dict):
            raise PaymentProviderError(f"QR manager {what} returned unexpected body")
        return body

    def create_invoice(self, order_reference: str, amount: Decimal, currency: str,
                       notification_url: str, description: str) -> Invoice:
        outbound = {
            "amount": float(amount),
            "currency": currency,
            "order_id": order_reference,
            "notification_url": notification_url,
            "description": description,
        }
        try:
            resp = self.session.post(
                f"{self.base_url}/api/invoice/create",
                json=outbound,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PaymentProviderError(f"QR manager create failed: {e}") from e

        data = self._json(resp, "create")
        reference = str(data.get("invoice_id") or data.get("id") or order_reference)
        operation = data.get("operation_id") or data.get("qrc_id") or reference

        return Invoice(
            provider=self.name,
            reference=reference,
            pay_url=data.get("pay_url") or data.get("url"),
            qr_image=data.get("qr_base64") or data.get("qr_image"),
            poll_operation_id=str(operation),
        )

    def get_status(self, operation_reference: str) -> ProviderStatus:
        try:
            resp = self.session.get(
                f"{self.base_url}/api/invoice/{operation_reference}/status",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PaymentProviderError(f"QR manager status failed: {e}") from e

        data = self._json(resp, "status")
        raw_code = data.get("status_code", data.get("code"))
        try:
            code = int(raw_code)
        except (TypeError, ValueError):
            raise PaymentProviderError(f"QR manager status has no numeric code: {raw_code!r}")

        label = data.get("status_label") or data.get("status") or data.get("message") or str(code)
        return ProviderStatus(status_code=code, status_label=str(label))


def build_invoice_provider(config) -> Optional[InvoiceProvider]:
    """Configured invoice provider, or None when no QR manager is set up."""
    base = config.get("QRM_BASE")
    if not base:
        return None
    return SbpQrProvider(base_url=base, token=config.get("QRM_TOKEN", ""))
