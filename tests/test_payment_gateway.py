"""Tests for invoice issuing, webhook handling and the paid transition."""

from datetime import timedelta
from decimal import Decimal

import pytest

from starfall.database import db
from starfall.models import DeliveryQueueEntry, PaymentWatchEntry
from starfall.services.errors import PaymentProviderError, UnknownChannelError
from starfall.services.payment_gateway import MarkPaidResult, WebhookOutcome
from starfall.services.payment_providers import ProviderStatus
from starfall.utils.clock import utcnow

from conftest import ADMIN_CHAT_ID


def _queue_count(order_id):
    return db.session.query(DeliveryQueueEntry).filter_by(order_id=order_id).count()


def _watch(order_id):
    db.session.expire_all()
    return db.session.get(PaymentWatchEntry, order_id)


class TestMarkPaid:

    def test_applies_once(self, gateway, store, make_order, sent_texts):
        order = make_order(status="pending")

        result = gateway.mark_paid(order.id, "RUB", "tx-1", channel="rub")

        assert result is MarkPaidResult.APPLIED
        fresh = store.get(order.id)
        assert fresh.status == "paid"
        assert fresh.currency == "RUB"
        assert fresh.provider_tx == "tx-1"
        assert _queue_count(order.id) == 1
        assert len(sent_texts(ADMIN_CHAT_ID)) == 1
        assert len(sent_texts("42")) == 1

    def test_second_call_is_noop(self, gateway, make_order, transport):
        order = make_order(status="pending")
        gateway.mark_paid(order.id, "RUB", "tx-1")
        sends = transport.send.call_count

        result = gateway.mark_paid(order.id, "RUB", "tx-2")

        assert result is MarkPaidResult.ALREADY_APPLIED
        assert _queue_count(order.id) == 1
        assert transport.send.call_count == sends

    def test_from_new(self, gateway, store, make_order):
        order = make_order()
        assert gateway.mark_paid(order.id, "USDT", None) is MarkPaidResult.APPLIED
        assert store.get(order.id).status == "paid"

    def test_unknown_order(self, gateway):
        result = gateway.mark_paid("00000000-0000-0000-0000-000000000000", "RUB", "tx")
        assert result is MarkPaidResult.NOT_FOUND
        assert db.session.query(DeliveryQueueEntry).count() == 0

    @pytest.mark.parametrize("status", ["cancelled", "failed"])
    def test_closed_order_alerts_admin(self, gateway, store, make_order, sent_texts, status):
        order = make_order(status=status)

        result = gateway.mark_paid(order.id, "RUB", "tx-late")

        assert result is MarkPaidResult.ALREADY_APPLIED
        assert store.get(order.id).status == status
        assert _queue_count(order.id) == 0
        admin = sent_texts(ADMIN_CHAT_ID)
        assert len(admin) == 1
        assert "tx-late" in admin[0]

    def test_delivered_order_untouched(self, gateway, store, make_order, transport):
        order = make_order(status="delivered")
        assert gateway.mark_paid(order.id, "RUB", "tx") is MarkPaidResult.ALREADY_APPLIED
        assert store.get(order.id).status == "delivered"
        transport.send.assert_not_called()

    def test_drops_watch_entry(self, gateway, make_order):
        order = make_order()
        gateway.create_invoice(order)
        assert _watch(order.id) is not None

        gateway.mark_paid(order.id, "RUB", "tx")

        assert _watch(order.id) is None

    def test_notification_failure_does_not_roll_back(self, gateway, store, make_order, transport):
        transport.send.side_effect = RuntimeError("chat down")
        order = make_order(status="pending")

        assert gateway.mark_paid(order.id, "RUB", "tx") is MarkPaidResult.APPLIED
        assert store.get(order.id).status == "paid"


class TestHandleWebhook:

    def test_paid_webhook(self, gateway, store, make_order):
        order = make_order(status="pending")

        outcome = gateway.handle_webhook(
            "rub", {"order_reference": order.id, "status": "paid", "tx_reference": "T1"},
            "rub-secret")

        assert outcome is WebhookOutcome.OK
        fresh = store.get(order.id)
        assert fresh.status == "paid"
        assert fresh.currency == "RUB"
        assert fresh.provider_tx == "T1"

    def test_crypto_channel_currency(self, gateway, store, make_order):
        order = make_order(status="pending")
        gateway.handle_webhook("crypto", {"orderId": order.id, "status": "success"},
                               "crypto-secret")
        assert store.get(order.id).currency == "USDT"

    @pytest.mark.parametrize("status", ["PAID", "Succeeded", "CONFIRMED"])
    def test_status_case_insensitive(self, gateway, store, make_order, status):
        order = make_order(status="pending")
        outcome = gateway.handle_webhook("rub", {"order_id": order.id, "status": status},
                                         "rub-secret")
        assert outcome is WebhookOutcome.OK
        assert store.get(order.id).status == "paid"

    def test_duplicate(self, gateway, make_order):
        order = make_order(status="pending")
        payload = {"order_reference": order.id, "status": "paid"}
        assert gateway.handle_webhook("rub", payload, "rub-secret") is WebhookOutcome.OK
        assert gateway.handle_webhook("rub", payload, "rub-secret") is WebhookOutcome.ALREADY_APPLIED
        assert _queue_count(order.id) == 1

    @pytest.mark.parametrize("secret", ["wrong", "", None, "crypto-secret"])
    def test_bad_secret(self, gateway, store, make_order, secret):
        order = make_order(status="pending")

        outcome = gateway.handle_webhook(
            "rub", {"order_reference": order.id, "status": "paid"}, secret)

        assert outcome is WebhookOutcome.UNAUTHORIZED
        assert store.get(order.id).status == "pending"

    def test_channel_without_secret_rejects_everything(self, gateway, make_order):
        gateway.secrets["rub"] = ""
        order = make_order(status="pending")
        outcome = gateway.handle_webhook("rub", {"order_reference": order.id, "status": "paid"}, "")
        assert outcome is WebhookOutcome.UNAUTHORIZED

    def test_unauthorized_checked_before_body(self, gateway):
        assert gateway.handle_webhook("rub", "garbage", "nope") is WebhookOutcome.UNAUTHORIZED

    @pytest.mark.parametrize("payload", [
        None,
        [],
        "text",
        {"status": "paid"},
        {"order_reference": "   ", "status": "paid"},
        {"order_reference": {"nested": 1}, "status": "paid"},
    ])
    def test_malformed(self, gateway, payload):
        assert gateway.handle_webhook("rub", payload, "rub-secret") is WebhookOutcome.MALFORMED

    @pytest.mark.parametrize("field,value", [
        ("tx_reference", "t" * 129),
        ("order_reference", "o" * 129),
        ("status", "paid" + "x" * 64),
    ])
    def test_oversize_field_is_malformed(self, gateway, store, make_order, field, value):
        order = make_order(status="pending")
        payload = {"order_reference": order.id, "status": "paid", "tx_reference": "T1"}
        payload[field] = value

        outcome = gateway.handle_webhook("rub", payload, "rub-secret")

        assert outcome is WebhookOutcome.MALFORMED
        assert store.get(order.id).status == "pending"
        assert _queue_count(order.id) == 0

    def test_longest_tx_reference_applied(self, gateway, store, make_order):
        order = make_order(status="pending")
        tx = "t" * 128

        outcome = gateway.handle_webhook(
            "rub", {"order_reference": order.id, "status": "paid", "tx_reference": tx},
            "rub-secret")

        assert outcome is WebhookOutcome.OK
        assert store.get(order.id).provider_tx == tx

    def test_unknown_order(self, gateway):
        outcome = gateway.handle_webhook(
            "rub", {"order_reference": "missing", "status": "paid"}, "rub-secret")
        assert outcome is WebhookOutcome.ORDER_NOT_FOUND

    def test_unknown_channel(self, gateway):
        with pytest.raises(UnknownChannelError):
            gateway.handle_webhook("paypal", {}, "x")

    def test_non_paid_status_leaves_order(self, gateway, store, make_order):
        order = make_order(status="pending")
        outcome = gateway.handle_webhook(
            "rub", {"order_reference": order.id, "status": "processing"}, "rub-secret")
        assert outcome is WebhookOutcome.OK
        assert store.get(order.id).status == "pending"
        assert _queue_count(order.id) == 0

    def test_non_paid_status_rearms_watch(self, gateway, store, make_order):
        order = make_order(status="pending")
        store.annotate(order.id, payment_provider="sbp", payment_reference="op-1")

        gateway.handle_webhook("sbp", {"order_reference": order.id, "status": "pending"},
                               "sbp-secret")

        entry = _watch(order.id)
        assert entry is not None
        assert entry.operation_reference == "op-1"
        assert entry.next_check_at <= utcnow()


class TestInvoices:

    def test_create_invoice_registers_watch(self, gateway, store, make_order, invoice_provider):
        order = make_order()
        before = utcnow()

        invoice = gateway.create_invoice(order)

        assert invoice.pay_url == "https://qr.test/pay"
        kwargs = invoice_provider.create_invoice.call_args.kwargs
        assert kwargs["amount"] == Decimal("180.00")
        assert kwargs["currency"] == "RUB"
        assert kwargs["notification_url"] == "https://stars.test/webhook/sbp"
        assert len(kwargs["description"]) <= 140

        fresh = store.get(order.id)
        assert fresh.payment_provider == "sbp"
        assert fresh.payment_reference == f"op-{order.id[:8]}"

        entry = _watch(order.id)
        assert entry.tries == 0
        assert entry.operation_reference == f"op-{order.id[:8]}"
        assert entry.next_check_at >= before + timedelta(seconds=15)

    def test_provider_error(self, gateway, store, make_order, invoice_provider):
        invoice_provider.create_invoice.side_effect = PaymentProviderError("down")
        order = make_order()

        assert gateway.create_invoice(order) is None
        assert store.get(order.id).payment_reference is None
        assert _watch(order.id) is None

    def test_no_provider(self, gateway, make_order):
        gateway.provider = None
        assert gateway.create_invoice(make_order()) is None
        assert not gateway.can_poll

    def test_rearm_requires_matching_provider(self, gateway, store, make_order):
        order = make_order(status="pending")
        store.annotate(order.id, payment_provider="other", payment_reference="op-x")
        assert gateway.rearm_watch(store.get(order.id)) is False

    def test_rearm_requires_payable_status(self, gateway, store, make_order):
        order = make_order(status="paid")
        store.annotate(order.id, payment_provider="sbp", payment_reference="op-x")
        assert gateway.rearm_watch(store.get(order.id)) is False


class TestPolling:

    def test_poll_once(self, gateway, make_order, invoice_provider):
        order = make_order()
        gateway.create_invoice(order)
        invoice_provider.get_status.return_value = ProviderStatus(1, "PAID")

        result = gateway.poll_once(_watch(order.id))

        assert result.paid is True
        assert result.status_label == "PAID"
        invoice_provider.get_status.assert_called_with(f"op-{order.id[:8]}")

    def test_custom_paid_code(self, gateway, make_order, invoice_provider):
        gateway.paid_status_code = 5
        order = make_order()
        gateway.create_invoice(order)
        invoice_provider.get_status.return_value = ProviderStatus(1, "ACCEPTED")
        assert gateway.poll_once(_watch(order.id)).paid is False

    def test_check_now_applies_paid(self, gateway, store, make_order, invoice_provider):
        order = make_order(status="pending")
        gateway.create_invoice(order)
        invoice_provider.get_status.return_value = ProviderStatus(1, "PAID")

        result = gateway.check_now(store.get(order.id))

        assert result.paid
        fresh = store.get(order.id)
        assert fresh.status == "paid"
        assert fresh.currency == "RUB"
        assert fresh.provider_tx == f"op-{order.id[:8]}"

    def test_check_now_without_invoice(self, gateway, make_order):
        assert gateway.check_now(make_order()) is None
