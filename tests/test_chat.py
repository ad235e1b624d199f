"""
Test suite for the chat front end.

Covers command parsing, the Telegram webhook intake and the buyer and
admin conversation flows.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from starfall.chat.commands import ChatCommand, ParsedCommand, parse_callback, parse_message
from starfall.chat.handlers import HANDLERS, ChatHandler
from starfall.database import db
from starfall.models import ChatSession, Order, SessionState
from starfall.services import messages
from starfall.services.payment_providers import Invoice, ProviderStatus
from starfall.utils.clock import utcnow

from conftest import ADMIN_CHAT_ID


def message(text, user_id=42, username="alice"):
    return {
        "update_id": 1,
        "message": {
            "message_id": 1,
            "from": {"id": user_id, "username": username},
            "chat": {"id": user_id},
            "text": text,
        },
    }


def callback(data, user_id=42, username="alice"):
    return {
        "update_id": 2,
        "callback_query": {
            "id": "cb-1",
            "from": {"id": user_id, "username": username},
            "message": {"message_id": 5, "chat": {"id": user_id}},
            "data": data,
        },
    }


@pytest.fixture
def send_update(client):
    def _send(update):
        response = client.post("/telegram/webhook", json=update)
        assert response.status_code == 200
        return response
    return _send


def _orders():
    return db.session.query(Order).all()


def _last_markup(transport):
    return transport.send.call_args.kwargs.get("reply_markup") or {}


def _callback_data(markup):
    return [b.get("callback_data") for row in markup.get("inline_keyboard", []) for b in row]


class TestParsing:

    @pytest.mark.parametrize("data,expected", [
        ("buy_menu", ParsedCommand(ChatCommand.BUY_MENU)),
        ("custom_qty_self", ParsedCommand(ChatCommand.BUY_CUSTOM)),
        ("gift_start", ParsedCommand(ChatCommand.GIFT_START)),
        ("gift_custom_qty", ParsedCommand(ChatCommand.GIFT_CUSTOM)),
        ("back_home", ParsedCommand(ChatCommand.BACK_HOME)),
        ("buy_500", ParsedCommand(ChatCommand.BUY_PACK, "500")),
        ("gift_100", ParsedCommand(ChatCommand.GIFT_PACK, "100")),
        ("check_0b7c8a52-3c5e-4a8e-9d0f-1a2b3c4d5e6f",
         ParsedCommand(ChatCommand.CHECK_PAYMENT, "0b7c8a52-3c5e-4a8e-9d0f-1a2b3c4d5e6f")),
    ])
    def test_callbacks(self, data, expected):
        assert parse_callback(data) == expected

    @pytest.mark.parametrize("data", ["", None, "buy_", "buy_abc", "check_123", "drop_table"])
    def test_unknown_callbacks(self, data):
        assert parse_callback(data) is None

    @pytest.mark.parametrize("text,expected", [
        ("/start", ParsedCommand(ChatCommand.START)),
        ("/menu@StarfallBot", ParsedCommand(ChatCommand.START)),
        ("/last", ParsedCommand(ChatCommand.ADMIN_LAST)),
        ("/o abc", ParsedCommand(ChatCommand.ADMIN_ORDER, "abc")),
        ("/cancel  abc extra", ParsedCommand(ChatCommand.ADMIN_CANCEL, "abc")),
        ("/CANCEL", ParsedCommand(ChatCommand.ADMIN_CANCEL)),
        ("@friend", ParsedCommand(ChatCommand.TEXT, "@friend")),
        ("/unknown", ParsedCommand(ChatCommand.TEXT, "/unknown")),
    ])
    def test_messages(self, text, expected):
        assert parse_message(text) == expected

    def test_every_command_has_a_handler(self):
        assert set(HANDLERS) == set(ChatCommand)


class TestTelegramIntake:

    def test_secret_mismatch(self, app, client):
        app.config["TELEGRAM_WEBHOOK_SECRET"] = "s3"
        response = client.post("/telegram/webhook", json=message("/start"),
                               headers={"X-Telegram-Bot-Api-Secret-Token": "nope"})
        assert response.status_code == 401

    def test_secret_match(self, app, client, transport):
        app.config["TELEGRAM_WEBHOOK_SECRET"] = "s3"
        response = client.post("/telegram/webhook", json=message("/start"),
                               headers={"X-Telegram-Bot-Api-Secret-Token": "s3"})
        assert response.status_code == 200
        transport.send.assert_called_once()

    def test_invalid_body(self, client):
        response = client.post("/telegram/webhook", data="[]", content_type="application/json")
        assert response.status_code == 400

    def test_handler_crash_still_acknowledged(self, client):
        with patch.object(ChatHandler, "handle_update", side_effect=RuntimeError("boom")):
            response = client.post("/telegram/webhook", json=message("/start"))
        assert response.status_code == 200

    def test_updates_without_text_ignored(self, send_update, transport):
        send_update({"update_id": 3, "message": {"from": {"id": 42}, "chat": {"id": 42}}})
        send_update({"update_id": 4, "edited_message": {}})
        transport.send.assert_not_called()

    def test_unknown_callback_answered(self, send_update, transport):
        send_update(callback("something_else"))
        transport.answer_callback.assert_called_once_with("cb-1", text=None, show_alert=False)
        transport.send.assert_not_called()


class TestBuyerFlows:

    def test_start_shows_main_menu(self, send_update, transport):
        send_update(message("/start"))

        args = transport.send.call_args.args
        assert args[0] == "42"
        assert args[1] == messages.MAIN_MENU_TEXT
        assert _callback_data(_last_markup(transport)) == ["buy_menu", "gift_start"]

    def test_buy_menu_lists_packs(self, send_update, transport):
        send_update(callback("buy_menu"))

        assert _callback_data(_last_markup(transport)) == [
            "custom_qty_self", "buy_50", "buy_100", "buy_250", "back_home"]
        transport.answer_callback.assert_called_once()

    def test_buy_pack(self, send_update, transport, sent_texts):
        send_update(callback("buy_100"))

        [order] = _orders()
        assert order.quantity == 100
        assert order.buyer_id == "42"
        assert order.status == "pending"

        user_texts = sent_texts("42")
        assert order.id in user_texts[-1]
        markup = _last_markup(transport)
        urls = [b.get("url") for row in markup["inline_keyboard"] for b in row if b.get("url")]
        assert urls[0] == "https://qr.test/pay"
        assert f"check_{order.id}" in _callback_data(markup)
        assert len(sent_texts(ADMIN_CHAT_ID)) == 1

    def test_qr_code_sent_as_photo(self, send_update, transport, invoice_provider):
        invoice_provider.create_invoice.side_effect = lambda order_reference, **kw: Invoice(
            provider="sbp", reference="inv", pay_url="https://qr.test/pay",
            qr_image="aGVsbG8=", poll_operation_id="op-1")

        send_update(callback("buy_50"))

        transport.send_photo.assert_called_once()
        assert transport.send_photo.call_args.args[1] == "aGVsbG8="

    def test_pack_out_of_range(self, send_update, sent_texts):
        send_update(callback("buy_7"))
        assert _orders() == []
        assert "out of range" in sent_texts("42")[-1]

    def test_custom_quantity(self, send_update, services):
        send_update(callback("custom_qty_self"))
        assert services.sessions.get("42").state is SessionState.AWAITING_CUSTOM_QUANTITY

        send_update(message("1 500"))

        [order] = _orders()
        assert order.quantity == 1500
        assert order.gift_recipient is None
        assert services.sessions.get("42").state is SessionState.IDLE

    def test_custom_quantity_invalid(self, send_update, services, sent_texts):
        send_update(callback("custom_qty_self"))
        send_update(message("10"))

        assert _orders() == []
        assert "out of range" in sent_texts("42")[-1]
        # still waiting for a valid number
        assert services.sessions.get("42").state is SessionState.AWAITING_CUSTOM_QUANTITY

    def test_gift_flow(self, send_update, services, transport):
        send_update(callback("gift_start"))
        send_update(message("@friend"))

        snapshot = services.sessions.get("42")
        assert snapshot.state is SessionState.AWAITING_GIFT_QUANTITY
        assert snapshot.gift_recipient == "@friend"
        assert "gift_100" in _callback_data(_last_markup(transport))

        send_update(callback("gift_100"))

        [order] = _orders()
        assert order.gift_recipient == "@friend"
        assert order.recipient == "friend"
        assert services.sessions.get("42").state is SessionState.IDLE

    def test_gift_custom_quantity(self, send_update):
        send_update(callback("gift_start"))
        send_update(message("@friend"))
        send_update(callback("gift_custom_qty"))
        send_update(message("777"))

        [order] = _orders()
        assert order.quantity == 777
        assert order.gift_recipient == "@friend"

    @pytest.mark.parametrize("text", ["@", "   ", "x" * 500, "@bad name", "@@friend"])
    def test_gift_recipient_rejected(self, send_update, services, transport, sent_texts, text):
        send_update(callback("gift_start"))
        send_update(message(text))

        snapshot = services.sessions.get("42")
        assert snapshot.state is SessionState.AWAITING_GIFT_RECIPIENT
        assert snapshot.gift_recipient is None
        assert sent_texts("42")[-1] == messages.ASK_GIFT_RECIPIENT_TEXT

        send_update(callback("gift_100"))

        assert _orders() == []
        transport.answer_callback.assert_called_with(
            "cb-1", text=messages.RECIPIENT_REQUIRED_TEXT, show_alert=True)

    @pytest.mark.parametrize("text,stored", [
        ("  friend ", "@friend"),
        ("@Pal_2", "@Pal_2"),
        ("123456789", "123456789"),
    ])
    def test_gift_recipient_normalized(self, send_update, services, text, stored):
        send_update(callback("gift_start"))
        send_update(message(text))
        send_update(callback("gift_100"))

        [order] = _orders()
        assert order.gift_recipient == stored
        assert order.recipient == stored.lstrip("@")

    def test_gift_pack_without_recipient(self, send_update, transport):
        send_update(callback("gift_100"))

        assert _orders() == []
        transport.answer_callback.assert_called_once_with(
            "cb-1", text=messages.RECIPIENT_REQUIRED_TEXT, show_alert=True)

    def test_expired_session(self, send_update, services, sent_texts):
        services.sessions.set("42", SessionState.AWAITING_CUSTOM_QUANTITY,
                              now=utcnow() - timedelta(hours=1))

        send_update(message("500"))

        assert _orders() == []
        assert sent_texts("42")[-1] == messages.SESSION_EXPIRED_TEXT

    def test_free_text_without_session(self, send_update, sent_texts):
        send_update(message("hello"))
        assert sent_texts("42")[-1] == messages.UNKNOWN_TEXT

    def test_back_home_clears_session(self, send_update, services):
        send_update(callback("gift_start"))
        send_update(callback("back_home"))
        assert db.session.query(ChatSession).count() == 0


class TestCheckPayment:

    def test_paid_on_check(self, send_update, store, transport, invoice_provider):
        send_update(callback("buy_100"))
        [order] = _orders()
        invoice_provider.get_status.return_value = ProviderStatus(1, "PAID")
        transport.answer_callback.reset_mock()

        send_update(callback(f"check_{order.id}"))

        assert store.get(order.id).status == "paid"
        transport.answer_callback.assert_called_once_with(
            "cb-1", text=messages.payment_confirmed_text(), show_alert=True)

    def test_still_pending(self, send_update, transport):
        send_update(callback("buy_100"))
        [order] = _orders()
        transport.answer_callback.reset_mock()

        send_update(callback(f"check_{order.id}"))

        alert = transport.answer_callback.call_args.kwargs["text"]
        assert "NOT_PAID" in alert

    def test_status_label_markup_escaped(self, send_update, transport, invoice_provider):
        send_update(callback("buy_100"))
        [order] = _orders()
        invoice_provider.get_status.return_value = ProviderStatus(0, "<b>WAIT</b> & see")
        transport.answer_callback.reset_mock()

        send_update(callback(f"check_{order.id}"))

        # alert popups are plain text, so the label comes back verbatim
        alert = transport.answer_callback.call_args.kwargs["text"]
        assert "(status: <b>WAIT</b> & see)" in alert

    def test_pending_text_is_html_safe(self):
        text = messages.payment_pending_text("<b>WAIT</b> & see")
        assert "<b>" not in text
        assert "&lt;b&gt;WAIT&lt;/b&gt; &amp; see" in text

    def test_other_buyers_order(self, send_update, transport, make_order):
        order = make_order()
        send_update(callback(f"check_{order.id}", user_id=77, username="mallory"))
        transport.answer_callback.assert_called_once_with(
            "cb-1", text=messages.NOT_FOUND_TEXT, show_alert=True)

    def test_cancelled_order(self, send_update, transport, make_order):
        order = make_order(status="cancelled")
        send_update(callback(f"check_{order.id}"))
        assert transport.answer_callback.call_args.kwargs["text"] == messages.ORDER_CANCELLED_TEXT


class TestAdminCommands:

    def test_ignored_for_buyers(self, send_update, transport, make_order):
        order = make_order(status="pending")
        send_update(message("/last"))
        send_update(message(f"/cancel {order.id}"))

        transport.send.assert_not_called()
        assert order.status == "pending"

    def test_last(self, send_update, sent_texts, make_order):
        orders = [make_order() for _ in range(6)]
        send_update(message("/last", user_id=999, username="admin"))

        reply = sent_texts(ADMIN_CHAT_ID)[-1]
        assert reply.count("🧾") == 5
        assert sum(o.id in reply for o in orders) == 5

    def test_last_empty(self, send_update, sent_texts):
        send_update(message("/last", user_id=999))
        assert sent_texts(ADMIN_CHAT_ID)[-1] == messages.EMPTY_TEXT

    def test_order_detail(self, send_update, sent_texts, make_order):
        order = make_order(gift_recipient="@pal")
        send_update(message(f"/o {order.id}", user_id=999))

        reply = sent_texts(ADMIN_CHAT_ID)[-1]
        assert order.id in reply
        assert "@pal" in reply

    def test_order_usage_and_missing(self, send_update, sent_texts):
        send_update(message("/o", user_id=999))
        assert sent_texts(ADMIN_CHAT_ID)[-1] == messages.usage_text("o")

        send_update(message("/o nope", user_id=999))
        assert sent_texts(ADMIN_CHAT_ID)[-1] == messages.NOT_FOUND_TEXT

    def test_cancel(self, send_update, store, sent_texts, make_order):
        order = make_order(status="pending")
        send_update(message(f"/cancel {order.id}", user_id=999))

        assert store.get(order.id).status == "cancelled"
        assert sent_texts(ADMIN_CHAT_ID)[-1] == messages.cancelled_text(order.id)

    def test_cancel_paid_refused(self, send_update, store, sent_texts, make_order):
        order = make_order(status="paid")
        send_update(message(f"/cancel {order.id}", user_id=999))

        assert store.get(order.id).status == "paid"
        assert sent_texts(ADMIN_CHAT_ID)[-1] == messages.cannot_cancel_text(order.id, "paid")
