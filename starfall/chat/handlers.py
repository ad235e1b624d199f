# -*- coding: utf-8 -*-
"""
Chat command handlers.

One handler per ChatCommand; the table is checked at import time so a new
command cannot ship without a handler. Handlers reply through the notifier
and never touch order status directly.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from starfall.chat.commands import (
    ADMIN_COMMANDS,
    CB_BACK_HOME,
    CB_BUY_CUSTOM,
    CB_BUY_MENU,
    CB_GIFT_CUSTOM,
    CB_GIFT_START,
    ChatCommand,
    ParsedCommand,
    buy_pack_data,
    check_payment_data,
    gift_pack_data,
    parse_callback,
    parse_message,
)
from starfall.models.chat_session import SessionState
from starfall.models.order import PAYABLE_STATUSES, OrderStatus
from starfall.services import messages
from starfall.services.checkout import PlacedOrder
from starfall.services.errors import OrderValidationError, PaymentProviderError
from starfall.services.messages import button, keyboard
from starfall.services.order_store import Buyer, TransitionResult
from starfall.services.pricing import parse_quantity
from starfall.services.structured_logging import get_logger
from starfall.utils.handles import normalize_recipient

logger = get_logger('starfall.chat')


@dataclass
class ChatContext:
    user_id: str
    handle: str
    chat_id: str
    callback_id: Optional[str] = None
    answered: bool = False

    @property
    def buyer(self) -> Buyer:
        return Buyer(id=self.user_id, handle=self.handle)


def context_from_update(update: Dict[str, Any]):
    """Extract (ChatContext, ParsedCommand) from a Telegram update, or None."""
    callback = update.get("callback_query")
    if callback:
        sender = callback.get("from") or {}
        chat = ((callback.get("message") or {}).get("chat") or {})
        parsed = parse_callback(callback.get("data"))
        if parsed is None or not sender.get("id"):
            return None
        ctx = ChatContext(
            user_id=str(sender["id"]),
            handle=sender.get("username") or "",
            chat_id=str(chat.get("id") or sender["id"]),
            callback_id=callback.get("id"),
        )
        return ctx, parsed

    message = update.get("message")
    if message and message.get("text") is not None:
        sender = message.get("from") or {}
        if not sender.get("id"):
            return None
        ctx = ChatContext(
            user_id=str(sender["id"]),
            handle=sender.get("username") or "",
            chat_id=str((message.get("chat") or {}).get("id") or sender["id"]),
        )
        return ctx, parse_message(message.get("text"))

    return None


class ChatHandler:
    """Dispatches parsed chat commands to the coordinator services."""

    def __init__(self, services):
        self.services = services
        self.config = services.config
        self.notifier = services.notifier
        self.sessions = services.sessions
        self.min_quantity = self.config["MIN_QUANTITY"]
        self.max_quantity = self.config["MAX_QUANTITY"]
        self.packs: List[int] = list(self.config["STAR_PACKS"])

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_update(self, update: Dict[str, Any]) -> Optional[ChatCommand]:
        extracted = context_from_update(update)
        if extracted is None:
            callback = update.get("callback_query")
            if callback and callback.get("id"):
                self.notifier.answer_callback(callback["id"])
            return None
        ctx, parsed = extracted
        self.dispatch(ctx, parsed)
        return parsed.command

    def dispatch(self, ctx: ChatContext, parsed: ParsedCommand) -> None:
        if parsed.command in ADMIN_COMMANDS and not self.notifier.is_admin(ctx.user_id):
            logger.debug("Admin command from non-admin ignored", chat_user_id=ctx.user_id,
                         command=parsed.command.value)
            return

        HANDLERS[parsed.command](self, ctx, parsed.arg)

        if ctx.callback_id and not ctx.answered:
            self.notifier.answer_callback(ctx.callback_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reply(self, ctx: ChatContext, text: str, markup: Optional[dict] = None):
        return self.notifier.notify_user(ctx.chat_id, text, reply_markup=markup)

    def _alert(self, ctx: ChatContext, text: str) -> None:
        if ctx.callback_id:
            # callback alerts are plain text
            self.notifier.answer_callback(ctx.callback_id, text=html.unescape(text), show_alert=True)
            ctx.answered = True
        else:
            self._reply(ctx, text)

    def _back_row(self) -> List[dict]:
        return [button("Back", CB_BACK_HOME)]

    def _main_menu(self, ctx: ChatContext, text: str = messages.MAIN_MENU_TEXT):
        self._reply(ctx, text, keyboard([
            [button("⭐ Buy for myself", CB_BUY_MENU)],
            [button("🎁 Buy for a friend", CB_GIFT_START)],
        ]))

    def _packs_keyboard(self, custom_data: str, pack_data: Callable[[int], str]) -> dict:
        rows = [[button("🔢 Other amount", custom_data)]]
        rows += [[button(f"✨ {p} stars", pack_data(p))] for p in self.packs]
        rows.append(self._back_row())
        return keyboard(rows)

    def _order_keyboard(self, placed: PlacedOrder) -> dict:
        rows = []
        if placed.invoice is not None and placed.invoice.pay_url:
            rows.append([button("⚡ Pay via SBP", url=placed.invoice.pay_url)])
        for link in placed.links:
            rows.append([button(link.label, url=link.url)])
        if placed.invoice is not None and placed.invoice.poll_operation_id:
            rows.append([button("🔄 Check payment", check_payment_data(placed.order.id))])
        rows.append(self._back_row())
        return keyboard(rows)

    def _place(self, ctx: ChatContext, quantity: int, gift_recipient: Optional[str] = None) -> bool:
        try:
            placed = self.services.checkout.place_order(ctx.buyer, quantity,
                                                        gift_recipient=gift_recipient)
        except OrderValidationError:
            self._reply(ctx, messages.quantity_out_of_range_text(self.min_quantity,
                                                                 self.max_quantity))
            return False

        order = placed.order
        if not placed.payable:
            self._reply(ctx, messages.no_payment_channel_text(order), keyboard([self._back_row()]))
            return True

        text = messages.order_created_text(order, has_invoice=placed.invoice is not None)
        markup = self._order_keyboard(placed)
        if placed.invoice is not None and placed.invoice.qr_image:
            self.notifier.notify_user_photo(ctx.chat_id, placed.invoice.qr_image, text,
                                            reply_markup=markup)
        else:
            self._reply(ctx, text, markup)
        return True

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_start(self, ctx, arg):
        self.sessions.clear(ctx.user_id)
        self._main_menu(ctx)

    def on_back_home(self, ctx, arg):
        self.sessions.clear(ctx.user_id)
        self._main_menu(ctx, messages.BACK_HOME_TEXT)

    def on_buy_menu(self, ctx, arg):
        self._reply(ctx, messages.BUY_MENU_TEXT, self._packs_keyboard(CB_BUY_CUSTOM, buy_pack_data))

    def on_buy_pack(self, ctx, arg):
        self.sessions.clear(ctx.user_id)
        self._place(ctx, int(arg))

    def on_buy_custom(self, ctx, arg):
        self.sessions.set(ctx.user_id, SessionState.AWAITING_CUSTOM_QUANTITY)
        self._reply(ctx, messages.ask_quantity_text(self.min_quantity, self.max_quantity),
                    keyboard([self._back_row()]))

    def on_gift_start(self, ctx, arg):
        self.sessions.set(ctx.user_id, SessionState.AWAITING_GIFT_RECIPIENT)
        self._reply(ctx, messages.ASK_GIFT_RECIPIENT_TEXT, keyboard([self._back_row()]))

    def on_gift_custom(self, ctx, arg):
        snapshot = self.sessions.get(ctx.user_id)
        if snapshot.state is not SessionState.AWAITING_GIFT_QUANTITY or not snapshot.gift_recipient:
            self._alert(ctx, messages.RECIPIENT_REQUIRED_TEXT)
            return
        self._reply(ctx, messages.ask_quantity_text(self.min_quantity, self.max_quantity))

    def on_gift_pack(self, ctx, arg):
        snapshot = self.sessions.get(ctx.user_id)
        if snapshot.state is not SessionState.AWAITING_GIFT_QUANTITY or not snapshot.gift_recipient:
            self._alert(ctx, messages.RECIPIENT_REQUIRED_TEXT)
            return
        if self._place(ctx, int(arg), gift_recipient=snapshot.gift_recipient):
            self.sessions.clear(ctx.user_id)

    def on_check_payment(self, ctx, arg):
        order = self.services.orders.get(arg)
        if order is None or order.buyer_id != ctx.user_id:
            self._alert(ctx, messages.NOT_FOUND_TEXT)
            return

        if order.status not in PAYABLE_STATUSES:
            if order.status == OrderStatus.CANCELLED.value:
                self._alert(ctx, messages.ORDER_CANCELLED_TEXT)
            else:
                self._alert(ctx, messages.payment_confirmed_text())
            return

        try:
            poll = self.services.gateway.check_now(order)
        except PaymentProviderError as e:
            logger.warning("Manual payment check failed", order_id=order.id, error=str(e))
            self._alert(ctx, messages.payment_pending_text("unavailable"))
            return

        if poll is None:
            self._alert(ctx, messages.payment_pending_text(order.status))
        elif poll.paid:
            self._alert(ctx, messages.payment_confirmed_text())
        else:
            self._alert(ctx, messages.payment_pending_text(poll.status_label))

    def on_admin_last(self, ctx, arg):
        orders = self.services.orders.list_recent(5)
        if not orders:
            self._reply(ctx, messages.EMPTY_TEXT)
            return
        self._reply(ctx, "\n\n".join(messages.order_line(o) for o in orders))

    def on_admin_order(self, ctx, arg):
        if not arg:
            self._reply(ctx, messages.usage_text("o"))
            return
        order = self.services.orders.get(arg)
        if order is None:
            self._reply(ctx, messages.NOT_FOUND_TEXT)
            return
        self._reply(ctx, messages.order_detail(order))

    def on_admin_cancel(self, ctx, arg):
        if not arg:
            self._reply(ctx, messages.usage_text("cancel"))
            return
        result = self.services.checkout.cancel_order(arg)
        if result in (TransitionResult.APPLIED, TransitionResult.ALREADY_IN_TARGET):
            self._reply(ctx, messages.cancelled_text(arg))
        elif result is TransitionResult.NOT_FOUND:
            self._reply(ctx, messages.NOT_FOUND_TEXT)
        else:
            order = self.services.orders.get(arg)
            self._reply(ctx, messages.cannot_cancel_text(arg, order.status if order else "?"))

    def on_text(self, ctx, arg):
        text = (arg or "").strip()
        snapshot = self.sessions.get(ctx.user_id)

        if snapshot.expired:
            self._main_menu(ctx, messages.SESSION_EXPIRED_TEXT)
            return

        if snapshot.state is SessionState.AWAITING_GIFT_RECIPIENT:
            recipient = normalize_recipient(text)
            if recipient is None:
                self._reply(ctx, messages.ASK_GIFT_RECIPIENT_TEXT)
                return
            self.sessions.set(ctx.user_id, SessionState.AWAITING_GIFT_QUANTITY,
                              gift_recipient=recipient)
            self._reply(ctx, messages.gift_pick_pack_text(recipient),
                        self._packs_keyboard(CB_GIFT_CUSTOM, gift_pack_data))
            return

        if snapshot.state in (SessionState.AWAITING_GIFT_QUANTITY,
                              SessionState.AWAITING_CUSTOM_QUANTITY):
            quantity = parse_quantity(text, self.min_quantity, self.max_quantity)
            if quantity is None:
                self._reply(ctx, messages.quantity_out_of_range_text(self.min_quantity,
                                                                     self.max_quantity))
                return
            gift = snapshot.gift_recipient if snapshot.state is SessionState.AWAITING_GIFT_QUANTITY else None
            if self._place(ctx, quantity, gift_recipient=gift):
                self.sessions.clear(ctx.user_id)
            return

        self._main_menu(ctx, messages.UNKNOWN_TEXT)


HANDLERS: Dict[ChatCommand, Callable[[ChatHandler, ChatContext, Optional[str]], None]] = {
    ChatCommand.START: ChatHandler.on_start,
    ChatCommand.BUY_MENU: ChatHandler.on_buy_menu,
    ChatCommand.BUY_PACK: ChatHandler.on_buy_pack,
    ChatCommand.BUY_CUSTOM: ChatHandler.on_buy_custom,
    ChatCommand.GIFT_START: ChatHandler.on_gift_start,
    ChatCommand.GIFT_PACK: ChatHandler.on_gift_pack,
    ChatCommand.GIFT_CUSTOM: ChatHandler.on_gift_custom,
    ChatCommand.CHECK_PAYMENT: ChatHandler.on_check_payment,
    ChatCommand.BACK_HOME: ChatHandler.on_back_home,
    ChatCommand.ADMIN_LAST: ChatHandler.on_admin_last,
    ChatCommand.ADMIN_ORDER: ChatHandler.on_admin_order,
    ChatCommand.ADMIN_CANCEL: ChatHandler.on_admin_cancel,
    ChatCommand.TEXT: ChatHandler.on_text,
}

_missing = set(ChatCommand) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"chat commands without a handler: {sorted(c.value for c in _missing)}")
