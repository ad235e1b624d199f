# -*- coding: utf-8 -*-
"""
Chat message texts and inline keyboards.

All texts are Telegram HTML; anything user-supplied goes through escape().
"""
from html import escape
from typing import Any, Dict, Iterable, List, Optional

MAIN_MENU_TEXT = "✨ STARFALL: stars at friendly prices.\nChoose an action:"
BACK_HOME_TEXT = "◀️ Back to the main menu."
BUY_MENU_TEXT = "⭐ Pick a pack or tap \"Other amount\":"
ASK_GIFT_RECIPIENT_TEXT = "🎁 Enter your friend's @username (or id):"
RECIPIENT_REQUIRED_TEXT = "Enter the recipient first"
NOT_FOUND_TEXT = "⛔ Not found"
ORDER_CANCELLED_TEXT = "🚫 Order cancelled."
EMPTY_TEXT = "Nothing yet"
SESSION_EXPIRED_TEXT = "This step has expired, let's start over."
UNKNOWN_TEXT = "Use the menu buttons below."


def button(text: str, callback: Optional[str] = None, url: Optional[str] = None) -> Dict[str, str]:
    if url:
        return {"text": text, "url": url}
    return {"text": text, "callback_data": callback or ""}


def keyboard(rows: Iterable[List[Dict[str, str]]]) -> Dict[str, Any]:
    return {"inline_keyboard": [list(r) for r in rows]}


def _who(order) -> str:
    if order.buyer_handle:
        return f"@{escape(order.buyer_handle)}"
    return f"id:{escape(str(order.buyer_id))}"


def _ts(dt) -> str:
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "-"


def ask_quantity_text(min_quantity: int, max_quantity: int) -> str:
    return f"Enter the number of stars ({min_quantity:,} to {max_quantity:,}):".replace(",", " ")


def quantity_out_of_range_text(min_quantity: int, max_quantity: int) -> str:
    return f"Number out of range. Enter {min_quantity:,} to {max_quantity:,}.".replace(",", " ")


def gift_pick_pack_text(recipient: str) -> str:
    return (f"Ok! 🎉 Buying stars for {escape(recipient)}. "
            "Pick a pack or enter your own amount:")


def order_created_text(order, has_invoice: bool = False) -> str:
    head = "✅ Order created"
    if order.is_gift:
        head += f" (🎁 for {escape(order.gift_recipient)})"
    lines = [
        head,
        "",
        f"🧾 Number: <code>{order.id}</code>",
        f"⭐ Pack: {order.quantity} stars",
        f"💸 To pay: {order.price_primary}₽ or {order.price_secondary} USDT",
    ]
    if has_invoice:
        lines.append("")
        lines.append("Scan the SBP QR code or use a payment button below.")
    return "\n".join(lines)


def no_payment_channel_text(order) -> str:
    return (f"🧾 Order <code>{order.id}</code> is saved, but payment is temporarily "
            "unavailable. Support will contact you.")


def admin_new_order_text(order) -> str:
    title = "🆕 <b>New order (GIFT)</b>" if order.is_gift else "🆕 <b>New order</b>"
    lines = [
        title,
        f"🧾 <code>{order.id}</code>",
        f"⭐ {order.quantity}",
        f"💸 {order.price_primary}₽ / {order.price_secondary} USDT",
        f"👤 {_who(order)}",
    ]
    if order.is_gift:
        lines.append(f"🎁 Recipient: {escape(order.gift_recipient)}")
    return "\n".join(lines)


def admin_paid_text(order, currency: str, tx_ref: Optional[str]) -> str:
    lines = [
        "✅ <b>Payment received</b>",
        f"🧾 <code>{order.id}</code>",
        f"⭐ {order.quantity}",
        f"💱 {escape(currency)}",
        f"👤 {_who(order)}",
    ]
    if order.is_gift:
        lines.append(f"🎁 Recipient: {escape(order.gift_recipient)}")
    lines.append(f"🧷 <code>{escape(tx_ref or '-')}</code>")
    return "\n".join(lines)


def user_paid_text(order, eta_minutes: int) -> str:
    text = "✅ Order paid.\n"
    if order.is_gift:
        text += f"🎁 The gift will be sent to: {escape(order.gift_recipient)}\n"
    text += f"Delivery of {order.quantity} ⭐ takes ~{eta_minutes} min. I'll let you know when it's done."
    return text


def user_delivered_text(order) -> str:
    return f"🎉 Delivered {order.quantity} ⭐. Thank you!"


def admin_delivered_text(order, recipient: str, tx: Optional[str]) -> str:
    return (f"✅ <b>Delivery complete</b>\n🧾 <code>{order.id}</code>\n⭐ {order.quantity}\n"
            f"👤 {escape(recipient)}\n🧷 <code>{escape(tx or '-')}</code>")


def admin_delivery_retry_text(order, attempt: int, max_attempts: int, reason: str) -> str:
    return (f"⚠️ Delivery attempt {attempt}/{max_attempts} failed for "
            f"<code>{order.id}</code>: {escape(reason)}")


def user_delivery_failed_text(order) -> str:
    return (f"😔 Sorry, we could not deliver {order.quantity} ⭐ for order "
            f"<code>{order.id}</code>. Support will contact you.")


def admin_delivery_failed_text(order, attempts: int, reason: str) -> str:
    return (f"⛔ Could not deliver <code>{order.id}</code> ({attempts} attempts)\n"
            f"Reason: {escape(reason)}")


def admin_watch_exhausted_text(order_id: str, tries: int) -> str:
    return (f"⏳ Payment for <code>{order_id}</code> still not confirmed after "
            f"{tries} checks; polling stopped, order left pending.")


def payment_pending_text(status_label: str) -> str:
    return f"⏳ Payment not confirmed yet (status: {escape(str(status_label))}). Try again shortly."


def payment_confirmed_text() -> str:
    return "✅ Payment confirmed!"


def order_line(order) -> str:
    currency = f" ({order.currency})" if order.currency else ""
    return (f"🧾 <code>{order.id}</code>\n⭐ {order.quantity}\n"
            f"💳 {order.status}{currency}\n🕒 {_ts(order.created_at)}")


def order_detail(order) -> str:
    currency = f" ({order.currency})" if order.currency else ""
    lines = [
        f"🧾 ID: <code>{order.id}</code>",
        f"⭐ Stars: {order.quantity}",
        f"💳 Status: {order.status}{currency}",
        f"💸 {order.price_primary}₽ / {order.price_secondary} USDT",
        f"👤 {_who(order)}",
    ]
    if order.provider_tx:
        lines.append(f"🧷 Tx: <code>{escape(order.provider_tx)}</code>")
    if order.delivery_tx:
        lines.append(f"📦 Delivery tx: <code>{escape(order.delivery_tx)}</code>")
    if order.gift_recipient:
        lines.append(f"🎁 Recipient: {escape(order.gift_recipient)}")
    if order.retry_count:
        lines.append(f"🔁 Attempts: {order.retry_count}")
    if order.last_error:
        lines.append(f"❗ {escape(order.last_error)}")
    lines.append(f"🕒 {_ts(order.created_at)}")
    return "\n".join(lines)


def cancelled_text(order_id: str) -> str:
    return f"🚫 Order <code>{escape(order_id)}</code> cancelled."


def cannot_cancel_text(order_id: str, status: str) -> str:
    return f"Order <code>{escape(order_id)}</code> is {escape(status)} and cannot be cancelled."


def usage_text(command: str) -> str:
    return f"Usage: /{command} &lt;orderId&gt;"
