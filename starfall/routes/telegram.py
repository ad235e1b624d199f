# -*- coding: utf-8 -*-
"""Telegram Bot API webhook intake."""
import hmac

from flask import Blueprint, current_app, jsonify, request

from starfall.chat.handlers import ChatHandler
from starfall.services.container import get_services
from starfall.services.request_context import set_request_actor
from starfall.services.structured_logging import get_logger

telegram_bp = Blueprint("telegram", __name__, url_prefix="/telegram")

logger = get_logger('starfall.chat')


def _secret_ok() -> bool:
    expected = current_app.config.get("TELEGRAM_WEBHOOK_SECRET") or ""
    if not expected:
        return True
    claimed = request.headers.get("X-Telegram-Bot-Api-Secret-Token") or ""
    return hmac.compare_digest(expected.encode("utf-8"), claimed.encode("utf-8"))


@telegram_bp.post("/webhook")
def telegram_webhook():
    if not _secret_ok():
        logger.log_security_event("telegram webhook secret mismatch", severity='warning')
        return jsonify({"ok": False}), 401

    update = request.get_json(silent=True)
    if not isinstance(update, dict):
        return jsonify({"ok": False, "error": "invalid update"}), 400

    sender = ((update.get("message") or update.get("callback_query") or {}).get("from") or {})
    if sender.get("id"):
        set_request_actor(chat_user_id=str(sender["id"]))

    try:
        ChatHandler(get_services()).handle_update(update)
    except Exception:
        # a non-200 makes Telegram redeliver the same update forever
        logger.exception("Chat update handling failed", update_id=update.get("update_id"))
    return jsonify({"ok": True}), 200
