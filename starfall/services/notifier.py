# -*- coding: utf-8 -*-
"""
Notification side-channel.

Outbound chat messages to buyers and the admin go through a Notifier.
SafeNotifier wraps any Notifier so that a failed send is logged and
swallowed: a notification never rolls back or blocks an order transition.
"""
from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional

import requests

from starfall.services.http import requests_session
from starfall.services.structured_logging import get_logger

logger = get_logger('starfall.notify')


class NotifyError(Exception):
    """The chat API rejected or failed a call."""


class Notifier:
    """Base class for chat transports."""

    def send(self, chat_id: str, text: str,
             reply_markup: Optional[Dict[str, Any]] = None,
             reply_to: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def send_photo(self, chat_id: str, photo_b64: str, caption: str,
                   reply_markup: Optional[Dict[str, Any]] = None) -> Optional[str]:
        return self.send(chat_id, caption, reply_markup=reply_markup)

    def answer_callback(self, callback_id: str, text: Optional[str] = None,
                        show_alert: bool = False) -> None:
        return None


class NullNotifier(Notifier):
    """Used when no bot token is configured; drops every message."""

    def send(self, chat_id, text, reply_markup=None, reply_to=None):
        logger.debug("Notification dropped (no transport)", chat_id=str(chat_id))
        return None


class TelegramNotifier(Notifier):
    """Telegram Bot API transport over plain HTTPS."""

    def __init__(self, token: str, api_base: str = "https://api.telegram.org",
                 session: Optional[requests.Session] = None, timeout: int = 10):
        if not token:
            raise ValueError("Telegram bot token missing")
        self.base = f"{api_base.rstrip('/')}/bot{token}"
        self.session = session or requests_session(total=2)
        self.timeout = timeout

    def _call(self, method: str, payload: Dict[str, Any], files=None) -> Dict[str, Any]:
        try:
            if files:
                resp = self.session.post(f"{self.base}/{method}", data=payload,
                                         files=files, timeout=self.timeout)
            else:
                resp = self.session.post(f"{self.base}/{method}", json=payload,
                                         timeout=self.timeout)
        except requests.RequestException as e:
            raise NotifyError(f"{method} failed: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {"ok": False, "description": resp.text[:200]}

        if resp.status_code != 200 or not body.get("ok"):
            raise NotifyError(f"{method} failed: {resp.status_code} {body.get('description')}")
        return body.get("result") or {}

    def send(self, chat_id, text, reply_markup=None, reply_to=None):
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if reply_to:
            payload["reply_parameters"] = {
                "message_id": int(reply_to),
                "allow_sending_without_reply": True,
            }
        result = self._call("sendMessage", payload)
        message_id = result.get("message_id")
        return str(message_id) if message_id is not None else None

    def send_photo(self, chat_id, photo_b64, caption, reply_markup=None):
        data: Dict[str, Any] = {"chat_id": chat_id, "caption": caption, "parse_mode": "HTML"}
        if reply_markup:
            data["reply_markup"] = json.dumps(reply_markup)
        files = {"photo": ("qr.png", base64.b64decode(photo_b64), "image/png")}
        result = self._call("sendPhoto", data, files=files)
        message_id = result.get("message_id")
        return str(message_id) if message_id is not None else None

    def answer_callback(self, callback_id, text=None, show_alert=False):
        payload: Dict[str, Any] = {"callback_query_id": callback_id, "show_alert": show_alert}
        if text:
            payload["text"] = text
        self._call("answerCallbackQuery", payload)


class SafeNotifier:
    """Best-effort, fire-and-forget messaging for buyers and the admin."""

    def __init__(self, notifier: Notifier, admin_chat_id: Optional[str] = None):
        self.notifier = notifier
        self.admin_chat_id = str(admin_chat_id) if admin_chat_id else None

    def notify_user(self, chat_id, text: str,
                    reply_markup: Optional[Dict[str, Any]] = None) -> Optional[str]:
        try:
            return self.notifier.send(str(chat_id), text, reply_markup=reply_markup)
        except Exception as e:
            logger.warning("User notification failed", chat_id=str(chat_id), error=str(e))
            return None

    def notify_user_photo(self, chat_id, photo_b64: str, caption: str,
                          reply_markup: Optional[Dict[str, Any]] = None) -> Optional[str]:
        try:
            return self.notifier.send_photo(str(chat_id), photo_b64, caption,
                                            reply_markup=reply_markup)
        except Exception as e:
            logger.warning("Photo notification failed, falling back to text",
                           chat_id=str(chat_id), error=str(e))
            return self.notify_user(chat_id, caption, reply_markup=reply_markup)

    def notify_admin(self, text: str, order=None) -> Optional[str]:
        """Message the admin chat; replies into the order's admin thread when known."""
        if not self.admin_chat_id:
            return None
        reply_to = getattr(order, "admin_thread_ref", None) if order is not None else None
        try:
            return self.notifier.send(self.admin_chat_id, text, reply_to=reply_to)
        except Exception as e:
            logger.warning("Admin notification failed", error=str(e),
                           order_id=getattr(order, "id", None))
            return None

    def answer_callback(self, callback_id: str, text: Optional[str] = None,
                        show_alert: bool = False) -> None:
        try:
            self.notifier.answer_callback(callback_id, text=text, show_alert=show_alert)
        except Exception as e:
            logger.debug("Callback answer failed", error=str(e))

    def is_admin(self, user_id) -> bool:
        return bool(self.admin_chat_id) and str(user_id) == self.admin_chat_id


def build_notifier(config) -> SafeNotifier:
    token = config.get("BOT_TOKEN")
    transport: Notifier
    if token:
        transport = TelegramNotifier(token, api_base=config.get("TELEGRAM_API_BASE",
                                                                "https://api.telegram.org"))
    else:
        transport = NullNotifier()
    return SafeNotifier(transport, admin_chat_id=config.get("ADMIN_CHAT_ID"))
