# -*- coding: utf-8 -*-
"""
Chat command parsing.

Button callback data and slash commands are parsed into a closed set of
ChatCommand values before anything is dispatched; anything that is not a
command is TEXT and gets routed by the sender's session state.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ChatCommand(str, Enum):
    START = "start"
    BUY_MENU = "buy_menu"
    BUY_PACK = "buy_pack"
    BUY_CUSTOM = "buy_custom"
    GIFT_START = "gift_start"
    GIFT_PACK = "gift_pack"
    GIFT_CUSTOM = "gift_custom"
    CHECK_PAYMENT = "check_payment"
    BACK_HOME = "back_home"
    ADMIN_LAST = "admin_last"
    ADMIN_ORDER = "admin_order"
    ADMIN_CANCEL = "admin_cancel"
    TEXT = "text"


ADMIN_COMMANDS = frozenset({
    ChatCommand.ADMIN_LAST,
    ChatCommand.ADMIN_ORDER,
    ChatCommand.ADMIN_CANCEL,
})


@dataclass(frozen=True)
class ParsedCommand:
    command: ChatCommand
    arg: Optional[str] = None


# callback data (64 bytes max on Telegram)
CB_BUY_MENU = "buy_menu"
CB_BUY_CUSTOM = "custom_qty_self"
CB_GIFT_START = "gift_start"
CB_GIFT_CUSTOM = "gift_custom_qty"
CB_BACK_HOME = "back_home"

_STATIC_CALLBACKS = {
    CB_BUY_MENU: ChatCommand.BUY_MENU,
    CB_BUY_CUSTOM: ChatCommand.BUY_CUSTOM,
    CB_GIFT_START: ChatCommand.GIFT_START,
    CB_GIFT_CUSTOM: ChatCommand.GIFT_CUSTOM,
    CB_BACK_HOME: ChatCommand.BACK_HOME,
}

_CALLBACK_WITH_ARG = [
    (re.compile(r"^buy_(\d+)$"), ChatCommand.BUY_PACK),
    (re.compile(r"^gift_(\d+)$"), ChatCommand.GIFT_PACK),
    (re.compile(r"^check_([0-9a-fA-F-]{36})$"), ChatCommand.CHECK_PAYMENT),
]

_SLASH = {
    "start": ChatCommand.START,
    "menu": ChatCommand.START,
    "last": ChatCommand.ADMIN_LAST,
    "o": ChatCommand.ADMIN_ORDER,
    "cancel": ChatCommand.ADMIN_CANCEL,
}


def buy_pack_data(quantity: int) -> str:
    return f"buy_{quantity}"


def gift_pack_data(quantity: int) -> str:
    return f"gift_{quantity}"


def check_payment_data(order_id: str) -> str:
    return f"check_{order_id}"


def parse_callback(data: Optional[str]) -> Optional[ParsedCommand]:
    """Button callback data to a command; None for data we never issue."""
    data = (data or "").strip()
    if data in _STATIC_CALLBACKS:
        return ParsedCommand(_STATIC_CALLBACKS[data])
    for pattern, command in _CALLBACK_WITH_ARG:
        m = pattern.match(data)
        if m:
            return ParsedCommand(command, m.group(1))
    return None


def parse_message(text: Optional[str]) -> ParsedCommand:
    text = (text or "").strip()
    if text.startswith("/"):
        head, _, rest = text[1:].partition(" ")
        name = head.split("@", 1)[0].lower()
        if name in _SLASH:
            arg = rest.strip().split()[0] if rest.strip() else None
            return ParsedCommand(_SLASH[name], arg)
    return ParsedCommand(ChatCommand.TEXT, text)
