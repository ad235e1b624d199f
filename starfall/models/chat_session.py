# -*- coding: utf-8 -*-
"""
Chat Session Model

Per-user conversational state for multi-step chat flows (gift recipient,
custom quantity prompts). Rows past expires_at read as idle.
"""
from enum import Enum

from sqlalchemy import Column, String, DateTime

from starfall.database import db
from starfall.utils.clock import utcnow


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_GIFT_RECIPIENT = "awaiting_gift_recipient"
    AWAITING_GIFT_QUANTITY = "awaiting_gift_quantity"
    AWAITING_CUSTOM_QUANTITY = "awaiting_custom_quantity"


class ChatSession(db.Model):
    __tablename__ = "chat_sessions"
    __table_args__ = {"extend_existing": True}

    user_id = Column(String(64), primary_key=True)
    state = Column(String(32), nullable=False, default=SessionState.IDLE.value)
    gift_recipient = Column(String(128), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<ChatSession {self.user_id} {self.state}>"
