# -*- coding: utf-8 -*-
"""
Chat session store.

Keeps the per-user step of multi-message flows in the database so a
restart does not strand a buyer halfway through a gift purchase. Sessions
expire after SESSION_TTL_SECONDS and then read as idle.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from starfall.database import db
from starfall.models.chat_session import ChatSession, SessionState
from starfall.services.structured_logging import get_logger
from starfall.utils.clock import utcnow

logger = get_logger('starfall.chat')


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    gift_recipient: Optional[str] = None
    expired: bool = False


IDLE = SessionSnapshot(state=SessionState.IDLE)


class SessionStore:

    def __init__(self, session=None, ttl_seconds: int = 900):
        self.session = session if session is not None else db.session
        self.ttl = timedelta(seconds=ttl_seconds)

    def get(self, user_id, now: Optional[datetime] = None) -> SessionSnapshot:
        """Current state for the user; expired rows are removed and reported once."""
        now = now or utcnow()
        row = self.session.get(ChatSession, str(user_id))
        if row is None:
            return IDLE
        if row.expires_at <= now:
            self.clear(user_id)
            return SessionSnapshot(state=SessionState.IDLE, expired=True)
        try:
            state = SessionState(row.state)
        except ValueError:
            logger.warning("Unknown session state, resetting", chat_user_id=str(user_id),
                           state=row.state)
            self.clear(user_id)
            return IDLE
        return SessionSnapshot(state=state, gift_recipient=row.gift_recipient)

    def set(self, user_id, state: SessionState, gift_recipient: Optional[str] = None,
            now: Optional[datetime] = None) -> None:
        if state is SessionState.IDLE:
            self.clear(user_id)
            return
        now = now or utcnow()
        try:
            row = self.session.get(ChatSession, str(user_id))
            if row is None:
                row = ChatSession(user_id=str(user_id))
                self.session.add(row)
            row.state = state.value
            row.gift_recipient = gift_recipient
            row.expires_at = now + self.ttl
            row.updated_at = now
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to save chat session", chat_user_id=str(user_id))
            raise

    def clear(self, user_id) -> None:
        try:
            self.session.execute(delete(ChatSession).where(ChatSession.user_id == str(user_id)))
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to clear chat session", chat_user_id=str(user_id))
            raise

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = self.session.execute(delete(ChatSession).where(ChatSession.expires_at <= now))
        self.session.commit()
        return result.rowcount or 0
