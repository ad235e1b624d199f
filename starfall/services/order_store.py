# -*- coding: utf-8 -*-
"""
Order Store

Durable record of orders and the single mutation path for their status.
Every status change is one conditional UPDATE guarded by the allowed-from
set, so concurrent webhooks, pollers and workers can race safely.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from starfall.database import db
from starfall.models.order import Order, OrderStatus
from starfall.services.errors import OrderValidationError
from starfall.services.pricing import calculate_price, DEFAULT_RUB_PER_STAR, DEFAULT_USDT_PER_STAR
from starfall.services.structured_logging import get_logger
from starfall.utils.clock import utcnow
from starfall.utils.handles import normalize_recipient

logger = get_logger('starfall.orders')


class TransitionResult(str, Enum):
    APPLIED = "applied"
    ALREADY_IN_TARGET = "already_in_target"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Buyer:
    id: str
    handle: str = ""


def _status_value(status) -> str:
    return status.value if isinstance(status, OrderStatus) else str(status)


class OrderStore:
    """Persistence and state transitions for orders."""

    def __init__(self, session=None,
                 rub_rate: Decimal = DEFAULT_RUB_PER_STAR,
                 usdt_rate: Decimal = DEFAULT_USDT_PER_STAR,
                 min_quantity: int = 50,
                 max_quantity: int = 1_000_000):
        self.session = session if session is not None else db.session
        self.rub_rate = rub_rate
        self.usdt_rate = usdt_rate
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity

    def validate_quantity(self, quantity: Any) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise OrderValidationError("quantity must be an integer")
        if quantity < self.min_quantity or quantity > self.max_quantity:
            raise OrderValidationError(
                f"quantity must be between {self.min_quantity} and {self.max_quantity}"
            )
        return quantity

    def create(self, buyer: Buyer, quantity: int, gift_recipient: Optional[str] = None) -> Order:
        """
        Create and persist a new order.

        Args:
            buyer: Purchaser identity
            quantity: Number of stars
            gift_recipient: Optional alternate delivery target

        Returns:
            The persisted order in status "new"

        Raises:
            OrderValidationError: quantity is outside the accepted range, or the
                gift recipient is not a valid handle
        """
        quantity = self.validate_quantity(quantity)
        if gift_recipient is not None and str(gift_recipient).strip():
            recipient = normalize_recipient(gift_recipient)
            if recipient is None:
                raise OrderValidationError("gift recipient must be a username or numeric id")
        else:
            recipient = None
        price = calculate_price(quantity, self.rub_rate, self.usdt_rate)
        now = utcnow()

        order = Order(
            id=str(uuid.uuid4()),
            buyer_id=str(buyer.id),
            buyer_handle=(buyer.handle or "").strip().lstrip("@"),
            gift_recipient=recipient,
            quantity=quantity,
            price_primary=price.rub,
            price_secondary=price.usdt,
            status=OrderStatus.NEW.value,
            retry_count=0,
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.add(order)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to create order", buyer_id=str(buyer.id))
            raise

        logger.log_order_event("created", order.id, quantity=quantity,
                               price_rub=str(price.rub), gift=bool(order.gift_recipient))
        return order

    def get(self, order_id: str) -> Optional[Order]:
        if not order_id:
            return None
        return self.session.get(Order, order_id)

    def list_recent(self, limit: int = 5) -> List[Order]:
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def annotate(self, order_id: str, touch: bool = True, **fields) -> bool:
        """Set non-status columns (invoice correlation, admin thread). Returns False if missing."""
        if not fields:
            return False
        if "status" in fields:
            raise ValueError("status changes go through transition()")
        if touch:
            fields["updated_at"] = utcnow()
        stmt = (update(Order).where(Order.id == order_id).values(**fields)
                .execution_options(synchronize_session=False))
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Order annotate failed", order_id=order_id)
            raise
        return result.rowcount == 1

    def transition(self,
                   order_id: str,
                   expected: Iterable,
                   new_status,
                   fields: Optional[Dict[str, Any]] = None,
                   guard: Optional[Iterable] = None,
                   commit: bool = True) -> TransitionResult:
        """
        Move an order to new_status if its current status is in expected.

        Args:
            order_id: Order to change
            expected: Allowed current statuses
            new_status: Target status
            fields: Extra column values (plain values or SQL expressions)
            guard: Extra WHERE clauses the row must satisfy
            commit: Commit on success; pass False to extend the transaction

        Returns:
            APPLIED, ALREADY_IN_TARGET, NOT_FOUND or CONFLICT
        """
        allowed = [_status_value(s) for s in expected]
        target = _status_value(new_status)

        values = dict(fields or {})
        values["status"] = target
        values["updated_at"] = utcnow()

        stmt = update(Order).where(Order.id == order_id, Order.status.in_(allowed))
        for clause in guard or ():
            stmt = stmt.where(clause)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            result = self.session.execute(stmt)
            if result.rowcount == 1:
                if commit:
                    self.session.commit()
                logger.log_order_event("transition", order_id, to_status=target)
                return TransitionResult.APPLIED

            current = self.session.execute(
                select(Order.status).where(Order.id == order_id)
            ).scalar_one_or_none()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Order transition failed", order_id=order_id, to_status=target)
            raise

        if current is None:
            return TransitionResult.NOT_FOUND
        if current == target:
            return TransitionResult.ALREADY_IN_TARGET

        logger.debug("Order transition rejected", order_id=order_id,
                     current_status=current, to_status=target)
        return TransitionResult.CONFLICT
