# -*- coding: utf-8 -*-
from starfall.infra.db import db

from .order import Order, OrderStatus
from .delivery_queue import DeliveryQueueEntry
from .payment_watch import PaymentWatchEntry
from .chat_session import ChatSession, SessionState
