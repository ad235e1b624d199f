# -*- coding: utf-8 -*-
"""Domain exceptions shared by the coordinator services."""


class StarfallError(Exception):
    """Base class for coordinator errors."""


class OrderValidationError(StarfallError, ValueError):
    """Bad user input for an order (quantity out of range, no recipient)."""


class PaymentProviderError(StarfallError):
    """Invoice creation or status lookup failed at the payment provider."""


class DeliveryProviderError(StarfallError):
    """The delivery provider could not be reached or rejected the call."""


class UnknownChannelError(StarfallError):
    """A webhook arrived for a payment channel we don't know."""
