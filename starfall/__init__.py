"""
Starfall order-and-fulfillment coordinator.

Accepts purchases from the chat bot, confirms payment through webhooks and
status polling, and drives delivery through an external provider.
"""

__version__ = "1.0.0"
