# -*- coding: utf-8 -*-
# starfall/routes/webhooks.py
"""
Payment provider webhooks.

    POST /webhook/<channel>     channel in rub | crypto | sbp
    X-Sign: <shared secret of the channel>

Unknown orders and repeated notifications are acknowledged with 200 so the
provider stops retrying; only a bad signature (401) or a body without an
order reference (400) is refused.
"""
from flask import Blueprint, jsonify, request

from starfall.services.container import get_services
from starfall.services.payment_gateway import CHANNELS, WebhookOutcome
from starfall.services.request_context import set_request_actor

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhook")

_STATUS = {
    WebhookOutcome.OK: 200,
    WebhookOutcome.ALREADY_APPLIED: 200,
    WebhookOutcome.ORDER_NOT_FOUND: 200,
    WebhookOutcome.UNAUTHORIZED: 401,
    WebhookOutcome.MALFORMED: 400,
}


@webhooks_bp.post("/<channel>")
def payment_webhook(channel: str):
    channel = (channel or "").lower()
    if channel not in CHANNELS:
        return jsonify({"ok": False, "error": "unknown_channel"}), 404

    set_request_actor(webhook_channel=channel)

    # parsed lazily; the signature is checked before the body is looked at
    payload = request.get_json(silent=True)
    outcome = get_services().gateway.handle_webhook(
        channel, payload, request.headers.get("X-Sign"))

    status = _STATUS[outcome]
    if outcome is WebhookOutcome.UNAUTHORIZED:
        return jsonify({"ok": False, "error": "unauthorized"}), status
    if outcome is WebhookOutcome.MALFORMED:
        return jsonify({"ok": False, "error": "order_reference required"}), status
    return jsonify({"ok": True}), status
