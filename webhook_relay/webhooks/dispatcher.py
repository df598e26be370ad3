"""Webhook event normalization — topic names, upstream ids, audit summaries.

Maps the platform's topic header and JSON payload onto the fields a
QueuedEvent carries. Summaries are for audit logs only and are sanitized
(HTML stripped, length capped, customer e-mail redacted).
"""

from __future__ import annotations

import html
import re
import time
from typing import Any

# Maximum payload field length in audit summaries
_MAX_FIELD_LENGTH = 200

UNINSTALL_TOPIC = "app/uninstalled"


def normalize_topic(topic: str) -> str:
    """'orders/create' -> 'orders_create'."""
    return topic.strip().replace("/", "_")


def original_event_id(payload: Any) -> str:
    """Upstream id of the webhook's resource, or a millisecond timestamp."""
    if isinstance(payload, dict):
        value = payload.get("id")
        if value not in (None, ""):
            return str(value)
    return str(int(time.time() * 1000))


def _sanitize_field(value: Any) -> str:
    """Sanitize a payload field value for safe inclusion in log lines."""
    if value is None:
        return ""
    s = str(value)
    s = re.sub(r"<[^>]+>", "", s)
    s = html.unescape(s)
    s = re.sub(r"\s+", " ", s).strip()
    if len(s) > _MAX_FIELD_LENGTH:
        s = s[:_MAX_FIELD_LENGTH] + "..."
    return s


def summarize(topic: str, payload: Any) -> str:
    """Human-readable one-liner for a webhook payload."""
    if not isinstance(payload, dict):
        return "unknown"

    if topic.startswith("orders/"):
        order_id = _sanitize_field(payload.get("id") or payload.get("order_number"))
        total = _sanitize_field(payload.get("total_price"))
        currency = _sanitize_field(payload.get("currency", "USD"))
        items = payload.get("line_items", [])
        item_count = len(items) if isinstance(items, list) else 0
        return f"Order #{order_id}, {total} {currency}, {item_count} items"

    if topic.startswith("checkouts/"):
        checkout_id = _sanitize_field(payload.get("id") or payload.get("token"))
        total = _sanitize_field(payload.get("total_price"))
        return f"Checkout {checkout_id} {total}".strip()

    if topic.startswith("products/"):
        title = _sanitize_field(payload.get("title"))
        product_id = _sanitize_field(payload.get("id"))
        return f"Product '{title}' (ID: {product_id})"

    if topic.startswith("customers/"):
        email = _sanitize_field(payload.get("email", ""))
        if "@" in email:
            email = "***@" + email.split("@")[1]
        return f"Customer {email}".strip()

    return _sanitize_field(payload.get("id", "unknown"))
