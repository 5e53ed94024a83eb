from __future__ import annotations
import logging
from typing import Callable, List, Tuple

log = logging.getLogger(__name__)

DEFAULT_STATUS = "ordered"


def _contains(*phrases: str) -> Callable[[str], bool]:
    return lambda s: any(p in s for p in phrases)


# Precedence matters: "awaiting delivery" must win over "waiting".
STATUS_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (_contains("completed", "finished", "received", "receipt acknowledged", "confirmed delivery"), "delivered"),
    (lambda s: s == "delivered" or "successfully delivered" in s, "delivered"),
    (_contains("awaiting delivery", "shipped", "sent", "transit", "on the way", "dispatched"), "shipped"),
    (_contains("to ship", "preparing", "processing", "confirmed", "placed"), "ordered"),
    (_contains("pending", "waiting", "awaiting payment", "awaiting confirmation", "unpaid"), "pending"),
    (_contains("cancelled", "canceled", "refunded"), "cancelled"),
]


def canonicalize_status(text: str) -> str:
    normalized = (text or "").strip().lower()
    for test, status in STATUS_RULES:
        if test(normalized):
            return status
    log.warning("Unknown order status '%s', defaulting to '%s'", text, DEFAULT_STATUS)
    return DEFAULT_STATUS
