from __future__ import annotations
import random
import re
import string
import time
from datetime import datetime
from typing import Optional

import dateparser
from dateparser.search import search_dates

_PRICE_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")
_INT_RE = re.compile(r"\d+")

# missing day -> 1st of the month instead of today
DATE_SETTINGS = {"PREFER_DAY_OF_MONTH": "first"}


def normalize_ws(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def parse_price(text: str) -> float:
    """
    First numeric run in the text, thousands commas removed:
    "US $1,234.56" -> 1234.56. Returns 0.0 when nothing parses.
    """
    if not text:
        return 0.0
    m = _PRICE_RE.search(text)
    if not m:
        return 0.0
    try:
        value = float(m.group(0).replace(",", ""))
    except ValueError:
        return 0.0
    return max(value, 0.0)


def parse_quantity(text: str) -> int:
    if not text:
        return 1
    m = _INT_RE.search(text)
    if not m:
        return 1
    return max(int(m.group(0)), 1)


def parse_date(text: str) -> Optional[str]:
    """
    Best-effort ISO-8601 rendering of a date string, None if unparseable.
    A date inside surrounding text ("Placed on 2024-04-10") is searched for.
    """
    text = normalize_ws(text)
    if not text:
        return None
    parsed = dateparser.parse(text, settings=DATE_SETTINGS)
    if parsed is None:
        found = search_dates(text, settings=DATE_SETTINGS)
        parsed = found[0][1] if found else None
    return parsed.isoformat() if parsed else None


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat()


def generate_order_id(prefix: str = "AE") -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def sanitize_filename(s: str, keep: str = "._-") -> str:
    return re.sub(r"[^a-zA-Z0-9" + re.escape(keep) + r"]", "_", s or "")


def format_number(value: float) -> str:
    # 10000.0 -> "10000", 4.7 -> "4.7"
    if float(value).is_integer():
        return str(int(value))
    return str(value)
