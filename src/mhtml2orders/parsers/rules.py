from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from bs4 import Tag

from ..utils import parse_price

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Rule(Generic[T]):
    """
    One step of a fallback chain: `applies` locates something in the scope
    (or returns None), `extract` turns it into a value (or None).
    """
    name: str
    applies: Callable[[Optional[Tag]], Any]
    extract: Callable[[Any], Optional[T]]


def first_match(rules: Iterable[Rule[T]], scope: Optional[Tag]) -> Optional[T]:
    for rule in rules:
        hit = rule.applies(scope)
        if hit is None:
            continue
        value = rule.extract(hit)
        if value is None:
            continue
        log.debug("Rule '%s' matched: %r", rule.name, value)
        return value
    return None


def select(selector: str) -> Callable[[Optional[Tag]], Optional[Tag]]:
    def _applies(scope: Optional[Tag]) -> Optional[Tag]:
        return scope.select_one(selector) if scope is not None else None
    return _applies


def search(pattern: re.Pattern, text: Optional[str] = None) -> Callable[[Optional[Tag]], Optional[re.Match]]:
    """Regex over a fixed text, or over the scope's own text."""
    def _applies(scope: Optional[Tag]) -> Optional[re.Match]:
        source = text if text is not None else (scope.get_text(" ") if scope is not None else "")
        return pattern.search(source)
    return _applies


def text_of(el: Optional[Tag]) -> Optional[str]:
    if el is None:
        return None
    txt = re.sub(r"\s+", " ", el.get_text(" ")).strip()
    return txt or None


def compact_price(el: Tag) -> float:
    return parse_price(re.sub(r"\s+", "", el.get_text()))


# Hashed CSS-in-JS class names change per build; match on stable fragments.
DYNAMIC_PRICE_RULES: List[Rule[float]] = [
    Rule("hashed-wrap", select('[class*="es--wrap--"]'), compact_price),
    Rule("notranslate", select(".notranslate"), compact_price),
    Rule("price-like-class", select('[class*="wrap"], [class*="price"], [class*="amount"]'), compact_price),
]


def dynamic_price(scope: Optional[Tag], pattern: Optional[re.Pattern] = None,
                  text: Optional[str] = None) -> Optional[float]:
    rules = list(DYNAMIC_PRICE_RULES)
    if pattern is not None:
        rules.append(Rule("text-pattern", search(pattern, text), lambda m: parse_price(m.group(0))))
    return first_match(rules, scope)
