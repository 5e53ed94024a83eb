from __future__ import annotations
from typing import Dict, List, Optional
from bs4 import BeautifulSoup
from .base import SiteParser

AUTO = "auto"

_REGISTRY: Dict[str, SiteParser] = {}

def register(parser: SiteParser) -> None:
    _REGISTRY[parser.site_key] = parser

def get(key: str) -> SiteParser:
    if key not in _REGISTRY:
        raise KeyError(f"Unknown site key: {key}. Available: {sorted(_REGISTRY)}")
    return _REGISTRY[key]

def all_parsers() -> List[SiteParser]:
    return [p for _, p in sorted(_REGISTRY.items(), key=lambda kv: kv[0])]

def detect(soup: BeautifulSoup) -> Optional[SiteParser]:
    for parser in all_parsers():
        if parser.can_parse(soup):
            return parser
    return None
