from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from bs4 import BeautifulSoup

from ..config import ImportOptions
from ..images import ImageResolver
from ..progress import ProgressReporter
from ..types import ParsedOrder


@dataclass(frozen=True)
class ParseContext:
    """Everything one parse call needs; nothing is kept on the parser."""
    options: ImportOptions
    images: ImageResolver
    progress: ProgressReporter


class SiteParser(ABC):
    site_key: str
    display_name: str
    source_name: str
    site_url: str

    @abstractmethod
    def can_parse(self, soup: BeautifulSoup) -> bool:
        ...

    @abstractmethod
    def parse(self, soup: BeautifulSoup, ctx: ParseContext) -> List[ParsedOrder]:
        ...
