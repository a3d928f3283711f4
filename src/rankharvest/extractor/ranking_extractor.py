"""
BeautifulSoup-based extractor for leaderboard markup.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from rankharvest.config.config import SelectorConfig
from rankharvest.protocols import CharacterClass, Record

logger = logging.getLogger(__name__)

_BACKGROUND_URL = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)", re.IGNORECASE)
_NON_DIGITS = re.compile(r"[^\d]")


def parse_int(text: str | None) -> Optional[int]:
    """Parse an integer that may carry thousands separators; None when empty."""
    if not text:
        return None
    digits = _NON_DIGITS.sub("", text)
    return int(digits) if digits else None


def class_from_style(style: str | None) -> CharacterClass:
    """Resolve the character class from an icon's background-image URL."""
    if not style:
        return CharacterClass.UNKNOWN
    match = _BACKGROUND_URL.search(style)
    if not match:
        return CharacterClass.UNKNOWN
    icon_name = match.group(1).rsplit("/", 1)[-1].split("?", 1)[0]
    return CharacterClass.from_icon(icon_name)


class RankingExtractor:
    """Turns one ranking page into an ordered list of records.

    Pure and synchronous: no I/O, never raises for a malformed row.
    """

    name = "ranking"

    def __init__(self, selectors: SelectorConfig | None = None, parser: str = "html.parser") -> None:
        self.selectors = selectors or SelectorConfig()
        self.parser = parser

    def extract(self, markup: str | None) -> List[Record]:
        if not markup:
            return []

        soup = BeautifulSoup(markup, self.parser)
        records: List[Record] = []
        for position, row in enumerate(soup.select(self.selectors.row), start=1):
            try:
                record = self._parse_row(row, position)
            except (ValueError, AttributeError, TypeError) as e:
                logger.warning("Skipping malformed row %d: %s", position, e)
                continue
            if record is not None:
                records.append(record)

        logger.debug("Extracted %d records from %d bytes of markup", len(records), len(markup))
        return records

    def count_rows(self, markup: str | None) -> int:
        """Number of structural rows, well-formed or not."""
        if not markup:
            return 0
        return len(BeautifulSoup(markup, self.parser).select(self.selectors.row))

    def _parse_row(self, row: Tag, position: int) -> Optional[Record]:
        rank = parse_int(self._text(row, self.selectors.rank))
        name = self._text(row, self.selectors.name)

        if rank is None and not name:
            logger.debug("Dropping row %d without rank and name", position)
            return None

        icon = row.select_one(self.selectors.class_icon)
        style = icon.get("style") if icon is not None else None
        if isinstance(style, list):
            style = " ".join(style)

        return Record(
            rank=rank if rank is not None else position,
            name=name,
            character_class=class_from_style(style),
            server=self._text(row, self.selectors.server),
            clan=self._text(row, self.selectors.clan),
            power_score=parse_int(self._text(row, self.selectors.power)) or 0,
        )

    @staticmethod
    def _text(row: Tag, selector: str) -> str:
        node = row.select_one(selector)
        if node is None:
            return ""
        return node.get_text(" ", strip=True)
