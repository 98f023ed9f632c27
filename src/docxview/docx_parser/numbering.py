"""Numbering parser and state trackers.

``parse_numbering`` reads numbering.xml into per-list schemes; the trackers
turn those schemes into rendered labels while the document is walked in
order. A tracker belongs to exactly one load call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from lxml import etree

from docxview.docx_parser.container import NAMESPACES, W, wval

ORDERED_FORMATS = {
    "decimal",
    "decimalZero",
    "lowerLetter",
    "upperLetter",
    "lowerRoman",
    "upperRoman",
}

DEFAULT_BULLET = "•"

_LEVEL_PLACEHOLDER = re.compile(r"%([1-9])")

_ROMAN = (
    (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"),
    (100, "C"), (90, "XC"), (50, "L"), (40, "XL"),
    (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
)


@dataclass(frozen=True)
class LevelFormat:
    """Declared format of one numbering level."""

    num_fmt: str = "decimal"
    lvl_text: str = "%1."
    start: int = 1
    p_style: Optional[str] = None  # paragraph style linked to this level (headings)

    @property
    def ordered(self) -> bool:
        return self.num_fmt in ORDERED_FORMATS


@dataclass(frozen=True)
class ListScheme:
    """All levels of one list definition."""

    levels: Dict[int, LevelFormat] = field(default_factory=dict)

    def level(self, ilvl: int) -> LevelFormat:
        if ilvl in self.levels:
            return self.levels[ilvl]
        return default_level(ilvl)

    @property
    def heading_styles(self) -> Dict[int, str]:
        return {lvl: fmt.p_style for lvl, fmt in self.levels.items() if fmt.p_style}


def default_level(ilvl: int) -> LevelFormat:
    """Level format used when a list id has no declared definition."""
    cycle = (
        ("decimal", "%{n}."),
        ("lowerLetter", "%{n})"),
        ("lowerRoman", "%{n}."),
    )
    num_fmt, template = cycle[ilvl % len(cycle)]
    return LevelFormat(num_fmt=num_fmt, lvl_text=template.format(n=min(ilvl, 8) + 1))


def parse_numbering(numbering_xml: Optional[etree._Element]) -> Dict[str, ListScheme]:
    """Parse numbering.xml to build list schemes.

    Args:
        numbering_xml: Parsed root of numbering.xml (or None when absent).

    Returns:
        Dict mapping numId to its ListScheme.
    """
    if numbering_xml is None:
        return {}

    # Parse abstract numbering definitions
    abstract_nums: Dict[str, Dict[int, LevelFormat]] = {}
    for abstract in numbering_xml.findall(".//w:abstractNum", NAMESPACES):
        abstract_id = abstract.get(f"{W}abstractNumId")
        if not abstract_id:
            continue

        levels: Dict[int, LevelFormat] = {}
        for lvl in abstract.findall("w:lvl", NAMESPACES):
            lvl_id = lvl.get(f"{W}ilvl")
            if lvl_id is None or not lvl_id.isdigit():
                continue
            levels[int(lvl_id)] = _parse_level(lvl, int(lvl_id))

        abstract_nums[abstract_id] = levels

    # Parse numbering instances
    numbering_map: Dict[str, ListScheme] = {}
    for num in numbering_xml.findall(".//w:num", NAMESPACES):
        num_id = num.get(f"{W}numId")
        abstract_id = wval(num.find("w:abstractNumId", NAMESPACES))
        if num_id and abstract_id in abstract_nums:
            levels = dict(abstract_nums[abstract_id])
            # Level overrides may replace a level's format wholesale
            for override in num.findall("w:lvlOverride", NAMESPACES):
                ilvl = override.get(f"{W}ilvl")
                lvl = override.find("w:lvl", NAMESPACES)
                if ilvl is not None and ilvl.isdigit() and lvl is not None:
                    levels[int(ilvl)] = _parse_level(lvl, int(ilvl))
            numbering_map[num_id] = ListScheme(levels=levels)

    return numbering_map


def _parse_level(lvl: etree._Element, ilvl: int) -> LevelFormat:
    num_fmt = wval(lvl.find("w:numFmt", NAMESPACES)) or "decimal"
    lvl_text = wval(lvl.find("w:lvlText", NAMESPACES))
    if lvl_text is None:
        lvl_text = DEFAULT_BULLET if num_fmt == "bullet" else f"%{ilvl + 1}."
    start_val = wval(lvl.find("w:start", NAMESPACES))
    start = int(start_val) if start_val and start_val.lstrip("-").isdigit() else 1
    p_style = wval(lvl.find("w:pStyle", NAMESPACES))
    return LevelFormat(num_fmt=num_fmt, lvl_text=lvl_text, start=start, p_style=p_style)


def to_roman(num: int) -> str:
    if num <= 0:
        return str(num)
    out = []
    for value, symbol in _ROMAN:
        while num >= value:
            out.append(symbol)
            num -= value
    return "".join(out)


def to_letters(num: int) -> str:
    """1 -> a, 26 -> z, 27 -> aa, 28 -> bb (Word's repeating scheme)."""
    if num <= 0:
        return str(num)
    letter = chr(ord("a") + (num - 1) % 26)
    return letter * ((num - 1) // 26 + 1)


def format_counter(value: int, num_fmt: str) -> str:
    if num_fmt == "decimalZero":
        return f"{value:02d}"
    if num_fmt == "lowerLetter":
        return to_letters(value)
    if num_fmt == "upperLetter":
        return to_letters(value).upper()
    if num_fmt == "lowerRoman":
        return to_roman(value).lower()
    if num_fmt == "upperRoman":
        return to_roman(value)
    if num_fmt == "none":
        return ""
    return str(value)


def bullet_glyph(lvl_text: str) -> str:
    """Map a declared bullet character to something a terminal can show.

    Symbol/Wingdings bullets are stored as private-use code points.
    """
    glyph = lvl_text.strip()
    if not glyph or any(0xE000 <= ord(ch) <= 0xF8FF for ch in glyph):
        return DEFAULT_BULLET
    if glyph == "o":
        return "◦"
    return glyph


class NumberingContext:
    """Stateful counters keyed by (list id, level).

    One instance per load; paragraphs must be visited in document order.
    """

    def __init__(self, schemes: Optional[Dict[str, ListScheme]] = None):
        self.schemes: Dict[str, ListScheme] = schemes or {}
        self.counters: Dict[Tuple[str, int], int] = {}

    def scheme(self, list_id: str) -> ListScheme:
        return self.schemes.get(list_id) or ListScheme()

    def level_format(self, list_id: str, level: int) -> LevelFormat:
        return self.scheme(list_id).level(level)

    def is_ordered(self, list_id: str, level: int) -> bool:
        return self.level_format(list_id, level).ordered

    def advance(self, list_id: str, level: int) -> str:
        """Advance the counter for ``level`` and return the rendered label."""
        list_id = str(list_id)
        fmt = self.level_format(list_id, level)
        key = (list_id, level)
        self.counters[key] = self.counters.get(key, fmt.start - 1) + 1

        # Reset deeper levels: 1. -> 1.1 -> 2. restarts the next sublevel at its start
        for deeper in [k for k in self.counters if k[0] == list_id and k[1] > level]:
            del self.counters[deeper]

        if fmt.num_fmt == "bullet":
            return bullet_glyph(fmt.lvl_text)
        return self._format(list_id, fmt.lvl_text)

    def _format(self, list_id: str, lvl_text: str) -> str:
        def substitute(match: re.Match) -> str:
            ref_level = int(match.group(1)) - 1
            ref_fmt = self.level_format(list_id, ref_level)
            value = self.counters.get((list_id, ref_level), ref_fmt.start)
            return format_counter(value, ref_fmt.num_fmt)

        return _LEVEL_PLACEHOLDER.sub(substitute, lvl_text)


class HeadingNumberTracker:
    """Automatic "1", "1.1", "1.1.1" numbering for unnumbered style headings."""

    MAX_LEVELS = 6

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self.counters: List[int] = [0] * self.MAX_LEVELS

    def next(self, level: int) -> Optional[str]:
        if not self.enabled:
            return None
        index = max(0, min(level, self.MAX_LEVELS) - 1)
        self.counters[index] += 1
        for deeper in range(index + 1, self.MAX_LEVELS):
            self.counters[deeper] = 0
        parts = [str(c) for c in self.counters[: index + 1] if c > 0]
        return ".".join(parts)
