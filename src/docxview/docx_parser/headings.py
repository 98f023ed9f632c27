"""Heading classifier.

Decides whether a paragraph is a heading and at which level. Priority:

1. a named heading style (outline level, "Heading N", "Title");
2. a numbering level that links a heading style (``w:lvl/w:pStyle``);
3. text heuristics for unstyled documents (short bold lines, ALL-CAPS
   lines, "Chapter/Section/Part N" lines).

Heuristics never apply to paragraphs that carry a numbering reference.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from docxview.config import Settings, settings as default_settings
from docxview.docx_parser.lists import match_list_marker
from docxview.docx_parser.numbering import NumberingContext
from docxview.docx_parser.styles import get_heading_level, is_generic_heading_style
from docxview.ir import FormattedRun

# Manual numbering written into heading text; the number is kept verbatim
MANUAL_NUMBER_PATTERNS = (
    re.compile(r"^(\d+(?:\.\d+)+\.?|\d+\.)\s+(.+)$"),
    re.compile(r"^((?:Section|Chapter|Part)\s+\d+(?:\.\d+)*\.?)\s+(.+)$", re.IGNORECASE),
    re.compile(r"^([A-Z]\.)\s+(.+)$"),
    re.compile(r"^([IVX]+\.)\s+(.+)$"),
)

CHAPTER_PREFIX = re.compile(r"^(chapter|section|part)\s+\S+", re.IGNORECASE)
SENTENCE_CONNECTORS = (" and ", " but ", " or ", " because ", " which ")
TERMINAL_PUNCTUATION = (".", ",", ";", ":")


@dataclass(frozen=True)
class NumRef:
    """A paragraph's numbering reference (``w:numPr``)."""

    num_id: str
    ilvl: int = 0


@dataclass(frozen=True)
class HeadingInfo:
    level: int
    text: str
    number: Optional[str] = None
    source: str = "style"  # "style", "numbering" or "heuristic"


def extract_manual_number(text: str) -> Tuple[Optional[str], str]:
    """Split ``"2.1 Overview"`` into ``("2.1", "Overview")``."""
    for pattern in MANUAL_NUMBER_PATTERNS:
        match = pattern.match(text)
        if match:
            return match.group(1), match.group(2).strip()
    return None, text


def number_depth(number: str) -> int:
    """Nesting depth implied by a manual number: "2.1" -> 2, "A." -> 1."""
    groups = re.findall(r"\d+", number)
    return max(1, len(groups))


def looks_like_sentence(text: str) -> bool:
    lowered = f" {text.lower()} "
    if any(conn in lowered for conn in SENTENCE_CONNECTORS):
        return True
    return text.count(". ") > 1


def _all_bold(runs: Sequence[FormattedRun]) -> bool:
    visible = [run for run in runs if run.text.strip()]
    return bool(visible) and all(run.bold for run in visible)


def _is_all_caps(text: str) -> bool:
    letters = [ch for ch in text if ch.isalpha()]
    return len(letters) >= 2 and all(ch.isupper() for ch in letters)


def heuristic_heading_level(
    text: str,
    runs: Sequence[FormattedRun],
    settings: Settings = default_settings,
) -> Optional[int]:
    """Guess a heading level for an unstyled paragraph, or None."""
    text = text.strip()
    length = len(text)
    if length < settings.heading_min_chars or length > settings.heading_max_chars:
        return None
    if "\n" in text or len(text.split()) > settings.heading_max_words:
        return None
    if text.endswith(TERMINAL_PUNCTUATION):
        return None
    if match_list_marker(text) is not None:
        return None
    if looks_like_sentence(text):
        return None

    chapter_line = CHAPTER_PREFIX.match(text) is not None
    caps_line = _is_all_caps(text) and settings.heading_caps_min_chars <= length <= settings.heading_caps_max_chars
    if not (_all_bold(runs) or caps_line or chapter_line):
        return None

    if chapter_line and text.lower().startswith(("chapter", "part")):
        return 1
    if length < settings.heading_level1_max_chars:
        return 1
    if length < settings.heading_level2_max_chars:
        return 2
    return 3


def classify_heading(
    text: str,
    runs: Sequence[FormattedRun],
    style_id: Optional[str],
    styles_map: Dict[str, Dict],
    num_ref: Optional[NumRef] = None,
    numbering: Optional[NumberingContext] = None,
    settings: Settings = default_settings,
) -> Optional[HeadingInfo]:
    """Classify one paragraph.

    When the paragraph is a numbered heading this advances the numbering
    tracker, so call it exactly once per paragraph, in document order.
    """
    stripped = text.strip()
    if not stripped:
        return None

    level = get_heading_level(style_id, styles_map)

    if num_ref is not None:
        if numbering is None:
            return None
        fmt = numbering.level_format(num_ref.num_id, num_ref.ilvl)
        if level is None and fmt.p_style:
            level = get_heading_level(fmt.p_style, styles_map) or num_ref.ilvl + 1
        if level is None:
            return None  # a list item; heuristics never apply here
        label = numbering.advance(num_ref.num_id, num_ref.ilvl).strip()
        number = label if label and fmt.ordered else None
        if number is None:
            number, stripped = extract_manual_number(stripped)
        return HeadingInfo(level=min(level, 6), text=stripped, number=number, source="numbering")

    if level is not None:
        number, title = extract_manual_number(stripped)
        if number and is_generic_heading_style(style_id, styles_map):
            level = number_depth(number)
        return HeadingInfo(level=min(level, 6), text=title, number=number, source="style")

    level = heuristic_heading_level(stripped, runs, settings)
    if level is None:
        return None
    number, title = extract_manual_number(stripped)
    if number and not number.lower().startswith(("section", "chapter", "part")):
        level = number_depth(number)
    return HeadingInfo(level=min(level, 6), text=title, number=number, source="heuristic")


def should_auto_number(headings: Iterable[HeadingInfo], settings: Settings = default_settings) -> bool:
    """Decide whether unnumbered style headings get automatic "1.2" numbers.

    Only documents without any explicit heading numbers qualify, with enough
    style headings to show a real structure (several levels, or several
    top-level headings).
    """
    if not settings.auto_number_headings:
        return False
    headings = list(headings)
    if any(h.number for h in headings):
        return False
    styled = [h for h in headings if h.source == "style"]
    if len(styled) < settings.auto_number_min_headings:
        return False
    levels = {h.level for h in styled}
    top_level = sum(1 for h in styled if h.level == 1)
    return len(levels) > 1 or top_level > 1
