"""Search and outline over a loaded Document.

Both are read-only consumers of the IR. Match offsets refer to
``plain_text(element)`` so the layout engine can overlay highlights without
re-running the search.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple

import regex

from docxview.ir import (
    Document,
    DocumentElement,
    Heading,
    LogicalList,
    Table,
    heading_title,
    iter_list_items,
    plain_text,
)


@dataclass(frozen=True)
class SearchMatch:
    element_index: int
    start: int  # code-point offsets into plain_text(element)
    end: int
    text: str


@dataclass(frozen=True)
class OutlineEntry:
    level: int
    text: str
    element_index: int


def _search_units(element: DocumentElement) -> Iterator[Tuple[int, str]]:
    """Yield ``(offset, text)`` for each searchable unit of an element.

    Lists are searched per item and tables per cell; offsets locate each
    unit inside ``plain_text(element)``.
    """
    if isinstance(element, LogicalList):
        offset = 0
        for item in iter_list_items(element.items):
            yield offset, item.text
            offset += len(item.text) + 1
    elif isinstance(element, Table):
        offset = 0
        for row in element.rows:
            for cell in row.cells:
                yield offset, cell.text
                offset += len(cell.text) + 1
    else:
        yield 0, plain_text(element)


def search(document: Document, query: str) -> List[SearchMatch]:
    """Find the first case-insensitive occurrence of ``query`` in each unit.

    A paragraph, heading, image description or equation is one unit; every
    list item and every table cell is its own unit. An empty query matches
    nothing.
    """
    if not query:
        return []
    pattern = regex.compile(regex.escape(query), regex.IGNORECASE | regex.V1)
    matches: List[SearchMatch] = []
    for index, element in enumerate(document.elements):
        for offset, text in _search_units(element):
            match = pattern.search(text) if text else None
            if match is not None and match.end() > match.start():
                matches.append(SearchMatch(index, offset + match.start(), offset + match.end(), match.group()))
    return matches


def outline(document: Document) -> List[OutlineEntry]:
    """Headings in document order; numbered headings keep their literal number."""
    return [
        OutlineEntry(level=element.level, text=heading_title(element), element_index=index)
        for index, element in enumerate(document.elements)
        if isinstance(element, Heading)
    ]


def highlight_ranges(matches: List[SearchMatch]) -> Dict[int, List[Tuple[int, int]]]:
    """Group match ranges by element index for the render overlay."""
    ranges: Dict[int, List[Tuple[int, int]]] = {}
    for match in matches:
        ranges.setdefault(match.element_index, []).append((match.start, match.end))
    for spans in ranges.values():
        spans.sort()
    return ranges
