"""List grouper - detect list items and nest consecutive ones into lists.

Two sources tag a paragraph as a list item:

* a numbering reference (``w:numPr``): level is ``ilvl``, the marker comes
  from the numbering tracker;
* a text heuristic: the paragraph starts with a bullet glyph or an
  enumerator followed by whitespace. The marker is kept verbatim and the
  prefix is stripped on grapheme boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import regex

from docxview.config import Settings, settings as default_settings
from docxview.ir import FormattedRun, ListItem, LogicalList
from docxview.text import graphemes, leading_indent_width

BULLETS = "•◦▪‣-*–·○■□►➢"

_MARKER = regex.compile(
    r"""
    ^(?P<indent>[\x20\t\u00a0\u3000]*)
    (?P<marker>
        [•◦▪‣\-*–·○■□►➢]                     # bullet glyph
      | \(?(?:\d{1,3}|[a-zA-Z])[.)]           # 1.  1)  a.  a)  (1)  (a)
      | \((?:\d{1,3}|[a-zA-Z])\)
      | (?i:[ivxlc]{1,6})[.)]                 # iv.  IV)
    )
    (?P<space>[\x20\t\u00a0]+)
    (?=\S)
    """,
    regex.VERBOSE,
)


@dataclass(frozen=True)
class ListCandidate:
    """A paragraph recognised as a list item, before nesting."""

    level: int
    marker: str
    runs: Tuple[FormattedRun, ...]
    source_index: int
    ordered: bool = False
    numbered: bool = False  # tagged through w:numPr rather than text


@dataclass
class _Node:
    level: int
    marker: str
    runs: Tuple[FormattedRun, ...]
    children: List["_Node"] = field(default_factory=list)

    def freeze(self) -> ListItem:
        return ListItem(
            level=self.level,
            marker=self.marker,
            runs=self.runs,
            children=tuple(child.freeze() for child in self.children),
        )


def match_list_marker(text: str) -> Optional[Tuple[str, int, bool]]:
    """Recognise a manual list marker at the start of ``text``.

    Returns:
        ``(marker, prefix_clusters, ordered)`` or None. ``prefix_clusters`` is
        the number of grapheme clusters covering indentation, marker and the
        whitespace after it.
    """
    match = _MARKER.match(text)
    if match is None:
        return None
    marker = match.group("marker")
    prefix_len = match.end("space")
    # Convert the code-point length to whole clusters, never ending inside one
    clusters = 0
    consumed = 0
    for cluster in graphemes(text):
        if consumed >= prefix_len:
            break
        consumed += len(cluster)
        clusters += 1
    ordered = marker not in BULLETS
    return marker, clusters, ordered


def strip_leading(runs: Sequence[FormattedRun], count: int) -> Tuple[FormattedRun, ...]:
    """Drop the first ``count`` code points from a run sequence."""
    out: List[FormattedRun] = []
    remaining = count
    for run in runs:
        if remaining >= len(run.text):
            remaining -= len(run.text)
            continue
        out.append(run.with_text(run.text[remaining:]) if remaining else run)
        remaining = 0
    return tuple(out)


def detect_text_list_item(
    runs: Sequence[FormattedRun],
    source_index: int,
    settings: Settings = default_settings,
) -> Optional[ListCandidate]:
    """Text-heuristic list detection for paragraphs without numbering."""
    text = "".join(run.text for run in runs)
    found = match_list_marker(text)
    if found is None:
        return None
    marker, prefix_clusters, ordered = found
    prefix = "".join(graphemes(text)[:prefix_clusters])
    level = leading_indent_width(text) // max(1, settings.list_indent_unit)
    return ListCandidate(
        level=level,
        marker=marker,
        runs=strip_leading(runs, len(prefix)),
        source_index=source_index,
        ordered=ordered,
    )


def build_items(candidates: Sequence[ListCandidate]) -> Tuple[ListItem, ...]:
    """Nest candidates by level.

    A candidate never sits more than one level below its predecessor; deeper
    jumps are clamped so every child is exactly one level below its parent.
    """
    roots: List[_Node] = []
    stack: List[_Node] = []
    previous_level: Optional[int] = None
    for cand in candidates:
        level = max(0, cand.level)
        if previous_level is not None:
            level = min(level, previous_level + 1)
        previous_level = level

        node = _Node(level=level, marker=cand.marker, runs=cand.runs)
        while stack and stack[-1].level >= level:
            stack.pop()
        if stack:
            stack[-1].children.append(node)
        else:
            roots.append(node)
        stack.append(node)
    return tuple(node.freeze() for node in roots)


def group_list(candidates: Sequence[ListCandidate]) -> LogicalList:
    """Build one LogicalList from a maximal run of consecutive candidates."""
    if not candidates:
        raise ValueError("Cannot build a list from zero items")
    return LogicalList(
        items=build_items(candidates),
        ordered=candidates[0].ordered,
        source_index=candidates[0].source_index,
        end_index=candidates[-1].source_index,
    )
