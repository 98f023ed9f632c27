"""Unicode helpers shared by the parser and the layout engine.

Everything that slices user text goes through grapheme clusters (``\\X``)
so combining marks, ZWJ emoji sequences and flags are never cut apart.
Display width is measured with rich's cell tables.
"""

from __future__ import annotations

from typing import List, Tuple

import regex
from rich.cells import cell_len

_GRAPHEME = regex.compile(r"\X")


def graphemes(text: str) -> List[str]:
    """Split text into extended grapheme clusters."""
    return _GRAPHEME.findall(text)


def grapheme_width(cluster: str) -> int:
    if cluster in ("\n", "\r\n", "\r"):
        return 0
    if cluster == "\t":
        return 4
    return cell_len(cluster)


def display_width(text: str) -> int:
    return sum(grapheme_width(g) for g in graphemes(text))


def truncate(text: str, width: int, ellipsis: str = "…") -> str:
    """Cut text to at most ``width`` cells on a grapheme boundary."""
    if width <= 0:
        return ""
    if display_width(text) <= width:
        return text
    room = width - display_width(ellipsis)
    out = []
    used = 0
    for cluster in graphemes(text):
        w = grapheme_width(cluster)
        if used + w > room:
            break
        out.append(cluster)
        used += w
    return "".join(out) + (ellipsis if room >= 0 else "")


def pad(text: str, width: int, align: str = "left") -> str:
    """Pad text with spaces to exactly ``width`` cells (truncating if needed)."""
    text = truncate(text, width)
    gap = max(0, width - display_width(text))
    if align == "right":
        return " " * gap + text
    if align == "center":
        left = gap // 2
        return " " * left + text + " " * (gap - left)
    return text + " " * gap


def strip_prefix(text: str, prefix_clusters: int) -> Tuple[str, str]:
    """Split off the first ``prefix_clusters`` grapheme clusters.

    Returns ``(prefix, rest)``; ``prefix + rest == text`` always holds.
    """
    clusters = graphemes(text)
    return "".join(clusters[:prefix_clusters]), "".join(clusters[prefix_clusters:])


def leading_continuation(previous: str, following: str) -> int:
    """Number of code points at the start of ``following`` that belong to the
    last grapheme cluster of ``previous``.
    """
    if not previous or not following:
        return 0
    last = graphemes(previous)[-1]
    joined = graphemes(last + following)[0]
    return max(0, len(joined) - len(last))


def leading_indent_width(text: str) -> int:
    """Width of leading whitespace, tabs counted as four columns."""
    width = 0
    for ch in text:
        if ch == "\t":
            width += 4
        elif ch in (" ", "\u00a0", "\u3000"):
            width += 1
        else:
            break
    return width
