"""Layout engine - render a Document into a frame of styled terminal cells.

A frame is produced in one pass over the visible elements: text lines are
emitted as ``rich`` segments while image rectangles are reserved and filled
by the compositor in the same pass. Scrolling is element-granular.

Every formatted run becomes its own segment carrying its complete style, so
formatting never leaks from one run into the next (or into a list marker).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from rich.segment import Segment
from rich.style import Style

from docxview.config import Settings, settings as default_settings
from docxview.ir import (
    Alignment,
    Cell,
    Document,
    DocumentElement,
    Equation,
    FormattedRun,
    Heading,
    Image,
    ListItem,
    LogicalList,
    PageBreak,
    Paragraph,
    Row,
    Table,
    heading_title,
    iter_list_items,
)
from docxview.text import display_width, grapheme_width, graphemes, truncate

if TYPE_CHECKING:
    from docxview.compositor import ImageCompositor

logger = logging.getLogger(__name__)

Line = List[Segment]
Ranges = List[Tuple[int, int]]

NEWLINES = ("\n", "\r\n", "\r")
TAB_CELLS = 4
HEADING_PREFIX = {1: "■ ", 2: "  ▶ ", 3: "    ◦ "}
DEEP_HEADING_PREFIX = "      · "
COLUMN_SEPARATOR = " │ "
EQUATION_INDENT = "    "


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class ImagePlacement:
    """Where an image was drawn in the frame and whether its raster was ready."""

    rect: Rect
    raster_handle: str
    element_index: int
    ready: bool = False


@dataclass
class Frame:
    lines: List[Line] = field(default_factory=list)
    placements: List[ImagePlacement] = field(default_factory=list)
    element_starts: Dict[int, int] = field(default_factory=dict)  # element index -> first line

    def plain_lines(self) -> List[str]:
        return ["".join(segment.text for segment in line) for line in self.lines]


@dataclass(frozen=True)
class Theme:
    heading: Tuple[Style, ...] = (
        Style(bold=True, color="bright_cyan"),
        Style(bold=True, color="cyan"),
        Style(bold=True, color="blue"),
    )
    list_marker: Style = Style()
    highlight: Style = Style(color="black", bgcolor="yellow")
    table_border: Style = Style(dim=True)
    table_header: Style = Style(bold=True)
    equation: Style = Style(italic=True)
    rule: Style = Style(dim=True)
    color: bool = True

    @classmethod
    def monochrome(cls) -> "Theme":
        return cls(
            heading=(Style(bold=True), Style(bold=True), Style(bold=True)),
            highlight=Style(reverse=True),
            color=False,
        )

    def heading_style(self, level: int) -> Style:
        return self.heading[min(level, len(self.heading)) - 1]


def run_style(run: FormattedRun, theme: Theme) -> Style:
    """Complete style for one run; every attribute is set explicitly."""
    return Style(
        bold=run.bold,
        italic=run.italic,
        underline=run.underline,
        strike=run.strikethrough,
        color=run.color if theme.color and run.color else None,
    )


# Wrapping


@dataclass
class _Token:
    items: List[Tuple[str, int]]  # (grapheme cluster, run index)
    word_width: int = 0
    space_width: int = 0
    word_len: int = 0  # clusters in the word part
    hard_break: bool = False


def _tokenize(runs: Sequence[FormattedRun]) -> List[_Token]:
    tokens: List[_Token] = []
    current = _Token(items=[])
    in_space = False
    for run_index, run in enumerate(runs):
        for cluster in graphemes(run.text):
            if cluster in NEWLINES:
                current.items.append((cluster, run_index))
                current.hard_break = True
                tokens.append(current)
                current, in_space = _Token(items=[]), False
                continue
            if cluster.isspace():
                current.items.append((cluster, run_index))
                current.space_width += grapheme_width(cluster)
                in_space = True
                continue
            if in_space:
                tokens.append(current)
                current, in_space = _Token(items=[]), False
            current.items.append((cluster, run_index))
            current.word_width += grapheme_width(cluster)
            current.word_len += 1
    if current.items:
        tokens.append(current)
    return tokens


def _to_runs(items: List[Tuple[str, int]], runs: Sequence[FormattedRun]) -> List[FormattedRun]:
    out: List[FormattedRun] = []
    current_index: Optional[int] = None
    buffer: List[str] = []
    for cluster, run_index in items:
        if run_index != current_index and buffer:
            out.append(runs[current_index].with_text("".join(buffer)))
            buffer = []
        current_index = run_index
        buffer.append(cluster)
    if buffer:
        out.append(runs[current_index].with_text("".join(buffer)))
    return out


def wrap_runs(runs: Sequence[FormattedRun], width: int) -> List[List[FormattedRun]]:
    """Greedy, grapheme-aware word wrap of formatted runs.

    Lines break after whitespace; trailing whitespace may hang past the edge;
    words wider than ``width`` are broken between grapheme clusters. A newline
    ends its line and stays at the end of it. The result is lossless (the
    concatenated line texts equal the run texts) and wrapping any produced
    line again yields that line unchanged.

    Raises:
        ValueError: If ``width`` is smaller than 1.
    """
    if width < 1:
        raise ValueError(f"wrap width must be at least 1, got {width}")

    lines: List[List[Tuple[str, int]]] = []
    line: List[Tuple[str, int]] = []
    line_width = 0

    for token in _tokenize(runs):
        if line and line_width + token.word_width > width:
            lines.append(line)
            line, line_width = [], 0

        if token.word_width > width:
            for item in token.items[: token.word_len]:
                cells = grapheme_width(item[0])
                if line and line_width + cells > width:
                    lines.append(line)
                    line, line_width = [], 0
                line.append(item)
                line_width += cells
            line.extend(token.items[token.word_len:])
            line_width += token.space_width
        else:
            line.extend(token.items)
            line_width += token.word_width + token.space_width

        if token.hard_break:
            lines.append(line)
            line, line_width = [], 0

    if line:
        lines.append(line)
    return [_to_runs(items, runs) for items in lines]


# Segment helpers


def _display_text(text: str) -> str:
    out = []
    for cluster in graphemes(text):
        if cluster in NEWLINES:
            continue
        out.append(" " * TAB_CELLS if cluster == "\t" else cluster)
    return "".join(out)


def _overlay(text: str, offset: int, style: Style, ranges: Ranges, theme: Theme) -> List[Segment]:
    """Split ``text`` (starting at ``offset`` in the element's plain text) at highlight bounds."""
    if not ranges:
        return [Segment(_display_text(text), style)] if _display_text(text) else []
    cuts = {0, len(text)}
    end_offset = offset + len(text)
    for start, end in ranges:
        if end <= offset or start >= end_offset:
            continue
        cuts.add(max(0, start - offset))
        cuts.add(min(len(text), end - offset))
    bounds = sorted(cuts)
    segments = []
    for lo, hi in zip(bounds, bounds[1:]):
        piece = _display_text(text[lo:hi])
        if not piece:
            continue
        absolute = offset + lo
        lit = any(start <= absolute < end for start, end in ranges)
        segments.append(Segment(piece, style + theme.highlight if lit else style))
    return segments


def _crop(line: Line, width: int) -> Line:
    """Cut a line to ``width`` cells on grapheme boundaries."""
    out: Line = []
    used = 0
    for segment in line:
        seg_width = display_width(segment.text)
        if used + seg_width <= width:
            out.append(segment)
            used += seg_width
            continue
        kept = []
        for cluster in graphemes(segment.text):
            cells = grapheme_width(cluster)
            if used + cells > width:
                break
            kept.append(cluster)
            used += cells
        if kept:
            out.append(Segment("".join(kept), segment.style))
        break
    return out


def _pad(width: int, style: Optional[Style] = None) -> List[Segment]:
    return [Segment(" " * width, style)] if width > 0 else []


# Rendering


class _FrameRenderer:
    def __init__(
        self,
        viewport: Viewport,
        compositor: Optional["ImageCompositor"],
        highlights: Dict[int, Ranges],
        theme: Theme,
        settings: Settings,
    ):
        self.width = viewport.width
        self.height = viewport.height
        self.compositor = compositor
        self.highlights = highlights
        self.theme = theme
        self.settings = settings
        self.frame = Frame()

    @property
    def y(self) -> int:
        return len(self.frame.lines)

    @property
    def full(self) -> bool:
        return self.y >= self.height

    def emit(self, line: Line) -> None:
        if not self.full:
            self.frame.lines.append(_crop(line, self.width))

    def blank(self) -> None:
        self.emit([])

    def element(self, index: int, element: DocumentElement) -> None:
        self.frame.element_starts[index] = self.y
        ranges = self.highlights.get(index, [])
        if isinstance(element, Heading):
            self.heading(element, ranges)
        elif isinstance(element, Paragraph):
            self.paragraph(element, ranges)
        elif isinstance(element, LogicalList):
            self.logical_list(element, ranges)
        elif isinstance(element, Table):
            self.table(element, ranges)
        elif isinstance(element, Image):
            self.image(index, element)
        elif isinstance(element, Equation):
            self.equation(element, ranges)
        elif isinstance(element, PageBreak):
            self.page_break()
        else:
            raise TypeError(f"Unknown document element: {type(element).__name__}")

    def heading(self, heading: Heading, ranges: Ranges) -> None:
        style = self.theme.heading_style(heading.level)
        prefix = HEADING_PREFIX.get(heading.level, DEEP_HEADING_PREFIX)
        room = max(0, self.width - display_width(prefix))
        title = heading_title(heading)
        shown = truncate(title, room)
        segments = [Segment(prefix, style)]
        if shown.endswith("…") and shown != title:
            segments += _overlay(shown[:-1], 0, style, ranges, self.theme)
            segments.append(Segment("…", style))
        else:
            segments += _overlay(shown, 0, style, ranges, self.theme)
        self.emit(segments)
        self.blank()

    def wrapped(self, runs: Sequence[FormattedRun], width: int, offset: int, ranges: Ranges) -> List[Line]:
        lines = []
        for line_runs in wrap_runs(runs, max(1, width)):
            segments: Line = []
            for run in line_runs:
                segments += _overlay(run.text, offset, run_style(run, self.theme), ranges, self.theme)
                offset += len(run.text)
            lines.append(segments)
        return lines

    def paragraph(self, paragraph: Paragraph, ranges: Ranges) -> None:
        for line in self.wrapped(paragraph.runs, self.width, 0, ranges):
            self.emit(line)
        self.blank()

    def logical_list(self, logical_list: LogicalList, ranges: Ranges) -> None:
        offset = 0
        for item in iter_list_items(logical_list.items):
            self.list_item(item, offset, ranges)
            offset += len(item.text) + 1
            if self.full:
                return
        self.blank()

    def list_item(self, item: ListItem, offset: int, ranges: Ranges) -> None:
        indent = " " * (self.settings.list_indent_unit * item.level)
        prefix = f"{indent}{item.marker} "
        prefix_width = display_width(prefix)
        lines = self.wrapped(item.runs, self.width - prefix_width, offset, ranges) or [[]]
        for number, line in enumerate(lines):
            lead = Segment(prefix, self.theme.list_marker) if number == 0 else Segment(" " * prefix_width)
            self.emit([lead] + line)

    def column_widths(self, table: Table) -> List[int]:
        count = table.column_count
        widths = [self.settings.min_column_width] * count
        for row in table.rows:
            for cell in row.cells:
                if cell.col_span == 1 and cell.column < count:
                    natural = max((display_width(_display_text(part)) for part in cell.text.split("\n")), default=0)
                    widths[cell.column] = max(widths[cell.column], natural)
        separators = display_width(COLUMN_SEPARATOR) * (count - 1)
        available = self.width - separators
        total = sum(widths)
        if total > available:
            scale = max(available, count) / total
            widths = [max(1, int(w * scale)) for w in widths]
        return widths

    def table(self, table: Table, ranges: Ranges) -> None:
        if not table.rows or table.column_count == 0:
            return
        widths = self.column_widths(table)
        offset = 0
        for row in table.rows:
            offset = self.table_row(row, widths, offset, ranges)
            if row.is_header:
                rule = "─┼─".join("─" * w for w in widths)
                self.emit([Segment(rule, self.theme.table_border)])
            if self.full:
                return
        self.blank()

    def table_row(self, row: Row, widths: List[int], offset: int, ranges: Ranges) -> int:
        """Emit one table row; returns the plain-text offset after it."""
        sep = display_width(COLUMN_SEPARATOR)
        slots: List[Tuple[int, int, Optional[Cell]]] = []  # (column, width, cell)
        by_column = {cell.column: cell for cell in row.cells}
        column = 0
        cell_offsets: Dict[int, int] = {}
        for position, cell in enumerate(row.cells):
            cell_offsets[cell.column] = offset
            offset += len(cell.text) + (1 if position < len(row.cells) - 1 else 0)
        offset += 1  # row separator

        while column < len(widths):
            cell = by_column.get(column)
            span = cell.col_span if cell is not None else 1
            span = max(1, min(span, len(widths) - column))
            slot_width = sum(widths[column:column + span]) + sep * (span - 1)
            slots.append((column, slot_width, cell))
            column += span

        cell_lines: List[List[Line]] = []
        for column, slot_width, cell in slots:
            if cell is None:
                cell_lines.append([])
                continue
            lines = self.wrapped(cell.runs, slot_width, cell_offsets[column], ranges)
            if row.is_header:
                lines = [[Segment(s.text, (s.style or Style()) + self.theme.table_header) for s in line] for line in lines]
            cell_lines.append(lines)

        height = max((len(lines) for lines in cell_lines), default=0) or 1
        for line_no in range(height):
            segments: Line = []
            for slot_no, ((column, slot_width, cell), lines) in enumerate(zip(slots, cell_lines)):
                if slot_no:
                    segments.append(Segment(COLUMN_SEPARATOR, self.theme.table_border))
                content = lines[line_no] if line_no < len(lines) else []
                content = _crop(content, slot_width)
                gap = slot_width - sum(display_width(s.text) for s in content)
                alignment = cell.alignment if cell is not None else Alignment.LEFT
                if alignment == Alignment.RIGHT:
                    segments += _pad(gap) + content
                elif alignment == Alignment.CENTER:
                    segments += _pad(gap // 2) + content + _pad(gap - gap // 2)
                else:
                    segments += content + _pad(gap)
            self.emit(segments)
        return offset

    def image_size(self, image: Image) -> Tuple[int, int]:
        """Cells for an image: terminal cells are about twice as tall as wide."""
        max_cols = max(1, min(self.width, self.settings.image_max_columns))
        max_rows = max(1, self.settings.image_max_rows)
        if image.natural_width <= 0 or image.natural_height <= 0:
            return max_cols, min(max_rows, 6)
        cols = max_cols
        rows = max(1, round(cols * image.natural_height / image.natural_width / 2))
        if rows > max_rows:
            rows = max_rows
            cols = max(1, min(max_cols, round(rows * 2 * image.natural_width / image.natural_height)))
        return cols, rows

    def image(self, index: int, image: Image) -> None:
        from docxview.compositor import render_placeholder

        cols, rows = self.image_size(image)
        rows = min(rows, self.height - self.y)
        if rows <= 0:
            return
        x = max(0, (self.width - cols) // 2)
        rect = Rect(x=x, y=self.y, width=cols, height=rows)

        ready = False
        if self.compositor is not None:
            handle = self.compositor.handle_for(image)
            ready = handle.ready
            block = self.compositor.render(handle, cols, rows)
        else:
            block = render_placeholder(image.description, cols, rows)

        for row in block[:rows]:
            self.emit(_pad(x) + row)
        for _ in range(rows - len(block)):
            self.emit([])
        self.frame.placements.append(ImagePlacement(rect=rect, raster_handle=image.raster_handle, element_index=index, ready=ready))
        self.blank()

    def equation(self, equation: Equation, ranges: Ranges) -> None:
        text = equation.latex or equation.fallback
        run = FormattedRun(text=text, italic=True)
        for line in self.wrapped((run,), self.width - len(EQUATION_INDENT), 0, ranges):
            self.emit([Segment(EQUATION_INDENT)] + [Segment(s.text, (s.style or Style()) + self.theme.equation) for s in line])
        self.blank()

    def page_break(self) -> None:
        self.emit([Segment("─" * self.width, self.theme.rule)])


def render_frame(
    document: Document,
    viewport: Viewport,
    scroll_offset: int = 0,
    compositor: Optional["ImageCompositor"] = None,
    highlights: Optional[Dict[int, Ranges]] = None,
    theme: Optional[Theme] = None,
    settings: Settings = default_settings,
) -> Frame:
    """Render the elements visible from ``scroll_offset`` into a frame.

    Args:
        document: The loaded document.
        viewport: Frame size in terminal cells.
        scroll_offset: Number of whole elements to skip.
        compositor: Image compositor; images render as placeholders without one.
        highlights: Match ranges per element index (see ``query.highlight_ranges``).
        theme: Styles for structural elements.

    Returns:
        Frame with at most ``viewport.height`` lines, each at most
        ``viewport.width`` cells wide, plus the image placements drawn.
    """
    if viewport.width <= 0 or viewport.height <= 0:
        return Frame()
    if theme is None:
        theme = Theme() if settings.color_enabled else Theme.monochrome()

    renderer = _FrameRenderer(viewport, compositor, highlights or {}, theme, settings)
    start = max(0, scroll_offset)
    for index in range(start, len(document.elements)):
        if renderer.full:
            break
        renderer.element(index, document.elements[index])
    return renderer.frame
