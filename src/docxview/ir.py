"""Intermediate Representation (IR) for Word documents.

This module defines the canonical data structures shared by the pipeline:
OOXML Parser → IR → Layout Engine / Search / Outline

Every parse-stage type is a frozen dataclass holding tuples, so a built
``Document`` can be handed to any number of readers without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union


class CellType(str, Enum):
    """Inferred data type of a table cell."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


class Alignment(str, Enum):
    """Horizontal alignment of a table cell."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class FormattedRun:
    """A maximal span of text sharing one formatting set."""

    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    color: Optional[str] = None  # "#RRGGBB"

    def same_format(self, other: "FormattedRun") -> bool:
        return (
            self.bold == other.bold
            and self.italic == other.italic
            and self.underline == other.underline
            and self.strikethrough == other.strikethrough
            and self.color == other.color
        )

    def with_text(self, text: str) -> "FormattedRun":
        return FormattedRun(
            text=text,
            bold=self.bold,
            italic=self.italic,
            underline=self.underline,
            strikethrough=self.strikethrough,
            color=self.color,
        )


@dataclass(frozen=True)
class Heading:
    """A heading (H1-H6)."""

    level: int
    text: str
    number: Optional[str] = None
    source_index: int = 0


@dataclass(frozen=True)
class Equation:
    """An equation recovered from OMML.

    For inline equations ``anchor_offset`` is the offset into the paragraph's
    reconstructed text at which the ``$...$`` fragment starts.
    """

    latex: str
    is_inline: bool = False
    source_index: int = 0
    anchor_offset: Optional[int] = None
    fallback: str = ""


@dataclass(frozen=True)
class Paragraph:
    """A standard paragraph."""

    runs: Tuple[FormattedRun, ...] = ()
    source_index: int = 0
    equations: Tuple[Equation, ...] = ()  # inline equations, already spliced into runs

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass(frozen=True)
class ListItem:
    """A single list item, possibly with nested children."""

    level: int
    marker: str
    runs: Tuple[FormattedRun, ...] = ()
    children: Tuple["ListItem", ...] = ()

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass(frozen=True)
class LogicalList:
    """A list built from consecutive list-item paragraphs."""

    items: Tuple[ListItem, ...] = ()
    ordered: bool = False
    source_index: int = 0
    end_index: int = 0  # source index of the last item paragraph


@dataclass(frozen=True)
class Cell:
    """A single table cell positioned on the virtual grid."""

    runs: Tuple[FormattedRun, ...] = ()
    column: int = 0
    col_span: int = 1
    row_span: int = 1
    inferred_type: CellType = CellType.TEXT
    alignment: Alignment = Alignment.LEFT

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass(frozen=True)
class Row:
    """A table row. Cells covered by a vertical merge from above are absent."""

    cells: Tuple[Cell, ...] = ()
    is_header: bool = False


@dataclass(frozen=True)
class Table:
    """A table."""

    rows: Tuple[Row, ...] = ()
    column_count: int = 0
    has_header: bool = False
    source_index: int = 0


@dataclass(frozen=True)
class Image:
    """An embedded raster image. ``raster_handle`` is the media part name."""

    raster_handle: str
    description: str = ""
    natural_width: int = 0  # pixels
    natural_height: int = 0  # pixels
    source_index: int = 0


@dataclass(frozen=True)
class PageBreak:
    """An explicit page break."""

    source_index: int = 0


DocumentElement = Union[Heading, Paragraph, LogicalList, Table, Image, Equation, PageBreak]


@dataclass(frozen=True)
class DocumentMetadata:
    """File-level facts collected during load."""

    file_path: str = ""
    file_size: int = 0
    word_count: int = 0
    page_count: int = 0
    author: Optional[str] = None
    created: Optional[str] = None
    modified: Optional[str] = None


@dataclass(frozen=True)
class Document:
    """The complete document representation."""

    title: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    elements: Tuple[DocumentElement, ...] = ()
    media: Mapping[str, bytes] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        if not isinstance(self.media, MappingProxyType):
            object.__setattr__(self, "media", MappingProxyType(dict(self.media)))


def iter_list_items(items: Tuple[ListItem, ...]):
    """Yield list items in pre-order (parents before their children)."""
    for item in items:
        yield item
        yield from iter_list_items(item.children)


def heading_title(heading: Heading) -> str:
    if heading.number:
        return f"{heading.number} {heading.text}"
    return heading.text


def plain_text(element: DocumentElement) -> str:
    """Plain-text reconstruction of an element.

    Search offsets and the highlight overlay both refer to this string, so the
    layout engine reproduces the same ordering when it emits cells.
    """
    if isinstance(element, Heading):
        return heading_title(element)
    if isinstance(element, Paragraph):
        return element.text
    if isinstance(element, LogicalList):
        return "\n".join(item.text for item in iter_list_items(element.items))
    if isinstance(element, Table):
        return "\n".join("\t".join(cell.text for cell in row.cells) for row in element.rows)
    if isinstance(element, Image):
        return element.description
    if isinstance(element, Equation):
        return element.latex
    if isinstance(element, PageBreak):
        return ""
    raise TypeError(f"Unknown document element: {type(element).__name__}")


def element_end_index(element: DocumentElement) -> int:
    """Last body-block index covered by an element."""
    if isinstance(element, LogicalList):
        return max(element.source_index, element.end_index)
    return element.source_index
