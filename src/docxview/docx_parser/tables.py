"""Table parser - place cells on a virtual grid and infer cell types.

Merged cells are resolved against a grid of ``column_count`` columns:

* ``w:gridSpan`` gives the horizontal span (clamped to the grid);
* ``w:vMerge restart`` opens a vertical merge whose ``row_span`` counts the
  ``continue`` cells below it at the same column. Continuation cells are not
  emitted;
* ``w:gridBefore`` skips leading columns; gaps are padded with empty cells.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from lxml import etree

from docxview.config import Settings, settings as default_settings
from docxview.docx_parser.container import NAMESPACES, wval
from docxview.docx_parser.equations import convert_equation
from docxview.docx_parser.formatting import extract_paragraph, normalize_runs
from docxview.ir import Alignment, Cell, CellType, FormattedRun, Row, Table

logger = logging.getLogger(__name__)

CURRENCY = "$€£¥₹₩₽"
_AFFIX = re.compile(rf"^\(?\s*[{CURRENCY}]?\s*(?P<body>[+\-−]?[\d.,\s']+?)\s*(?:%|‰|[{CURRENCY}]|[A-Z]{{3}})?\s*\)?$")
_GROUPED = {
    ",": re.compile(r"^\d{1,3}(,\d{3})+$"),
    ".": re.compile(r"^\d{1,3}(\.\d{3})+$"),
    " ": re.compile(r"^\d{1,3}( \d{3})+$"),
    "'": re.compile(r"^\d{1,3}('\d{3})+$"),
}

_MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"
_DATE_PATTERNS = (
    re.compile(r"^\d{4}-\d{1,2}-\d{1,2}(?:[T ]\d{1,2}:\d{2}(?::\d{2})?)?$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$"),
    re.compile(r"^\d{1,2}-\d{1,2}-\d{2,4}$"),
    re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$"),
    re.compile(rf"^\d{{1,2}}\s+{_MONTHS}\s+\d{{4}}$", re.IGNORECASE),
    re.compile(rf"^{_MONTHS}\s+\d{{1,2}},?\s+\d{{4}}$", re.IGNORECASE),
)

JUSTIFICATION = {
    "center": Alignment.CENTER,
    "right": Alignment.RIGHT,
    "end": Alignment.RIGHT,
    "left": Alignment.LEFT,
    "start": Alignment.LEFT,
    "both": Alignment.LEFT,
    "distribute": Alignment.LEFT,
}


@dataclass
class _RawCell:
    runs: Tuple[FormattedRun, ...]
    column: int
    span: int
    vmerge: Optional[str]  # None, "restart" or "continue"
    justification: Optional[str] = None
    bold: bool = False
    separated: bool = False  # bottom border or shading
    row_span: int = 1
    absorbed: bool = False

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass
class _RawRow:
    cells: List[_RawCell] = field(default_factory=list)
    header_flag: bool = False


def parse_number(text: str) -> Optional[float]:
    """Parse a locale-formatted number (``1,234.5``, ``1.234,5``, ``1 234``, ``$12``, ``45%``)."""
    text = text.strip()
    if not text or not any(ch.isdigit() for ch in text):
        return None
    negative = text.startswith("(") and text.endswith(")")
    match = _AFFIX.match(text)
    if match is None:
        return None
    body = match.group("body").strip().replace("\u00a0", " ").replace("\u202f", " ").replace("\u2212", "-")
    sign = ""
    if body[:1] in "+-":
        sign, body = body[0], body[1:].strip()
    if not body or not body[0].isdigit() or not body[-1].isdigit():
        return None

    has_comma, has_dot = "," in body, "." in body
    if has_comma and has_dot:
        decimal = "," if body.rfind(",") > body.rfind(".") else "."
        group = "." if decimal == "," else ","
        int_part, _, frac = body.rpartition(decimal)
        if not _GROUPED[group].match(int_part) and group in int_part:
            return None
        normalized = int_part.replace(group, "") + "." + frac
    elif has_comma:
        normalized = body.replace(",", "") if _GROUPED[","].match(body) else body.replace(",", ".", 1)
        if normalized.count(".") > 1 or "," in normalized:
            return None
    elif has_dot:
        if body.count(".") > 1:
            if not _GROUPED["."].match(body):
                return None
            normalized = body.replace(".", "")
        else:
            normalized = body
    else:
        normalized = body
    for sep in (" ", "'"):
        if sep in normalized:
            int_part, _, frac = normalized.partition(".")
            if not _GROUPED[sep].match(int_part):
                return None
            normalized = int_part.replace(sep, "") + ("." + frac if frac else "")

    try:
        value = float(sign + normalized)
    except ValueError:
        return None
    return -abs(value) if negative else value


def is_date(text: str) -> bool:
    text = text.strip()
    return any(pattern.match(text) for pattern in _DATE_PATTERNS)


def infer_cell_type(text: str) -> CellType:
    """Number first, then date, else text."""
    if not text.strip():
        return CellType.TEXT
    if parse_number(text) is not None:
        return CellType.NUMBER
    if is_date(text):
        return CellType.DATE
    return CellType.TEXT


def _cell_paragraphs(parent: etree._Element) -> Iterator[etree._Element]:
    for child in parent:
        if not isinstance(child.tag, str):
            continue
        tag = etree.QName(child).localname
        if tag == "p":
            yield child
        elif tag == "tbl":
            # Nested tables are flattened to their text
            for tc in child.iterfind("w:tr/w:tc", NAMESPACES):
                yield from _cell_paragraphs(tc)
        elif tag == "sdt":
            content = child.find("w:sdtContent", NAMESPACES)
            if content is not None:
                yield from _cell_paragraphs(content)


def _cell_content(tc: etree._Element, styles_map: Dict) -> Tuple[Tuple[FormattedRun, ...], Optional[str]]:
    runs: List[FormattedRun] = []
    justification = None
    for index, p in enumerate(_cell_paragraphs(tc)):
        content = extract_paragraph(p, styles_map)
        if index and runs:
            runs.append(FormattedRun(text="\n"))
        runs.extend(content.runs)
        for omath in content.display_math:
            latex, _ = convert_equation(omath)
            runs.append(FormattedRun(text=f"${latex}$"))
        jc = wval(p.find("w:pPr/w:jc", NAMESPACES))
        if justification is None and jc:
            justification = jc
    return tuple(normalize_runs(runs)), justification


def _is_separated(tcPr: Optional[etree._Element]) -> bool:
    if tcPr is None:
        return False
    bottom = tcPr.find("w:tcBorders/w:bottom", NAMESPACES)
    if bottom is not None and (wval(bottom) or "single") not in ("nil", "none"):
        return True
    fill = wval(tcPr.find("w:shd", NAMESPACES), "fill")
    return bool(fill) and fill.lower() not in ("auto", "ffffff")


def _iter_rows(tbl: etree._Element) -> Iterator[etree._Element]:
    for child in tbl:
        if not isinstance(child.tag, str):
            continue
        tag = etree.QName(child).localname
        if tag == "tr":
            yield child
        elif tag == "sdt":
            content = child.find("w:sdtContent", NAMESPACES)
            if content is not None:
                yield from _iter_rows(content)


def _read_rows(tbl: etree._Element, styles_map: Dict) -> List[_RawRow]:
    rows: List[_RawRow] = []
    for tr in _iter_rows(tbl):
        trPr = tr.find("w:trPr", NAMESPACES)
        row = _RawRow()
        column = 0
        if trPr is not None:
            row.header_flag = trPr.find("w:tblHeader", NAMESPACES) is not None and (
                wval(trPr.find("w:tblHeader", NAMESPACES)) or "1"
            ).lower() not in ("0", "false", "off")
            before = wval(trPr.find("w:gridBefore", NAMESPACES))
            if before and before.isdigit():
                column = int(before)

        for tc in tr.iterfind("w:tc", NAMESPACES):
            tcPr = tc.find("w:tcPr", NAMESPACES)
            span = 1
            vmerge = None
            if tcPr is not None:
                span_val = wval(tcPr.find("w:gridSpan", NAMESPACES))
                if span_val and span_val.isdigit():
                    span = max(1, int(span_val))
                vmerge_elem = tcPr.find("w:vMerge", NAMESPACES)
                if vmerge_elem is not None:
                    # <w:vMerge/> without a value continues the merge above
                    vmerge = "restart" if wval(vmerge_elem) == "restart" else "continue"
            runs, justification = _cell_content(tc, styles_map)
            visible = [run for run in runs if run.text.strip()]
            row.cells.append(
                _RawCell(
                    runs=runs,
                    column=column,
                    span=span,
                    vmerge=vmerge,
                    justification=justification,
                    bold=bool(visible) and all(run.bold for run in visible),
                    separated=_is_separated(tcPr),
                )
            )
            column += span
        rows.append(row)
    return rows


def _resolve_vertical_merges(rows: List[_RawRow]) -> Dict[int, Set[int]]:
    """Count row spans and return the grid columns covered from above, per row."""
    covered: Dict[int, Set[int]] = {}
    for r, row in enumerate(rows):
        for cell in row.cells:
            if cell.vmerge != "restart":
                continue
            below = r + 1
            while below < len(rows):
                cont = next(
                    (c for c in rows[below].cells if c.column == cell.column and c.vmerge == "continue" and not c.absorbed),
                    None,
                )
                if cont is None:
                    break
                cont.absorbed = True
                covered.setdefault(below, set()).update(range(cell.column, cell.column + cell.span))
                cell.row_span += 1
                below += 1
    return covered


def _detect_header(first: _RawRow, row_count: int) -> bool:
    if first.header_flag:
        return True
    if row_count < 2:
        return False
    real = [c for c in first.cells if c.text.strip()]
    if not real:
        return False
    marked = sum(1 for c in real if c.bold or c.separated)
    return marked * 2 > len(real)


def parse_table(
    elem: etree._Element,
    styles_map: Optional[Dict] = None,
    source_index: int = 0,
    settings: Settings = default_settings,
) -> Table:
    """Parse a ``w:tbl`` element into a Table.

    Args:
        elem: The w:tbl XML element.
        styles_map: Parsed styles, for run formatting inside cells.
        source_index: Body-block index of the table.

    Returns:
        Table whose rows satisfy the grid occupancy invariant.
    """
    styles_map = styles_map or {}
    raw_rows = _read_rows(elem, styles_map)
    grid_cols = len(elem.findall("w:tblGrid/w:gridCol", NAMESPACES))
    if grid_cols:
        # Every cell start must fit in the grid; only a trailing span is clamped
        widest = max((c.column + 1 for row in raw_rows for c in row.cells), default=0)
    else:
        widest = max((c.column + c.span for row in raw_rows for c in row.cells), default=0)
    width = max(grid_cols, widest)
    if width == 0:
        return Table(rows=(), column_count=0, has_header=False, source_index=source_index)

    # Clamp spans to the grid before merges are measured
    for row in raw_rows:
        for cell in row.cells:
            cell.span = max(1, min(cell.span, width - cell.column))

    covered = _resolve_vertical_merges(raw_rows)
    has_header = bool(raw_rows) and _detect_header(raw_rows[0], len(raw_rows))

    placed_rows: List[List[Tuple[_RawCell, int, int]]] = []
    for r, row in enumerate(raw_rows):
        occupied = set(covered.get(r, set()))
        placed: List[Tuple[_RawCell, int, int]] = []
        for cell in row.cells:
            if cell.absorbed:
                continue
            start = cell.column
            while start < width and start in occupied:
                start += 1
            if start >= width:
                logger.warning(f"Dropping cell outside the grid in table at block {source_index}")
                continue
            span = 0
            while span < cell.span and start + span < width and start + span not in occupied:
                span += 1
            occupied.update(range(start, start + span))
            placed.append((cell, start, span))
        for column in range(width):
            if column not in occupied:
                placed.append((_RawCell(runs=(), column=column, span=1, vmerge=None), column, 1))
        placed.sort(key=lambda item: item[1])
        placed_rows.append(placed)

    numeric_columns = _numeric_columns(placed_rows, has_header, settings)

    rows: List[Row] = []
    for r, placed in enumerate(placed_rows):
        is_header = has_header and r == 0
        cells = []
        for raw, column, span in placed:
            text = raw.text
            cell_type = infer_cell_type(text)
            if raw.justification in JUSTIFICATION:
                alignment = JUSTIFICATION[raw.justification]
            elif not is_header and column in numeric_columns and span == 1:
                alignment = Alignment.RIGHT
            else:
                alignment = Alignment.LEFT
            cells.append(
                Cell(
                    runs=raw.runs,
                    column=column,
                    col_span=span,
                    row_span=raw.row_span,
                    inferred_type=cell_type,
                    alignment=alignment,
                )
            )
        rows.append(Row(cells=tuple(cells), is_header=is_header))

    return Table(rows=tuple(rows), column_count=width, has_header=has_header, source_index=source_index)


def _numeric_columns(
    placed_rows: List[List[Tuple[_RawCell, int, int]]],
    has_header: bool,
    settings: Settings,
) -> Set[int]:
    """Columns whose non-empty body cells are mostly numbers."""
    counts: Dict[int, List[int]] = {}
    for r, placed in enumerate(placed_rows):
        if has_header and r == 0:
            continue
        for raw, column, span in placed:
            if span != 1 or not raw.text.strip():
                continue
            numeric, total = counts.setdefault(column, [0, 0])
            counts[column] = [numeric + (parse_number(raw.text) is not None), total + 1]
    return {
        column
        for column, (numeric, total) in counts.items()
        if total and numeric / total >= settings.numeric_column_ratio
    }
