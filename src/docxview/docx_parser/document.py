"""Document parser - Main entry point for .docx → Document IR.

Each body block is classified in document order as Table → Heading →
numbering-tagged list item → text-detected list item → Paragraph. Images
and page breaks become elements next to their paragraph; display equations
are collected separately and merged back by ``source_index`` at the end.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple, Union

from lxml import etree

from docxview.config import Settings, settings as default_settings
from docxview.docx_parser.container import NAMESPACES, W, Container, iter_blocks, open_container, wval
from docxview.docx_parser.equations import convert_equation
from docxview.docx_parser.formatting import extract_paragraph, paragraph_style_id
from docxview.docx_parser.headings import HeadingInfo, NumRef, classify_heading, should_auto_number
from docxview.docx_parser.lists import ListCandidate, detect_text_list_item, group_list
from docxview.docx_parser.media import (
    CORE_PART,
    ImageRef,
    extract_media,
    natural_size,
    parse_core_properties,
    parse_relationships,
    relationships_part,
    resolve_target,
)
from docxview.docx_parser.numbering import HeadingNumberTracker, NumberingContext, parse_numbering
from docxview.docx_parser.styles import parse_styles
from docxview.docx_parser.tables import parse_table
from docxview.ir import (
    Document,
    DocumentElement,
    DocumentMetadata,
    Equation,
    FormattedRun,
    Heading,
    Image,
    LogicalList,
    PageBreak,
    Paragraph,
    element_end_index,
    plain_text,
)

logger = logging.getLogger(__name__)


def load(docx_path: Union[str, Path], settings: Settings = default_settings) -> Document:
    """Parse a .docx file and return a Document IR.

    Args:
        docx_path: Path to the .docx file.
        settings: Heuristic thresholds (defaults to the module settings).

    Returns:
        Document: The parsed, immutable document representation.

    Raises:
        LoadError: One of InvalidContainer, UnsupportedFormat or MalformedPart
            when the file as a whole cannot be read.
    """
    container = open_container(docx_path)
    document = _DocumentBuilder(container, settings).build()
    logger.info(f"Loaded {container.path.name}: {len(document.elements)} elements")
    return document


async def load_async(docx_path: Union[str, Path], settings: Settings = default_settings) -> Document:
    """Run :func:`load` in a worker thread so the event loop stays responsive."""
    return await asyncio.to_thread(load, docx_path, settings)


def _num_ref(p: etree._Element) -> Optional[NumRef]:
    num_pr = p.find("w:pPr/w:numPr", NAMESPACES)
    if num_pr is None:
        return None
    num_id = wval(num_pr.find("w:numId", NAMESPACES))
    # numId 0 explicitly removes numbering inherited from the style
    if not num_id or num_id == "0":
        return None
    ilvl = wval(num_pr.find("w:ilvl", NAMESPACES)) or "0"
    return NumRef(num_id=num_id, ilvl=int(ilvl) if ilvl.isdigit() else 0)


def _lstrip_runs(runs: Sequence[FormattedRun]) -> Tuple[FormattedRun, ...]:
    out = list(runs)
    while out and not out[0].text.lstrip():
        out.pop(0)
    if out:
        out[0] = out[0].with_text(out[0].text.lstrip())
    return tuple(out)


def _block_text(block: etree._Element) -> str:
    """Best-effort plain text of a block, used when structured parsing fails."""
    if etree.QName(block).localname == "tbl":
        rows = []
        for tr in block.iterfind(".//w:tr", NAMESPACES):
            rows.append("\t".join("".join(t.text or "" for t in tc.iter(f"{W}t")) for tc in tr.iterfind("w:tc", NAMESPACES)))
        return "\n".join(rows)
    return "".join(t.text or "" for t in block.iter(f"{W}t"))


class _DocumentBuilder:
    """Single-use builder; owns the per-load numbering trackers."""

    def __init__(self, container: Container, settings: Settings):
        self.container = container
        self.settings = settings
        self.styles_map = parse_styles(container.parse_optional(container.sibling("styles.xml")))
        self.numbering = NumberingContext(parse_numbering(container.parse_optional(container.sibling("numbering.xml"))))
        self.rels_map = parse_relationships(container.parse_optional(relationships_part(container)))
        self.media = extract_media(container)
        self.core = parse_core_properties(container.parse_optional(CORE_PART))

        self.elements: List[DocumentElement] = []
        self.pending: List[ListCandidate] = []
        self.display_equations: List[Equation] = []
        self.headings: List[Tuple[int, HeadingInfo]] = []
        self.anchor: Optional[int] = None  # last heading / paragraph / list item index

    def build(self) -> Document:
        body = self.container.body
        for index, block in iter_blocks(body):
            checkpoint = self.checkpoint()
            try:
                if etree.QName(block).localname == "tbl":
                    self.flush_list()
                    self.elements.append(parse_table(block, self.styles_map, index, self.settings))
                else:
                    self.paragraph(index, block)
            except Exception as e:
                logger.warning(f"Block {index} could not be parsed, keeping its plain text: {e}")
                self.rollback(checkpoint)
                self.degrade(index, block)
        self.flush_list()

        self.apply_auto_numbering()
        elements = self.merge_equations()
        return Document(
            title=self.core.get("title") or self.container.path.stem,
            metadata=self.metadata(elements),
            elements=tuple(elements),
            media=self.media,
        )

    def checkpoint(self) -> tuple:
        return (
            len(self.elements),
            list(self.pending),
            len(self.display_equations),
            len(self.headings),
            self.anchor,
            dict(self.numbering.counters),
        )

    def rollback(self, checkpoint: tuple) -> None:
        """Discard everything a failed block added so it can be degraded in place."""
        elements, pending, equations, headings, anchor, counters = checkpoint
        del self.elements[elements:]
        self.pending = pending
        del self.display_equations[equations:]
        del self.headings[headings:]
        self.anchor = anchor
        self.numbering.counters = counters

    # Block handlers

    def paragraph(self, index: int, p: etree._Element) -> None:
        content = extract_paragraph(p, self.styles_map, index)
        if content.page_break_before:
            self.flush_list()
            self.elements.append(PageBreak(source_index=index))

        if content.text.strip():
            self.text_element(index, p, content.runs, content.inline_equations)

        for omath in content.display_math:
            latex, fallback = convert_equation(omath)
            anchor = self.anchor if self.anchor is not None else index
            self.display_equations.append(
                Equation(latex=latex, is_inline=False, source_index=anchor, fallback=fallback)
            )

        for ref in content.images:
            image = self.image(index, ref)
            if image is not None:
                self.flush_list()
                self.elements.append(image)

        if content.page_break_after:
            self.flush_list()
            self.elements.append(PageBreak(source_index=index))

    def text_element(self, index: int, p: etree._Element, runs: List[FormattedRun], equations: List[Equation]) -> None:
        text = "".join(run.text for run in runs)
        num_ref = _num_ref(p)
        heading = classify_heading(
            text,
            runs,
            paragraph_style_id(p),
            self.styles_map,
            num_ref=num_ref,
            numbering=self.numbering,
            settings=self.settings,
        )
        self.anchor = index

        if heading is not None:
            self.flush_list()
            self.headings.append((len(self.elements), heading))
            self.elements.append(
                Heading(level=heading.level, text=heading.text, number=heading.number, source_index=index)
            )
            return

        if num_ref is not None:
            level_format = self.numbering.level_format(num_ref.num_id, num_ref.ilvl)
            marker = self.numbering.advance(num_ref.num_id, num_ref.ilvl)
            self.add_list_item(
                ListCandidate(
                    level=num_ref.ilvl,
                    marker=marker,
                    runs=_lstrip_runs(runs),
                    source_index=index,
                    ordered=level_format.ordered,
                    numbered=True,
                )
            )
            return

        candidate = detect_text_list_item(runs, index, self.settings)
        if candidate is not None:
            self.add_list_item(candidate)
            return

        self.flush_list()
        self.elements.append(Paragraph(runs=tuple(runs), source_index=index, equations=tuple(equations)))

    def add_list_item(self, candidate: ListCandidate) -> None:
        # A switch between numbered and text-detected items starts a new list
        if self.pending and self.pending[-1].numbered != candidate.numbered:
            self.flush_list()
        self.pending.append(candidate)

    def flush_list(self) -> None:
        if self.pending:
            self.elements.append(group_list(self.pending))
            self.pending = []

    def image(self, index: int, ref: ImageRef) -> Optional[Image]:
        target = self.rels_map.get(ref.rel_id)
        if target is None:
            logger.warning(f"Block {index}: image relationship {ref.rel_id} not found")
            return None
        part = resolve_target(self.container, target)
        data = self.media.get(part) or self.container.read(part)
        if data is None:
            logger.warning(f"Block {index}: image part {part} missing from the package")
        width, height = natural_size(ref, data)
        return Image(
            raster_handle=part,
            description=ref.description,
            natural_width=width,
            natural_height=height,
            source_index=index,
        )

    def degrade(self, index: int, block: etree._Element) -> None:
        self.flush_list()
        text = _block_text(block)
        if text.strip():
            self.elements.append(Paragraph(runs=(FormattedRun(text=text),), source_index=index))
            self.anchor = index

    # Whole-document passes

    def apply_auto_numbering(self) -> None:
        if not should_auto_number((info for _, info in self.headings), self.settings):
            return
        tracker = HeadingNumberTracker(enabled=True)
        for position, info in self.headings:
            if info.source != "style":
                continue
            heading = self.elements[position]
            self.elements[position] = replace(heading, number=tracker.next(heading.level))

    def merge_equations(self) -> List[DocumentElement]:
        """Insert display equations after the element that contains their anchor.

        Placement is best-effort: an equation whose own paragraph follows a
        table is still anchored to the last text block before that table.
        """
        if not self.display_equations:
            return list(self.elements)

        hosts: Set[type] = {Heading, Paragraph, LogicalList}
        keyed = [((el.source_index, 0, i), el) for i, el in enumerate(self.elements)]
        for j, eq in enumerate(self.display_equations):
            host = next(
                (
                    el
                    for el in self.elements
                    if type(el) in hosts and el.source_index <= eq.source_index <= element_end_index(el)
                ),
                None,
            )
            base = host.source_index if host is not None else eq.source_index
            keyed.append(((base, 1, j), eq))
        keyed.sort(key=lambda item: item[0])
        return [el for _, el in keyed]

    def metadata(self, elements: Sequence[DocumentElement]) -> DocumentMetadata:
        word_count = sum(
            len(plain_text(el).split()) for el in elements if not isinstance(el, (Image, Equation, PageBreak))
        )
        path = self.container.path
        return DocumentMetadata(
            file_path=str(path),
            file_size=path.stat().st_size,
            word_count=word_count,
            page_count=math.ceil(word_count / max(1, self.settings.words_per_page)),
            author=self.core.get("author"),
            created=self.core.get("created"),
            modified=self.core.get("modified"),
        )
