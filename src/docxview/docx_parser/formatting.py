"""Formatting extractor - turn a ``w:p`` into formatted runs.

Walks the paragraph's inline content (runs, hyperlinks, content controls,
tracked insertions, markup-compatibility blocks) in document order and
collects, next to the runs themselves, the inline equations, display math,
image references and page breaks found along the way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lxml import etree

from docxview.docx_parser.container import NAMESPACES, wval
from docxview.docx_parser.equations import convert_equation, is_display_math
from docxview.docx_parser.media import ImageRef
from docxview.docx_parser.styles import (
    default_paragraph_style,
    parse_run_properties,
    resolve_run_style,
)
from docxview.ir import Equation, FormattedRun
from docxview.text import leading_continuation

R_ID = f"{{{NAMESPACES['r']}}}id"
R_EMBED = f"{{{NAMESPACES['r']}}}embed"

# Containers whose children are walked as if they were the paragraph's own
TRANSPARENT = {"hyperlink", "ins", "smartTag", "fldSimple", "customXml", "dir", "bdo", "moveTo"}
SKIPPED = {"del", "moveFrom", "pPr", "proofErr", "bookmarkStart", "bookmarkEnd", "commentRangeStart", "commentRangeEnd"}


@dataclass
class ParagraphContent:
    """Everything recovered from one paragraph."""

    runs: List[FormattedRun] = field(default_factory=list)
    inline_equations: List[Equation] = field(default_factory=list)
    display_math: List[etree._Element] = field(default_factory=list)
    images: List[ImageRef] = field(default_factory=list)
    page_break_before: bool = False
    page_break_after: bool = False

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


def paragraph_style_id(p: etree._Element) -> Optional[str]:
    return wval(p.find("w:pPr/w:pStyle", NAMESPACES))


def extract_run_formatting(rPr: Optional[etree._Element], base: Dict, styles_map: Dict[str, Dict]) -> Dict:
    """Merge inherited run properties with a run's own ``w:rPr``.

    Order of precedence (lowest first): paragraph style, character style
    (``w:rStyle``), direct formatting.
    """
    props = dict(base)
    if rPr is None:
        return props
    char_style = wval(rPr.find("w:rStyle", NAMESPACES))
    if char_style:
        props.update(resolve_run_style(char_style, styles_map))
    props.update(parse_run_properties(rPr))
    return props


def make_run(text: str, props: Dict) -> FormattedRun:
    return FormattedRun(
        text=text,
        bold=bool(props.get("bold", False)),
        italic=bool(props.get("italic", False)),
        underline=bool(props.get("underline", False)),
        strikethrough=bool(props.get("strikethrough", False)),
        color=props.get("color"),
    )


def normalize_runs(runs: List[FormattedRun]) -> List[FormattedRun]:
    """Repair grapheme boundaries and consolidate identically formatted runs.

    Code points at the start of a run that continue the previous run's last
    grapheme cluster (combining marks, ZWJ sequences) move to the previous run.
    """
    out: List[FormattedRun] = []
    for run in runs:
        if not run.text:
            continue
        if out:
            prev = out[-1]
            moved = leading_continuation(prev.text, run.text)
            if moved:
                out[-1] = prev.with_text(prev.text + run.text[:moved])
                run = run.with_text(run.text[moved:])
                if not run.text:
                    continue
            if out[-1].same_format(run):
                out[-1] = out[-1].with_text(out[-1].text + run.text)
                continue
        out.append(run)
    return out


class _ParagraphWalker:
    def __init__(self, styles_map: Dict[str, Dict], base: Dict, source_index: int):
        self.styles_map = styles_map
        self.base = base
        self.source_index = source_index
        self.content = ParagraphContent()
        self.offset = 0

    def emit(self, text: str, props: Dict) -> None:
        if text:
            self.content.runs.append(make_run(text, props))
            self.offset += len(text)

    def walk(self, parent: etree._Element) -> None:
        for child in parent:
            if not isinstance(child.tag, str):
                continue
            tag = etree.QName(child).localname
            if tag in SKIPPED:
                continue
            if tag == "r":
                self.run(child)
            elif tag in TRANSPARENT:
                self.walk(child)
            elif tag == "sdt":
                sdt_content = child.find("w:sdtContent", NAMESPACES)
                if sdt_content is not None:
                    self.walk(sdt_content)
            elif tag == "AlternateContent":
                self.walk(_pick_alternate(child))
            elif tag == "oMathPara":
                self.content.display_math.append(child)
            elif tag == "oMath":
                if is_display_math(child):
                    self.content.display_math.append(child)
                else:
                    self.inline_math(child)

    def inline_math(self, omath: etree._Element) -> None:
        latex, fallback = convert_equation(omath)
        self.content.inline_equations.append(
            Equation(
                latex=latex,
                is_inline=True,
                source_index=self.source_index,
                anchor_offset=self.offset,
                fallback=fallback,
            )
        )
        self.emit(f"${latex}$", {})

    def run(self, run: etree._Element) -> None:
        props = extract_run_formatting(run.find("w:rPr", NAMESPACES), self.base, self.styles_map)
        self.run_children(run, props)

    def run_children(self, parent: etree._Element, props: Dict) -> None:
        for child in parent:
            if not isinstance(child.tag, str):
                continue
            tag = etree.QName(child).localname
            if tag == "t":
                self.emit(child.text or "", props)
            elif tag == "tab":
                self.emit("\t", props)
            elif tag == "br":
                br_type = wval(child, "type")
                if br_type == "page":
                    self.page_break()
                elif br_type != "column":
                    self.emit("\n", props)
            elif tag == "cr":
                self.emit("\n", props)
            elif tag == "noBreakHyphen":
                self.emit("-", props)
            elif tag == "sym":
                self.emit(_symbol_char(child), props)
            elif tag == "drawing":
                ref = parse_drawing(child)
                if ref is not None:
                    self.content.images.append(ref)
            elif tag in ("pict", "object"):
                ref = parse_vml_image(child)
                if ref is not None:
                    self.content.images.append(ref)
            elif tag == "AlternateContent":
                self.run_children(_pick_alternate(child), props)

    def page_break(self) -> None:
        if self.offset == 0:
            self.content.page_break_before = True
        else:
            self.content.page_break_after = True


def _pick_alternate(elem: etree._Element) -> etree._Element:
    """Choose ``mc:Choice`` when present, else ``mc:Fallback``."""
    choice = elem.find("mc:Choice", NAMESPACES)
    if choice is not None:
        return choice
    fallback = elem.find("mc:Fallback", NAMESPACES)
    return fallback if fallback is not None else elem


def _symbol_char(sym: etree._Element) -> str:
    code = wval(sym, "char")
    if not code:
        return ""
    try:
        value = int(code, 16)
    except ValueError:
        return ""
    # Symbol-font characters live in the private-use area; shift them back to ASCII range
    if 0xF000 <= value <= 0xF0FF:
        value -= 0xF000
    if value < 0x20 or 0xE000 <= value <= 0xF8FF:
        return ""
    return chr(value)


def parse_drawing(elem: etree._Element) -> Optional[ImageRef]:
    """Read the picture reference and extent from a ``w:drawing``."""
    blip = elem.find(".//a:blip", NAMESPACES)
    if blip is None:
        return None
    embed_id = blip.get(R_EMBED) or blip.get(f"{{{NAMESPACES['r']}}}link")
    if not embed_id:
        return None

    description = ""
    doc_pr = elem.find(".//wp:docPr", NAMESPACES)
    c_nv_pr = elem.find(".//pic:nvPicPr/pic:cNvPr", NAMESPACES)
    for props in (doc_pr, c_nv_pr):
        if props is not None and not description:
            description = props.get("descr") or props.get("title") or ""

    extent = elem.find(".//wp:extent", NAMESPACES)
    cx = _emu(extent.get("cx")) if extent is not None else 0
    cy = _emu(extent.get("cy")) if extent is not None else 0
    return ImageRef(rel_id=embed_id, description=description.strip(), width_emu=cx, height_emu=cy)


def parse_vml_image(elem: etree._Element) -> Optional[ImageRef]:
    """Read a legacy VML ``v:imagedata`` reference (``w:pict`` / ``w:object``)."""
    imagedata = elem.find(".//v:imagedata", NAMESPACES)
    if imagedata is None:
        return None
    rel_id = imagedata.get(R_ID)
    if not rel_id:
        return None
    description = imagedata.get(f"{{urn:schemas-microsoft-com:office:office}}title") or ""
    return ImageRef(rel_id=rel_id, description=description.strip())


def _emu(value: Optional[str]) -> int:
    try:
        return max(0, int(value)) if value else 0
    except ValueError:
        return 0


def paragraph_base_props(p: etree._Element, styles_map: Dict[str, Dict]) -> Dict:
    """Run properties inherited from the paragraph's style (or the default style)."""
    style_id = paragraph_style_id(p) or default_paragraph_style(styles_map)
    return resolve_run_style(style_id, styles_map)


def extract_paragraph(p: etree._Element, styles_map: Dict[str, Dict], source_index: int = 0) -> ParagraphContent:
    """Extract formatted runs and inline objects from a ``w:p`` element.

    Args:
        p: The paragraph element.
        styles_map: Parsed styles.
        source_index: Body-block index, stamped on inline equations.

    Returns:
        ParagraphContent with normalized runs.
    """
    walker = _ParagraphWalker(styles_map, paragraph_base_props(p, styles_map), source_index)
    walker.walk(p)

    pPr = p.find("w:pPr", NAMESPACES)
    if pPr is not None:
        pbb = pPr.find("w:pageBreakBefore", NAMESPACES)
        if pbb is not None and (wval(pbb) or "1").lower() not in ("0", "false", "off"):
            walker.content.page_break_before = True

    walker.content.runs = normalize_runs(walker.content.runs)
    return walker.content
