"""Generate DOCX samples for testing.

Packages are assembled from raw WordprocessingML strings with ``zipfile`` so
each test controls exactly which parts and elements exist.
"""
import io
import struct
import zipfile
import zlib
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from lxml import etree
from PIL import Image as PILImage

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
M_NS = "http://schemas.openxmlformats.org/officeDocument/2006/math"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
PIC_NS = "http://schemas.openxmlformats.org/drawingml/2006/picture"

NS_DECL = (
    f'xmlns:w="{W_NS}" xmlns:m="{M_NS}" xmlns:r="{R_NS}" '
    f'xmlns:wp="{WP_NS}" xmlns:a="{A_NS}" xmlns:pic="{PIC_NS}"'
)

CONTENT_TYPES = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">
  <Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>
  <Default Extension="xml" ContentType="application/xml"/>
  <Default Extension="png" ContentType="image/png"/>
  <Override PartName="/word/document.xml" ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>
</Types>"""

PACKAGE_RELS = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
  <Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="word/document.xml"/>
</Relationships>"""

IMAGE_REL_TYPE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/image"


def document_xml(body: str) -> str:
    return f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?><w:document {NS_DECL}><w:body>{body}</w:body></w:document>'


def element(xml: str):
    """Parse one element string with all namespaces bound."""
    return etree.fromstring(f"<root {NS_DECL}>{xml}</root>")[0]


def run(text: str, bold: bool = False, italic: bool = False, color: Optional[str] = None) -> str:
    props = ""
    if bold:
        props += "<w:b/>"
    if italic:
        props += "<w:i/>"
    if color:
        props += f'<w:color w:val="{color}"/>'
    rpr = f"<w:rPr>{props}</w:rPr>" if props else ""
    return f'<w:r>{rpr}<w:t xml:space="preserve">{text}</w:t></w:r>'


def para(*runs: str, style: Optional[str] = None, num: Optional[Tuple[str, int]] = None) -> str:
    props = ""
    if style:
        props += f'<w:pStyle w:val="{style}"/>'
    if num:
        props += f'<w:numPr><w:ilvl w:val="{num[1]}"/><w:numId w:val="{num[0]}"/></w:numPr>'
    ppr = f"<w:pPr>{props}</w:pPr>" if props else ""
    return f"<w:p>{ppr}{''.join(runs)}</w:p>"


def text_para(text: str, **kwargs) -> str:
    return para(run(text), **kwargs)


def cell(text: str, span: int = 1, vmerge: Optional[str] = None, bold: bool = False) -> str:
    props = ""
    if span > 1:
        props += f'<w:gridSpan w:val="{span}"/>'
    if vmerge == "restart":
        props += '<w:vMerge w:val="restart"/>'
    elif vmerge == "continue":
        props += "<w:vMerge/>"
    tcpr = f"<w:tcPr>{props}</w:tcPr>" if props else ""
    return f"<w:tc>{tcpr}{para(run(text, bold=bold))}</w:tc>"


def table(rows: Sequence[Sequence[str]], grid: int, header: bool = False) -> str:
    """Build a w:tbl from rows of ``cell()`` strings."""
    grid_xml = "".join('<w:gridCol w:w="1000"/>' for _ in range(grid))
    out = [f"<w:tbl><w:tblGrid>{grid_xml}</w:tblGrid>"]
    for index, cells in enumerate(rows):
        trpr = "<w:trPr><w:tblHeader/></w:trPr>" if header and index == 0 else ""
        out.append(f"<w:tr>{trpr}{''.join(cells)}</w:tr>")
    out.append("</w:tbl>")
    return "".join(out)


def numbering_xml(levels: Sequence[Tuple[str, str]], num_id: str = "1", abstract_id: str = "0") -> str:
    """numbering.xml with one abstract definition; ``levels`` are (numFmt, lvlText)."""
    lvls = "".join(
        f'<w:lvl w:ilvl="{i}"><w:start w:val="1"/><w:numFmt w:val="{fmt}"/><w:lvlText w:val="{text}"/></w:lvl>'
        for i, (fmt, text) in enumerate(levels)
    )
    return (
        f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?><w:numbering {NS_DECL}>'
        f'<w:abstractNum w:abstractNumId="{abstract_id}">{lvls}</w:abstractNum>'
        f'<w:num w:numId="{num_id}"><w:abstractNumId w:val="{abstract_id}"/></w:num>'
        "</w:numbering>"
    )


def drawing(rel_id: str, description: str = "", cx: int = 952500, cy: int = 476250) -> str:
    return (
        "<w:r><w:drawing><wp:inline>"
        f'<wp:extent cx="{cx}" cy="{cy}"/><wp:docPr id="1" name="Picture 1" descr="{description}"/>'
        "<a:graphic><a:graphicData><pic:pic><pic:blipFill>"
        f'<a:blip r:embed="{rel_id}"/>'
        "</pic:blipFill></pic:pic></a:graphicData></a:graphic>"
        "</wp:inline></w:drawing></w:r>"
    )


def omath(inner: str) -> str:
    return f"<m:oMath>{inner}</m:oMath>"


def mrun(text: str) -> str:
    return f"<m:r><m:t>{text}</m:t></m:r>"


def png_bytes(width: int = 4, height: int = 2, color: Tuple[int, int, int] = (255, 0, 0)) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def document_rels(targets: Dict[str, str]) -> str:
    rels = "".join(
        f'<Relationship Id="{rel_id}" Type="{IMAGE_REL_TYPE}" Target="{target}"/>' for rel_id, target in targets.items()
    )
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">{rels}</Relationships>'
    )


def core_xml(title: str = "", creator: str = "") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<cp:coreProperties xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:dcterms="http://purl.org/dc/terms/">'
        f"<dc:title>{title}</dc:title><dc:creator>{creator}</dc:creator>"
        "</cp:coreProperties>"
    )


def build_docx(
    path: Path,
    body: str,
    numbering: Optional[str] = None,
    styles: Optional[str] = None,
    media: Optional[Dict[str, bytes]] = None,
    rels: Optional[Dict[str, str]] = None,
    core: Optional[str] = None,
    compression: int = zipfile.ZIP_STORED,
) -> Path:
    """Write a minimal .docx package and return its path."""
    with zipfile.ZipFile(path, "w", compression=compression) as zf:
        zf.writestr("[Content_Types].xml", CONTENT_TYPES)
        zf.writestr("_rels/.rels", PACKAGE_RELS)
        zf.writestr("word/document.xml", document_xml(body))
        if numbering:
            zf.writestr("word/numbering.xml", numbering)
        if styles:
            zf.writestr("word/styles.xml", styles)
        if rels:
            zf.writestr("word/_rels/document.xml.rels", document_rels(rels))
        for name, data in (media or {}).items():
            zf.writestr(name, data)
        if core:
            zf.writestr("docProps/core.xml", core)
    return path


def corrupt_member(path: Path, name: str, count: int = 35) -> None:
    """Flip bytes inside one member's compressed data, leaving the ZIP directory intact."""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    raw = bytearray(path.read_bytes())
    name_len, extra_len = struct.unpack("<HH", raw[info.header_offset + 26:info.header_offset + 30])
    start = info.header_offset + 30 + name_len + extra_len
    for i in range(start + 2, start + min(count, info.compress_size - 2)):
        raw[i] ^= 0xFF
    path.write_bytes(bytes(raw))


def png_header(width: int, height: int) -> bytes:
    """A PNG signature and IHDR chunk only, declaring an arbitrary size."""
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    chunk = struct.pack(">I", len(ihdr)) + b"IHDR" + ihdr + struct.pack(">I", zlib.crc32(b"IHDR" + ihdr))
    return b"\x89PNG\r\n\x1a\n" + chunk
