"""Container access - validate a .docx file and expose its parts.

The body is exposed as a document-order stream of block nodes
(``w:p`` / ``w:tbl``), each tagged with its source index.
"""

from __future__ import annotations

import logging
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from lxml import etree

from docxview.errors import InvalidContainer, MalformedPart, UnsupportedFormat

logger = logging.getLogger(__name__)

# OOXML namespaces
NAMESPACES = {
    "w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main",
    "m": "http://schemas.openxmlformats.org/officeDocument/2006/math",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "wp": "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
    "pic": "http://schemas.openxmlformats.org/drawingml/2006/picture",
    "v": "urn:schemas-microsoft-com:vml",
    "mc": "http://schemas.openxmlformats.org/markup-compatibility/2006",
    "cp": "http://schemas.openxmlformats.org/package/2006/metadata/core-properties",
    "dc": "http://purl.org/dc/elements/1.1/",
    "dcterms": "http://purl.org/dc/terms/",
}

W = f"{{{NAMESPACES['w']}}}"

PACKAGE_RELS = "_rels/.rels"
DEFAULT_MAIN_PART = "word/document.xml"
OFFICE_DOCUMENT_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument"
SPREADSHEET_PART = "xl/workbook.xml"
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

LEGACY_EXTENSIONS = {".doc", ".dot", ".rtf"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xlsm", ".xls", ".csv", ".ods"}

# Errors zipfile can raise while inflating a single member
MEMBER_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError, OSError)


def wval(elem: Optional[etree._Element], attr: str = "val") -> Optional[str]:
    """Read a ``w:``-namespaced attribute, tolerating a missing element."""
    if elem is None:
        return None
    return elem.get(f"{W}{attr}")


def on_off(elem: Optional[etree._Element]) -> Optional[bool]:
    """Interpret an OOXML toggle property (``<w:b/>``, ``<w:b w:val="0"/>``)."""
    if elem is None:
        return None
    val = wval(elem)
    if val is None:
        return True
    return val.lower() not in ("0", "false", "off", "none")


@dataclass
class Container:
    """A validated .docx package with its main part parsed."""

    path: Path
    main_part: str
    tree: etree._Element
    parts: Dict[str, bytes] = field(default_factory=dict)

    def read(self, name: str) -> Optional[bytes]:
        return self.parts.get(name)

    def parse_optional(self, name: str) -> Optional[etree._Element]:
        """Parse an optional part; an unparsable part is logged and skipped."""
        data = self.parts.get(name)
        if data is None:
            return None
        try:
            return etree.fromstring(data)
        except etree.XMLSyntaxError as e:
            logger.warning(f"Ignoring unparsable part {name}: {e}")
            return None

    @property
    def part_dir(self) -> str:
        return self.main_part.rsplit("/", 1)[0] if "/" in self.main_part else ""

    def sibling(self, name: str) -> str:
        """Resolve a part name relative to the main part's folder."""
        return f"{self.part_dir}/{name}" if self.part_dir else name

    @property
    def body(self) -> Optional[etree._Element]:
        return self.tree.find("w:body", NAMESPACES)


def validate_path(path: Path) -> None:
    """Reject files that are not .docx before any parsing happens."""
    suffix = path.suffix.lower()
    if suffix in LEGACY_EXTENSIONS:
        raise UnsupportedFormat(
            f"Legacy '{suffix}' documents are not supported. "
            "Re-save the file as .docx (Word 2007 or later) and try again.",
            path=str(path),
        )
    if suffix in SPREADSHEET_EXTENSIONS:
        raise UnsupportedFormat(
            f"This appears to be a spreadsheet ('{suffix}'). Only Word .docx documents are supported.",
            path=str(path),
        )
    if suffix != ".docx":
        raise InvalidContainer(
            f"Invalid file format: expected a .docx file, got '{suffix or 'no extension'}'.",
            path=str(path),
        )
    if not path.exists():
        raise InvalidContainer("File not found.", path=str(path))
    if not path.is_file():
        raise InvalidContainer("Path is not a regular file.", path=str(path))


def _resolve_main_part(zf: zipfile.ZipFile, names: List[str]) -> str:
    if PACKAGE_RELS in names:
        try:
            rels = etree.fromstring(zf.read(PACKAGE_RELS))
        except (etree.XMLSyntaxError, *MEMBER_READ_ERRORS):
            return DEFAULT_MAIN_PART
        for rel in rels:
            if rel.get("Type") == OFFICE_DOCUMENT_REL and rel.get("Target"):
                return rel.get("Target").lstrip("/")
    return DEFAULT_MAIN_PART


def _read_optional_parts(zf: zipfile.ZipFile, names: List[str], main_part: str) -> Dict[str, bytes]:
    """Read every member except the main part; an unreadable member is skipped."""
    parts = {}
    for name in names:
        if name.endswith("/") or name == main_part:
            continue
        try:
            parts[name] = zf.read(name)
        except MEMBER_READ_ERRORS as e:
            logger.warning(f"Skipping unreadable part {name}: {e}")
    return parts


def open_container(docx_path: Union[str, Path]) -> Container:
    """Validate and open a .docx file.

    Args:
        docx_path: Path to the .docx file.

    Returns:
        Container with every readable part in memory and the main part parsed.

    Raises:
        InvalidContainer: Missing file, wrong extension, or not a ZIP archive.
        UnsupportedFormat: Legacy binary Word file or a spreadsheet.
        MalformedPart: The main document part is missing, unreadable or unparsable.
    """
    path = Path(docx_path)
    validate_path(path)

    try:
        with path.open("rb") as fh:
            head = fh.read(len(OLE_SIGNATURE))
    except OSError as e:
        raise InvalidContainer(f"Cannot read file: {e}", path=str(path)) from e
    if head == OLE_SIGNATURE:
        raise UnsupportedFormat(
            "This is a legacy binary Word document renamed to .docx. "
            "Open it in Word and save it as .docx.",
            path=str(path),
        )

    try:
        with zipfile.ZipFile(path, "r") as zf:
            names = zf.namelist()
            main_part = _resolve_main_part(zf, names)
            if main_part not in names:
                if SPREADSHEET_PART in names:
                    raise UnsupportedFormat(
                        "This appears to be an Excel workbook (.xlsx) renamed to .docx. "
                        "Only Word documents are supported.",
                        path=str(path),
                    )
                raise MalformedPart(
                    f"Invalid .docx file: missing {main_part}. "
                    "The file may be corrupted or is not a Word document.",
                    path=str(path),
                )
            try:
                main_data = zf.read(main_part)
            except MEMBER_READ_ERRORS as e:
                raise MalformedPart(
                    f"Cannot read {main_part}: {e}. The file is corrupted.",
                    path=str(path),
                ) from e
            parts = _read_optional_parts(zf, names, main_part)
    except zipfile.BadZipFile as e:
        raise InvalidContainer(
            "Not a valid .docx (ZIP) archive. The file may be truncated or corrupted.",
            path=str(path),
        ) from e
    except MEMBER_READ_ERRORS as e:
        raise InvalidContainer(f"Cannot read the .docx archive: {e}", path=str(path)) from e

    try:
        tree = etree.fromstring(main_data)
    except etree.XMLSyntaxError as e:
        raise MalformedPart(f"Cannot parse {main_part}: {e}", path=str(path)) from e

    if tree.find("w:body", NAMESPACES) is None:
        raise MalformedPart(f"{main_part} has no w:body element.", path=str(path))

    parts[main_part] = main_data
    logger.debug(f"Opened {path} ({len(parts)} parts, main part {main_part})")
    return Container(path=path, main_part=main_part, tree=tree, parts=parts)


def iter_blocks(body: etree._Element) -> Iterator[Tuple[int, etree._Element]]:
    """Yield ``(source_index, element)`` for each body-level paragraph or table.

    Body-level content controls (``w:sdt``) are flattened so their paragraphs
    and tables take part in the same document order.
    """
    index = 0
    for elem in _flatten_blocks(body):
        yield index, elem
        index += 1


def _flatten_blocks(parent: etree._Element) -> Iterator[etree._Element]:
    for child in parent:
        if not isinstance(child.tag, str):
            continue  # comments, processing instructions
        tag = etree.QName(child).localname
        if tag in ("p", "tbl"):
            yield child
        elif tag == "sdt":
            content = child.find("w:sdtContent", NAMESPACES)
            if content is not None:
                yield from _flatten_blocks(content)
        elif tag == "customXml":
            yield from _flatten_blocks(child)
