"""Media extractor - relationships, embedded images and core properties."""

from __future__ import annotations

import io
import logging
import posixpath
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from lxml import etree
from PIL import Image as PILImage, UnidentifiedImageError

from docxview.docx_parser.container import NAMESPACES, Container

logger = logging.getLogger(__name__)

RELS_NS = {"r": "http://schemas.openxmlformats.org/package/2006/relationships"}

CORE_PART = "docProps/core.xml"

EMU_PER_PIXEL = 9525  # 914400 EMU per inch at 96 DPI


@dataclass(frozen=True)
class ImageRef:
    """An image reference found while walking a paragraph."""

    rel_id: str
    description: str = ""
    width_emu: int = 0
    height_emu: int = 0


def parse_relationships(rels_xml: Optional[etree._Element]) -> Dict[str, str]:
    """Parse document relationships to map rId to targets.

    Args:
        rels_xml: Parsed root of ``word/_rels/document.xml.rels``.

    Returns:
        Dict mapping rId to target paths (as written in the part).
    """
    rels_map: Dict[str, str] = {}
    if rels_xml is None:
        return rels_map

    for rel in rels_xml.findall(".//r:Relationship", RELS_NS):
        rel_id = rel.get("Id")
        target = rel.get("Target")
        if rel_id and target and rel.get("TargetMode") != "External":
            rels_map[rel_id] = target

    return rels_map


def relationships_part(container: Container) -> str:
    folder, name = posixpath.split(container.main_part)
    return posixpath.join(folder, "_rels", f"{name}.rels")


def resolve_target(container: Container, target: str) -> str:
    """Turn a relationship target into a package part name."""
    if target.startswith("/"):
        return target.lstrip("/")
    return posixpath.normpath(posixpath.join(container.part_dir, target))


def extract_media(container: Container) -> Dict[str, bytes]:
    """Collect every media part (``word/media/*``) keyed by part name."""
    media_dir = container.sibling("media/")
    return {name: data for name, data in container.parts.items() if name.startswith(media_dir)}


def image_pixel_size(data: bytes) -> Tuple[int, int]:
    """Read the pixel size from an image header without decoding it.

    Returns ``(0, 0)`` for formats Pillow cannot identify (EMF, WMF on some
    platforms, SVG).
    """
    try:
        with PILImage.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError, ValueError) as e:
        logger.debug(f"Cannot read image header: {e}")
        return 0, 0


def natural_size(ref: ImageRef, data: Optional[bytes]) -> Tuple[int, int]:
    """Natural size in pixels: the drawing extent when present, else the raster header."""
    if ref.width_emu > 0 and ref.height_emu > 0:
        return (
            max(1, round(ref.width_emu / EMU_PER_PIXEL)),
            max(1, round(ref.height_emu / EMU_PER_PIXEL)),
        )
    if data:
        return image_pixel_size(data)
    return 0, 0


def parse_core_properties(core_xml: Optional[etree._Element]) -> Dict[str, Optional[str]]:
    """Read title, author and timestamps from ``docProps/core.xml``."""
    props: Dict[str, Optional[str]] = {"title": None, "author": None, "created": None, "modified": None}
    if core_xml is None:
        return props

    fields = {
        "title": "dc:title",
        "author": "dc:creator",
        "created": "dcterms:created",
        "modified": "dcterms:modified",
    }
    for key, path in fields.items():
        elem = core_xml.find(path, NAMESPACES)
        if elem is not None and elem.text and elem.text.strip():
            props[key] = elem.text.strip()
    return props
