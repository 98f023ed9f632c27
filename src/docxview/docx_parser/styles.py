"""Styles parser - Parse styles.xml to build a style map."""

from __future__ import annotations

import re
from typing import Dict, Optional

from lxml import etree

from docxview.docx_parser.container import NAMESPACES, W, on_off, wval

RUN_TOGGLES = {
    "bold": "w:b",
    "italic": "w:i",
    "strikethrough": "w:strike",
}

_TRAILING_DIGITS = re.compile(r"(\d+)$")


def parse_styles(styles_xml: Optional[etree._Element]) -> Dict[str, Dict]:
    """Parse styles.xml to build a style map.

    Args:
        styles_xml: Parsed root of styles.xml (or None when the part is absent).

    Returns:
        Dict mapping style IDs to style information. Run properties are stored
        under ``"run"`` only for the toggles the style actually sets.
    """
    styles_map: Dict[str, Dict] = {}
    if styles_xml is None:
        return styles_map

    for style in styles_xml.findall(".//w:style", NAMESPACES):
        style_id = style.get(f"{W}styleId")
        if not style_id:
            continue

        name_elem = style.find("w:name", NAMESPACES)
        based_on_elem = style.find("w:basedOn", NAMESPACES)

        style_info: Dict = {
            "name": wval(name_elem) or style_id,
            "type": style.get(f"{W}type"),
            "based_on": wval(based_on_elem),
            "default": on_off_attr(style.get(f"{W}default")),
        }

        pPr = style.find("w:pPr", NAMESPACES)
        if pPr is not None:
            outline = wval(pPr.find("w:outlineLvl", NAMESPACES))
            if outline is not None and outline.isdigit():
                style_info["outline_level"] = int(outline)
            jc = wval(pPr.find("w:jc", NAMESPACES))
            if jc:
                style_info["justification"] = jc

        rPr = style.find("w:rPr", NAMESPACES)
        if rPr is not None:
            style_info["run"] = parse_run_properties(rPr)

        styles_map[style_id] = style_info

    return styles_map


def on_off_attr(value: Optional[str]) -> bool:
    return value is not None and value.lower() in ("1", "true", "on")


def parse_run_properties(rPr: etree._Element) -> Dict:
    """Extract only the run toggles that are explicitly set in ``w:rPr``."""
    props: Dict = {}
    for key, tag in RUN_TOGGLES.items():
        val = on_off(rPr.find(tag, NAMESPACES))
        if val is not None:
            props[key] = val
    dstrike = on_off(rPr.find("w:dstrike", NAMESPACES))
    if dstrike:
        props["strikethrough"] = True
    u = rPr.find("w:u", NAMESPACES)
    if u is not None:
        props["underline"] = (wval(u) or "single").lower() != "none"
    color = wval(rPr.find("w:color", NAMESPACES))
    if color and color.lower() != "auto" and re.fullmatch(r"[0-9A-Fa-f]{6}", color):
        props["color"] = f"#{color.upper()}"
    return props


def resolve_run_style(style_id: Optional[str], styles_map: Dict[str, Dict], visited: Optional[set] = None) -> Dict:
    """Resolve run properties for a style through its ``basedOn`` chain."""
    if not style_id or style_id not in styles_map:
        return {}
    if visited is None:
        visited = set()
    if style_id in visited:
        return {}
    visited.add(style_id)

    info = styles_map[style_id]
    resolved = dict(resolve_run_style(info.get("based_on"), styles_map, visited))
    resolved.update(info.get("run", {}))
    return resolved


def default_paragraph_style(styles_map: Dict[str, Dict]) -> Optional[str]:
    for style_id, info in styles_map.items():
        if info.get("type") == "paragraph" and info.get("default"):
            return style_id
    return None


def get_heading_level(style_id: Optional[str], styles_map: Dict[str, Dict]) -> Optional[int]:
    """Determine heading level from style information.

    Args:
        style_id: The style ID to check.
        styles_map: The parsed styles map.

    Returns:
        Heading level (1-6) or None if not a heading.
    """
    if not style_id:
        return None

    style_info = styles_map.get(style_id, {})
    style_name = style_info.get("name", "")
    name_lower = style_name.lower()

    # Check for outline level (0-based in OOXML; 9 means body text)
    if "outline_level" in style_info and style_info["outline_level"] < 9:
        return min(style_info["outline_level"] + 1, 6)

    if name_lower in ("title", "titledocument"):
        return 1
    if name_lower == "subtitle":
        return 2

    # "heading 1", "Heading1", "Head 2"
    if name_lower.startswith("head"):
        match = _TRAILING_DIGITS.search(name_lower.strip())
        if match:
            return max(1, min(int(match.group(1)), 6))
        if name_lower.startswith("heading"):
            return 1

    # Fallback: check style_id directly (for when styles_map is empty)
    style_id_lower = style_id.lower()
    if style_id_lower.startswith("heading"):
        match = _TRAILING_DIGITS.search(style_id_lower)
        if match:
            return max(1, min(int(match.group(1)), 6))
        return 1
    if style_id_lower == "title":
        return 1

    return None


def is_generic_heading_style(style_id: Optional[str], styles_map: Dict[str, Dict]) -> bool:
    """True for heading styles that carry no explicit level ("Heading")."""
    if not style_id:
        return False
    name = styles_map.get(style_id, {}).get("name", style_id).lower().replace(" ", "")
    return name == "heading" and "outline_level" not in styles_map.get(style_id, {})
