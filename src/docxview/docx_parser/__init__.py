"""DOCX Parser Package - OOXML extraction modules."""

from .container import open_container, iter_blocks
from .document import load, load_async
from .equations import omml_to_latex, convert_equation
from .headings import classify_heading, extract_manual_number
from .lists import detect_text_list_item, group_list, match_list_marker
from .numbering import NumberingContext, HeadingNumberTracker, parse_numbering
from .styles import parse_styles, get_heading_level
from .tables import parse_table, infer_cell_type

__all__ = [
    "open_container",
    "iter_blocks",
    "load",
    "load_async",
    "omml_to_latex",
    "convert_equation",
    "classify_heading",
    "extract_manual_number",
    "detect_text_list_item",
    "group_list",
    "match_list_marker",
    "NumberingContext",
    "HeadingNumberTracker",
    "parse_numbering",
    "parse_styles",
    "get_heading_level",
    "parse_table",
    "infer_cell_type",
]
