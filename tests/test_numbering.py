"""Tests for numbering.xml parsing and the numbering trackers."""

import pytest
from lxml import etree

from docxview.docx_parser.numbering import (
    HeadingNumberTracker,
    LevelFormat,
    ListScheme,
    NumberingContext,
    bullet_glyph,
    format_counter,
    parse_numbering,
    to_letters,
    to_roman,
)
from generators import NS_DECL, numbering_xml

DECIMAL_ALPHA = ListScheme(
    levels={
        0: LevelFormat(num_fmt="decimal", lvl_text="%1."),
        1: LevelFormat(num_fmt="lowerLetter", lvl_text="%1.%2)"),
    }
)


class TestNumberingContext:
    """Tests for the per-load list counters."""

    def test_decimal_alpha_sequence(self):
        """Advances (0, 0, 1, 0) render 1., 2., 2.a), 3."""
        ctx = NumberingContext({"7": DECIMAL_ALPHA})
        labels = [ctx.advance("7", level) for level in (0, 0, 1, 0)]
        assert labels == ["1.", "2.", "2.a)", "3."]

    def test_deeper_level_restarts_after_parent(self):
        ctx = NumberingContext({"1": DECIMAL_ALPHA})
        labels = [ctx.advance("1", level) for level in (0, 1, 1, 0, 1)]
        assert labels == ["1.", "1.a)", "1.b)", "2.", "2.a)"]

    def test_lists_are_independent(self):
        ctx = NumberingContext({"1": DECIMAL_ALPHA, "2": DECIMAL_ALPHA})
        assert ctx.advance("1", 0) == "1."
        assert ctx.advance("1", 0) == "2."
        assert ctx.advance("2", 0) == "1."

    def test_unknown_list_uses_default_cycle(self):
        """An undeclared list id cycles decimal, lowerLetter, lowerRoman."""
        ctx = NumberingContext()
        assert ctx.advance("99", 0) == "1."
        assert ctx.advance("99", 1) == "a)"
        assert ctx.advance("99", 2) == "i."

    def test_start_value(self):
        ctx = NumberingContext({"1": ListScheme(levels={0: LevelFormat(start=5)})})
        assert ctx.advance("1", 0) == "5."
        assert ctx.advance("1", 0) == "6."

    def test_bullet_level(self):
        scheme = ListScheme(levels={0: LevelFormat(num_fmt="bullet", lvl_text="")})
        ctx = NumberingContext({"3": scheme})
        assert ctx.advance("3", 0) == "•"
        assert ctx.is_ordered("3", 0) is False


class TestParseNumbering:
    """Tests for reading abstract definitions and instances."""

    def test_levels_from_abstract_definition(self):
        xml = numbering_xml([("decimal", "%1."), ("lowerLetter", "%2)")])
        schemes = parse_numbering(etree.fromstring(xml.encode()))
        assert set(schemes) == {"1"}
        assert schemes["1"].level(0).num_fmt == "decimal"
        assert schemes["1"].level(1).lvl_text == "%2)"

    def test_level_override(self):
        xml = f"""
        <w:numbering {NS_DECL}>
            <w:abstractNum w:abstractNumId="0">
                <w:lvl w:ilvl="0"><w:numFmt w:val="decimal"/><w:lvlText w:val="%1."/></w:lvl>
            </w:abstractNum>
            <w:num w:numId="4">
                <w:abstractNumId w:val="0"/>
                <w:lvlOverride w:ilvl="0">
                    <w:lvl w:ilvl="0"><w:start w:val="3"/><w:numFmt w:val="upperRoman"/><w:lvlText w:val="%1)"/></w:lvl>
                </w:lvlOverride>
            </w:num>
        </w:numbering>
        """
        schemes = parse_numbering(etree.fromstring(xml))
        ctx = NumberingContext(schemes)
        assert ctx.advance("4", 0) == "III)"

    def test_linked_heading_style(self):
        xml = f"""
        <w:numbering {NS_DECL}>
            <w:abstractNum w:abstractNumId="2">
                <w:lvl w:ilvl="0"><w:numFmt w:val="decimal"/><w:lvlText w:val="%1"/><w:pStyle w:val="Heading1"/></w:lvl>
            </w:abstractNum>
            <w:num w:numId="9"><w:abstractNumId w:val="2"/></w:num>
        </w:numbering>
        """
        schemes = parse_numbering(etree.fromstring(xml))
        assert schemes["9"].heading_styles == {0: "Heading1"}

    def test_missing_part(self):
        assert parse_numbering(None) == {}


class TestCounterFormats:
    """Tests for counter formatting helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [(1, "I"), (4, "IV"), (9, "IX"), (14, "XIV"), (1994, "MCMXCIV")],
    )
    def test_roman(self, value, expected):
        assert to_roman(value) == expected

    def test_letters_repeat_after_z(self):
        assert to_letters(1) == "a"
        assert to_letters(26) == "z"
        assert to_letters(27) == "aa"
        assert to_letters(28) == "bb"

    def test_format_counter(self):
        assert format_counter(3, "upperLetter") == "C"
        assert format_counter(7, "decimalZero") == "07"
        assert format_counter(4, "lowerRoman") == "iv"
        assert format_counter(2, "none") == ""

    def test_bullet_glyphs(self):
        assert bullet_glyph("") == "•"
        assert bullet_glyph("o") == "◦"
        assert bullet_glyph("▪") == "▪"


class TestHeadingNumberTracker:
    """Tests for automatic heading numbers."""

    def test_hierarchical_numbers(self):
        tracker = HeadingNumberTracker(enabled=True)
        numbers = [tracker.next(level) for level in (1, 2, 2, 1, 2)]
        assert numbers == ["1", "1.1", "1.2", "2", "2.1"]

    def test_disabled(self):
        tracker = HeadingNumberTracker()
        assert tracker.next(1) is None
