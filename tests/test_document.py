"""End-to-end tests for load() on generated packages."""

import asyncio
import zipfile

import pytest

from docxview.docx_parser import document as document_module
from docxview.docx_parser import load, load_async
from docxview.errors import InvalidContainer, LoadError, MalformedPart, UnsupportedFormat
from docxview.ir import Equation, Heading, Image, LogicalList, PageBreak, Paragraph, Table
from docxview.query import outline
from generators import (
    build_docx,
    cell,
    core_xml,
    corrupt_member,
    drawing,
    mrun,
    numbering_xml,
    omath,
    para,
    png_bytes,
    run,
    table,
    text_para,
)


def kinds(document):
    return [type(el).__name__ for el in document.elements]


class TestHeadings:
    def test_numbered_headings_outline(self, tmp_path):
        body = (
            text_para("1. Intro", style="Heading1")
            + text_para("Some text.")
            + text_para("2. Body", style="Heading1")
            + text_para("2.1 Detail", style="Heading2")
        )
        document = load(build_docx(tmp_path / "h.docx", body))
        entries = outline(document)
        assert [e.level for e in entries] == [1, 1, 2]
        assert [e.text for e in entries] == ["1. Intro", "2. Body", "2.1 Detail"]

    def test_auto_numbering(self, tmp_path):
        body = (
            text_para("Intro", style="Heading1")
            + text_para("Scope", style="Heading2")
            + text_para("Methods", style="Heading1")
        )
        document = load(build_docx(tmp_path / "auto.docx", body))
        assert [h.number for h in document.elements] == ["1", "1.1", "2"]

    def test_two_headings_stay_unnumbered(self, tmp_path):
        body = text_para("Intro", style="Heading1") + text_para("Scope", style="Heading2")
        document = load(build_docx(tmp_path / "few.docx", body))
        assert [h.number for h in document.elements] == [None, None]


class TestLists:
    def test_numbered_list(self, tmp_path):
        body = (
            text_para("First", num=("1", 0))
            + text_para("Second", num=("1", 0))
            + text_para("Sub", num=("1", 1))
            + text_para("Third", num=("1", 0))
        )
        numbering = numbering_xml([("decimal", "%1."), ("lowerLetter", "%1.%2)")])
        document = load(build_docx(tmp_path / "list.docx", body, numbering=numbering))
        assert kinds(document) == ["LogicalList"]
        lst = document.elements[0]
        assert lst.ordered is True
        assert [item.marker for item in lst.items] == ["1.", "2.", "3."]
        assert lst.items[1].children[0].marker == "2.a)"
        assert lst.items[1].children[0].text == "Sub"

    def test_text_list_then_paragraph(self, tmp_path):
        body = text_para("• Apples") + text_para("• Pears") + text_para("That is all.")
        document = load(build_docx(tmp_path / "text.docx", body))
        assert kinds(document) == ["LogicalList", "Paragraph"]
        assert [item.text for item in document.elements[0].items] == ["Apples", "Pears"]

    def test_numbered_and_text_items_split(self, tmp_path):
        body = text_para("First", num=("1", 0)) + text_para("- typed item")
        document = load(build_docx(tmp_path / "mixed.docx", body, numbering=numbering_xml([("decimal", "%1.")])))
        assert kinds(document) == ["LogicalList", "LogicalList"]


class TestBlocks:
    def test_table(self, tmp_path):
        body = text_para("Prices") + table([[cell("A"), cell("1")], [cell("B"), cell("2")]], grid=2)
        document = load(build_docx(tmp_path / "t.docx", body))
        assert isinstance(document.elements[1], Table)
        assert document.elements[1].source_index == 1

    def test_image(self, tmp_path):
        body = text_para("Figure:") + para(drawing("rId5", "A red box"))
        path = build_docx(
            tmp_path / "img.docx",
            body,
            rels={"rId5": "media/image1.png"},
            media={"word/media/image1.png": png_bytes(4, 2)},
        )
        document = load(path)
        image = document.elements[1]
        assert isinstance(image, Image)
        assert image.raster_handle == "word/media/image1.png"
        assert image.description == "A red box"
        assert (image.natural_width, image.natural_height) == (100, 50)
        assert "word/media/image1.png" in document.media

    def test_missing_image_relationship_is_skipped(self, tmp_path):
        body = text_para("Text") + para(drawing("rId404"))
        document = load(build_docx(tmp_path / "noimg.docx", body))
        assert kinds(document) == ["Paragraph"]

    def test_page_break(self, tmp_path):
        body = text_para("One") + para('<w:r><w:br w:type="page"/></w:r>') + text_para("Two")
        document = load(build_docx(tmp_path / "pb.docx", body))
        assert kinds(document) == ["Paragraph", "PageBreak", "Paragraph"]

    def test_empty_paragraphs_skipped(self, tmp_path):
        body = text_para("One") + "<w:p/>" + text_para("   ") + text_para("Two")
        document = load(build_docx(tmp_path / "empty.docx", body))
        assert kinds(document) == ["Paragraph", "Paragraph"]

    def test_source_order_is_non_decreasing(self, tmp_path):
        body = (
            text_para("Intro", style="Heading1")
            + text_para("• a")
            + text_para("• b")
            + table([[cell("x")]], grid=1)
            + para(omath(mrun("x=1")))
            + text_para("End")
        )
        document = load(build_docx(tmp_path / "order.docx", body))
        indices = [el.source_index for el in document.elements]
        assert indices == sorted(indices)


class TestEquations:
    def test_display_equation_follows_its_paragraph(self, tmp_path):
        frac = f"<m:f><m:num>{mrun('a')}</m:num><m:den>{mrun('b')}</m:den></m:f>"
        body = text_para("Before") + para(omath(frac)) + text_para("After")
        document = load(build_docx(tmp_path / "eq.docx", body))
        assert kinds(document) == ["Paragraph", "Equation", "Paragraph"]
        equation = document.elements[1]
        assert equation.latex == r"\frac{a}{b}"
        assert equation.is_inline is False

    def test_display_equation_after_list(self, tmp_path):
        body = text_para("• one") + text_para("• two") + para(omath(mrun("x"))) + text_para("After")
        document = load(build_docx(tmp_path / "eqlist.docx", body))
        assert kinds(document) == ["LogicalList", "Equation", "Paragraph"]

    def test_display_equation_after_table_anchors_to_preceding_text(self, tmp_path):
        """The equation follows the last text block, so it lands before the table."""
        body = text_para("Intro") + table([[cell("x"), cell("y")]], grid=2) + para(omath(mrun("z"))) + text_para("After")
        document = load(build_docx(tmp_path / "eqtable.docx", body))
        assert kinds(document) == ["Paragraph", "Equation", "Table", "Paragraph"]
        assert document.elements[1].source_index == 0

    def test_inline_equation(self, tmp_path):
        body = para(run("Area is "), omath(mrun("πr")), run(" units"))
        document = load(build_docx(tmp_path / "inline.docx", body))
        paragraph = document.elements[0]
        assert isinstance(paragraph, Paragraph)
        assert paragraph.text == r"Area is $\pi r$ units"
        assert paragraph.equations[0].anchor_offset == 8
        assert paragraph.equations[0].is_inline is True


class TestMetadata:
    def test_core_properties(self, tmp_path):
        body = text_para("one two three")
        document = load(build_docx(tmp_path / "meta.docx", body, core=core_xml(title="Report", creator="Ann")))
        assert document.title == "Report"
        assert document.metadata.author == "Ann"
        assert document.metadata.word_count == 3
        assert document.metadata.page_count == 1
        assert document.metadata.file_size > 0

    def test_title_falls_back_to_stem(self, tmp_path):
        document = load(build_docx(tmp_path / "notes.docx", text_para("x")))
        assert document.title == "notes"

    def test_media_is_read_only(self, tmp_path):
        document = load(build_docx(tmp_path / "ro.docx", text_para("x")))
        with pytest.raises(TypeError):
            document.media["word/media/new.png"] = b""


class TestLoadErrors:
    """Whole-file failures raise one of the LoadError subclasses."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidContainer):
            load(tmp_path / "absent.docx")

    def test_legacy_extension(self, tmp_path):
        path = tmp_path / "old.doc"
        path.write_bytes(b"whatever")
        with pytest.raises(UnsupportedFormat):
            load(path)

    def test_spreadsheet_extension(self, tmp_path):
        path = tmp_path / "sheet.xlsx"
        path.write_bytes(b"whatever")
        with pytest.raises(UnsupportedFormat):
            load(path)

    def test_renamed_binary_word_file(self, tmp_path):
        path = tmp_path / "binary.docx"
        path.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64)
        with pytest.raises(UnsupportedFormat):
            load(path)

    def test_renamed_workbook(self, tmp_path):
        path = tmp_path / "book.docx"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("xl/workbook.xml", "<workbook/>")
        with pytest.raises(UnsupportedFormat):
            load(path)

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / "text.docx"
        path.write_text("plain text")
        with pytest.raises(InvalidContainer) as excinfo:
            load(path)
        assert excinfo.value.code == "invalid_container"

    def test_missing_main_part(self, tmp_path):
        path = tmp_path / "empty.docx"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("other.txt", "x")
        with pytest.raises(MalformedPart):
            load(path)

    def test_unparsable_main_part(self, tmp_path):
        path = tmp_path / "broken.docx"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("word/document.xml", "<w:document><unclosed>")
        with pytest.raises(MalformedPart):
            load(path)

    def test_corrupt_main_part_stream(self, tmp_path):
        body = "".join(text_para(f"Paragraph number {i} with some text.") for i in range(40))
        path = build_docx(tmp_path / "corrupt.docx", body, compression=zipfile.ZIP_DEFLATED)
        corrupt_member(path, "word/document.xml")
        with pytest.raises(MalformedPart):
            load(path)

    def test_corrupt_optional_part_is_skipped(self, tmp_path):
        path = build_docx(
            tmp_path / "thumb.docx",
            text_para("Still readable"),
            media={"docProps/thumbnail.png": png_bytes(64, 64)},
            compression=zipfile.ZIP_DEFLATED,
        )
        corrupt_member(path, "docProps/thumbnail.png")
        document = load(path)
        assert [el.text for el in document.elements] == ["Still readable"]

    def test_all_errors_share_a_base(self):
        assert issubclass(InvalidContainer, LoadError)
        assert issubclass(UnsupportedFormat, LoadError)
        assert issubclass(MalformedPart, LoadError)

    def test_message_names_the_file(self, tmp_path):
        with pytest.raises(LoadError) as excinfo:
            load(tmp_path / "absent.docx")
        assert "absent.docx" in str(excinfo.value)


class TestLoadAsync:
    def test_same_result_as_load(self, tmp_path):
        path = build_docx(tmp_path / "async.docx", text_para("Hello"))
        document = asyncio.run(load_async(path))
        assert document == load(path)


class TestBlockRecovery:
    """A block that fails to parse is kept once, as plain text, in its place."""

    @pytest.fixture
    def failing_images(self, monkeypatch):
        def explode(ref, data):
            raise ValueError("corrupt drawing")

        monkeypatch.setattr(document_module, "natural_size", explode)

    def image_package(self, tmp_path, body):
        return build_docx(
            tmp_path / "degrade.docx",
            body,
            rels={"rId5": "media/image1.png"},
            media={"word/media/image1.png": png_bytes()},
        )

    def test_failed_block_degrades_once(self, tmp_path, failing_images):
        body = para(run("Caption text"), drawing("rId5")) + text_para("Next")
        document = load(self.image_package(tmp_path, body))
        assert kinds(document) == ["Paragraph", "Paragraph"]
        assert [el.text for el in document.elements] == ["Caption text", "Next"]
        assert document.elements[0].source_index == 0

    def test_failed_list_item_does_not_advance_numbering(self, tmp_path, failing_images):
        body = para(run("First"), drawing("rId5"), num=("1", 0)) + text_para("Second", num=("1", 0))
        path = self.image_package(tmp_path, body)
        with zipfile.ZipFile(path, "a") as zf:
            zf.writestr("word/numbering.xml", numbering_xml([("decimal", "%1.")]))
        document = load(path)
        assert kinds(document) == ["Paragraph", "LogicalList"]
        assert document.elements[0].text == "First"
        assert [item.marker for item in document.elements[1].items] == ["1."]

    def test_later_blocks_still_parse(self, tmp_path, failing_images):
        body = para(run("Broken"), drawing("rId5")) + text_para("Intro", style="Heading1") + text_para("• item")
        document = load(self.image_package(tmp_path, body))
        assert kinds(document) == ["Paragraph", "Heading", "LogicalList"]
