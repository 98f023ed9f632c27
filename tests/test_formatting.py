"""Tests for run extraction and grapheme-safe run boundaries."""

from docxview.docx_parser.formatting import extract_paragraph, normalize_runs
from docxview.ir import FormattedRun
from docxview.text import graphemes, leading_continuation
from generators import element, para, run


class TestLeadingContinuation:
    def test_plain_boundary(self):
        assert leading_continuation("abc", "def") == 0

    def test_combining_marks_continue_previous_cluster(self):
        assert leading_continuation("e", "\u0301\u0302x") == 2

    def test_empty_sides(self):
        assert leading_continuation("", "\u0301") == 0
        assert leading_continuation("e", "") == 0


class TestNormalizeRuns:
    """A run boundary never falls inside a grapheme cluster."""

    def test_mark_moves_to_previous_run(self):
        runs = normalize_runs([FormattedRun(text="e", bold=True), FormattedRun(text="\u0301x")])
        assert runs == [FormattedRun(text="e\u0301", bold=True), FormattedRun(text="x")]

    def test_run_made_only_of_marks_disappears(self):
        runs = normalize_runs([FormattedRun(text="a", italic=True), FormattedRun(text="\u0308"), FormattedRun(text="b")])
        assert runs == [FormattedRun(text="a\u0308", italic=True), FormattedRun(text="b")]

    def test_same_format_runs_merge(self):
        runs = normalize_runs([FormattedRun(text="ab"), FormattedRun(text=""), FormattedRun(text="cd")])
        assert runs == [FormattedRun(text="abcd")]

    def test_every_run_starts_on_a_cluster(self):
        runs = normalize_runs(
            [FormattedRun(text="Cafe", bold=True), FormattedRun(text="\u0301 noir"), FormattedRun(text="!", italic=True)]
        )
        joined = "".join(r.text for r in runs)
        offsets = set()
        position = 0
        for cluster in graphemes(joined):
            offsets.add(position)
            position += len(cluster)
        start = 0
        for r in runs:
            assert start in offsets
            start += len(r.text)


class TestExtractParagraph:
    def test_split_cluster_repaired_on_extraction(self):
        p = element(para(run("Cafe", bold=True), run("\u0301 noir")))
        content = extract_paragraph(p, {})
        assert [(r.text, r.bold) for r in content.runs] == [("Cafe\u0301", True), (" noir", False)]
