"""docxview - CLI Entry Point."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.text import Text

from docxview.compositor import PROTOCOLS, ImageCompositor
from docxview.config import settings
from docxview.docx_parser import load
from docxview.errors import LoadError
from docxview.layout import Theme, Viewport, render_frame
from docxview.query import highlight_ranges, outline, search

# Render the whole document when no height is given
UNLIMITED_HEIGHT = 1_000_000


def _resolve_color(flag: Optional[bool]) -> bool:
    if flag is not None:
        return flag
    if os.environ.get("NO_COLOR"):
        return False
    return settings.color_enabled


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@click.command()
@click.argument("input_docx", type=click.Path(exists=True, path_type=Path))
@click.option("--width", type=click.IntRange(min=0), help="Frame width in cells (default: terminal width)")
@click.option("--height", type=click.IntRange(min=0), help="Frame height in lines (default: whole document)")
@click.option("--scroll", type=click.IntRange(min=0), default=0, help="Number of elements to skip")
@click.option("--search", "query", help="Highlight case-insensitive matches and list them")
@click.option("--outline", "show_outline", is_flag=True, help="Print the heading outline instead of the document")
@click.option("--color/--no-color", default=None, show_default=False, help="Colour output (default: enabled unless NO_COLOR is set)")
@click.option("--images", type=click.Choice(PROTOCOLS), default="halfblocks", help="Image rendering protocol")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(input_docx: Path, width: Optional[int], height: Optional[int], scroll: int, query: Optional[str],
        show_outline: bool, color: Optional[bool], images: str, verbose: bool):
    """View a Word document in the terminal.

    INPUT_DOCX: Path to the input .docx file.
    """
    _configure_logging(verbose)
    use_color = _resolve_color(color)
    console = Console(no_color=not use_color, highlight=False, soft_wrap=True)

    try:
        document = load(input_docx)
    except LoadError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if verbose:
        meta = document.metadata
        click.echo(f"{document.title}: {len(document.elements)} elements, "
                   f"{meta.word_count} words, ~{meta.page_count} pages", err=True)

    if show_outline:
        entries = outline(document)
        if not entries:
            click.echo("(no headings)")
        for entry in entries:
            click.echo(f"{'  ' * (entry.level - 1)}{entry.text}")
        return

    matches = search(document, query) if query else []
    compositor = ImageCompositor(protocol=images, color=use_color)
    decoded = compositor.prepare(document)
    if verbose:
        click.echo(f"  Decoded {decoded} image(s) for {images}", err=True)

    viewport = Viewport(width=console.width if width is None else width,
                        height=UNLIMITED_HEIGHT if height is None else height)
    frame = render_frame(
        document,
        viewport,
        scroll_offset=scroll,
        compositor=compositor,
        highlights=highlight_ranges(matches),
        theme=Theme() if use_color else Theme.monochrome(),
    )
    for line in frame.lines:
        console.print(Text.assemble(*((segment.text, segment.style) for segment in line)))

    if query:
        click.echo(f"{len(matches)} match(es) for {query!r}", err=True)
        for match in matches:
            click.echo(f"  element {match.element_index} [{match.start}:{match.end}] {match.text}", err=True)


if __name__ == "__main__":
    cli()
