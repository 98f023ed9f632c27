"""Image compositor - decoded rasters and their terminal rendering.

Rasters are decoded with Pillow in :meth:`ImageCompositor.prepare`, before
any frame is drawn; rendering itself only resamples pixels already in memory.
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from PIL import Image as PILImage
from PIL import UnidentifiedImageError
from rich.color import Color
from rich.segment import Segment
from rich.style import Style

from docxview.ir import Document, Image
from docxview.text import display_width, truncate

logger = logging.getLogger(__name__)

PROTOCOLS = ("halfblocks", "ascii", "placeholder")
ASCII_RAMP = " .:-=+*#%@"
UPPER_HALF = "▀"
PLACEHOLDER_STYLE = Style(dim=True)


class RasterState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class RasterHandle:
    """Decoded raster for one media part."""

    key: str
    description: str = ""
    state: RasterState = RasterState.PENDING
    raster: Optional[PILImage.Image] = None
    error: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state == RasterState.READY and self.raster is not None


def _row(segments: List[Segment], width: int) -> List[Segment]:
    used = sum(display_width(s.text) for s in segments)
    if used < width:
        segments = segments + [Segment(" " * (width - used))]
    return segments


def render_placeholder(description: str, width: int, height: int) -> List[List[Segment]]:
    """A framed box with the image description centred on its middle row."""
    if width <= 0 or height <= 0:
        return []
    label = f"[image: {description}]" if description else "[image]"
    if height < 3 or width < 4:
        text = truncate(label, width)
        rows = [[Segment(text, PLACEHOLDER_STYLE)]] + [[] for _ in range(height - 1)]
        return [_row(row, width) for row in rows]

    inner = width - 2
    text = truncate(label, inner)
    left = (inner - display_width(text)) // 2
    middle = (height - 1) // 2
    rows = [[Segment("┌" + "─" * inner + "┐", PLACEHOLDER_STYLE)]]
    for y in range(1, height - 1):
        content = " " * inner
        if y == middle:
            content = " " * left + text + " " * (inner - left - display_width(text))
        rows.append([Segment("│" + content + "│", PLACEHOLDER_STYLE)])
    rows.append([Segment("└" + "─" * inner + "┘", PLACEHOLDER_STYLE)])
    return rows


def _fit(raster: PILImage.Image, width: int, height: int) -> tuple:
    """Largest size with the raster's aspect inside ``width`` x ``height`` pixels."""
    src_w, src_h = raster.size
    scale = min(width / src_w, height / src_h)
    return max(1, min(width, round(src_w * scale))), max(1, min(height, round(src_h * scale)))


def _centre(rows: List[List[Segment]], content_width: int, width: int, height: int) -> List[List[Segment]]:
    left = (width - content_width) // 2
    top = (height - len(rows)) // 2
    out = [[] for _ in range(top)]
    for row in rows:
        out.append(([Segment(" " * left)] if left else []) + row)
    out.extend([] for _ in range(height - len(out)))
    return [_row(row, width) for row in out]


class ImageCompositor:
    """Owns decoded rasters and renders them into cell rectangles."""

    def __init__(self, protocol: str = "halfblocks", color: bool = True):
        if protocol not in PROTOCOLS:
            raise ValueError(f"Unknown image protocol {protocol!r}; expected one of {', '.join(PROTOCOLS)}")
        # Half blocks need colour; without it fall back to the luminance ramp
        self.protocol = "ascii" if protocol == "halfblocks" and not color else protocol
        self._handles: Dict[str, RasterHandle] = {}

    def prepare(self, document: Document) -> int:
        """Decode every image in the document. Returns the number decoded."""
        ready = 0
        for element in document.elements:
            if not isinstance(element, Image):
                continue
            handle = self.handle_for(element)
            if handle.state != RasterState.PENDING:
                ready += handle.ready
                continue
            data = document.media.get(element.raster_handle)
            if data is None:
                handle.state, handle.error = RasterState.FAILED, "media part missing"
                logger.warning(f"Image {element.raster_handle} has no data in the package")
                continue
            try:
                with PILImage.open(io.BytesIO(data)) as raster:
                    handle.raster = raster.convert("RGB")
                handle.state = RasterState.READY
                ready += 1
            except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError, ValueError) as e:
                handle.state, handle.error = RasterState.FAILED, str(e)
                logger.warning(f"Image {element.raster_handle} could not be decoded: {e}")
        return ready

    def handle_for(self, image: Image) -> RasterHandle:
        handle = self._handles.get(image.raster_handle)
        if handle is None:
            handle = RasterHandle(key=image.raster_handle, description=image.description)
            self._handles[image.raster_handle] = handle
        return handle

    def render(self, handle: RasterHandle, width: int, height: int) -> List[List[Segment]]:
        """Rows of segments filling exactly ``width`` x ``height`` cells."""
        if width <= 0 or height <= 0:
            return []
        if self.protocol == "placeholder" or not handle.ready:
            return render_placeholder(handle.description, width, height)
        if self.protocol == "ascii":
            return self._render_ascii(handle.raster, width, height)
        return self._render_halfblocks(handle.raster, width, height)

    def _render_halfblocks(self, raster: PILImage.Image, width: int, height: int) -> List[List[Segment]]:
        # Each cell shows two vertically stacked pixels
        cols, pixel_rows = _fit(raster, width, height * 2)
        resized = raster.resize((cols, pixel_rows), PILImage.Resampling.BILINEAR)
        pixels = resized.load()
        rows = []
        for y in range(0, pixel_rows, 2):
            row = []
            for x in range(cols):
                top = Color.from_rgb(*pixels[x, y])
                bottom = Color.from_rgb(*pixels[x, y + 1]) if y + 1 < pixel_rows else None
                row.append(Segment(UPPER_HALF, Style(color=top, bgcolor=bottom)))
            rows.append(row)
        return _centre(rows, cols, width, height)

    def _render_ascii(self, raster: PILImage.Image, width: int, height: int) -> List[List[Segment]]:
        # Cells are about twice as tall as wide
        cols, pixel_rows = _fit(raster, width, height * 2)
        rows_needed = max(1, min(height, math.ceil(pixel_rows / 2)))
        resized = raster.convert("L").resize((cols, rows_needed), PILImage.Resampling.BILINEAR)
        pixels = resized.load()
        top = len(ASCII_RAMP) - 1
        rows = [
            [Segment("".join(ASCII_RAMP[pixels[x, y] * top // 255] for x in range(cols)))]
            for y in range(rows_needed)
        ]
        return _centre(rows, cols, width, height)
