"""docxview - Word documents rendered for the terminal."""

from .config import Settings, settings
from .docx_parser import load, load_async
from .errors import InvalidContainer, LoadError, MalformedPart, UnsupportedFormat
from .layout import Frame, Theme, Viewport, render_frame, wrap_runs
from .query import highlight_ranges, outline, search

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "settings",
    "load",
    "load_async",
    "LoadError",
    "InvalidContainer",
    "UnsupportedFormat",
    "MalformedPart",
    "Frame",
    "Theme",
    "Viewport",
    "render_frame",
    "wrap_runs",
    "search",
    "outline",
    "highlight_ranges",
]
