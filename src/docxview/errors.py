"""Load errors.

Only whole-file problems are raised from ``load``; a malformed fragment inside
an otherwise valid document degrades locally and never reaches the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class LoadError(Exception):
    message: str
    path: Optional[str] = None
    code: str = "load_error"

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


@dataclass
class InvalidContainer(LoadError):
    """The file is missing, unreadable, or not a ZIP container."""

    code: str = "invalid_container"


@dataclass
class UnsupportedFormat(LoadError):
    """Legacy binary Word or a spreadsheet was given instead of a .docx."""

    code: str = "unsupported_format"


@dataclass
class MalformedPart(LoadError):
    """A required part is missing or cannot be parsed."""

    code: str = "malformed_part"
