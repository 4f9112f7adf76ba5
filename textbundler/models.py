"""Data models used throughout the conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict

from .errors import ParseError


class ReferenceKind(Enum):
    """Where the bytes behind a reference live."""

    REMOTE = "remote"
    LOCAL = "local"


class NodeKind(Enum):
    """Structural node kinds the walker cares about."""

    IMAGE = "image"
    LINK = "link"


@dataclass(frozen=True)
class Document:
    """Raw Markdown source read once from disk."""

    path: Path
    raw: bytes

    @property
    def text(self) -> str:
        try:
            return self.raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(self.path, f"not valid UTF-8 ({exc})") from exc

    @property
    def source_dir(self) -> Path:
        return self.path.parent

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ReferenceNode:
    """An image or link node discovered in the parsed document."""

    index: int
    kind: NodeKind
    destination: str


@dataclass(frozen=True)
class LinkRewrite:
    """Placeholder text that replaces one attachment link."""

    destination: str
    placeholder: str


@dataclass
class WalkResult:
    """Rewrite tables collected while walking a document."""

    image_rewrites: Dict[str, str] = field(default_factory=dict)
    link_rewrites: Dict[int, LinkRewrite] = field(default_factory=dict)


@dataclass
class ConversionResult:
    """Outcome and timing details for a converted document."""

    source_path: Path
    bundle_path: Path
    image_count: int
    attachment_count: int
    total_seconds: float
