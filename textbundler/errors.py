"""Exceptions raised while converting a document into a bundle."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class TextbundlerError(Exception):
    """Base class for every fatal conversion failure."""


class ParseError(TextbundlerError):
    """The source document could not be decoded or parsed."""

    def __init__(self, path: Union[str, Path], reason: str) -> None:
        super().__init__(f"Cannot parse {path}: {reason}")
        self.path = Path(path)


class NetworkError(TextbundlerError):
    """A remote reference could not be downloaded."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Error downloading {url}: {reason}")
        self.url = url


class NotFoundError(TextbundlerError):
    """A local reference or the source document does not exist."""

    def __init__(self, path: Union[str, Path], reference: Optional[str] = None) -> None:
        if reference is not None:
            message = f"Local reference {reference!r} not found at {path}"
        else:
            message = f"File not found: {path}"
        super().__init__(message)
        self.path = Path(path)
        self.reference = reference


class FileSystemError(TextbundlerError):
    """Writing, stamping or publishing part of a bundle failed."""

    def __init__(self, path: Union[str, Path], action: str, reason: str) -> None:
        super().__init__(f"Cannot {action} {path}: {reason}")
        self.path = Path(path)
        self.action = action


class TimestampError(TextbundlerError):
    """Creation or modification times could not be determined."""

    def __init__(self, path: Union[str, Path], reason: str) -> None:
        super().__init__(f"Cannot read timestamps for {path}: {reason}")
        self.path = Path(path)
