"""Configuration objects and constants for bundle generation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

DEFAULT_CONCURRENCY = 5
BUNDLE_EXTENSION = "Textbundle"
TEXT_FILENAME = "text.markdown"
MANIFEST_FILENAME = "info.json"
ASSETS_DIRNAME = "assets"
ATTACHMENT_TAG = "#todo/process-attachment"
CREATOR_IDENTIFIER = "com.zachlatta.Textbundler"


@dataclass
class BundleConfig:
    """Top-level settings that control how a Markdown file becomes a bundle."""

    destination: Optional[Union[str, Path]] = None
    process_attachments: bool = False
    append_text: str = ""
    concurrency: int = DEFAULT_CONCURRENCY
    verbose: bool = False
    use_git_dates: bool = False
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {self.concurrency}")
