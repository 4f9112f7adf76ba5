"""Bundle assembly: scratch directory, manifest and atomic publish."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional, Union

from .config import (
    ASSETS_DIRNAME,
    BUNDLE_EXTENSION,
    CREATOR_IDENTIFIER,
    MANIFEST_FILENAME,
    TEXT_FILENAME,
)
from .errors import FileSystemError
from .markdown import rewrite_document
from .models import LinkRewrite
from .timestamps import apply_times

logger = logging.getLogger("textbundler")

MANIFEST = {
    "transient": True,
    "type": "net.daringfireball.markdown",
    "creatorIdentifier": CREATOR_IDENTIFIER,
    "version": 2,
}
MANIFEST_BYTES = (json.dumps(MANIFEST, indent=2) + "\n").encode("utf-8")

PathLike = Union[str, Path]


def resolve_bundle_path(source_path: Path, destination: Optional[PathLike] = None) -> Path:
    """Work out where the bundle for ``source_path`` is published.

    A destination that ends with a path separator or names an existing
    directory receives ``<source name>.Textbundle``; any other destination is
    used as the bundle path itself.
    """
    bundle_name = f"{source_path.name}.{BUNDLE_EXTENSION}"
    if destination is None:
        return source_path.parent / bundle_name
    raw = os.fspath(destination)
    target = Path(raw)
    if raw.endswith(("/", os.sep)) or target.is_dir():
        return target / bundle_name
    return target


class BundleAssembler:
    """Build a bundle in a hidden scratch directory and publish it with one rename.

    The scratch directory lives next to the final bundle so the rename never
    crosses filesystems. If anything fails before the rename the scratch
    directory is left where it is and nothing appears at ``bundle_path``.
    """

    def __init__(self, source_path: Path, bundle_path: Path, scratch_dir: Path) -> None:
        self.source_path = source_path
        self.bundle_path = bundle_path
        self.scratch_dir = scratch_dir

    @classmethod
    def create(cls, source_path: Path, destination: Optional[PathLike] = None) -> "BundleAssembler":
        bundle_path = resolve_bundle_path(source_path, destination)
        parent = bundle_path.parent
        try:
            scratch_dir = Path(tempfile.mkdtemp(prefix=f".{bundle_path.name}.", dir=parent))
            (scratch_dir / ASSETS_DIRNAME).mkdir()
        except OSError as exc:
            raise FileSystemError(parent, "create scratch directory in", str(exc)) from exc
        logger.debug("Assembling %s in %s", bundle_path.name, scratch_dir)
        return cls(source_path, bundle_path, scratch_dir)

    @property
    def assets_dir(self) -> Path:
        return self.scratch_dir / ASSETS_DIRNAME

    def _write(self, name: str, data: bytes) -> None:
        path = self.scratch_dir / name
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise FileSystemError(path, "write", str(exc)) from exc

    def assemble(
        self,
        raw_text: str,
        image_rewrites: Mapping[str, str],
        link_rewrites: Mapping[int, LinkRewrite],
        append_text: str,
        creation: datetime,
        modification: datetime,
    ) -> Path:
        """Write the rewritten document and manifest, stamp times, then publish."""
        text = rewrite_document(
            raw_text,
            image_rewrites,
            link_rewrites,
            append_text,
            self.source_path.name,
        )
        self._write(TEXT_FILENAME, text.encode("utf-8"))
        self._write(MANIFEST_FILENAME, MANIFEST_BYTES)
        # Bear reads these to decide when the note was created and last changed.
        apply_times(self.scratch_dir, creation, modification)
        return self.publish()

    def publish(self) -> Path:
        try:
            os.rename(self.scratch_dir, self.bundle_path)
        except OSError as exc:
            raise FileSystemError(
                self.bundle_path,
                "publish bundle to",
                f"{exc} (scratch directory left at {self.scratch_dir})",
            ) from exc
        logger.info("Saved bundle to %s", self.bundle_path)
        return self.bundle_path
