"""High-level orchestration for turning Markdown files into bundles."""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

import requests

from .bundle import BundleAssembler
from .config import BundleConfig
from .errors import FileSystemError, NotFoundError, TextbundlerError
from .images import AssetFetcher
from .markdown import DocumentWalker, parse_document
from .models import ConversionResult, Document
from .timestamps import resolve_times

logger = logging.getLogger("textbundler")


def load_document(path: Union[str, Path]) -> Document:
    """Read a Markdown file once, remembering its absolute location."""
    absolute = Path(os.path.abspath(path))
    try:
        raw = absolute.read_bytes()
    except FileNotFoundError as exc:
        raise NotFoundError(absolute) from exc
    except OSError as exc:
        raise FileSystemError(absolute, "read", str(exc)) from exc
    return Document(path=absolute, raw=raw)


def convert_document(
    path: Union[str, Path],
    config: BundleConfig,
    *,
    creation: Optional[datetime] = None,
    modification: Optional[datetime] = None,
    session: Optional[requests.Session] = None,
) -> ConversionResult:
    """Convert one Markdown file into a published bundle.

    Timestamps default to the ones reported by the filesystem (or git, when
    ``config.use_git_dates`` is set). Any failure raises a
    ``TextbundlerError`` and leaves nothing at the bundle path.
    """
    start = time.perf_counter()
    document = load_document(path)
    text = document.text
    root = parse_document(text, document.path)

    if creation is None or modification is None:
        found_creation, found_modification = resolve_times(document.path, config.use_git_dates)
        creation = creation or found_creation
        modification = modification or found_modification

    assembler = BundleAssembler.create(document.path, config.destination)
    try:
        with AssetFetcher(
            document.source_dir,
            config.concurrency,
            verbose=config.verbose,
            timeout=config.timeout,
            session=session,
        ) as fetcher:
            walker = DocumentWalker(fetcher, assembler.assets_dir, config.process_attachments)
            result = walker.walk(root)
        logger.debug(
            "Collected %d image(s) and %d attachment link(s) from %s",
            len(result.image_rewrites),
            len(result.link_rewrites),
            document.path,
        )

        bundle_path = assembler.assemble(
            text,
            result.image_rewrites,
            result.link_rewrites,
            config.append_text,
            creation,
            modification,
        )
    except TextbundlerError:
        logger.warning("Incomplete bundle for %s left in %s", document.path, assembler.scratch_dir)
        raise

    return ConversionResult(
        source_path=document.path,
        bundle_path=bundle_path,
        image_count=len(result.image_rewrites),
        attachment_count=len(result.link_rewrites),
        total_seconds=time.perf_counter() - start,
    )


def convert_documents(
    paths: Iterable[Union[str, Path]],
    config: BundleConfig,
    *,
    session: Optional[requests.Session] = None,
) -> List[ConversionResult]:
    """Convert files one after another, stopping at the first failure."""
    results: List[ConversionResult] = []
    for path in paths:
        logger.info("Processing %s", path)
        results.append(convert_document(path, config, session=session))
    return results
