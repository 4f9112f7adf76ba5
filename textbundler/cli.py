"""Command-line entry point for textbundler."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

from .config import DEFAULT_CONCURRENCY, BundleConfig
from .converter import convert_documents
from .errors import TextbundlerError

logger = logging.getLogger("textbundler.cli")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value!r} must be at least 1")
    return number


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="textbundler",
        description="Convert Markdown files into TextBundles with all images stored locally.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="Markdown files to convert")
    parser.add_argument(
        "-p",
        "--process-attachments",
        action="store_true",
        help="Replace links to local files with Bear-compatible tags to ease processing",
    )
    parser.add_argument(
        "-g",
        "--git-dates",
        action="store_true",
        help=(
            "Use creation and modification dates from git history instead of the "
            "filesystem (file must be tracked in a git repository)"
        ),
    )
    parser.add_argument(
        "-a",
        "--append",
        default="",
        help="Text to append to the end of the Markdown file. Use %%f for the original filename.",
    )
    parser.add_argument(
        "-c",
        "--concurrent",
        type=_positive_int,
        default=DEFAULT_CONCURRENCY,
        help=f"Maximum number of concurrent image downloads (default: {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Directory (or bundle path) to write to; defaults to each file's directory",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait on each image download before giving up (default: no limit)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging and download progress bars",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    config = BundleConfig(
        destination=args.output,
        process_attachments=args.process_attachments,
        append_text=args.append.replace("\\n", "\n"),
        concurrency=args.concurrent,
        verbose=args.verbose,
        use_git_dates=args.git_dates,
        timeout=args.timeout,
    )

    overall_start = time.perf_counter()
    try:
        results = convert_documents(args.files, config)
    except TextbundlerError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    total_elapsed = time.perf_counter() - overall_start

    logger.info("Finished %d file(s) in %.2fs", len(results), total_elapsed)
    if args.verbose:
        for result in results:
            logger.debug(
                "Bundled %s -> %s (images=%d, attachments=%d, elapsed=%.2fs)",
                result.source_path,
                result.bundle_path,
                result.image_count,
                result.attachment_count,
                result.total_seconds,
            )


if __name__ == "__main__":
    main()
