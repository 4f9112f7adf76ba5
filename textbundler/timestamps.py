"""Creation and modification times for source documents and bundles."""

from __future__ import annotations

import logging
import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Tuple

from .errors import FileSystemError, NotFoundError, TimestampError

logger = logging.getLogger("textbundler")

Timestamps = Tuple[datetime, datetime]


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def file_times(path: Path) -> Timestamps:
    """Return (creation, modification) as recorded by the filesystem.

    Platforms without a birth time report the earlier of the inode change
    and modification times as the creation time.
    """
    try:
        stat = path.stat()
    except FileNotFoundError as exc:
        raise NotFoundError(path) from exc
    except OSError as exc:
        raise TimestampError(path, str(exc)) from exc

    birth = getattr(stat, "st_birthtime", None)
    if birth is None:
        birth = min(stat.st_ctime, stat.st_mtime)
    return _from_epoch(birth), _from_epoch(stat.st_mtime)


def git_times(path: Path) -> Timestamps:
    """Return (creation, modification) from the author dates of the file's commits."""
    command = ["git", "log", "--follow", "--format=%aI", "--", path.name]
    try:
        completed = subprocess.run(
            command,
            cwd=path.parent,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as exc:
        raise TimestampError(path, "git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"git exited with status {exc.returncode}"
        raise TimestampError(path, detail) from exc

    stamps = [line.strip() for line in completed.stdout.splitlines() if line.strip()]
    if not stamps:
        raise TimestampError(path, "file has no git history")
    try:
        parsed = [datetime.fromisoformat(stamp) for stamp in stamps]
    except ValueError as exc:
        raise TimestampError(path, f"unexpected git date output ({exc})") from exc

    # git log lists newest first
    return parsed[-1], parsed[0]


def resolve_times(path: Path, use_git_dates: bool = False) -> Timestamps:
    if use_git_dates:
        creation, modification = git_times(path)
    else:
        creation, modification = file_times(path)
    logger.debug(
        "Timestamps for %s: created %s, modified %s",
        path,
        creation.isoformat(),
        modification.isoformat(),
    )
    return creation, modification


def apply_times(path: Path, creation: datetime, modification: datetime) -> None:
    """Stamp ``path`` with the given creation and modification times.

    The creation time is written first. On macOS moving the modification time
    before the birth time also moves the birth time, so the second call leaves
    the birth time at ``creation`` and the modification time at
    ``modification``. Other platforms only keep the modification time.
    """
    created = creation.timestamp()
    modified = modification.timestamp()
    try:
        os.utime(path, (created, created))
        os.utime(path, (modified, modified))
    except OSError as exc:
        raise FileSystemError(path, "set timestamps on", str(exc)) from exc
