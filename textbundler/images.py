"""Asset copying, downloading and file type detection."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

import requests
from filetype import guess
from tqdm import tqdm

from .config import DEFAULT_CONCURRENCY
from .errors import FileSystemError, NetworkError, NotFoundError

logger = logging.getLogger("textbundler")

CHUNK_SIZE = 64 * 1024
SIGNATURE_BYTES = 262

CompletionCallback = Callable[[Path], None]


def detect_asset_format(data: bytes) -> Optional[str]:
    """Detect a file type using filetype; returns a lowercase extension."""
    kind = guess(data)
    if kind:
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def infer_asset_extension(content_type: Optional[str], path: Path) -> Optional[str]:
    """Guess an asset extension from its file signature or HTTP metadata."""
    with path.open("rb") as handle:
        detected = detect_asset_format(handle.read(SIGNATURE_BYTES))
    if detected:
        return detected
    if not content_type:
        return None
    parts = content_type.split(";")[0].split("/")
    if len(parts) == 2 and parts[0].strip() == "image":
        ext = parts[1].split("+")[0].strip().lower()
        if ext == "jpeg":
            ext = "jpg"
        return ext or None
    return None


def _content_length(response: requests.Response) -> Optional[int]:
    value = response.headers.get("Content-Length")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _part_file(destination: Path):
    return tempfile.NamedTemporaryFile(
        dir=destination.parent,
        prefix=f".{destination.name}.",
        suffix=".part",
        delete=False,
    )


def _finalize_asset(part: Path, destination: Path, content_type: Optional[str] = None) -> Path:
    """Move a fully written part file to its asset name, adding an extension if missing."""
    target = destination
    if not destination.suffix:
        extension = infer_asset_extension(content_type, part)
        if extension:
            target = destination.with_name(f"{destination.name}.{extension}")
    os.replace(part, target)
    return target


class AssetFetcher:
    """Copy local assets inline and download remote ones on worker threads.

    Remote downloads are bounded by a semaphore with ``concurrency`` permits.
    The permit is taken on the calling thread, so ``submit_remote`` blocks
    while the limit is reached, and given back by the worker once its
    download has terminated.
    """

    def __init__(
        self,
        source_dir: Path,
        concurrency: int = DEFAULT_CONCURRENCY,
        *,
        verbose: bool = False,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
        self.source_dir = source_dir
        self.concurrency = concurrency
        self.verbose = verbose
        self.timeout = timeout
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._permits = threading.BoundedSemaphore(concurrency)
        self._executor = ThreadPoolExecutor(
            max_workers=concurrency,
            thread_name_prefix="textbundler-fetch",
        )
        self._pending: List[Future] = []

    def __enter__(self) -> "AssetFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        if self._owns_session:
            self._session.close()

    def resolve_local(self, reference: str) -> Path:
        """Join ``reference`` to the document directory, even when it looks absolute."""
        return self.source_dir / reference.lstrip("/\\")

    def fetch_local(self, reference: str, destination: Path) -> Path:
        """Copy a file referenced relative to the document into ``destination``."""
        source = self.resolve_local(reference)
        if not source.is_file():
            raise NotFoundError(source, reference)

        try:
            src = source.open("rb")
        except OSError as exc:
            raise FileSystemError(source, "read local asset", str(exc)) from exc

        try:
            with src, _part_file(destination) as handle:
                part = Path(handle.name)
                shutil.copyfileobj(src, handle, CHUNK_SIZE)
            target = _finalize_asset(part, destination)
        except OSError as exc:
            raise FileSystemError(destination, "copy asset to", str(exc)) from exc

        logger.debug("Copied %s to %s", source, target)
        return target

    def fetch_remote(self, url: str, destination: Path) -> Path:
        """Download ``url`` into ``destination``, streaming the response body."""
        written = 0
        try:
            with self._session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                content_type = response.headers.get("Content-Type")
                total = _content_length(response)
                with _part_file(destination) as handle, tqdm(
                    total=total,
                    desc=url,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    leave=False,
                    disable=not self.verbose,
                ) as bar:
                    part = Path(handle.name)
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        handle.write(chunk)
                        written += len(chunk)
                        bar.update(len(chunk))
        except requests.RequestException as exc:
            raise NetworkError(url, str(exc)) from exc
        except OSError as exc:
            raise FileSystemError(destination, "write asset", str(exc)) from exc

        try:
            target = _finalize_asset(part, destination, content_type)
        except OSError as exc:
            raise FileSystemError(destination, "write asset", str(exc)) from exc

        logger.debug("Downloaded %s (%d bytes) to %s", url, written, target)
        return target

    def submit_remote(self, url: str, destination: Path, on_complete: CompletionCallback) -> None:
        """Start downloading ``url`` in the background once a permit is free.

        ``on_complete`` runs on the worker thread with the final asset path.
        Raises the failure of an earlier download instead of starting new work.
        """
        self._permits.acquire()
        failure = self._first_failure()
        if failure is not None:
            self._permits.release()
            raise failure
        try:
            future = self._executor.submit(self._run_remote, url, destination, on_complete)
        except RuntimeError:
            self._permits.release()
            raise
        self._pending.append(future)

    def _run_remote(self, url: str, destination: Path, on_complete: CompletionCallback) -> Path:
        try:
            target = self.fetch_remote(url, destination)
            on_complete(target)
            return target
        finally:
            self._permits.release()

    def _first_failure(self) -> Optional[BaseException]:
        for future in self._pending:
            if future.done() and future.exception() is not None:
                return future.exception()
        return None

    def _join(self) -> List[BaseException]:
        pending, self._pending = self._pending, []
        failures: List[BaseException] = []
        for future in pending:
            exc = future.exception()
            if exc is not None:
                failures.append(exc)
        return failures

    def wait(self) -> None:
        """Block until every submitted download finishes; raise the first failure."""
        failures = self._join()
        if not failures:
            return
        for extra in failures[1:]:
            logger.warning("Additional download failure: %s", extra)
        raise failures[0]

    def drain(self, primary: Optional[BaseException] = None) -> None:
        """Block until every submitted download finishes, logging their failures."""
        for exc in self._join():
            if exc is not primary:
                logger.warning("Download failed while aborting: %s", exc)
