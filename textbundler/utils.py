"""Helpers for classifying references and deriving asset names."""

from __future__ import annotations

import hashlib
import posixpath
from urllib.parse import urlparse

from .models import ReferenceKind

REMOTE_SCHEMES = {"http", "https"}


def classify_reference(reference: str) -> ReferenceKind:
    """Return REMOTE for absolute http(s) URLs and LOCAL for anything else."""
    try:
        parsed = urlparse(reference)
    except ValueError:
        return ReferenceKind.LOCAL
    if parsed.scheme.lower() in REMOTE_SCHEMES and parsed.netloc:
        return ReferenceKind.REMOTE
    return ReferenceKind.LOCAL


def is_remote(reference: str) -> bool:
    return classify_reference(reference) is ReferenceKind.REMOTE


def _generated_name(reference: str) -> str:
    digest = hashlib.sha1(reference.encode("utf-8")).hexdigest()
    return f"image-{digest[:12]}"


def derive_asset_filename(reference: str) -> str:
    """Pick the file name an image reference is stored under inside ``assets/``.

    The last path segment is used verbatim. References without a usable
    segment (``http://example.com/``, ``.``) get a name generated from a
    digest of the reference so repeated runs stay stable.
    """
    path = urlparse(reference).path if is_remote(reference) else reference
    path = path.replace("\\", "/")
    name = posixpath.basename(path)
    if name in ("", ".", ".."):
        return _generated_name(reference)
    return name


def attachment_basename(destination: str) -> str:
    """Return the base name shown in an attachment placeholder."""
    stripped = destination.rstrip("/\\")
    name = posixpath.basename(stripped.replace("\\", "/"))
    return name or destination
