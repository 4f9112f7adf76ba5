"""Markdown parsing, reference walking and text rewriting."""

from __future__ import annotations

import logging
import re
import threading
import xml.etree.ElementTree as etree
from pathlib import Path
from typing import Iterator, Mapping, Optional, Pattern, Set, Union

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

from .config import ASSETS_DIRNAME, ATTACHMENT_TAG
from .errors import ParseError
from .images import AssetFetcher
from .models import LinkRewrite, NodeKind, ReferenceNode, WalkResult
from .utils import attachment_basename, derive_asset_filename, is_remote

logger = logging.getLogger("textbundler")

# Runs after Python-Markdown's own inline and unescape processors.
_CAPTURE_PRIORITY = -10

_LINK_TEXT = r"(?:[^\[\]\\]|\\.|\[(?:[^\[\]\\]|\\.)*\])*"
_LINK_TITLE = r"""(?:\s+(?:"[^"]*"|'[^']*'|\([^)]*\)))?"""

# Tree destinations have these backslash escapes removed.
_ESCAPED_CHARS = frozenset(markdown.Markdown().ESCAPED_CHARS)
_UNESCAPE = re.compile(
    r"\\([" + "".join(re.escape(char) for char in sorted(_ESCAPED_CHARS)) + "])"
)


class _StructureCapture(Treeprocessor):
    def __init__(self, md: markdown.Markdown, extension: "StructureExtension") -> None:
        super().__init__(md)
        self.extension = extension

    def run(self, root: etree.Element) -> None:
        self.extension.root = root


class StructureExtension(Extension):
    """Keep the element tree Python-Markdown builds before it is serialised."""

    def __init__(self, **kwargs) -> None:
        self.root: Optional[etree.Element] = None
        super().__init__(**kwargs)

    def extendMarkdown(self, md: markdown.Markdown) -> None:
        md.treeprocessors.register(
            _StructureCapture(md, self), "textbundler_structure", _CAPTURE_PRIORITY
        )


def parse_document(text: str, path: Union[str, Path] = "<document>") -> etree.Element:
    """Parse Markdown text into an element tree."""
    capture = StructureExtension()
    parser = markdown.Markdown(extensions=[capture])
    try:
        parser.convert(text)
    except Exception as exc:  # noqa: BLE001 - any parser failure is fatal
        raise ParseError(path, str(exc)) from exc
    if capture.root is None:
        # Python-Markdown skips tree building for blank documents.
        return etree.Element("div")
    return capture.root


def iter_reference_nodes(root: etree.Element) -> Iterator[ReferenceNode]:
    """Yield image and link nodes in document order."""
    index = 0
    for element in root.iter():
        if element.tag == "img":
            kind, destination = NodeKind.IMAGE, element.get("src", "")
        elif element.tag == "a":
            kind, destination = NodeKind.LINK, element.get("href", "")
        else:
            continue
        yield ReferenceNode(index=index, kind=kind, destination=destination)
        index += 1


class DocumentWalker:
    """Visit every image and link once, fetching assets and recording rewrites.

    Image rewrites for remote references are recorded from the download
    worker, so both tables are only touched while holding ``_lock``.
    """

    def __init__(
        self,
        fetcher: AssetFetcher,
        assets_dir: Path,
        process_attachments: bool = False,
    ) -> None:
        self.fetcher = fetcher
        self.assets_dir = assets_dir
        self.process_attachments = process_attachments
        self.result = WalkResult()
        self._lock = threading.Lock()
        self._dispatched: Set[str] = set()

    def walk(self, root: etree.Element) -> WalkResult:
        try:
            for node in iter_reference_nodes(root):
                if node.kind is NodeKind.IMAGE:
                    self._visit_image(node)
                elif self.process_attachments:
                    self._visit_link(node)
        except Exception as exc:
            self.fetcher.drain(exc)
            raise
        self.fetcher.wait()
        return self.result

    def _visit_image(self, node: ReferenceNode) -> None:
        reference = node.destination
        if reference in self._dispatched:
            logger.debug("Image %s already bundled", reference)
            return
        self._dispatched.add(reference)

        destination = self.assets_dir / derive_asset_filename(reference)
        if is_remote(reference):
            logger.debug("Queueing download of %s", reference)
            self.fetcher.submit_remote(
                reference,
                destination,
                lambda target: self._record_image(reference, target),
            )
        else:
            target = self.fetcher.fetch_local(reference, destination)
            self._record_image(reference, target)

    def _record_image(self, reference: str, target: Path) -> None:
        with self._lock:
            self.result.image_rewrites[reference] = f"{ASSETS_DIRNAME}/{target.name}"

    def _visit_link(self, node: ReferenceNode) -> None:
        destination = node.destination
        if not destination or is_remote(destination):
            return
        placeholder = f"{ATTACHMENT_TAG} ({attachment_basename(destination)})"
        with self._lock:
            self.result.link_rewrites[node.index] = LinkRewrite(destination, placeholder)


def reference_pattern(reference: str) -> str:
    """Regex source for ``reference`` as written in Markdown.

    Each character Markdown lets a backslash escape may appear escaped, so
    ``my_pic.png`` also matches ``my\\_pic.png``.
    """
    return "".join(
        r"\\?" + re.escape(char) if char in _ESCAPED_CHARS else re.escape(char)
        for char in reference
    )


def replace_image_references(text: str, rewrites: Mapping[str, str]) -> str:
    """Replace every occurrence of each image reference with its asset path.

    All references are matched in a single pass, longest first, so one
    reference never clobbers a longer one that contains it and replaced text
    is not scanned again. References the text does not contain are logged.
    """
    references = sorted((ref for ref in rewrites if ref), key=len, reverse=True)
    if not references:
        return text
    pattern = re.compile("|".join(reference_pattern(ref) for ref in references))
    found: Set[str] = set()

    def substitute(match: re.Match) -> str:
        written = match.group(0)
        key = written if written in rewrites else _UNESCAPE.sub(r"\1", written)
        if key not in rewrites:
            return written
        found.add(key)
        return rewrites[key]

    updated = pattern.sub(substitute, text)
    for reference in references:
        if reference not in found:
            logger.warning("Image reference %s not found in the text; left unchanged", reference)
    return updated


def attachment_link_pattern(destination: str) -> Pattern[str]:
    """Match an inline ``[text](destination "title")`` link, but not an image."""
    dest = reference_pattern(destination)
    return re.compile(
        rf"(?<!!)\[{_LINK_TEXT}\]\(\s*(?:<{dest}>|{dest}){_LINK_TITLE}\s*\)"
    )


def replace_attachment_links(text: str, rewrites: Mapping[int, LinkRewrite]) -> str:
    """Swap attachment links for their placeholder tags."""
    for index in sorted(rewrites):
        rewrite = rewrites[index]
        pattern = attachment_link_pattern(rewrite.destination)
        text, count = pattern.subn(lambda _match: rewrite.placeholder, text)
        if not count:
            logger.debug(
                "No inline link syntax left for %s (node %d)", rewrite.destination, index
            )
    return text


def append_trailer(text: str, template: str, filename: str) -> str:
    """Append ``template`` after a blank line, with ``%f`` set to ``filename``."""
    if not template:
        return text
    trailer = template.replace("%f", filename)
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{text}\n{trailer}\n"


def rewrite_document(
    text: str,
    image_rewrites: Mapping[str, str],
    link_rewrites: Mapping[int, LinkRewrite],
    append_text: str,
    filename: str,
) -> str:
    """Apply both rewrite tables and the trailer to the original text."""
    updated = replace_image_references(text, image_rewrites)
    updated = replace_attachment_links(updated, link_rewrites)
    return append_trailer(updated, append_text, filename)
