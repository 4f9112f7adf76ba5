from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeSession
from textbundler import images
from textbundler.bundle import MANIFEST_BYTES
from textbundler.config import BundleConfig
from textbundler.converter import convert_document, convert_documents, load_document
from textbundler.errors import FileSystemError, NetworkError, NotFoundError, ParseError


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def _hidden_entries(directory: Path):
    return [p for p in directory.iterdir() if p.name.startswith(".")]


def test_load_document_keeps_raw_bytes_and_absolute_path(tmp_path: Path, monkeypatch) -> None:
    _write(tmp_path / "note.md", "hello")
    monkeypatch.chdir(tmp_path)
    document = load_document("note.md")
    assert document.path == tmp_path / "note.md"
    assert document.raw == b"hello"
    assert document.name == "note.md"
    assert document.source_dir == tmp_path


def test_load_document_missing_file(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        load_document(tmp_path / "absent.md")


def test_remote_image_and_attachment_scenario(tmp_path: Path, fake_session: FakeSession, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "note.md", "![a](http://x/img.png) see [doc](notes.txt)")
    fake_session.add("http://x/img.png", b"0123456789")

    result = convert_document(
        source,
        BundleConfig(process_attachments=True),
        creation=creation,
        modification=modification,
        session=fake_session,
    )

    bundle = tmp_path / "note.md.Textbundle"
    assert result.bundle_path == bundle
    assert result.image_count == 1
    assert result.attachment_count == 1
    assert (bundle / "assets" / "img.png").read_bytes() == b"0123456789"
    assert (bundle / "text.markdown").read_text(encoding="utf-8") == (
        "![a](assets/img.png) see #todo/process-attachment (notes.txt)"
    )
    assert _hidden_entries(tmp_path) == []


def test_trailer_scenario(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "note.md", "Some text\n")

    result = convert_document(
        source,
        BundleConfig(append_text="From %f"),
        creation=creation,
        modification=modification,
        session=FakeSession(),
    )

    lines = (result.bundle_path / "text.markdown").read_text(encoding="utf-8").splitlines()
    assert lines == ["Some text", "", "From note.md"]


def test_destination_directory_scenario(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "report.md", "# Report\n")
    out = tmp_path / "out"
    out.mkdir()

    result = convert_document(
        source,
        BundleConfig(destination=out),
        creation=creation,
        modification=modification,
        session=FakeSession(),
    )

    assert result.bundle_path == out / "report.md.Textbundle"
    assert (out / "report.md.Textbundle" / "text.markdown").is_file()
    assert _hidden_entries(out) == []


def test_explicit_bundle_path_is_used_verbatim(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "report.md", "# Report\n")
    target = tmp_path / "Renamed.textbundle"

    result = convert_document(
        source,
        BundleConfig(destination=target),
        creation=creation,
        modification=modification,
        session=FakeSession(),
    )

    assert result.bundle_path == target
    assert (target / "info.json").read_bytes() == MANIFEST_BYTES


def test_round_trip_removes_all_original_references(tmp_path: Path, fake_session: FakeSession, stamps) -> None:
    creation, modification = stamps
    (tmp_path / "img").mkdir()
    (tmp_path / "img" / "one.png").write_bytes(b"one")
    (tmp_path / "img" / "two.gif").write_bytes(b"two")
    references = [
        "img/one.png",
        "img/two.gif",
        "http://x/three.jpg",
        "https://cdn.example.com/assets/four.webp",
    ]
    fake_session.add("http://x/three.jpg", b"three")
    fake_session.add("https://cdn.example.com/assets/four.webp", b"four")
    body = "\n\n".join(f"![{index}]({ref})" for index, ref in enumerate(references))
    source = _write(tmp_path / "note.md", body + "\n\nRepeat: ![again](img/one.png)\n")

    result = convert_document(
        source,
        BundleConfig(concurrency=2),
        creation=creation,
        modification=modification,
        session=fake_session,
    )

    assets = sorted(p.name for p in (result.bundle_path / "assets").iterdir())
    assert assets == ["four.webp", "one.png", "three.jpg", "two.gif"]
    text = (result.bundle_path / "text.markdown").read_text(encoding="utf-8")
    for ref in references:
        assert f"]({ref})" not in text
    assert text.count("assets/one.png") == 2


def test_colliding_filenames_collapse_to_one_asset(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    for folder, payload in (("a", b"first"), ("b", b"second")):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "img.png").write_bytes(payload)
    source = _write(tmp_path / "note.md", "![1](a/img.png)\n\n![2](b/img.png)\n")

    result = convert_document(
        source,
        BundleConfig(),
        creation=creation,
        modification=modification,
        session=FakeSession(),
    )

    assets = list((result.bundle_path / "assets").iterdir())
    assert [p.name for p in assets] == ["img.png"]
    # Local copies run in document order, so the later reference wins.
    assert assets[0].read_bytes() == b"second"
    text = (result.bundle_path / "text.markdown").read_text(encoding="utf-8")
    assert text == "![1](assets/img.png)\n\n![2](assets/img.png)\n"


def test_manifest_is_identical_across_inputs(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    first = _write(tmp_path / "first.md", "# One\n")
    second = _write(tmp_path / "second.md", "Completely different [link](x.pdf)\n")

    results = convert_documents(
        [first, second],
        BundleConfig(process_attachments=True),
        session=FakeSession(),
    )

    manifests = [(r.bundle_path / "info.json").read_bytes() for r in results]
    assert manifests[0] == manifests[1] == MANIFEST_BYTES


def test_bundle_modification_time_is_stamped(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "note.md", "text\n")
    result = convert_document(
        source,
        BundleConfig(),
        creation=creation,
        modification=modification,
        session=FakeSession(),
    )
    assert result.bundle_path.stat().st_mtime == pytest.approx(modification.timestamp())


def test_timestamps_default_to_source_file(tmp_path: Path) -> None:
    source = _write(tmp_path / "note.md", "text\n")
    result = convert_document(source, BundleConfig(), session=FakeSession())
    assert result.bundle_path.stat().st_mtime == pytest.approx(source.stat().st_mtime)


def test_network_failure_publishes_nothing(tmp_path: Path, fake_session: FakeSession, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "note.md", "![a](http://x/ok.png) ![b](http://x/broken.png)\n")
    fake_session.add("http://x/ok.png", b"ok")
    fake_session.add("http://x/broken.png", b"", status_code=500)

    with pytest.raises(NetworkError, match="http://x/broken.png"):
        convert_document(
            source,
            BundleConfig(),
            creation=creation,
            modification=modification,
            session=fake_session,
        )

    assert not (tmp_path / "note.md.Textbundle").exists()


def test_injected_asset_write_failure_publishes_nothing(tmp_path: Path, monkeypatch, stamps) -> None:
    creation, modification = stamps
    (tmp_path / "pic.png").write_bytes(b"pic")
    source = _write(tmp_path / "note.md", "![a](pic.png)\n")

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(images.os, "replace", failing_replace)

    with pytest.raises(FileSystemError, match="disk full"):
        convert_document(
            source,
            BundleConfig(),
            creation=creation,
            modification=modification,
            session=FakeSession(),
        )

    assert not (tmp_path / "note.md.Textbundle").exists()
    # The scratch directory is left behind for inspection.
    assert len(_hidden_entries(tmp_path)) == 1


def test_missing_local_image_publishes_nothing(tmp_path: Path, stamps) -> None:
    creation, modification = stamps
    source = _write(tmp_path / "note.md", "![a](nowhere.png)\n")
    with pytest.raises(NotFoundError, match="nowhere.png"):
        convert_document(
            source,
            BundleConfig(),
            creation=creation,
            modification=modification,
            session=FakeSession(),
        )
    assert not (tmp_path / "note.md.Textbundle").exists()


def test_undecodable_document_fails_before_any_fetch(tmp_path: Path, fake_session: FakeSession, stamps) -> None:
    creation, modification = stamps
    source = tmp_path / "note.md"
    source.write_bytes(b"![a](http://x/img.png)\n\xff\xfe broken")
    fake_session.add("http://x/img.png", b"img")

    with pytest.raises(ParseError):
        convert_document(
            source,
            BundleConfig(),
            creation=creation,
            modification=modification,
            session=fake_session,
        )

    assert fake_session.requested == []
    assert _hidden_entries(tmp_path) == []


def test_convert_documents_halts_on_first_failure(tmp_path: Path, stamps) -> None:
    broken = _write(tmp_path / "broken.md", "![a](missing.png)\n")
    later = _write(tmp_path / "later.md", "fine\n")

    with pytest.raises(NotFoundError):
        convert_documents([broken, later], BundleConfig(), session=FakeSession())

    assert not (tmp_path / "later.md.Textbundle").exists()
