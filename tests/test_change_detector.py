import hashlib
from pathlib import Path

import pytest

from windrip.services.change_detector import ChangeDetector, artifact_stem, class_digest


def test_digest_is_order_independent() -> None:
    assert class_digest({"b", "a", "c"}) == class_digest(["c", "a", "b"])
    expected = hashlib.sha256("a b c".encode("utf-8")).hexdigest()
    assert class_digest({"c", "b", "a"}) == expected


def test_digest_changes_with_classes() -> None:
    assert class_digest({"a"}) != class_digest({"a", "b"})


def test_artifact_stem_flattens_nested_paths(make_config, site: Path) -> None:
    config = make_config()
    assert artifact_stem(config, site / "pages" / "about.html") == "pages__about.html"
    assert artifact_stem(config, site / "index.html") == "index.html"


def test_sidecar_paths_per_mode(make_config, site: Path) -> None:
    separate = ChangeDetector(make_config(separate_builds=True))
    merged = ChangeDetector(make_config(separate_builds=False))
    source = site / "blog" / "post.html"

    assert separate.sidecar_path(source).name == "blog__post.html.csshash"
    assert merged.sidecar_path(source).name == ".csshash"
    assert merged.sidecar_path().parent == merged.config.output_root


@pytest.mark.asyncio
async def test_record_then_unchanged(make_config, site: Path) -> None:
    detector = ChangeDetector(make_config())
    source = site / "index.html"
    digest = class_digest({"flex", "p-4"})

    assert detector.is_unchanged(digest, source) is False
    sidecar = await detector.record(digest, source)

    assert sidecar.read_text(encoding="utf-8") == digest
    assert detector.is_unchanged(digest, source) is True
    assert detector.is_unchanged(class_digest({"flex"}), source) is False
