from __future__ import annotations

import os
from pathlib import Path

from sitebuild.orchestrator.cache import ChangeDetector, Fingerprint


def _touch(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def _bump_mtime(path: Path) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))


def _commit(det: ChangeDetector, task: str, files: list[Path], outputs=None, depends=()):
    det.commit(
        task,
        files,
        processed=files,
        fingerprints=det.snapshot([*files, *depends]),
        depends=list(depends),
        outputs=outputs,
    )


def test_unseen_file_is_changed(tmp_path):
    f = _touch(tmp_path / "a.scss", "a {}")
    assert ChangeDetector().is_changed("styles", f)


def test_processed_file_is_not_changed(tmp_path):
    f = _touch(tmp_path / "a.scss", "a { color: red; }")
    det = ChangeDetector()
    _commit(det, "styles", [f])
    assert not det.is_changed("styles", f)
    assert not det.is_changed("styles", f)


def test_records_are_per_task(tmp_path):
    f = _touch(tmp_path / "a.js", "x()")
    det = ChangeDetector()
    _commit(det, "scripts", [f])
    assert det.is_changed("lint", f)


def test_content_edit_is_changed(tmp_path):
    f = _touch(tmp_path / "a.js", "x()")
    det = ChangeDetector()
    _commit(det, "scripts", [f])
    _touch(f, "y(1)")
    _bump_mtime(f)
    assert det.is_changed("scripts", f)


def test_touch_without_edit_is_not_changed(tmp_path):
    f = _touch(tmp_path / "a.js", "x()")
    det = ChangeDetector()
    _commit(det, "scripts", [f])
    _bump_mtime(f)
    assert not det.is_changed("scripts", f)


def test_unreadable_file_fails_open(tmp_path):
    f = _touch(tmp_path / "a.js", "x()")
    det = ChangeDetector()
    _commit(det, "scripts", [f])
    f.unlink()
    assert det.is_changed("scripts", f)


def test_missing_output_marks_source_changed(tmp_path):
    src = _touch(tmp_path / "a.scss", "a { color: red; }")
    out = _touch(tmp_path / "a.css", "a{color:red}")
    det = ChangeDetector()
    _commit(det, "styles", [src], outputs={str(src): [str(out)]})
    assert not det.is_changed("styles", src)
    out.unlink()
    assert det.is_changed("styles", src)


def test_changed_dependency_invalidates_every_input(tmp_path):
    a = _touch(tmp_path / "a.scss", "@import 'vars';")
    b = _touch(tmp_path / "b.scss", "@import 'vars';")
    dep = _touch(tmp_path / "_vars.scss", "$x: 1;")
    det = ChangeDetector()
    _commit(det, "styles", [a, b], depends=[dep])
    assert det.changed("styles", [a, b], [dep]) == []
    _touch(dep, "$x: 22;")
    _bump_mtime(dep)
    assert det.changed("styles", [a, b], [dep]) == [a, b]


def test_only_changed_inputs_are_returned(tmp_path):
    a = _touch(tmp_path / "a.js", "a()")
    b = _touch(tmp_path / "b.js", "b()")
    det = ChangeDetector()
    _commit(det, "scripts", [a, b])
    _touch(b, "bb()")
    _bump_mtime(b)
    assert det.changed("scripts", [a, b]) == [b]


def test_aggregate_reruns_everything_when_an_input_disappears(tmp_path):
    a = _touch(tmp_path / "a.svg", "<svg/>")
    b = _touch(tmp_path / "b.svg", "<svg/>")
    det = ChangeDetector()
    _commit(det, "sprite", [a, b])
    assert det.changed("sprite", [a, b], aggregate=True) == []
    b.unlink()
    assert det.changed("sprite", [a], aggregate=True) == [a]


def test_commit_keeps_untouched_entries_and_drops_vanished(tmp_path):
    a = _touch(tmp_path / "a.js", "a()")
    b = _touch(tmp_path / "b.js", "b()")
    det = ChangeDetector()
    _commit(det, "scripts", [a, b])
    c = _touch(tmp_path / "c.js", "c()")
    det.commit("scripts", [a, c], processed=[c], fingerprints=det.snapshot([c]))
    rec = det.record("scripts")
    assert set(rec.entries) == {str(a), str(c)}


def test_checkpoint_round_trip(tmp_path):
    f = _touch(tmp_path / "a.js", "a()")
    det = ChangeDetector()
    _commit(det, "scripts", [f])
    cache = tmp_path / ".cache" / "records.json"
    det.save(cache)
    restored = ChangeDetector.load(cache)
    assert not restored.is_changed("scripts", f)
    assert restored.record("scripts").entries[str(f)].fingerprint == Fingerprint.of(f)


def test_corrupt_checkpoint_gives_empty_record(tmp_path):
    cache = tmp_path / "records.json"
    cache.write_text("{not json", encoding="utf-8")
    f = _touch(tmp_path / "a.js", "a()")
    assert ChangeDetector.load(cache).is_changed("scripts", f)


def test_vanished_lists_recorded_sources_no_longer_matched(tmp_path):
    a = _touch(tmp_path / "a.svg", "<svg/>")
    b = _touch(tmp_path / "b.svg", "<svg/>")
    det = ChangeDetector()
    _commit(det, "sprite", [a, b])
    assert det.vanished("sprite", [a, b]) == []
    a.unlink()
    b.unlink()
    assert det.changed("sprite", [], aggregate=True) == []
    assert det.vanished("sprite", []) == [str(a), str(b)]
