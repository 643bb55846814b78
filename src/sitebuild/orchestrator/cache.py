from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Sequence


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


@dataclass(frozen=True)
class Fingerprint:
    size: int
    mtime_ns: int
    digest: str

    @classmethod
    def of(cls, path: Path) -> "Fingerprint":
        st = os.stat(path)
        return cls(size=st.st_size, mtime_ns=st.st_mtime_ns, digest=file_digest(path))

    def same_content(self, path: Path) -> bool:
        st = os.stat(path)
        if st.st_size != self.size:
            return False
        if st.st_mtime_ns == self.mtime_ns:
            return True
        # Touched but maybe not edited
        return file_digest(path) == self.digest


def safe_fingerprint(path: Path) -> Fingerprint | None:
    try:
        return Fingerprint.of(path)
    except OSError:
        return None


@dataclass(frozen=True)
class Entry:
    fingerprint: Fingerprint
    outputs: tuple[str, ...] = ()


@dataclass
class ChangeRecord:
    """Last successful state of one task: per-source entries plus dependencies."""

    entries: Dict[str, Entry] = field(default_factory=dict)
    depends: Dict[str, Fingerprint] = field(default_factory=dict)


def _entry_changed(fp: Fingerprint | None, path: Path) -> bool:
    if fp is None:
        return True
    try:
        return not fp.same_content(path)
    except OSError:
        # Unreadable counts as changed so it gets reprocessed and reported
        return True


class ChangeDetector:
    """Per-task fingerprint records deciding which inputs need work."""

    def __init__(self) -> None:
        self._records: Dict[str, ChangeRecord] = {}
        self._lock = threading.Lock()

    def record(self, task: str) -> ChangeRecord:
        with self._lock:
            rec = self._records.get(task)
            return ChangeRecord(dict(rec.entries), dict(rec.depends)) if rec else ChangeRecord()

    def is_changed(self, task: str, path: Path) -> bool:
        key = str(path)
        with self._lock:
            rec = self._records.get(task)
            entry = rec.entries.get(key) if rec else None
        if entry is None:
            return True
        if _entry_changed(entry.fingerprint, path):
            return True
        return any(not os.path.exists(out) for out in entry.outputs)

    def changed(
        self,
        task: str,
        inputs: Sequence[Path],
        depends: Sequence[Path] = (),
        aggregate: bool = False,
    ) -> list[Path]:
        """Inputs that need processing for `task`, in input order."""
        rec = self.record(task)
        current_deps = {str(p) for p in depends}
        if set(rec.depends) != current_deps or any(
            _entry_changed(rec.depends.get(str(p)), p) for p in depends
        ):
            return list(inputs)
        stale = [p for p in inputs if self.is_changed(task, p)]
        if aggregate and (stale or set(rec.entries) != {str(p) for p in inputs}):
            return list(inputs)
        return stale

    def vanished(self, task: str, inputs: Sequence[Path]) -> list[str]:
        """Recorded sources that are no longer among `inputs`."""
        current = {str(p) for p in inputs}
        return sorted(k for k in self.record(task).entries if k not in current)

    def snapshot(self, paths: Iterable[Path]) -> Dict[str, Fingerprint | None]:
        return {str(p): safe_fingerprint(p) for p in paths}

    def commit(
        self,
        task: str,
        inputs: Sequence[Path],
        processed: Sequence[Path],
        fingerprints: Mapping[str, Fingerprint | None],
        depends: Sequence[Path] = (),
        outputs: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        """Replace the task's record after a successful run.

        Processed inputs take their pre-run fingerprint; untouched inputs keep
        their old entry; inputs that vanished are dropped.
        """
        outputs = outputs or {}
        done = {str(p) for p in processed}
        with self._lock:
            old = self._records.get(task) or ChangeRecord()
            entries: Dict[str, Entry] = {}
            for p in inputs:
                key = str(p)
                if key in done:
                    fp = fingerprints.get(key)
                    if fp is not None:
                        entries[key] = Entry(fp, tuple(outputs.get(key, ())))
                elif key in old.entries:
                    entries[key] = old.entries[key]
            deps = {
                str(p): fingerprints[str(p)]
                for p in depends
                if fingerprints.get(str(p)) is not None
            }
            self._records[task] = ChangeRecord(entries=entries, depends=deps)

    # Checkpointing

    def save(self, path: Path) -> None:
        with self._lock:
            payload = {
                name: {
                    "entries": {
                        k: {"fingerprint": vars(e.fingerprint), "outputs": list(e.outputs)}
                        for k, e in rec.entries.items()
                    },
                    "depends": {k: vars(fp) for k, fp in rec.depends.items()},
                }
                for name, rec in self._records.items()
            }
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, path)

    @classmethod
    def load(cls, path: Path | None) -> "ChangeDetector":
        """Restore a checkpoint; a missing or unreadable file gives an empty record."""
        det = cls()
        if path is None or not path.exists():
            return det
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            for name, rec in payload.items():
                det._records[name] = ChangeRecord(
                    entries={
                        k: Entry(Fingerprint(**e["fingerprint"]), tuple(e.get("outputs", ())))
                        for k, e in rec.get("entries", {}).items()
                    },
                    depends={k: Fingerprint(**fp) for k, fp in rec.get("depends", {}).items()},
                )
        except (OSError, ValueError, KeyError, TypeError):
            return cls()
        return det
