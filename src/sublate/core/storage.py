"""Document storage for subtitle projects and glossary sets.

The translator only needs whole-document get/save. Two backends are
provided: an in-memory store (tests, embedding) and a directory of JSON
files laid out as::

    <root>/projects/<slug>-<hash>.json
    <root>/glossaries/<slug>-<hash>.json

The slug keeps file names readable; the hash of the raw id keeps ids that
slugify alike (``Show_1`` and ``show-1``) in separate files.

Both return independent copies from ``get`` so concurrent runs never share
mutable state; the last successful save wins.
"""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from sublate.core.models import GlossaryEntry, GlossarySet, SubtitleProject
from sublate.utils.paths import slugify


class StorageError(RuntimeError):
    """Raised when a document cannot be read or written."""


class DocumentStore(Protocol):
    def get(self, project_id: str) -> SubtitleProject | None: ...

    def save(self, project: SubtitleProject) -> None: ...


class GlossaryStore(Protocol):
    def list_entries_by_set(self, set_id: str) -> list[GlossaryEntry]: ...


class InMemoryStore:
    """Keeps JSON snapshots of projects and glossary sets in memory."""

    def __init__(self) -> None:
        self._projects: dict[str, str] = {}
        self._glossaries: dict[str, str] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    def get(self, project_id: str) -> SubtitleProject | None:
        with self._lock:
            raw = self._projects.get(project_id)
        return SubtitleProject.model_validate_json(raw) if raw is not None else None

    def save(self, project: SubtitleProject) -> None:
        raw = project.model_dump_json()
        with self._lock:
            self._projects[project.id] = raw
            self.save_count += 1

    def save_glossary_set(self, glossary_set: GlossarySet) -> None:
        with self._lock:
            self._glossaries[glossary_set.id] = glossary_set.model_dump_json()

    def list_entries_by_set(self, set_id: str) -> list[GlossaryEntry]:
        with self._lock:
            raw = self._glossaries.get(set_id)
        if raw is None:
            return []
        return GlossarySet.model_validate_json(raw).entries


class JsonFileStore:
    """Stores each document as a pretty-printed JSON file under a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def _project_path(self, project_id: str) -> Path:
        return self.root / "projects" / f"{_safe_name(project_id)}.json"

    def _glossary_path(self, set_id: str) -> Path:
        return self.root / "glossaries" / f"{_safe_name(set_id)}.json"

    def get(self, project_id: str) -> SubtitleProject | None:
        path = self._project_path(project_id)
        if not path.is_file():
            return None
        try:
            with self._lock:
                raw = path.read_text(encoding="utf-8")
            project = SubtitleProject.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to load project {project_id}: {e}") from e
        if project.id != project_id:
            raise StorageError(f"{path.name} holds project {project.id!r}, not {project_id!r}")
        return project

    def save(self, project: SubtitleProject) -> None:
        path = self._project_path(project.id)
        _write_json(path, project.model_dump_json(indent=2), self._lock)

    def save_glossary_set(self, glossary_set: GlossarySet) -> None:
        path = self._glossary_path(glossary_set.id)
        _write_json(path, glossary_set.model_dump_json(indent=2), self._lock)

    def list_entries_by_set(self, set_id: str) -> list[GlossaryEntry]:
        path = self._glossary_path(set_id)
        if not path.is_file():
            return []
        try:
            glossary_set = GlossarySet.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to load glossary set {set_id}: {e}") from e
        if glossary_set.id != set_id:
            raise StorageError(
                f"{path.name} holds glossary set {glossary_set.id!r}, not {set_id!r}"
            )
        return glossary_set.entries


def _safe_name(identifier: str) -> str:
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:12]
    slug = slugify(identifier)[:60]
    return f"{slug}-{digest}" if slug else digest


def _write_json(path: Path, payload: str, lock: threading.Lock) -> None:
    """Write via a temp file and rename so readers never see a partial document."""
    tmp = path.with_suffix(".json.tmp")
    try:
        with lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}") from e
