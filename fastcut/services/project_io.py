"""JSON-based project / document save and load (.fcut.json)."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from fastcut.models.document import Project, TimelineDocument
from fastcut.models.errors import FastCutError, StorageFailure
from fastcut.utils.config import DATA_DIR

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1
PROJECT_SUFFIX = ".fcut.json"


def _write_json(data: dict, path: Path) -> None:
    """Write *data* next to *path* first, then atomically replace *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict:
    data = json.loads(path.read_text(encoding="utf-8-sig"))
    if not isinstance(data, dict):
        raise ValueError("top-level JSON value is not an object")
    version = data.get("version", 1)
    if version > DOCUMENT_VERSION:
        raise ValueError(f"file version {version} is newer than supported ({DOCUMENT_VERSION})")
    return data


def save_document(document: TimelineDocument, path: str | Path) -> None:
    path = Path(path)
    data = {"version": DOCUMENT_VERSION, "document": document.to_dict()}
    try:
        _write_json(data, path)
    except OSError as e:
        raise StorageFailure(f"could not save document to {path}: {e}") from e


def load_document(path: str | Path) -> TimelineDocument:
    path = Path(path)
    try:
        data = _read_json(path)
        document = TimelineDocument.from_dict(data["document"])
        document.validate()
        return document
    except FileNotFoundError as e:
        raise StorageFailure(f"no document at {path}") from e
    except (OSError, ValueError, KeyError, TypeError, FastCutError) as e:
        raise StorageFailure(f"could not load document from {path}: {e}") from e


def save_project(project: Project, path: str | Path) -> None:
    """Serialize *project* (format settings plus document) to a JSON file."""
    path = Path(path)
    data = {
        "version": DOCUMENT_VERSION,
        "project_id": project.project_id,
        "width": project.width,
        "height": project.height,
        "fps": project.fps,
        "sample_rate": project.sample_rate,
        "channels": project.channels,
        "document": project.document.to_dict(),
    }
    try:
        _write_json(data, path)
    except OSError as e:
        raise StorageFailure(f"could not save project to {path}: {e}") from e


def load_project(path: str | Path) -> Project:
    path = Path(path)
    try:
        data = _read_json(path)
        document = TimelineDocument.from_dict(data.get("document", {}))
        document.validate()
        return Project(
            project_id=data["project_id"],
            width=data.get("width", 1920),
            height=data.get("height", 1080),
            fps=data.get("fps", 30.0),
            sample_rate=data.get("sample_rate", 48000),
            channels=data.get("channels", 2),
            document=document,
        )
    except FileNotFoundError as e:
        raise StorageFailure(f"no project at {path}") from e
    except (OSError, ValueError, KeyError, TypeError, FastCutError) as e:
        raise StorageFailure(f"could not load project from {path}: {e}") from e


class ProjectPersistence:
    """Stores one document per project id under *root*."""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root) if root else DATA_DIR / "projects"

    @property
    def root(self) -> Path:
        return self._root

    def document_path(self, project_id: str) -> Path:
        return self._root / project_id / f"document{PROJECT_SUFFIX}"

    def save_project_document(self, project_id: str, document: TimelineDocument) -> Path:
        path = self.document_path(project_id)
        save_document(document, path)
        logger.debug(f"Saved document v{document.version} of project {project_id}")
        return path

    def load_project_document(self, project_id: str) -> TimelineDocument:
        return load_document(self.document_path(project_id))

    def has_document(self, project_id: str) -> bool:
        return self.document_path(project_id).is_file()
