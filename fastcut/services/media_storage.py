"""Per-project media storage on the local file system.

Layout::

    <root>/<project_id>/media/<media_id>/
        meta.json      MediaFile metadata
        data<.ext>     the file itself

Files are copied and read in bounded chunks; nothing here loads a whole
media file into memory.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Protocol

from fastcut.models.errors import StorageFailure
from fastcut.models.media_file import MediaFile
from fastcut.utils.config import CHUNK_BYTES, DATA_DIR, MEDIA_LOAD_WORKERS

logger = logging.getLogger(__name__)


class IMediaStorage(Protocol):
    """Where project media lives."""

    def load_media_file(self, project_id: str, media_id: str) -> MediaFile:
        ...

    def list_media_ids(self, project_id: str) -> list[str]:
        ...

    def save_media_file(self, project_id: str, media: MediaFile, source: str | Path | BinaryIO) -> MediaFile:
        ...


class FileMediaStorage:
    """IMediaStorage backed by a directory tree."""

    def __init__(self, root: str | Path | None = None, chunk_size: int = CHUNK_BYTES):
        self._root = Path(root) if root else DATA_DIR / "projects"
        self._chunk_size = chunk_size

    @property
    def root(self) -> Path:
        return self._root

    def _media_dir(self, project_id: str, media_id: str) -> Path:
        return self._root / project_id / "media" / media_id

    def save_media_file(self, project_id: str, media: MediaFile, source: str | Path | BinaryIO) -> MediaFile:
        """Copy *source* into storage chunk by chunk. Returns the stored metadata."""
        media_dir = self._media_dir(project_id, media.media_id)
        suffix = Path(media.path).suffix if media.path else ""
        data_path = media_dir / f"data{suffix}"
        tmp_path = data_path.with_name(data_path.name + ".tmp")
        try:
            media_dir.mkdir(parents=True, exist_ok=True)
            written = 0
            with open(tmp_path, "wb") as dst:
                for block in self._iter_source(source):
                    dst.write(block)
                    written += len(block)
            os.replace(tmp_path, data_path)
            stored = replace(media, path=str(data_path), file_size=written)
            (media_dir / "meta.json").write_text(
                json.dumps(stored.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
            )
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageFailure(f"could not store media {media.media_id}: {e}") from e
        logger.info(f"Stored media {media.media_id} ({written} bytes) for project {project_id}")
        return stored

    def load_media_file(self, project_id: str, media_id: str) -> MediaFile:
        meta_path = self._media_dir(project_id, media_id) / "meta.json"
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            return MediaFile.from_dict(data)
        except FileNotFoundError as e:
            raise StorageFailure(f"media {media_id} not found in project {project_id}") from e
        except (OSError, json.JSONDecodeError, KeyError) as e:
            raise StorageFailure(f"media {media_id} metadata unreadable: {e}") from e

    def list_media_ids(self, project_id: str) -> list[str]:
        media_root = self._root / project_id / "media"
        if not media_root.is_dir():
            return []
        return sorted(p.name for p in media_root.iterdir() if (p / "meta.json").is_file())

    def delete_media_file(self, project_id: str, media_id: str) -> bool:
        media_dir = self._media_dir(project_id, media_id)
        if not media_dir.exists():
            return False
        shutil.rmtree(media_dir)
        return True

    def read_chunks(self, project_id: str, media_id: str) -> Iterator[bytes]:
        """Yield the stored bytes of a media file in bounded chunks."""
        media = self.load_media_file(project_id, media_id)
        try:
            with open(media.path, "rb") as f:
                while True:
                    block = f.read(self._chunk_size)
                    if not block:
                        return
                    yield block
        except OSError as e:
            raise StorageFailure(f"could not read media {media_id}: {e}") from e

    def _iter_source(self, source: str | Path | BinaryIO) -> Iterator[bytes]:
        if isinstance(source, (str, Path)):
            with open(source, "rb") as f:
                yield from self._iter_stream(f)
        else:
            yield from self._iter_stream(source)

    def _iter_stream(self, stream: BinaryIO) -> Iterator[bytes]:
        while True:
            block = stream.read(self._chunk_size)
            if not block:
                return
            yield block


@dataclass
class MediaLoadResult:
    media: dict[str, MediaFile] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)   # media_id -> error message

    @property
    def ok(self) -> bool:
        return not self.failures


def load_project_media(
    storage: IMediaStorage,
    project_id: str,
    max_workers: int = MEDIA_LOAD_WORKERS,
    media_ids: list[str] | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> MediaLoadResult:
    """Load every media file of a project with at most *max_workers* concurrent loads."""
    ids = media_ids if media_ids is not None else storage.list_media_ids(project_id)
    result = MediaLoadResult()
    if not ids:
        return result
    total = len(ids)
    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="media-load") as pool:
        futures = {pool.submit(storage.load_media_file, project_id, mid): mid for mid in ids}
        for done, future in enumerate(as_completed(futures), start=1):
            media_id = futures[future]
            try:
                result.media[media_id] = future.result()
            except StorageFailure as e:
                logger.warning(f"Media {media_id} failed to load: {e}")
                result.failures[media_id] = str(e)
            if on_progress is not None:
                on_progress(done, total)
    return result
