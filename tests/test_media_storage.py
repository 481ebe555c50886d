"""Tests for per-project media storage and the bounded parallel loader."""

import io
import threading
import time

import pytest

from fastcut.models.errors import StorageFailure
from fastcut.models.media_file import MediaFile
from fastcut.services.media_storage import FileMediaStorage, load_project_media
from fastcut.workers.media_load_worker import MediaLoadWorker


def _media(media_id, path="/src/clip.mp4"):
    return MediaFile(media_id, path, "video", 1000, 8, 6, 48000, 2)


@pytest.fixture
def storage(tmp_path):
    return FileMediaStorage(tmp_path / "store", chunk_size=4)


class TestFileMediaStorage:
    def test_save_from_path(self, storage, tmp_path):
        src = tmp_path / "clip.mp4"
        src.write_bytes(b"0123456789")
        stored = storage.save_media_file("p1", _media("m1"), src)
        assert stored.file_size == 10
        assert stored.path.endswith("data.mp4")
        assert storage.load_media_file("p1", "m1") == stored

    def test_save_from_stream_and_read_chunks(self, storage):
        storage.save_media_file("p1", _media("m1"), io.BytesIO(b"abcdefghij"))
        chunks = list(storage.read_chunks("p1", "m1"))
        assert chunks == [b"abcd", b"efgh", b"ij"]

    def test_list_and_delete(self, storage):
        for mid in ("b", "a"):
            storage.save_media_file("p1", _media(mid), io.BytesIO(b"x"))
        assert storage.list_media_ids("p1") == ["a", "b"]
        assert storage.list_media_ids("other") == []
        assert storage.delete_media_file("p1", "a")
        assert not storage.delete_media_file("p1", "a")
        assert storage.list_media_ids("p1") == ["b"]

    def test_missing_media(self, storage):
        with pytest.raises(StorageFailure):
            storage.load_media_file("p1", "ghost")

    def test_unreadable_source(self, storage, tmp_path):
        with pytest.raises(StorageFailure):
            storage.save_media_file("p1", _media("m1"), tmp_path / "missing.mp4")
        assert storage.list_media_ids("p1") == []


class SlowStorage:
    """Counts concurrent loads."""

    def __init__(self, ids, failing=()):
        self.ids = ids
        self.failing = set(failing)
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def list_media_ids(self, project_id):
        return list(self.ids)

    def load_media_file(self, project_id, media_id):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        with self._lock:
            self.active -= 1
        if media_id in self.failing:
            raise StorageFailure(f"{media_id} is gone")
        return _media(media_id)

    def save_media_file(self, project_id, media, source):
        return media


class TestLoadProjectMedia:
    def test_bounded_concurrency(self):
        storage = SlowStorage([f"m{i}" for i in range(12)])
        result = load_project_media(storage, "p1", max_workers=3)
        assert result.ok
        assert len(result.media) == 12
        assert storage.peak <= 3

    def test_failures_collected(self):
        storage = SlowStorage(["a", "b", "c"], failing=["b"])
        progress = []
        result = load_project_media(storage, "p1", on_progress=lambda d, t: progress.append((d, t)))
        assert set(result.media) == {"a", "c"}
        assert "b" in result.failures
        assert not result.ok
        assert progress[-1] == (3, 3)

    def test_empty_project(self):
        assert load_project_media(SlowStorage([]), "p1").media == {}


def test_media_load_worker_signals(storage):
    storage.save_media_file("p1", _media("m1"), io.BytesIO(b"x"))
    worker = MediaLoadWorker(storage, "p1", max_workers=2)
    results = []
    worker.finished.connect(results.append)
    worker.run()
    assert list(results[0].media) == ["m1"]
