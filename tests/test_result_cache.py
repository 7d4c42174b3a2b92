"""Tests for reusing provider results on unchanged files."""
import os
import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import torch

from mediadesk.core.config import PREDEFINED_CATEGORIES
from mediadesk.core.errors import ItemProcessingError
from mediadesk.persistence.database import SQLiteRepository
from mediadesk.providers.categorizer import ClipCategorizer
from mediadesk.providers.faces import FaceNetDetector
from mediadesk.services.result_cache import ResultCache

from .fixtures import make_image


def touch_later(path: Path, seconds: int = 10) -> None:
    """Move the modification time forward so the change is visible on coarse clocks."""
    stat = path.stat()
    later = stat.st_mtime_ns + seconds * 1_000_000_000
    os.utime(path, ns=(stat.st_atime_ns, later))


@pytest.fixture
def repo(tmp_path: Path):
    repo = SQLiteRepository(tmp_path / "cache.sqlite")
    yield repo
    repo.close()


@pytest.fixture
def cache(repo):
    return ResultCache(repo)


@pytest.fixture
def clip_service():
    categories = list(PREDEFINED_CATEGORIES)
    logits = torch.full((1, len(categories)), -10.0)
    logits[0, categories.index("beach")] = 5.0

    processor = MagicMock()
    processor.return_value.to.return_value = {}
    model = MagicMock()
    model.return_value.logits_per_image = logits

    service = MagicMock()
    service.get_clip_model.return_value = (processor, model, "cpu")
    return service


@pytest.fixture
def mtcnn_service():
    mtcnn = MagicMock()
    mtcnn.detect.return_value = ([[10.0, 10.0, 60.0, 70.0]], [0.99])
    service = MagicMock()
    service.get_face_detector.return_value = (mtcnn, "cpu")
    return service


class TestResultCache:
    """Tests for keys, hits and misses."""

    def test_key_for_missing_file(self, cache, tmp_path: Path):
        assert cache.key_for("clip", str(tmp_path / "gone.jpg"), {}) is None

    def test_key_for_directory(self, cache, tmp_path: Path):
        assert cache.key_for("clip", str(tmp_path), {}) is None

    def test_fingerprint_ignores_key_order(self):
        assert ResultCache.fingerprint({"a": 1, "b": [2]}) == ResultCache.fingerprint({"b": [2], "a": 1})
        assert ResultCache.fingerprint({"a": 1}) != ResultCache.fingerprint({"a": 2})

    def test_hit_after_put(self, cache, tmp_path: Path):
        image = make_image(tmp_path / "a.jpg")
        key = cache.key_for("clip", str(image), {"max_tags": 3})

        assert cache.get(key) is None
        cache.put(key, {"tags": []})

        assert cache.get(cache.key_for("clip", str(image), {"max_tags": 3})) == {"tags": []}
        assert (cache.hits, cache.misses) == (1, 1)

    def test_modified_file_misses(self, cache, tmp_path: Path):
        image = make_image(tmp_path / "a.jpg")
        cache.put(cache.key_for("clip", str(image), {}), {"tags": []})

        touch_later(image)

        assert cache.get(cache.key_for("clip", str(image), {})) is None

    def test_storage_error_is_a_miss(self, tmp_path: Path):
        repository = MagicMock()
        repository.load_result.side_effect = sqlite3.OperationalError("database is locked")
        repository.save_result.side_effect = sqlite3.OperationalError("database is locked")
        cache = ResultCache(repository)
        key = cache.key_for("clip", str(make_image(tmp_path / "a.jpg")), {})

        assert cache.get(key) is None
        cache.put(key, {"tags": []})
        assert cache.misses == 1


class TestCachedCategorizer:
    """Tests for ClipCategorizer backed by a result cache."""

    def test_unchanged_file_skips_model(self, clip_service, cache, tmp_path: Path):
        categorizer = ClipCategorizer(clip_service, cache=cache)
        categorizer.configure({"confidence_threshold": 0.2})
        image = str(make_image(tmp_path / "beach.jpg"))

        first = categorizer.process(image)
        second = categorizer.process(image)

        assert second == first
        assert second.primary_category == "beach"
        assert clip_service.get_clip_model.call_count == 1

    def test_changed_file_is_analyzed_again(self, clip_service, cache, tmp_path: Path):
        categorizer = ClipCategorizer(clip_service, cache=cache)
        categorizer.configure({})
        image = make_image(tmp_path / "beach.jpg")
        categorizer.process(str(image))

        make_image(image, color=(10, 10, 200))
        touch_later(image)
        categorizer.process(str(image))

        assert clip_service.get_clip_model.call_count == 2

    def test_changed_options_are_analyzed_again(self, clip_service, cache, tmp_path: Path):
        categorizer = ClipCategorizer(clip_service, cache=cache)
        categorizer.configure({})
        image = str(make_image(tmp_path / "beach.jpg"))
        categorizer.process(image)

        categorizer.configure({"max_tags": 2})
        categorizer.process(image)
        categorizer.add_custom_categories(["boats"])
        categorizer.process(image)

        assert clip_service.get_clip_model.call_count == 3

    def test_results_survive_restart(self, clip_service, repo, tmp_path: Path):
        image = str(make_image(tmp_path / "beach.jpg"))
        first = ClipCategorizer(clip_service, cache=ResultCache(repo))
        first.configure({})
        first.process(image)

        second = ClipCategorizer(clip_service, cache=ResultCache(repo))
        second.configure({})
        second.process(image)

        assert clip_service.get_clip_model.call_count == 1
        assert repo.count_results() == 1

    def test_unreadable_entry_is_replaced(self, clip_service, cache, repo, tmp_path: Path):
        categorizer = ClipCategorizer(clip_service, cache=cache)
        categorizer.configure({})
        image = str(make_image(tmp_path / "beach.jpg"))
        key = cache.key_for(categorizer.name, image, categorizer._cache_options())
        repo.save_result(key.provider, key.path, key.mtime_ns, key.size, key.options, {"tags": [{"bogus": 1}]})

        result = categorizer.process(image)

        assert result.primary_category == "beach"
        assert clip_service.get_clip_model.call_count == 1
        assert cache.get(key)["primary_category"] == "beach"

    def test_failed_item_is_not_stored(self, clip_service, cache, repo, tmp_path: Path):
        bad = tmp_path / "bad.jpg"
        bad.write_bytes(b"not an image")
        categorizer = ClipCategorizer(clip_service, cache=cache)
        categorizer.configure({})

        with pytest.raises(ItemProcessingError):
            categorizer.process(str(bad))

        assert repo.count_results() == 0


class TestCachedFaceDetector:
    """Tests for FaceNetDetector backed by a result cache."""

    def test_unchanged_file_skips_detection(self, mtcnn_service, cache, tmp_path: Path):
        detector = FaceNetDetector(mtcnn_service, cache=cache)
        detector.configure({})
        image = str(make_image(tmp_path / "group.jpg", size=(200, 160)))

        first = detector.process(image)
        second = detector.process(image)

        assert second == first
        assert second.count == 1
        mtcnn, _ = mtcnn_service.get_face_detector.return_value
        assert mtcnn.detect.call_count == 1

    def test_changed_file_is_detected_again(self, mtcnn_service, cache, tmp_path: Path):
        detector = FaceNetDetector(mtcnn_service, cache=cache)
        detector.configure({})
        image = make_image(tmp_path / "group.jpg", size=(200, 160))
        detector.process(str(image))

        touch_later(image)
        detector.process(str(image))

        mtcnn, _ = mtcnn_service.get_face_detector.return_value
        assert mtcnn.detect.call_count == 2

    def test_without_cache(self, mtcnn_service, tmp_path: Path):
        detector = FaceNetDetector(mtcnn_service)
        detector.configure({})
        image = str(make_image(tmp_path / "group.jpg", size=(200, 160)))

        detector.process(image)
        detector.process(image)

        mtcnn, _ = mtcnn_service.get_face_detector.return_value
        assert mtcnn.detect.call_count == 2
