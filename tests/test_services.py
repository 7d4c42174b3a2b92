"""Tests for the model service (no weights are loaded)."""
from unittest.mock import MagicMock, patch

import pytest

from mediadesk.services.models import LoadedModel, ModelService


class TestModelService:
    """Tests for ModelService bookkeeping."""

    @pytest.fixture
    def service(self):
        return ModelService(device="cpu")

    def test_explicit_device(self, service):
        assert service.device == "cpu"

    def test_auto_device(self):
        with patch("mediadesk.services.models.torch.cuda.is_available", return_value=False):
            assert ModelService(device="auto").device == "cpu"
        with patch("mediadesk.services.models.torch.cuda.is_available", return_value=True):
            assert ModelService(device="auto").device == "cuda"

    def test_unknown_model(self, service):
        with pytest.raises(KeyError):
            service.load_models(["clip", "yolo"])
        assert service.loaded_keys == []

    def test_get_before_load(self, service):
        assert not service.is_loaded("clip")
        with pytest.raises(RuntimeError):
            service.get_clip_model()
        with pytest.raises(RuntimeError):
            service.get_face_detector()

    def test_load_reports_progress_and_skips_loaded(self, service):
        messages = []
        detector = MagicMock()
        loader = MagicMock(side_effect=lambda spec: LoadedModel(spec=spec, model=detector, device="cpu"))
        service._loaders["mtcnn"] = loader

        service.load_models(["faces"], progress=messages.append)
        service.load_models(["faces"], progress=messages.append)

        assert loader.call_count == 1
        assert service.is_loaded("faces")
        assert service.get_face_detector() == (detector, "cpu")
        assert len(messages) == 1
        assert "Loading faces" in messages[0]

    def test_clip_returns_processor(self, service):
        processor, model = MagicMock(), MagicMock()
        service._loaders["clip"] = lambda spec: LoadedModel(
            spec=spec, model=model, device="cpu", processor=processor
        )
        service.load_models(["clip"])
        assert service.get_clip_model() == (processor, model, "cpu")

    def test_unload_all(self, service):
        service._loaders["clip"] = lambda spec: LoadedModel(spec=spec, model=MagicMock(), device="cpu")
        service.load_models(["clip"])
        with service:
            assert service.is_loaded("clip")
        assert not service.is_loaded("clip")
        assert service.loaded_keys == []
