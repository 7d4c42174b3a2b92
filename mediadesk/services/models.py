"""Local inference models shared by the analysis providers.

The service is created by the application context and handed to the
providers that need it. Models are loaded when a provider is configured,
so a command that never categorizes never pays for CLIP.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import torch

logger = logging.getLogger(__name__)


class ProgressCallback(Protocol):
    """Receives human-readable loading messages."""
    def __call__(self, message: str) -> None: ...


@dataclass(frozen=True)
class ModelSpec:
    """What to load for a model key."""
    source: str
    kind: str
    summary: str


@dataclass
class LoadedModel:
    """A model ready for inference on ``device``."""
    spec: ModelSpec
    model: Any
    device: str
    processor: Optional[Any] = None


class ModelService:
    """Load, share and release local models.

    Keys:
    - "clip": CLIP for zero-shot categorization
    - "faces": MTCNN face detector

    Usage:
        models = ModelService(device="auto")
        models.load_models(["clip"], progress=console.print)
        processor, model, device = models.get_clip_model()
    """

    MODEL_CONFIGS: dict[str, ModelSpec] = {
        "clip": ModelSpec(
            source="openai/clip-vit-base-patch32",
            kind="clip",
            summary="zero-shot categorization, ~600MB",
        ),
        "faces": ModelSpec(
            source="facenet-pytorch",
            kind="mtcnn",
            summary="face detection, ~2MB",
        ),
    }

    def __init__(self, device: str = "auto"):
        """Initialize model service.

        Args:
            device: "auto", "cpu", "cuda" or a specific device like "cuda:1"
        """
        self._device = self._resolve_device(device)
        self._loaded: dict[str, LoadedModel] = {}
        self._lock = threading.Lock()
        self._loaders: dict[str, Callable[[ModelSpec], LoadedModel]] = {
            "clip": self._load_clip_model,
            "mtcnn": self._load_mtcnn_model,
        }
        logger.debug(f"ModelService using {self._device}")

    @property
    def device(self) -> str:
        return self._device

    @property
    def loaded_keys(self) -> list[str]:
        with self._lock:
            return list(self._loaded)

    @staticmethod
    def _resolve_device(device: str) -> str:
        if device != "auto":
            return device
        return "cuda" if torch.cuda.is_available() else "cpu"

    def load_models(
        self,
        model_keys: list[str],
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Load the given models; already loaded ones are skipped.

        Raises:
            KeyError: unknown model key
            Exception: whatever the model library raises while loading
        """
        unknown = [key for key in model_keys if key not in self.MODEL_CONFIGS]
        if unknown:
            raise KeyError(f"Unknown model(s): {', '.join(unknown)}")

        for key in model_keys:
            with self._lock:
                if key in self._loaded:
                    continue
                spec = self.MODEL_CONFIGS[key]
                message = f"Loading {key} ({spec.summary}) on {self._device}"
                logger.info(message)
                if progress:
                    progress(message)
                self._loaded[key] = self._loaders[spec.kind](spec)
            logger.info(f"{key} ready")

    def _load_clip_model(self, spec: ModelSpec) -> LoadedModel:
        from transformers import CLIPModel, CLIPProcessor

        processor = CLIPProcessor.from_pretrained(spec.source)
        model = CLIPModel.from_pretrained(spec.source).to(self._device)
        model.eval()
        return LoadedModel(spec=spec, model=model, device=self._device, processor=processor)

    def _load_mtcnn_model(self, spec: ModelSpec) -> LoadedModel:
        from facenet_pytorch import MTCNN

        # keep_all returns every face, not just the most confident one;
        # size filtering happens in the provider
        mtcnn = MTCNN(device=self._device, keep_all=True, min_face_size=10)
        return LoadedModel(spec=spec, model=mtcnn, device=self._device)

    def _require(self, key: str) -> LoadedModel:
        with self._lock:
            loaded = self._loaded.get(key)
        if loaded is None:
            raise RuntimeError(f"Model '{key}' is not loaded; call load_models(['{key}']) first")
        return loaded

    def get_clip_model(self) -> tuple[Any, Any, str]:
        """(processor, model, device) for CLIP.

        Raises:
            RuntimeError: model not loaded
        """
        loaded = self._require("clip")
        return loaded.processor, loaded.model, loaded.device

    def get_face_detector(self) -> tuple[Any, str]:
        """(mtcnn, device) for face detection.

        Raises:
            RuntimeError: model not loaded
        """
        loaded = self._require("faces")
        return loaded.model, loaded.device

    def is_loaded(self, key: str) -> bool:
        with self._lock:
            return key in self._loaded

    def unload_model(self, key: str) -> None:
        """Drop a model and free GPU memory if it lived there."""
        with self._lock:
            loaded = self._loaded.pop(key, None)
        if loaded is None:
            return
        del loaded
        if self._device.startswith("cuda"):
            torch.cuda.empty_cache()
        logger.info(f"Unloaded model: {key}")

    def unload_all(self) -> None:
        for key in self.loaded_keys:
            self.unload_model(key)

    def __enter__(self) -> "ModelService":
        return self

    def __exit__(self, *args) -> None:
        self.unload_all()
