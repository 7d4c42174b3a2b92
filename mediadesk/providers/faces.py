"""Face detection providers.

Two variants, selected by ``FaceDetectorConfig.use_local_model``:
- FaceNetDetector: MTCNN from facenet-pytorch, run locally
- CloudVisionFaceDetector: face detection through a cloud vision API
"""
import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

import requests
from PIL import Image

from mediadesk.core.config import FaceDetectorConfig
from mediadesk.core.errors import ConfigurationError, ItemProcessingError
from mediadesk.core.models import BoundingRect, DetectedFace, FaceDetection
from mediadesk.providers.base import AnalysisProvider
from mediadesk.providers.media import check_image_path, load_image
from mediadesk.providers.vision import VisionApiClient

if TYPE_CHECKING:
    from mediadesk.services.models import ModelService
    from mediadesk.services.result_cache import ResultCache


logger = logging.getLogger(__name__)


class _FaceDetectorBase(AnalysisProvider[FaceDetection]):
    """Configuration and result filtering shared by both variants."""

    def __init__(self, config: Optional[FaceDetectorConfig] = None, cache: Optional["ResultCache"] = None):
        super().__init__(cache)
        self._config = config or FaceDetectorConfig()

    @property
    def config(self) -> FaceDetectorConfig:
        return self._config

    def _apply_options(self, options: dict[str, Any]) -> None:
        self._config = self._config.with_overrides(**options)

    def _cache_options(self) -> dict[str, Any]:
        return {
            "min_face_size": self._config.min_face_size,
            "max_face_size": self._config.max_face_size,
            "confidence_threshold": self._config.confidence_threshold,
            "max_faces_per_image": self._config.max_faces_per_image,
        }

    def _decode(self, payload: dict[str, Any]) -> FaceDetection:
        return FaceDetection.from_dict(payload)

    def _accept(self, face: DetectedFace) -> bool:
        size = min(face.bounding_rect.width, face.bounding_rect.height)
        if face.confidence < self._config.confidence_threshold:
            return False
        if size < self._config.min_face_size:
            return False
        if self._config.max_face_size and size > self._config.max_face_size:
            return False
        return True

    def _finish(self, width: int, height: int, faces: Iterable[DetectedFace]) -> FaceDetection:
        """Filter candidates, keep the most confident up to the per-image cap."""
        kept = sorted((f for f in faces if self._accept(f)), key=lambda f: f.confidence, reverse=True)
        return FaceDetection(
            image_width=width,
            image_height=height,
            faces=tuple(kept[:self._config.max_faces_per_image]),
        )


class FaceNetDetector(_FaceDetectorBase):
    """Local MTCNN face detector."""

    def __init__(
        self,
        model_service: "ModelService",
        config: Optional[FaceDetectorConfig] = None,
        cache: Optional["ResultCache"] = None,
    ):
        super().__init__(config, cache)
        self._model_service = model_service

    @property
    def name(self) -> str:
        return "facenet-detector"

    def _prepare(self) -> None:
        try:
            self._model_service.load_models(["faces"])
        except Exception as e:
            raise ConfigurationError(f"Cannot load face detection model: {e}") from e

    def _analyze(self, item: str) -> FaceDetection:
        image = load_image(item)
        mtcnn, _ = self._model_service.get_face_detector()

        boxes, probs = mtcnn.detect(image)
        candidates = []
        if boxes is not None:
            for box, prob in zip(boxes, probs):
                if prob is None:
                    continue
                x1, y1, x2, y2 = (float(v) for v in box)
                candidates.append(DetectedFace(
                    bounding_rect=BoundingRect.from_corners(x1, y1, x2, y2),
                    confidence=round(float(prob), 4),
                ))

        detection = self._finish(image.width, image.height, candidates)
        logger.debug(f"[faces] {item}: {detection.count} of {len(candidates)} candidates kept")
        return detection


class CloudVisionFaceDetector(_FaceDetectorBase):
    """Face detection through a cloud vision API."""

    def __init__(
        self,
        config: Optional[FaceDetectorConfig] = None,
        session: Optional[requests.Session] = None,
        cache: Optional["ResultCache"] = None,
    ):
        super().__init__(config, cache)
        self._session = session
        self._client: Optional[VisionApiClient] = None

    @property
    def name(self) -> str:
        return "cloud-vision-faces"

    def _prepare(self) -> None:
        api_key = self._config.resolved_api_key
        if not api_key:
            raise ConfigurationError("API key is required for cloud-based face detection")
        self._client = VisionApiClient(
            api_url=self._config.api_url,
            api_key=api_key,
            timeout=self._config.request_timeout,
            session=self._session,
        )

    def _analyze(self, item: str) -> FaceDetection:
        if self._client is None:
            raise ConfigurationError("Cloud face detector is not configured")
        path = check_image_path(item)
        try:
            image_bytes = path.read_bytes()
            with Image.open(path) as img:
                width, height = img.size
        except OSError as e:
            raise ItemProcessingError(item, f"Cannot read {item}: {e}") from e

        entry = self._client.annotate(
            item,
            image_bytes,
            [{"type": "FACE_DETECTION", "maxResults": self._config.max_faces_per_image}],
        )

        candidates = []
        for annotation in entry.get("faceAnnotations", []):
            vertices = annotation.get("boundingPoly", {}).get("vertices", [])
            if not vertices:
                continue
            xs = [v.get("x", 0) for v in vertices]
            ys = [v.get("y", 0) for v in vertices]
            candidates.append(DetectedFace(
                bounding_rect=BoundingRect.from_corners(min(xs), min(ys), max(xs), max(ys)),
                confidence=round(float(annotation.get("detectionConfidence", 0.0)), 4),
            ))
        return self._finish(width, height, candidates)
