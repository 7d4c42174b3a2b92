"""Image categorization providers.

Two variants, selected by ``CategorizerConfig.use_local_model``:
- ClipCategorizer: zero-shot CLIP scoring against the category list
- CloudVisionCategorizer: label detection through a cloud vision API
"""
import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

import requests
import torch

from mediadesk.core.config import PREDEFINED_CATEGORIES, CategorizerConfig
from mediadesk.core.errors import ConfigurationError, ItemProcessingError
from mediadesk.core.models import Categorization, CategoryTag
from mediadesk.providers.base import AnalysisProvider
from mediadesk.providers.media import check_image_path, dominant_colors, load_image
from mediadesk.providers.vision import VisionApiClient

if TYPE_CHECKING:
    from mediadesk.services.models import ModelService
    from mediadesk.services.result_cache import ResultCache


logger = logging.getLogger(__name__)

MISC_CATEGORY = "miscellaneous"

# Cloud labels that map onto a predefined category
LABEL_CATEGORIES = {
    "person": "people", "face": "people", "portrait": "people", "smile": "people",
    "sky": "nature", "tree": "nature", "plant": "nature", "flower": "nature", "water": "nature",
    "outdoors": "landscape", "scenery": "landscape", "sunset": "landscape", "horizon": "landscape",
    "dog": "animals", "cat": "animals", "bird": "animals", "pet": "animals", "wildlife": "animals",
    "dish": "food", "meal": "food", "cuisine": "food", "restaurant": "food",
    "building": "architecture", "house": "architecture", "facade": "architecture",
    "urban": "city", "skyline": "city", "street": "city",
    "sand": "beach", "coast": "beach", "sea": "beach", "ocean": "beach",
    "mountain": "mountains", "hill": "mountains", "summit": "mountains",
    "car": "vehicles", "vehicle": "vehicles", "bicycle": "vehicles", "boat": "vehicles",
    "painting": "art", "sculpture": "art", "drawing": "art",
    "text": "document", "paper": "document", "font": "document",
    "ball": "sports", "stadium": "sports", "athlete": "sports",
    "darkness": "night", "midnight": "night",
}


class _CategorizerBase(AnalysisProvider[Categorization]):
    """Configuration and category list shared by both variants."""

    def __init__(self, config: Optional[CategorizerConfig] = None, cache: Optional["ResultCache"] = None):
        super().__init__(cache)
        self._config = config or CategorizerConfig()
        self._custom: list[str] = list(self._config.custom_categories)

    @property
    def config(self) -> CategorizerConfig:
        """Current configuration."""
        return self._config

    def _apply_options(self, options: dict[str, Any]) -> None:
        self._config = self._config.with_overrides(**options)
        if "custom_categories" in options:
            self._custom = list(self._config.custom_categories)

    def _cache_options(self) -> dict[str, Any]:
        return {
            "confidence_threshold": self._config.confidence_threshold,
            "max_tags": self._config.max_tags,
            "include_dominant_colors": self._config.include_dominant_colors,
            "categories": self.all_categories(),
        }

    def _decode(self, payload: dict[str, Any]) -> Categorization:
        return Categorization.from_dict(payload)

    def all_categories(self) -> list[str]:
        """Predefined categories followed by custom ones."""
        return list(PREDEFINED_CATEGORIES) + [c for c in self._custom if c not in PREDEFINED_CATEGORIES]

    def add_custom_categories(self, categories: Iterable[str]) -> list[str]:
        for category in categories:
            category = category.strip().lower()
            if category and category not in self._custom and category not in PREDEFINED_CATEGORIES:
                self._custom.append(category)
        return self.all_categories()

    def remove_custom_categories(self, categories: Iterable[str]) -> list[str]:
        drop = {c.strip().lower() for c in categories}
        self._custom = [c for c in self._custom if c not in drop]
        return self.all_categories()

    def _finish(self, tags: list[CategoryTag], colors: tuple[str, ...]) -> Categorization:
        """Apply threshold and tag limit, then pick the primary category."""
        kept = [t for t in tags if t.confidence >= self._config.confidence_threshold]
        kept.sort(key=lambda t: t.confidence, reverse=True)
        kept_tuple = tuple(kept[:self._config.max_tags])
        return Categorization(
            tags=kept_tuple,
            primary_category=Categorization.pick_primary(kept_tuple),
            dominant_colors=colors if self._config.include_dominant_colors else (),
        )


class ClipCategorizer(_CategorizerBase):
    """Zero-shot categorization with CLIP.

    Each category becomes a text prompt ("a photo of <category>"); the
    softmax over image-text similarities is the tag confidence.
    """

    PROMPT = "a photo of {}"

    def __init__(
        self,
        model_service: "ModelService",
        config: Optional[CategorizerConfig] = None,
        cache: Optional["ResultCache"] = None,
    ):
        super().__init__(config, cache)
        self._model_service = model_service

    @property
    def name(self) -> str:
        return "clip-categorizer"

    def _prepare(self) -> None:
        try:
            self._model_service.load_models(["clip"])
        except Exception as e:
            raise ConfigurationError(f"Cannot load CLIP model: {e}") from e

    def _analyze(self, item: str) -> Categorization:
        image = load_image(item)
        categories = self.all_categories()
        processor, model, device = self._model_service.get_clip_model()

        inputs = processor(
            text=[self.PROMPT.format(c) for c in categories],
            images=image,
            return_tensors="pt",
            padding=True,
        ).to(device)

        with torch.no_grad():
            logits = model(**inputs).logits_per_image[0]
        probs = logits.softmax(dim=0).cpu().tolist()

        tags = [
            CategoryTag(name=category, confidence=round(float(p), 4), category=category)
            for category, p in zip(categories, probs)
        ]
        logger.debug(f"[clip] {item}: top={max(tags, key=lambda t: t.confidence).name}")
        return self._finish(tags, dominant_colors(image))


class CloudVisionCategorizer(_CategorizerBase):
    """Label detection through a cloud vision API."""

    def __init__(
        self,
        config: Optional[CategorizerConfig] = None,
        session: Optional[requests.Session] = None,
        cache: Optional["ResultCache"] = None,
    ):
        super().__init__(config, cache)
        self._session = session
        self._client: Optional[VisionApiClient] = None

    @property
    def name(self) -> str:
        return "cloud-vision-categorizer"

    def _prepare(self) -> None:
        api_key = self._config.resolved_api_key
        if not api_key:
            raise ConfigurationError("API key is required for cloud-based categorization")
        self._client = VisionApiClient(
            api_url=self._config.api_url,
            api_key=api_key,
            timeout=self._config.request_timeout,
            session=self._session,
        )

    def _category_for(self, label: str) -> str:
        label = label.lower()
        if label in self.all_categories():
            return label
        return LABEL_CATEGORIES.get(label, MISC_CATEGORY)

    def _analyze(self, item: str) -> Categorization:
        if self._client is None:
            raise ConfigurationError("Cloud categorizer is not configured")
        path = check_image_path(item)
        try:
            image_bytes = path.read_bytes()
        except OSError as e:
            raise ItemProcessingError(item, f"Cannot read {item}: {e}") from e

        features: list[dict[str, Any]] = [{"type": "LABEL_DETECTION", "maxResults": self._config.max_tags}]
        if self._config.include_dominant_colors:
            features.append({"type": "IMAGE_PROPERTIES"})
        entry = self._client.annotate(item, image_bytes, features)

        tags = [
            CategoryTag(
                name=label["description"].lower(),
                confidence=round(float(label.get("score", 0.0)), 4),
                category=self._category_for(label["description"]),
            )
            for label in entry.get("labelAnnotations", [])
            if label.get("description")
        ]

        colors: list[str] = []
        palette = entry.get("imagePropertiesAnnotation", {}).get("dominantColors", {}).get("colors", [])
        for swatch in palette[:3]:
            rgb = swatch.get("color", {})
            colors.append(
                f"#{int(rgb.get('red', 0)):02x}{int(rgb.get('green', 0)):02x}{int(rgb.get('blue', 0)):02x}"
            )
        return self._finish(tags, tuple(colors))
