"""Configuration dataclasses with validation."""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigurationError


VISION_API_KEY_ENV = "MEDIADESK_VISION_API_KEY"

PREDEFINED_CATEGORIES: tuple[str, ...] = (
    "people",
    "landscape",
    "nature",
    "animals",
    "food",
    "architecture",
    "city",
    "night",
    "beach",
    "mountains",
    "sports",
    "vehicles",
    "art",
    "document",
)

# (id, display name) of platforms known out of the box
DEFAULT_PLATFORMS: tuple[tuple[str, str], ...] = (
    ("facebook", "Facebook"),
    ("twitter", "Twitter"),
    ("instagram", "Instagram"),
    ("linkedin", "LinkedIn"),
    ("pinterest", "Pinterest"),
)


class ProviderKind(Enum):
    """Which capability a batch run drives."""
    CATEGORIZER = "categorizer"
    FACES = "faces"


def _env_api_key() -> Optional[str]:
    return os.environ.get(VISION_API_KEY_ENV) or None


def _known_options(cls: type, options: dict[str, Any]) -> dict[str, Any]:
    """Reject option keys the config class does not define."""
    names = {f.name for f in fields(cls)}
    unknown = sorted(set(options) - names)
    if unknown:
        raise ConfigurationError(f"Unknown {cls.__name__} options: {', '.join(unknown)}")
    return dict(options)


@dataclass(frozen=True, slots=True)
class CategorizerConfig:
    """Options for image categorization providers."""
    confidence_threshold: float = 0.5
    max_tags: int = 10
    include_dominant_colors: bool = True
    use_local_model: bool = True
    api_key: Optional[str] = None
    api_url: str = "https://vision.googleapis.com/v1/images:annotate"
    custom_categories: tuple[str, ...] = ()
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.max_tags < 1:
            raise ConfigurationError("max_tags must be at least 1")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

    @property
    def resolved_api_key(self) -> Optional[str]:
        return self.api_key or _env_api_key()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CategorizerConfig":
        data = _known_options(cls, data)
        if "custom_categories" in data:
            data["custom_categories"] = tuple(data["custom_categories"])
        return cls(**data)

    def with_overrides(self, **kwargs: Any) -> "CategorizerConfig":
        """Create a new config with some values overridden."""
        _known_options(type(self), kwargs)
        if "custom_categories" in kwargs:
            kwargs["custom_categories"] = tuple(kwargs["custom_categories"])
        return replace(self, **kwargs)


@dataclass(frozen=True, slots=True)
class FaceDetectorConfig:
    """Options for face detection providers."""
    min_face_size: int = 20
    max_face_size: int = 0  # 0 = unlimited
    confidence_threshold: float = 0.9
    max_faces_per_image: int = 10
    use_local_model: bool = True
    api_key: Optional[str] = None
    api_url: str = "https://vision.googleapis.com/v1/images:annotate"
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.min_face_size < 1:
            raise ConfigurationError("min_face_size must be at least 1")
        if self.max_face_size and self.max_face_size < self.min_face_size:
            raise ConfigurationError(
                f"max_face_size ({self.max_face_size}) is smaller than "
                f"min_face_size ({self.min_face_size})"
            )
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.max_faces_per_image < 1:
            raise ConfigurationError("max_faces_per_image must be at least 1")

    @property
    def resolved_api_key(self) -> Optional[str]:
        return self.api_key or _env_api_key()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FaceDetectorConfig":
        return cls(**_known_options(cls, data))

    def with_overrides(self, **kwargs: Any) -> "FaceDetectorConfig":
        """Create a new config with some values overridden."""
        return replace(self, **_known_options(type(self), kwargs))


@dataclass(frozen=True, slots=True)
class DistributionConfig:
    """Options for the social fan-out."""
    max_workers: int = 4
    default_platforms: tuple[tuple[str, str], ...] = DEFAULT_PLATFORMS

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")


@dataclass(slots=True)
class AppConfig:
    """Main configuration for the application context.

    All fields are validated on construction.
    This is the only configuration object passed to the composition root.
    """
    data_dir: Path
    db_path: Optional[Path] = None

    # AI models
    device: str = "auto"

    # Providers
    categorizer: CategorizerConfig = field(default_factory=CategorizerConfig)
    faces: FaceDetectorConfig = field(default_factory=FaceDetectorConfig)
    distribution: DistributionConfig = field(default_factory=DistributionConfig)

    # ExifTool
    exiftool_path: Optional[Path] = None
    use_exiftool: bool = True

    # Reuse provider results for unchanged files
    cache_results: bool = True

    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.data_dir = Path(self.data_dir).expanduser()
        if self.data_dir.exists() and not self.data_dir.is_dir():
            raise ConfigurationError(f"Data directory is not a directory: {self.data_dir}")

        if self.device not in ("auto", "cpu") and not self.device.startswith("cuda"):
            raise ConfigurationError(f"Unsupported device: {self.device}")

        # Resolve db_path
        if self.db_path is None:
            self.db_path = self.data_dir / "mediadesk.sqlite"

    @property
    def resolved_db_path(self) -> Path:
        return self.db_path or (self.data_dir / "mediadesk.sqlite")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        data = dict(data)
        if "data_dir" not in data:
            raise ConfigurationError("data_dir is required")
        if "categorizer" in data:
            data["categorizer"] = CategorizerConfig.from_dict(data["categorizer"])
        if "faces" in data:
            data["faces"] = FaceDetectorConfig.from_dict(data["faces"])
        if "distribution" in data:
            dist = dict(data["distribution"])
            if "default_platforms" in dist:
                dist["default_platforms"] = tuple(tuple(p) for p in dist["default_platforms"])
            data["distribution"] = DistributionConfig(**dist)
        for key in ("data_dir", "db_path", "exiftool_path"):
            if data.get(key) is not None:
                data[key] = Path(data[key])
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def with_overrides(self, **kwargs: Any) -> "AppConfig":
        """Create a new config with some values overridden."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return AppConfig(**current)

    def to_display(self) -> dict[str, Any]:
        """Flat view for printing, secrets masked."""
        display = {
            "data_dir": str(self.data_dir),
            "db_path": str(self.resolved_db_path),
            "device": self.device,
            "exiftool": str(self.exiftool_path or "auto") if self.use_exiftool else "disabled",
            "cache_results": self.cache_results,
        }
        for prefix, cfg in (("categorizer", self.categorizer), ("faces", self.faces)):
            for key, value in asdict(cfg).items():
                if key == "api_key":
                    value = "***" if cfg.resolved_api_key else None
                display[f"{prefix}.{key}"] = value
        display["distribution.max_workers"] = self.distribution.max_workers
        return display
