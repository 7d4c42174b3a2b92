"""Domain models - immutable data classes."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


def new_id() -> str:
    """Generate a stable identifier for persons and faces."""
    return uuid.uuid4().hex


def now_ms() -> int:
    """Current time in epoch milliseconds (publish timestamps)."""
    return int(time.time() * 1000)


# ============ Batch runs ============

@dataclass(frozen=True, slots=True)
class ItemResult(Generic[T]):
    """Outcome of processing one media item.

    Exactly one of ``payload``/``error`` carries the outcome. Use the
    ``success``/``failure`` constructors.
    """
    item: str
    ok: bool
    payload: Optional[T] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.ok and self.error is not None:
            raise ValueError("Successful result cannot carry an error")
        if not self.ok and not self.error:
            raise ValueError("Failed result requires an error message")
        if not self.ok and self.payload is not None:
            raise ValueError("Failed result cannot carry a payload")

    @classmethod
    def success(cls, item: str, payload: T) -> "ItemResult[T]":
        return cls(item=item, ok=True, payload=payload)

    @classmethod
    def failure(cls, item: str, error: str) -> "ItemResult[T]":
        return cls(item=item, ok=False, error=error or "unknown error")


@dataclass(slots=True)
class BatchRun:
    """Mutable bookkeeping for one batch run."""
    items: tuple[str, ...]
    processed: int = 0
    run_id: str = field(default_factory=new_id)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return (self.processed * 100) // self.total

    @property
    def is_finished(self) -> bool:
        return self.processed >= self.total

    def advance(self) -> int:
        """Count one more completed item. Returns the new processed count."""
        if self.processed >= self.total:
            raise RuntimeError(
                f"Run {self.run_id} already processed all {self.total} items"
            )
        self.processed += 1
        return self.processed


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Emitted after each item, success or failure."""
    run_id: str
    processed: int
    total: int
    percentage: int
    current_item: str


@dataclass(frozen=True, slots=True)
class CompleteEvent:
    """Emitted exactly once per run, after the last progress event."""
    run_id: str
    total: int
    processed: int
    cancelled: bool = False
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BatchOutcome(Generic[T]):
    """Aggregated result of a batch run."""
    results: tuple[ItemResult[T], ...]
    total: int
    overall_failure: Optional[str] = None
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def is_partial(self) -> bool:
        """True when the run stopped before reaching every item."""
        return self.processed < self.total

    def summary(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


# ============ Identity ============

@dataclass(frozen=True, slots=True)
class BoundingRect:
    """Face rectangle in source image pixels."""
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise ValueError(f"Rectangle origin must be non-negative: ({self.x}, {self.y})")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Rectangle size must be positive: {self.width}x{self.height}")

    @classmethod
    def from_dict(cls, data: dict) -> "BoundingRect":
        return cls(
            x=int(data["x"]),
            y=int(data["y"]),
            width=int(data["width"]),
            height=int(data["height"]),
        )

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingRect":
        """Build from (x1, y1, x2, y2) detector boxes, clamped to the image origin."""
        left, top = max(0, int(x1)), max(0, int(y1))
        return cls(x=left, y=top, width=max(1, int(x2) - left), height=max(1, int(y2) - top))

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True, slots=True)
class Face:
    """A face sample owned by exactly one person."""
    id: str
    source_image: str
    bounding_rect: BoundingRect


@dataclass(frozen=True, slots=True)
class Person:
    """Snapshot of a known person and their faces."""
    id: str
    name: str
    faces: tuple[Face, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)
    modified_at: datetime = field(default_factory=datetime.now)

    @property
    def face_count(self) -> int:
        return len(self.faces)

    def find_face(self, face_id: str) -> Optional[Face]:
        for face in self.faces:
            if face.id == face_id:
                return face
        return None


# ============ Distribution ============

@dataclass(frozen=True, slots=True)
class SocialPlatform:
    """Connection state for one social platform."""
    id: str
    name: str
    connected: bool = False
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    scope: tuple[str, ...] = ()

    def connect(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[int] = None,
        scope: tuple[str, ...] = (),
    ) -> "SocialPlatform":
        return replace(
            self,
            connected=True,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scope=scope,
        )

    def disconnected(self) -> "SocialPlatform":
        return replace(
            self,
            connected=False,
            access_token=None,
            refresh_token=None,
            expires_at=None,
            scope=(),
        )


@dataclass(frozen=True, slots=True)
class PostContent:
    """One logical post, published to one or more platforms."""
    text: str = ""
    media: tuple[str, ...] = ()
    link: Optional[str] = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PublishReceipt:
    """What a publisher reports for an accepted post."""
    post_id: str
    post_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AuthGrant:
    """Tokens issued by a publisher after authentication."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    scope: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Outcome of publishing to one platform."""
    platform_id: str
    success: bool
    timestamp: int = field(default_factory=now_ms)
    post_id: Optional[str] = None
    post_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, platform_id: str, error: str) -> "PublishResult":
        return cls(platform_id=platform_id, success=False, error=error)


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    """Conjunctive verdict plus per-platform evidence."""
    overall_success: bool
    results: tuple[PublishResult, ...]

    @classmethod
    def from_results(cls, results: list[PublishResult]) -> "PublishOutcome":
        return cls(
            overall_success=all(r.success for r in results),
            results=tuple(results),
        )


# ============ Provider payloads ============

@dataclass(frozen=True, slots=True)
class CategoryTag:
    name: str
    confidence: float
    category: str


@dataclass(frozen=True, slots=True)
class Categorization:
    """Categorizer output for one image."""
    tags: tuple[CategoryTag, ...] = ()
    primary_category: Optional[str] = None
    dominant_colors: tuple[str, ...] = ()

    @staticmethod
    def pick_primary(tags: tuple[CategoryTag, ...]) -> Optional[str]:
        """Category with the highest summed confidence."""
        totals: dict[str, float] = {}
        for tag in tags:
            totals[tag.category] = totals.get(tag.category, 0.0) + tag.confidence
        if not totals:
            return None
        return max(totals.items(), key=lambda kv: kv[1])[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": [
                {"name": t.name, "confidence": t.confidence, "category": t.category}
                for t in self.tags
            ],
            "primary_category": self.primary_category,
            "dominant_colors": list(self.dominant_colors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Categorization":
        return cls(
            tags=tuple(CategoryTag(t["name"], float(t["confidence"]), t["category"]) for t in data.get("tags", [])),
            primary_category=data.get("primary_category"),
            dominant_colors=tuple(data.get("dominant_colors", [])),
        )


@dataclass(frozen=True, slots=True)
class DetectedFace:
    bounding_rect: BoundingRect
    confidence: float


@dataclass(frozen=True, slots=True)
class FaceDetection:
    """Face detector output for one image."""
    image_width: int
    image_height: int
    faces: tuple[DetectedFace, ...] = ()

    @property
    def count(self) -> int:
        return len(self.faces)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_width": self.image_width,
            "image_height": self.image_height,
            "faces": [
                {"rect": f.bounding_rect.to_dict(), "confidence": f.confidence}
                for f in self.faces
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FaceDetection":
        return cls(
            image_width=int(data["image_width"]),
            image_height=int(data["image_height"]),
            faces=tuple(
                DetectedFace(BoundingRect.from_dict(f["rect"]), float(f["confidence"]))
                for f in data.get("faces", [])
            ),
        )


@dataclass(frozen=True, slots=True)
class CommandResponse:
    """Envelope returned by every command-layer operation."""
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "CommandResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "CommandResponse":
        return cls(success=False, data=data, error=error)
