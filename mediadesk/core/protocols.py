"""Protocol definitions (interfaces) for dependency injection."""
from __future__ import annotations

from abc import abstractmethod
from typing import Any, Optional, Protocol, TypeVar

from .models import (
    AuthGrant,
    Categorization,
    CompleteEvent,
    FaceDetection,
    Person,
    PostContent,
    ProgressEvent,
    PublishReceipt,
    SocialPlatform,
)

T_co = TypeVar("T_co", covariant=True)


class CapabilityProvider(Protocol[T_co]):
    """Interface for per-item analysis backends driven by the batch coordinator.

    Implementations:
    - ClipCategorizer / CloudVisionCategorizer: image categorization
    - FaceNetDetector: face detection

    ``configure`` is called once, before a run. ``process`` is called once
    per item and may raise:
    - ItemProcessingError (or any ordinary exception): this item failed,
      the run continues
    - UnexpectedProviderFailure: the provider itself is broken, the run stops
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging."""
        ...

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether ``configure`` completed and ``process`` may be called."""
        ...

    @abstractmethod
    def configure(self, options: dict[str, Any]) -> None:
        """Apply options and prepare resources (models, API keys)."""
        ...

    @abstractmethod
    def process(self, item: str) -> T_co:
        """Analyze a single media item."""
        ...


class Categorizer(CapabilityProvider[Categorization], Protocol):
    """Assigns category tags to an image."""

    @abstractmethod
    def all_categories(self) -> list[str]:
        """Predefined plus custom categories."""
        ...


class FaceDetector(CapabilityProvider[FaceDetection], Protocol):
    """Finds face rectangles in an image."""


class SocialPublisher(Protocol):
    """Authentication and transport for one social platform.

    Both methods may raise; the fan-out turns failures into data.
    """

    @abstractmethod
    def authenticate(self, platform: SocialPlatform, auth_code: Optional[str]) -> AuthGrant:
        """Exchange a code (or cached credentials) for tokens."""
        ...

    @abstractmethod
    def publish(self, platform: SocialPlatform, content: PostContent) -> PublishReceipt:
        """Publish content to a connected platform."""
        ...


class ProgressSink(Protocol):
    """Observer of one batch run."""

    @abstractmethod
    def on_progress(self, event: ProgressEvent) -> None:
        ...

    @abstractmethod
    def on_complete(self, event: CompleteEvent) -> None:
        ...


class PersonRepository(Protocol):
    """Durable storage for persons and their faces."""

    @abstractmethod
    def load_persons(self) -> list[Person]:
        """Load all persons, in creation order, with their faces."""
        ...

    @abstractmethod
    def save_person(self, person: Person) -> None:
        """Insert or replace a person and its full face list."""
        ...

    @abstractmethod
    def delete_person(self, person_id: str) -> None:
        """Delete a person and its faces."""
        ...


class PlatformRepository(Protocol):
    """Durable storage for social platform configs."""

    @abstractmethod
    def load_platforms(self) -> list[SocialPlatform]:
        ...

    @abstractmethod
    def save_platform(self, platform: SocialPlatform) -> None:
        ...

    @abstractmethod
    def delete_platform(self, platform_id: str) -> None:
        ...


class ResultRepository(Protocol):
    """Durable storage for per-file provider output."""

    @abstractmethod
    def load_result(self, provider: str, path: str, mtime_ns: int, size: int, options: str) -> Optional[dict]:
        """Payload stored for exactly this file state and options, else None."""
        ...

    @abstractmethod
    def save_result(self, provider: str, path: str, mtime_ns: int, size: int, options: str, payload: dict) -> None:
        ...
