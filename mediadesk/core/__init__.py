"""Core domain models, errors and protocols."""
from .protocols import (
    CapabilityProvider,
    Categorizer,
    FaceDetector,
    SocialPublisher,
    ProgressSink,
    PersonRepository,
    PlatformRepository,
    ResultRepository,
)
from .models import (
    ItemResult,
    BatchRun,
    BatchOutcome,
    ProgressEvent,
    CompleteEvent,
    BoundingRect,
    Face,
    Person,
    SocialPlatform,
    PostContent,
    PublishResult,
    PublishOutcome,
    CommandResponse,
)
from .errors import (
    MediaDeskError,
    ConfigurationError,
    ValidationError,
    ItemProcessingError,
    PlatformAuthError,
    UnexpectedProviderFailure,
)
from .cancellation import CancellationToken
from .config import AppConfig, CategorizerConfig, FaceDetectorConfig, DistributionConfig, ProviderKind

__all__ = [
    # Protocols
    "CapabilityProvider",
    "Categorizer",
    "FaceDetector",
    "SocialPublisher",
    "ProgressSink",
    "PersonRepository",
    "PlatformRepository",
    "ResultRepository",
    # Models
    "ItemResult",
    "BatchRun",
    "BatchOutcome",
    "ProgressEvent",
    "CompleteEvent",
    "BoundingRect",
    "Face",
    "Person",
    "SocialPlatform",
    "PostContent",
    "PublishResult",
    "PublishOutcome",
    "CommandResponse",
    # Errors
    "MediaDeskError",
    "ConfigurationError",
    "ValidationError",
    "ItemProcessingError",
    "PlatformAuthError",
    "UnexpectedProviderFailure",
    "CancellationToken",
    # Config
    "AppConfig",
    "CategorizerConfig",
    "FaceDetectorConfig",
    "DistributionConfig",
    "ProviderKind",
]
