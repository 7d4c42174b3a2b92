"""Media desk backend.

Batch analysis of media items, a registry of known people and their faces,
and publishing to social platforms.
"""

__version__ = "0.1.0"

# Core exports
from .core.config import AppConfig, CategorizerConfig, FaceDetectorConfig, DistributionConfig, ProviderKind
from .core.models import BatchOutcome, CommandResponse, Person, PostContent, PublishOutcome
from .core.protocols import CapabilityProvider, ProgressSink, SocialPublisher

# Service exports
from .services.app_context import AppContext, create_app_context
from .services.batch import BatchCoordinator
from .services.distribution import DistributionFanout
from .services.identity import IdentityRegistry

__all__ = [
    # Core
    "AppConfig",
    "CategorizerConfig",
    "FaceDetectorConfig",
    "DistributionConfig",
    "ProviderKind",
    "BatchOutcome",
    "CommandResponse",
    "Person",
    "PostContent",
    "PublishOutcome",
    "CapabilityProvider",
    "ProgressSink",
    "SocialPublisher",
    # Services
    "AppContext",
    "create_app_context",
    "BatchCoordinator",
    "DistributionFanout",
    "IdentityRegistry",
]
