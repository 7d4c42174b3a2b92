"""Service layer - coordination logic and shared services."""
from .progress import ProgressChannel, CollectingSink
from .batch import BatchCoordinator
from .identity import IdentityRegistry
from .distribution import DistributionFanout, PlatformStore
from .models import ModelService
from .exiftool import ExifToolService
from .result_cache import ResultCache
from .app_context import AppContext, create_app_context

__all__ = [
    "ProgressChannel",
    "CollectingSink",
    "BatchCoordinator",
    "IdentityRegistry",
    "DistributionFanout",
    "PlatformStore",
    "ModelService",
    "ExifToolService",
    "ResultCache",
    "AppContext",
    "create_app_context",
]
