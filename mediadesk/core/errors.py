"""Error taxonomy shared by all services.

Lookup misses (unknown person, face or platform) are not errors: services
return ``None`` for those.
"""
from __future__ import annotations

from typing import Optional


class MediaDeskError(Exception):
    """Base class for all mediadesk errors."""


class ConfigurationError(MediaDeskError):
    """Provider or application setup failed. Nothing was processed."""


class ValidationError(MediaDeskError):
    """A caller-side precondition was violated before any work started."""


class ItemProcessingError(MediaDeskError):
    """A single media item could not be processed.

    Captured by the batch coordinator and recorded in that item's result.
    """

    def __init__(self, item: str, message: str):
        super().__init__(message)
        self.item = item


class PlatformAuthError(MediaDeskError):
    """Authentication with a social platform failed."""

    def __init__(self, platform_id: str, message: str):
        super().__init__(message)
        self.platform_id = platform_id


class UnexpectedProviderFailure(MediaDeskError):
    """Provider fault not tied to a specific item. Aborts the remaining run."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
