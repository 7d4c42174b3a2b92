"""Shared lifecycle for the image analysis providers."""
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

if TYPE_CHECKING:
    from mediadesk.services.result_cache import ResultCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AnalysisProvider(ABC, Generic[T]):
    """Configure-then-process provider with an optional result cache.

    Subclasses implement ``_prepare`` (load models, check keys),
    ``_analyze`` (one image), ``_cache_options`` (everything that changes
    the output) and ``_decode`` (payload dict back to a result).
    """

    def __init__(self, cache: Optional["ResultCache"] = None):
        self._cache = cache
        self._configured = False

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(self, options: dict[str, Any]) -> None:
        """Merge options into the config and prepare the backend.

        Raises:
            ConfigurationError: invalid options or backend unavailable
        """
        self._configured = False
        if options:
            self._apply_options(options)
        self._prepare()
        self._configured = True

    def process(self, item: str) -> T:
        """Analyze one image, reusing a stored result for an unchanged file."""
        key = self._cache.key_for(self.name, item, self._cache_options()) if self._cache else None
        if key is not None:
            payload = self._cache.get(key)
            if payload is not None:
                try:
                    return self._decode(payload)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"[{self.name}] unreadable cached result for {item}: {e}")

        result = self._analyze(item)
        if key is not None:
            self._cache.put(key, result.to_dict())
        return result

    @abstractmethod
    def _apply_options(self, options: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def _prepare(self) -> None:
        ...

    @abstractmethod
    def _analyze(self, item: str) -> T:
        ...

    @abstractmethod
    def _cache_options(self) -> dict[str, Any]:
        ...

    @abstractmethod
    def _decode(self, payload: dict[str, Any]) -> T:
        ...
