"""Distribution fan-out - publish one post to several social platforms.

Platforms are independent: ``publish_many`` runs one task per platform on a
thread pool, joins them all, and reports a conjunctive verdict alongside the
per-platform results (in request order). A failing platform never prevents
or alters the others.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Optional, Sequence

from ..core.cancellation import CancellationToken
from ..core.config import DistributionConfig
from ..core.errors import PlatformAuthError, ValidationError
from ..core.models import PostContent, PublishOutcome, PublishResult, SocialPlatform
from ..core.protocols import PlatformRepository, SocialPublisher


logger = logging.getLogger(__name__)

NOT_CONNECTED = "not connected"
CANCELLED = "cancelled"


class PlatformStore:
    """In-memory platform configs, written through to an optional repository.

    Seeded with the configured default platforms (all disconnected); stored
    configs override the defaults by id.
    """

    def __init__(
        self,
        defaults: Sequence[tuple[str, str]] = (),
        repository: Optional[PlatformRepository] = None,
    ):
        self._lock = threading.Lock()
        self._repository = repository
        self._platforms: dict[str, SocialPlatform] = {
            platform_id: SocialPlatform(id=platform_id, name=name)
            for platform_id, name in defaults
        }

        if repository is not None:
            stored = repository.load_platforms()
            for platform in stored:
                self._platforms[platform.id] = platform
            stored_ids = {p.id for p in stored}
            for platform in self._platforms.values():
                if platform.id not in stored_ids:
                    repository.save_platform(platform)
            logger.debug(f"Loaded {len(stored)} stored platform configs")

    def all(self) -> list[SocialPlatform]:
        with self._lock:
            return list(self._platforms.values())

    def get(self, platform_id: str) -> Optional[SocialPlatform]:
        with self._lock:
            return self._platforms.get(platform_id)

    def put(self, platform: SocialPlatform) -> SocialPlatform:
        with self._lock:
            self._platforms[platform.id] = platform
            if self._repository is not None:
                self._repository.save_platform(platform)
            return platform

    def remove(self, platform_id: str) -> bool:
        with self._lock:
            if self._platforms.pop(platform_id, None) is None:
                return False
            if self._repository is not None:
                self._repository.delete_platform(platform_id)
            return True


class DistributionFanout:
    """Authenticate with, and publish to, social platforms.

    Args:
        store: Platform configs
        default_publisher: Publisher used for platforms without a dedicated one
        publishers: Optional per-platform publishers, keyed by platform id
        config: Fan-out options (thread pool size)
    """

    def __init__(
        self,
        store: PlatformStore,
        default_publisher: SocialPublisher,
        publishers: Optional[dict[str, SocialPublisher]] = None,
        config: Optional[DistributionConfig] = None,
    ):
        self._store = store
        self._default_publisher = default_publisher
        self._publishers = dict(publishers or {})
        self._config = config or DistributionConfig()

    def publisher_for(self, platform_id: str) -> SocialPublisher:
        return self._publishers.get(platform_id, self._default_publisher)

    # --- Platform configs ---

    def list_platforms(self) -> list[SocialPlatform]:
        return self._store.all()

    def get_platform(self, platform_id: str) -> Optional[SocialPlatform]:
        return self._store.get(platform_id)

    def update_platform(self, platform: SocialPlatform) -> SocialPlatform:
        """Add a platform or replace its name/connection state."""
        existing = self._store.get(platform.id)
        if existing is not None and not platform.name:
            platform = replace(platform, name=existing.name)
        logger.info(f"Updated platform config {platform.id}")
        return self._store.put(platform)

    def remove_platform(self, platform_id: str) -> bool:
        removed = self._store.remove(platform_id)
        if removed:
            logger.info(f"Removed platform {platform_id}")
        return removed

    # --- Connection ---

    def authenticate(self, platform_id: str, auth_code: Optional[str] = None) -> SocialPlatform:
        """Connect a platform using its publisher's authentication mechanism.

        Raises:
            PlatformAuthError: unknown platform or authentication failure
        """
        platform = self._store.get(platform_id)
        if platform is None:
            raise PlatformAuthError(platform_id, f"Platform {platform_id} not found")

        try:
            grant = self.publisher_for(platform_id).authenticate(platform, auth_code)
        except PlatformAuthError:
            logger.error(f"Authentication with {platform_id} failed", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Authentication with {platform_id} failed: {e}", exc_info=True)
            raise PlatformAuthError(platform_id, f"Authentication with {platform_id} failed: {e}") from e

        connected = platform.connect(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            scope=grant.scope,
        )
        logger.info(f"Connected to {platform_id}")
        return self._store.put(connected)

    def disconnect(self, platform_id: str) -> bool:
        """Drop tokens and mark the platform disconnected. False if unknown."""
        platform = self._store.get(platform_id)
        if platform is None:
            return False
        self._store.put(platform.disconnected())
        logger.info(f"Disconnected from {platform_id}")
        return True

    # --- Publishing ---

    def publish_one(self, platform_id: str, content: PostContent) -> PublishResult:
        """Publish to a single platform. Never raises; failures become data."""
        platform = self._store.get(platform_id)
        if platform is None:
            logger.warning(f"Publish to unknown platform {platform_id}")
            return PublishResult.failed(platform_id, f"platform {platform_id} not found")
        if not platform.connected:
            logger.warning(f"Publish to {platform_id} skipped: {NOT_CONNECTED}")
            return PublishResult.failed(platform_id, NOT_CONNECTED)

        try:
            receipt = self.publisher_for(platform_id).publish(platform, content)
        except Exception as e:
            logger.error(f"Publishing to {platform_id} failed: {e}", exc_info=True)
            return PublishResult.failed(platform_id, str(e) or type(e).__name__)

        logger.info(f"Published to {platform_id}: {receipt.post_id}")
        return PublishResult(
            platform_id=platform_id,
            success=True,
            post_id=receipt.post_id,
            post_url=receipt.post_url,
        )

    def publish_many(
        self,
        platform_ids: Sequence[str],
        content: PostContent,
        cancel: Optional[CancellationToken] = None,
    ) -> PublishOutcome:
        """Publish to every requested platform concurrently.

        Duplicate ids are collapsed to their first occurrence. Results keep
        request order; ``overall_success`` is True only if every platform
        succeeded.

        Raises:
            ValidationError: no platforms requested, or a bare string instead of a list of ids
        """
        if isinstance(platform_ids, str):
            raise ValidationError(f"Expected a list of platform ids, got the string {platform_ids!r}")
        ordered = list(dict.fromkeys(platform_ids))
        if not ordered:
            raise ValidationError("At least one platform is required")

        def attempt(platform_id: str) -> PublishResult:
            if cancel is not None and cancel.is_cancelled:
                return PublishResult.failed(platform_id, CANCELLED)
            return self.publish_one(platform_id, content)

        workers = min(self._config.max_workers, len(ordered))
        logger.info(f"Publishing to {len(ordered)} platforms with {workers} workers")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="publish") as pool:
            # map() yields in submission order regardless of completion order
            results = list(pool.map(attempt, ordered))

        outcome = PublishOutcome.from_results(results)
        failed = [r.platform_id for r in results if not r.success]
        if failed:
            logger.warning(f"Publish finished with failures on: {', '.join(failed)}")
        else:
            logger.info("Publish succeeded on all platforms")
        return outcome
