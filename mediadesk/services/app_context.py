"""Application context - composition root and command layer.

This module wires every service the commands need, in the right order,
and exposes the command operations. Commands never raise: configuration,
validation and unexpected errors come back as ``CommandResponse`` values
with ``success=False``, and are logged here.
"""
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from rich.console import Console

from mediadesk.core.cancellation import CancellationToken
from mediadesk.core.config import AppConfig, ProviderKind
from mediadesk.core.errors import ConfigurationError, MediaDeskError, ValidationError
from mediadesk.core.models import BatchOutcome, BoundingRect, Categorization, CommandResponse, PostContent
from mediadesk.core.protocols import CapabilityProvider, ProgressSink, SocialPublisher
from mediadesk.persistence.database import SQLiteRepository
from mediadesk.providers.categorizer import ClipCategorizer, CloudVisionCategorizer
from mediadesk.providers.faces import CloudVisionFaceDetector, FaceNetDetector
from mediadesk.providers.social import DryRunPublisher
from mediadesk.services.batch import BatchCoordinator, validate_items
from mediadesk.services.distribution import DistributionFanout, PlatformStore
from mediadesk.services.exiftool import ExifToolService
from mediadesk.services.identity import IdentityRegistry
from mediadesk.services.models import ModelService
from mediadesk.services.result_cache import ResultCache


logger = logging.getLogger(__name__)

# ExifTool tag receiving categorization keywords
KEYWORDS_TAG = "XMP:Subject"


class AppContext:
    """Application context managing all services for a command.

    This class:
    - Initializes all services in correct order
    - Selects provider variants from configuration
    - Converts service-layer errors into CommandResponse values
    - Ensures proper cleanup on exit

    Usage:
        with AppContext(config) as ctx:
            ctx.configure_provider(ProviderKind.CATEGORIZER, {"max_tags": 5})
            response = ctx.run_batch(ProviderKind.CATEGORIZER, paths, sink=reporter)

    Or without context manager:
        ctx = AppContext(config)
        ctx.initialize(console)
        try:
            ...
        finally:
            ctx.shutdown()
    """

    def __init__(
        self,
        config: AppConfig,
        providers: Optional[dict[ProviderKind, CapabilityProvider[Any]]] = None,
        publishers: Optional[dict[str, SocialPublisher]] = None,
        default_publisher: Optional[SocialPublisher] = None,
    ):
        """Initialize application context.

        Args:
            config: Application configuration
            providers: Provider instances to use instead of the configured variants
            publishers: Per-platform publishers, keyed by platform id
            default_publisher: Publisher for platforms without a dedicated one
        """
        self._config = config
        self._console: Optional[Console] = None
        self._provider_overrides = dict(providers or {})
        self._publisher_overrides = dict(publishers or {})
        self._default_publisher = default_publisher

        # Services (initialized in initialize())
        self._db: Optional[SQLiteRepository] = None
        self._exiftool: Optional[ExifToolService] = None
        self._models: Optional[ModelService] = None
        self._results: Optional[ResultCache] = None
        self._identity: Optional[IdentityRegistry] = None
        self._distribution: Optional[DistributionFanout] = None
        self._providers: dict[ProviderKind, CapabilityProvider[Any]] = {}
        self._coordinator = BatchCoordinator()

        self._initialized = False

    def initialize(self, console: Optional[Console] = None) -> None:
        """Initialize all services.

        Args:
            console: Rich console for progress output (verbose mode only)
        """
        if self._initialized:
            return

        self._console = console

        def log(msg: str):
            if self._console and self._config.verbose:
                self._console.print(msg)
            logger.info(msg.replace('[', '').replace(']', ''))

        # 1. Database
        db_path = self._config.resolved_db_path
        log(f"  [cyan]• Database:[/cyan] {db_path}")
        self._db = SQLiteRepository(db_path)

        if self._config.cache_results:
            self._results = ResultCache(self._db)

        # 2. Identity registry and platforms (both persisted)
        self._identity = IdentityRegistry(self._db)
        store = PlatformStore(self._config.distribution.default_platforms, self._db)
        self._distribution = DistributionFanout(
            store,
            default_publisher=self._default_publisher or DryRunPublisher(),
            publishers=self._publisher_overrides,
            config=self._config.distribution,
        )

        # 3. ExifTool
        if self._config.use_exiftool:
            log("  [cyan]• ExifTool[/cyan]")
            self._exiftool = ExifToolService(self._config.exiftool_path)
            self._exiftool.initialize()

        # 4. Providers; local models are loaded on configure
        self._providers = self._build_providers()

        self._initialized = True
        log("[bold green]✓ Services ready[/bold green]")

    def _build_providers(self) -> dict[ProviderKind, CapabilityProvider[Any]]:
        providers = dict(self._provider_overrides)
        cat_config = self._config.categorizer
        face_config = self._config.faces

        if ProviderKind.CATEGORIZER not in providers:
            if cat_config.use_local_model:
                providers[ProviderKind.CATEGORIZER] = ClipCategorizer(self._model_service(), cat_config, cache=self._results)
            else:
                providers[ProviderKind.CATEGORIZER] = CloudVisionCategorizer(cat_config, cache=self._results)

        if ProviderKind.FACES not in providers:
            if face_config.use_local_model:
                providers[ProviderKind.FACES] = FaceNetDetector(self._model_service(), face_config, cache=self._results)
            else:
                providers[ProviderKind.FACES] = CloudVisionFaceDetector(face_config, cache=self._results)

        for kind, provider in providers.items():
            logger.debug(f"{kind.value} provider: {provider.name}")
        return providers

    def _model_service(self) -> ModelService:
        if self._models is None:
            self._models = ModelService(device=self._config.device)
        return self._models

    # --- Services ---

    @property
    def config(self) -> AppConfig:
        """Get application configuration."""
        return self._config

    @property
    def db(self) -> Optional[SQLiteRepository]:
        """Get database repository."""
        return self._db

    @property
    def exiftool(self) -> Optional[ExifToolService]:
        """Get ExifTool service (None when disabled)."""
        return self._exiftool

    @property
    def models(self) -> Optional[ModelService]:
        """Get model service (None when no local provider is configured)."""
        return self._models

    @property
    def results(self) -> Optional[ResultCache]:
        """Get result cache (None when caching is disabled)."""
        return self._results

    @property
    def identity(self) -> IdentityRegistry:
        self._require_initialized()
        return self._identity

    @property
    def distribution(self) -> DistributionFanout:
        self._require_initialized()
        return self._distribution

    def provider(self, kind: ProviderKind) -> CapabilityProvider[Any]:
        self._require_initialized()
        return self._providers[ProviderKind(kind)]

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("AppContext is not initialized")

    def _respond(self, operation: str, fn: Callable[[], Any]) -> CommandResponse:
        """Run a command body, converting raised errors into a failed response."""
        try:
            self._require_initialized()
            return CommandResponse.ok(fn())
        except MediaDeskError as e:
            logger.warning(f"{operation} failed: {e}")
            return CommandResponse.fail(str(e))
        except Exception as e:
            logger.exception(f"{operation} failed unexpectedly")
            return CommandResponse.fail(f"{type(e).__name__}: {e}")

    # --- Batch commands ---

    def configure_provider(self, kind: ProviderKind, options: Optional[dict[str, Any]] = None) -> CommandResponse:
        """Configure the provider for ``kind``. Data: provider name."""
        def body():
            provider = self.provider(kind)
            self._coordinator.configure(provider, options or {})
            return provider.name
        return self._respond("configureProvider", body)

    def run_batch(
        self,
        kind: ProviderKind,
        items: Sequence[str],
        sink: Optional[ProgressSink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> CommandResponse:
        """Run a configured provider over items. Data: BatchOutcome.

        A run stopped by an unexpected provider failure is a failed response
        that still carries the partial outcome.
        """
        def body():
            validate_items(items)
            return self._coordinator.run(items, self.provider(kind), sink=sink, cancel=cancel)

        response = self._respond("runBatch", body)
        if response.success and response.data.overall_failure:
            return CommandResponse.fail(response.data.overall_failure, data=response.data)
        return response

    def write_categories(self, outcome: BatchOutcome) -> CommandResponse:
        """Write categorization results to file metadata as keywords.

        Data: dict with ``written`` (paths) and ``failed`` ({path: error}).
        """
        def body():
            if self._exiftool is None or not self._exiftool.is_ready:
                raise ConfigurationError("ExifTool is not available")
            written: list[str] = []
            failed: dict[str, str] = {}
            for result in outcome.results:
                if not result.ok or not isinstance(result.payload, Categorization):
                    continue
                keywords = [tag.name for tag in result.payload.tags]
                if result.payload.primary_category and result.payload.primary_category not in keywords:
                    keywords.insert(0, result.payload.primary_category)
                if not keywords:
                    continue
                try:
                    self._exiftool.write_tags(Path(result.item), {KEYWORDS_TAG: keywords})
                    written.append(result.item)
                except RuntimeError as e:
                    logger.warning(f"Cannot write keywords to {result.item}: {e}")
                    failed[result.item] = str(e)
            logger.info(f"Wrote keywords to {len(written)} files ({len(failed)} failed)")
            return {"written": written, "failed": failed}
        return self._respond("writeCategories", body)

    def list_categories(self) -> CommandResponse:
        return self._respond("listCategories", lambda: self.provider(ProviderKind.CATEGORIZER).all_categories())

    def add_custom_categories(self, categories: Sequence[str]) -> CommandResponse:
        return self._respond(
            "addCustomCategories",
            lambda: self.provider(ProviderKind.CATEGORIZER).add_custom_categories(categories),
        )

    def remove_custom_categories(self, categories: Sequence[str]) -> CommandResponse:
        return self._respond(
            "removeCustomCategories",
            lambda: self.provider(ProviderKind.CATEGORIZER).remove_custom_categories(categories),
        )

    def clear_result_cache(self, kind: Optional[ProviderKind] = None) -> CommandResponse:
        """Forget stored analysis results, for one provider kind or all. Data: rows removed."""
        def body():
            provider = self.provider(kind).name if kind is not None else None
            removed = self._db.clear_results(provider)
            logger.info(f"Cleared {removed} stored results" + (f" for {provider}" if provider else ""))
            return removed
        return self._respond("clearResultCache", body)

    # --- Identity commands ---

    def list_persons(self) -> CommandResponse:
        return self._respond("listPersons", lambda: self.identity.list_persons())

    def get_person(self, person_id: str) -> CommandResponse:
        """Data: Person, or None if unknown."""
        return self._respond("getPerson", lambda: self.identity.get_person(person_id))

    def create_or_update_person(self, name: str, person_id: Optional[str] = None) -> CommandResponse:
        return self._respond(
            "createOrUpdatePerson",
            lambda: self.identity.create_or_update_person(name, person_id),
        )

    def delete_person(self, person_id: str) -> CommandResponse:
        """Data: True if the person existed."""
        return self._respond("deletePerson", lambda: self.identity.delete_person(person_id))

    def add_face_to_person(
        self,
        person_id: str,
        source_image: str,
        bounding_rect: BoundingRect | dict,
    ) -> CommandResponse:
        """Data: updated Person, or None if the person is unknown."""
        def body():
            rect = bounding_rect
            if isinstance(rect, dict):
                try:
                    rect = BoundingRect.from_dict(rect)
                except (KeyError, TypeError, ValueError) as e:
                    raise ValidationError(f"Invalid bounding rect: {e}") from e
            return self.identity.add_face_to_person(person_id, source_image, rect)
        return self._respond("addFaceToPerson", body)

    def remove_face_from_person(self, person_id: str, face_id: str) -> CommandResponse:
        """Data: updated Person, or None if the person or face is unknown."""
        return self._respond(
            "removeFaceFromPerson",
            lambda: self.identity.remove_face_from_person(person_id, face_id),
        )

    def move_face(self, face_id: str, target_person_id: str) -> CommandResponse:
        return self._respond("moveFace", lambda: self.identity.move_face(face_id, target_person_id))

    # --- Distribution commands ---

    def list_platforms(self) -> CommandResponse:
        return self._respond("listPlatforms", lambda: self.distribution.list_platforms())

    def authenticate_platform(self, platform_id: str, auth_code: Optional[str] = None) -> CommandResponse:
        """Data: the connected SocialPlatform."""
        return self._respond(
            "authenticatePlatform",
            lambda: self.distribution.authenticate(platform_id, auth_code),
        )

    def disconnect_platform(self, platform_id: str) -> CommandResponse:
        """Data: True if the platform existed."""
        return self._respond("disconnectPlatform", lambda: self.distribution.disconnect(platform_id))

    def publish_one(self, platform_id: str, content: PostContent) -> CommandResponse:
        """Data: PublishResult. Success mirrors the platform result."""
        response = self._respond("publishOne", lambda: self.distribution.publish_one(platform_id, content))
        if response.success and not response.data.success:
            return CommandResponse.fail(response.data.error, data=response.data)
        return response

    def publish_many(
        self,
        platform_ids: Sequence[str],
        content: PostContent,
        cancel: Optional[CancellationToken] = None,
    ) -> CommandResponse:
        """Data: PublishOutcome. Success mirrors ``overall_success``."""
        response = self._respond(
            "publishMany",
            lambda: self.distribution.publish_many(platform_ids, content, cancel=cancel),
        )
        if response.success and not response.data.overall_success:
            failed = [r.platform_id for r in response.data.results if not r.success]
            return CommandResponse.fail(f"Publishing failed on: {', '.join(failed)}", data=response.data)
        return response

    # --- Lifecycle ---

    def shutdown(self) -> None:
        """Shutdown all services."""
        if self._models:
            self._models.unload_all()
            self._models = None

        if self._exiftool:
            self._exiftool.shutdown()
            self._exiftool = None

        if self._db:
            self._db.close()
            self._db = None

        self._results = None
        self._providers = {}
        self._identity = None
        self._distribution = None
        self._initialized = False
        logger.debug("AppContext shut down")

    def __enter__(self) -> "AppContext":
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()


def create_app_context(
    data_dir: Path,
    db_path: Optional[Path] = None,
    device: str = "auto",
    verbose: bool = False,
    **overrides: Any,
) -> AppContext:
    """Create an application context with specified configuration.

    Convenience function for creating AppContext with common options.

    Args:
        data_dir: Directory holding the database
        db_path: Explicit database path (default: data_dir/mediadesk.sqlite)
        device: Device for AI models ("auto", "cuda", "cpu")
        verbose: Enable verbose output
        **overrides: Further AppConfig fields

    Returns:
        Configured AppContext instance
    """
    config = AppConfig(
        data_dir=Path(data_dir),
        db_path=db_path,
        device=device,
        verbose=verbose,
        **overrides,
    )
    return AppContext(config)
