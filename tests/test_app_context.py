"""Tests for the application context and its command operations."""
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mediadesk.core.cancellation import CancellationToken
from mediadesk.core.config import AppConfig, CategorizerConfig, FaceDetectorConfig, ProviderKind
from mediadesk.core.errors import ItemProcessingError, UnexpectedProviderFailure
from mediadesk.core.models import BatchOutcome, BoundingRect, Categorization, CategoryTag, ItemResult, PostContent
from mediadesk.providers.categorizer import CloudVisionCategorizer
from mediadesk.providers.faces import CloudVisionFaceDetector
from mediadesk.services.app_context import KEYWORDS_TAG, AppContext, create_app_context
from mediadesk.services.progress import CollectingSink

from .fixtures import StubCategorizer, StubProvider, StubPublisher


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(data_dir=tmp_path, use_exiftool=False)


@pytest.fixture
def categorizer():
    return StubCategorizer(outcomes={"bad.jpg": ItemProcessingError("bad.jpg", "corrupt")})


@pytest.fixture
def ctx(config, categorizer):
    context = AppContext(
        config,
        providers={ProviderKind.CATEGORIZER: categorizer, ProviderKind.FACES: StubProvider()},
        default_publisher=StubPublisher(),
    )
    with context:
        yield context


class TestAppContextLifecycle:
    """Tests for initialization and shutdown."""

    def test_initialize_creates_database(self, config):
        with AppContext(config, providers={
            ProviderKind.CATEGORIZER: StubCategorizer(),
            ProviderKind.FACES: StubProvider(),
        }) as ctx:
            assert ctx.db is not None
            assert config.resolved_db_path.exists()
            assert ctx.exiftool is None
            assert ctx.models is None

    def test_shutdown(self, config):
        ctx = AppContext(config, providers={
            ProviderKind.CATEGORIZER: StubCategorizer(),
            ProviderKind.FACES: StubProvider(),
        })
        ctx.initialize()
        ctx.shutdown()
        assert ctx.db is None
        response = ctx.list_persons()
        assert response.success is False
        assert "not initialized" in response.error

    def test_cloud_variants_selected_by_config(self, tmp_path: Path):
        config = AppConfig(
            data_dir=tmp_path,
            use_exiftool=False,
            categorizer=CategorizerConfig(use_local_model=False),
            faces=FaceDetectorConfig(use_local_model=False),
        )
        with AppContext(config) as ctx:
            assert isinstance(ctx.provider(ProviderKind.CATEGORIZER), CloudVisionCategorizer)
            assert isinstance(ctx.provider(ProviderKind.FACES), CloudVisionFaceDetector)
            assert ctx.models is None

    def test_built_providers_share_result_cache(self, tmp_path: Path):
        config = AppConfig(
            data_dir=tmp_path,
            use_exiftool=False,
            categorizer=CategorizerConfig(use_local_model=False),
            faces=FaceDetectorConfig(use_local_model=False),
        )
        with AppContext(config) as ctx:
            assert ctx.results is not None
            assert ctx.provider(ProviderKind.CATEGORIZER)._cache is ctx.results
            assert ctx.provider(ProviderKind.FACES)._cache is ctx.results

    def test_result_cache_disabled(self, tmp_path: Path):
        config = AppConfig(
            data_dir=tmp_path,
            use_exiftool=False,
            cache_results=False,
            faces=FaceDetectorConfig(use_local_model=False),
            categorizer=CategorizerConfig(use_local_model=False),
        )
        with AppContext(config) as ctx:
            assert ctx.results is None
            assert ctx.provider(ProviderKind.CATEGORIZER)._cache is None

    def test_create_app_context(self, tmp_path: Path):
        ctx = create_app_context(tmp_path, use_exiftool=False)
        assert ctx.config.resolved_db_path == tmp_path / "mediadesk.sqlite"


class TestBatchCommands:
    """Tests for configure_provider / run_batch."""

    def test_configure_and_run(self, ctx, categorizer):
        assert ctx.configure_provider(ProviderKind.CATEGORIZER, {"max_tags": 3}).success
        assert categorizer.options == {"max_tags": 3}

        sink = CollectingSink()
        response = ctx.run_batch(ProviderKind.CATEGORIZER, ["a.jpg", "bad.jpg", "c.jpg"], sink=sink)

        assert response.success
        outcome = response.data
        assert [r.ok for r in outcome.results] == [True, False, True]
        assert [e.percentage for e in sink.progress] == [33, 66, 100]
        assert len(sink.completions) == 1

    def test_provider_kind_by_value(self, ctx):
        assert ctx.configure_provider("faces").success

    def test_configure_failure_is_response(self, ctx):
        response = ctx.configure_provider(ProviderKind.CATEGORIZER, {"reject": True})
        assert response.success is False
        assert "rejected" in response.error

    def test_run_unconfigured(self, ctx):
        response = ctx.run_batch(ProviderKind.FACES, ["a.jpg"])
        assert response.success is False
        assert "not configured" in response.error

    def test_run_empty(self, ctx, categorizer):
        ctx.configure_provider(ProviderKind.CATEGORIZER)
        sink = CollectingSink()
        response = ctx.run_batch(ProviderKind.CATEGORIZER, [], sink=sink)
        assert response.success is False
        assert categorizer.calls == []
        assert sink.events == []

    def test_run_aborted_keeps_partial_outcome(self, config):
        provider = StubProvider(outcomes={"b.jpg": UnexpectedProviderFailure("quota exhausted")})
        with AppContext(config, providers={
            ProviderKind.CATEGORIZER: StubCategorizer(),
            ProviderKind.FACES: provider,
        }) as ctx:
            ctx.configure_provider(ProviderKind.FACES)
            response = ctx.run_batch(ProviderKind.FACES, ["a.jpg", "b.jpg", "c.jpg"])

        assert response.success is False
        assert response.error == "quota exhausted"
        assert response.data.processed == 1

    def test_run_cancelled(self, ctx):
        ctx.configure_provider(ProviderKind.CATEGORIZER)
        token = CancellationToken()
        token.cancel()
        response = ctx.run_batch(ProviderKind.CATEGORIZER, ["a.jpg"], cancel=token)
        assert response.success
        assert response.data.cancelled

    def test_clear_result_cache(self, ctx):
        ctx.db.save_result("stub", "/photos/a.jpg", 1, 1, "o", {})
        ctx.db.save_result("other", "/photos/a.jpg", 1, 1, "o", {})

        assert ctx.clear_result_cache(ProviderKind.CATEGORIZER).data == 1
        assert ctx.clear_result_cache().data == 1
        assert ctx.db.count_results() == 0

    def test_custom_categories(self, ctx):
        assert ctx.add_custom_categories(["boats"]).data[-1] == "boats"
        assert "boats" in ctx.list_categories().data
        assert "boats" not in ctx.remove_custom_categories(["boats"]).data


class TestWriteCategories:
    """Tests for writing categorization keywords through ExifTool."""

    def test_without_exiftool(self, ctx):
        response = ctx.write_categories(BatchOutcome(results=(), total=0))
        assert response.success is False
        assert "ExifTool" in response.error

    def test_writes_keywords(self, ctx):
        exiftool = MagicMock()
        exiftool.is_ready = True
        exiftool.write_tags.side_effect = [None, RuntimeError("read-only file")]
        ctx._exiftool = exiftool

        payload = Categorization(
            tags=(CategoryTag("sea", 0.9, "beach"), CategoryTag("sky", 0.7, "nature")),
            primary_category="beach",
        )
        outcome = BatchOutcome(
            results=(
                ItemResult.success("a.jpg", payload),
                ItemResult.failure("b.jpg", "corrupt"),
                ItemResult.success("c.jpg", payload),
            ),
            total=3,
        )

        response = ctx.write_categories(outcome)

        assert response.success
        assert response.data["written"] == ["a.jpg"]
        assert response.data["failed"] == {"c.jpg": "read-only file"}
        first_call = exiftool.write_tags.call_args_list[0]
        assert first_call.args[0] == Path("a.jpg")
        assert first_call.args[1] == {KEYWORDS_TAG: ["beach", "sea", "sky"]}


class TestIdentityCommands:
    """Tests for person and face commands."""

    def test_person_lifecycle(self, ctx):
        person = ctx.create_or_update_person("Alice").data
        assert ctx.list_persons().data == [person]

        updated = ctx.add_face_to_person(person.id, "img1.jpg", {"x": 1, "y": 2, "width": 30, "height": 40}).data
        assert updated.faces[0].bounding_rect == BoundingRect(1, 2, 30, 40)

        face_id = updated.faces[0].id
        assert ctx.remove_face_from_person(person.id, face_id).data.faces == ()

        assert ctx.delete_person(person.id).data is True
        assert ctx.get_person(person.id).data is None

    def test_blank_name(self, ctx):
        response = ctx.create_or_update_person("")
        assert response.success is False
        assert "name" in response.error

    def test_invalid_rect(self, ctx):
        person = ctx.create_or_update_person("Alice").data
        response = ctx.add_face_to_person(person.id, "img1.jpg", {"x": 0, "y": 0, "width": 0, "height": 5})
        assert response.success is False

    def test_unknown_person_is_not_an_error(self, ctx):
        response = ctx.add_face_to_person("nobody", "img1.jpg", BoundingRect(0, 0, 5, 5))
        assert response.success is True
        assert response.data is None

    def test_move_face(self, ctx):
        alice = ctx.create_or_update_person("Alice").data
        bob = ctx.create_or_update_person("Bob").data
        alice = ctx.add_face_to_person(alice.id, "img1.jpg", BoundingRect(0, 0, 5, 5)).data

        moved = ctx.move_face(alice.faces[0].id, bob.id).data

        assert moved.id == bob.id
        assert moved.face_count == 1

    def test_persons_persist_across_contexts(self, config):
        providers = {ProviderKind.CATEGORIZER: StubCategorizer(), ProviderKind.FACES: StubProvider()}
        with AppContext(config, providers=providers) as ctx:
            ctx.create_or_update_person("Alice")
        with AppContext(config, providers=providers) as ctx:
            assert [p.name for p in ctx.list_persons().data] == ["Alice"]


class TestDistributionCommands:
    """Tests for platform and publish commands."""

    def test_default_platforms(self, ctx):
        ids = [p.id for p in ctx.list_platforms().data]
        assert ids == ["facebook", "twitter", "instagram", "linkedin", "pinterest"]

    def test_authenticate_and_disconnect(self, ctx):
        assert ctx.authenticate_platform("twitter", "code").data.connected
        assert ctx.disconnect_platform("twitter").data is True
        assert ctx.disconnect_platform("myspace").data is False

    def test_authenticate_unknown(self, ctx):
        response = ctx.authenticate_platform("myspace")
        assert response.success is False
        assert "myspace" in response.error

    def test_publish_one(self, ctx):
        content = PostContent(text="hello")
        assert ctx.publish_one("twitter", content).success is False
        ctx.authenticate_platform("twitter")
        response = ctx.publish_one("twitter", content)
        assert response.success
        assert response.data.post_id == "twitter-1"

    def test_publish_many_partial(self, ctx):
        ctx.authenticate_platform("facebook")
        response = ctx.publish_many(["facebook", "twitter"], PostContent(text="hello"))

        assert response.success is False
        assert "twitter" in response.error
        assert response.data.overall_success is False
        assert [r.success for r in response.data.results] == [True, False]

    def test_publish_many_empty(self, ctx):
        response = ctx.publish_many([], PostContent(text="hello"))
        assert response.success is False
        assert response.data is None
