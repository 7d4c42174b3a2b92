"""Tests for Rich progress reporter."""
import logging
from io import StringIO

import pytest
from rich.console import Console
from rich.logging import RichHandler

from mediadesk.core.models import (
    BatchOutcome,
    BoundingRect,
    CompleteEvent,
    Face,
    ItemResult,
    Person,
    ProgressEvent,
    PublishOutcome,
    PublishResult,
    SocialPlatform,
)
from mediadesk.logging.rich_logger import QuietProgressReporter, RichProgressReporter, setup_logging
from mediadesk.services.batch import BatchCoordinator

from .fixtures import StubProvider


def progress(processed: int, total: int = 2, run_id: str = "run-1") -> ProgressEvent:
    return ProgressEvent(
        run_id=run_id,
        processed=processed,
        total=total,
        percentage=processed * 100 // total,
        current_item=f"/photos/{processed}.jpg",
    )


class TestRichProgressReporter:
    """Tests for Rich progress reporter."""

    @pytest.fixture
    def output(self):
        return StringIO()

    @pytest.fixture
    def reporter(self, output):
        """Create a reporter writing to a buffer."""
        return RichProgressReporter(console=Console(file=output, width=120))

    def test_create_default(self):
        reporter = RichProgressReporter()
        assert reporter._verbose is False
        assert reporter._quiet is False

    def test_progress_opens_and_complete_closes_bar(self, reporter, output):
        reporter.on_progress(progress(1))
        assert reporter._progress is not None

        reporter.on_progress(progress(2))
        reporter.on_complete(CompleteEvent(run_id="run-1", total=2, processed=2))

        assert reporter._progress is None
        assert "Processed 2/2 items" in output.getvalue()

    def test_new_run_gets_new_bar(self, reporter):
        reporter.on_progress(progress(1, run_id="a"))
        first = reporter._progress
        reporter.on_progress(progress(1, run_id="b"))
        assert reporter._progress is not first
        reporter.on_complete(CompleteEvent(run_id="b", total=2, processed=1))

    def test_complete_with_error(self, reporter, output):
        reporter.on_complete(CompleteEvent(run_id="r", total=3, processed=1, error="service down"))
        assert "service down" in output.getvalue()

    def test_complete_cancelled(self, reporter, output):
        reporter.on_complete(CompleteEvent(run_id="r", total=3, processed=1, cancelled=True))
        assert "cancelled" in output.getvalue()

    def test_quiet_skips_bar(self, output):
        reporter = RichProgressReporter(quiet=True, console=Console(file=output))
        reporter.on_progress(progress(1))
        reporter.info("hidden")
        assert reporter._progress is None
        assert "hidden" not in output.getvalue()

    def test_as_batch_sink(self, reporter, output):
        coordinator = BatchCoordinator()
        provider = StubProvider()
        coordinator.configure(provider)

        coordinator.run(["a.jpg", "b.jpg", "c.jpg"], provider, sink=reporter)

        assert reporter._progress is None
        assert "Processed 3/3 items" in output.getvalue()

    def test_debug_only_when_verbose(self, output):
        RichProgressReporter(console=Console(file=output)).debug("secret detail")
        assert "secret detail" not in output.getvalue()
        RichProgressReporter(verbose=True, console=Console(file=output)).debug("secret detail")
        assert "secret detail" in output.getvalue()

    def test_print_batch_summary(self, reporter, output):
        outcome = BatchOutcome(
            results=(ItemResult.success("a.jpg", 1), ItemResult.failure("b.jpg", "corrupt")),
            total=2,
        )
        reporter.print_batch_summary(outcome)
        text = output.getvalue()
        assert "Succeeded" in text
        assert "b.jpg: corrupt" in text

    def test_print_persons(self, reporter, output):
        face = Face(id="f1", source_image="a.jpg", bounding_rect=BoundingRect(1, 2, 3, 4))
        person = Person(id="p1", name="Alice", faces=(face,))

        reporter.print_persons([person])
        reporter.print_person(person)

        text = output.getvalue()
        assert "Alice" in text
        assert "1,2 3x4" in text

    def test_print_platforms_and_publish_outcome(self, reporter, output):
        reporter.print_platforms([SocialPlatform(id="twitter", name="Twitter")])
        reporter.print_publish_outcome(PublishOutcome.from_results([
            PublishResult.failed("twitter", "not connected"),
        ]))
        text = output.getvalue()
        assert "twitter" in text
        assert "not connected" in text

    def test_context_manager_stops_bar(self, reporter):
        with reporter:
            reporter.on_progress(progress(1))
        assert reporter._progress is None


class TestQuietProgressReporter:
    """Tests for quiet reporter."""

    def test_only_warnings_and_errors(self, capsys):
        reporter = QuietProgressReporter()
        reporter.info("info message")
        reporter.success("done")
        reporter.warning("careful")
        reporter.error("broken")

        captured = capsys.readouterr()
        assert "info message" not in captured.err
        assert "WARNING: careful" in captured.err
        assert "ERROR: broken" in captured.err

    def test_sink_reports_only_errors(self, capsys):
        reporter = QuietProgressReporter()
        reporter.on_progress(progress(1))
        reporter.on_complete(CompleteEvent(run_id="r", total=2, processed=1, error="service down"))
        assert "service down" in capsys.readouterr().err


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_levels(self):
        setup_logging(verbose=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0], RichHandler)

        setup_logging(quiet=True)
        assert logging.getLogger().level == logging.ERROR

        setup_logging()
        assert logging.getLogger().level == logging.WARNING
