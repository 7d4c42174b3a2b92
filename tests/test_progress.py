"""Tests for the run-scoped progress channel."""
import logging

import pytest

from mediadesk.core.models import BatchRun, CompleteEvent, ProgressEvent
from mediadesk.services.progress import CollectingSink, ProgressChannel


class ExplodingSink:
    """Sink that raises on every event."""

    def __init__(self):
        self.calls = 0

    def on_progress(self, event):
        self.calls += 1
        raise RuntimeError("sink bug")

    def on_complete(self, event):
        self.calls += 1
        raise RuntimeError("sink bug")


class TestProgressChannel:
    """Tests for ProgressChannel."""

    @pytest.fixture
    def run(self):
        return BatchRun(items=("a", "b"))

    def test_events_in_order(self, run):
        sink = CollectingSink()
        channel = ProgressChannel(run.run_id, sink)

        run.advance()
        channel.emit_progress(run, "a")
        run.advance()
        channel.emit_progress(run, "b")
        channel.complete(run)

        assert [type(e) for e in sink.events] == [ProgressEvent, ProgressEvent, CompleteEvent]
        assert [e.processed for e in sink.progress] == [1, 2]
        assert [e.percentage for e in sink.progress] == [50, 100]
        assert sink.progress[0].current_item == "a"
        assert sink.completed.processed == 2
        assert sink.completed.run_id == run.run_id

    def test_complete_retires_subscription(self, run):
        sink = CollectingSink()
        channel = ProgressChannel(run.run_id, sink)
        channel.complete(run)

        assert channel.is_closed
        assert not channel.has_subscriber
        with pytest.raises(RuntimeError):
            channel.emit_progress(run, "a")
        with pytest.raises(RuntimeError):
            channel.complete(run)
        assert len(sink.completions) == 1
        assert sink.progress == []

    def test_progress_cannot_go_backwards(self, run):
        channel = ProgressChannel(run.run_id, CollectingSink())
        run.advance()
        channel.emit_progress(run, "a")
        run.processed = 0
        with pytest.raises(RuntimeError):
            channel.emit_progress(run, "a")

    def test_sink_errors_are_logged_not_raised(self, run, caplog):
        sink = ExplodingSink()
        channel = ProgressChannel(run.run_id, sink)

        with caplog.at_level(logging.ERROR, logger="mediadesk.services.progress"):
            run.advance()
            event = channel.emit_progress(run, "a")
            channel.complete(run)

        assert event.processed == 1
        assert sink.calls == 2
        assert "sink bug" in caplog.text

    def test_without_sink(self, run):
        channel = ProgressChannel(run.run_id)
        run.advance()
        assert channel.emit_progress(run, "a").processed == 1
        assert channel.complete(run, cancelled=True).cancelled is True

    def test_context_manager_closes_silently(self, run):
        sink = CollectingSink()
        with ProgressChannel(run.run_id, sink) as channel:
            pass
        assert channel.is_closed
        assert sink.events == []
