"""Run-scoped progress channel between the batch coordinator and one observer."""
from __future__ import annotations

import logging
from typing import Optional

from ..core.models import BatchRun, CompleteEvent, ProgressEvent
from ..core.protocols import ProgressSink


logger = logging.getLogger(__name__)


class ProgressChannel:
    """Ordered, synchronous event stream for a single batch run.

    - Events are dispatched to the sink before ``emit_progress`` returns,
      so the coordinator never runs ahead of its observer.
    - ``complete`` fires the terminal event exactly once and retires the
      subscription; the sink is dropped and can receive nothing further.
    - A sink that raises is logged and otherwise ignored. Observer bugs
      never fail the run.

    Usage:
        with ProgressChannel(run.run_id, sink) as channel:
            for item in run.items:
                ...
                run.advance()
                channel.emit_progress(run, item)
            channel.complete(run)
    """

    def __init__(self, run_id: str, sink: Optional[ProgressSink] = None):
        self._run_id = run_id
        self._sink = sink
        self._closed = False
        self._last_processed = 0

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def has_subscriber(self) -> bool:
        return self._sink is not None

    def emit_progress(self, run: BatchRun, current_item: str) -> ProgressEvent:
        """Dispatch a progress event for the run's current processed count."""
        if self._closed:
            raise RuntimeError(f"Progress channel for run {self._run_id} is closed")
        if run.processed < self._last_processed:
            raise RuntimeError(
                f"Processed count went backwards: {run.processed} < {self._last_processed}"
            )
        self._last_processed = run.processed

        event = ProgressEvent(
            run_id=self._run_id,
            processed=run.processed,
            total=run.total,
            percentage=run.percentage,
            current_item=current_item,
        )
        if self._sink is not None:
            try:
                self._sink.on_progress(event)
            except Exception:
                logger.exception(f"Progress sink failed on event {event.processed}/{event.total}")
        return event

    def complete(
        self,
        run: BatchRun,
        cancelled: bool = False,
        error: Optional[str] = None,
    ) -> CompleteEvent:
        """Dispatch the terminal event and close the channel."""
        if self._closed:
            raise RuntimeError(f"Run {self._run_id} already completed")

        event = CompleteEvent(
            run_id=self._run_id,
            total=run.total,
            processed=run.processed,
            cancelled=cancelled,
            error=error,
        )
        sink, self._sink = self._sink, None
        self._closed = True
        if sink is not None:
            try:
                sink.on_complete(event)
            except Exception:
                logger.exception(f"Progress sink failed on completion of run {self._run_id}")
        return event

    def close(self) -> None:
        """Retire the subscription without emitting anything."""
        self._sink = None
        self._closed = True

    def __enter__(self) -> "ProgressChannel":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class CollectingSink:
    """Sink that records every event it receives, in order."""

    def __init__(self) -> None:
        self.progress: list[ProgressEvent] = []
        self.completions: list[CompleteEvent] = []
        self.events: list[ProgressEvent | CompleteEvent] = []

    def on_progress(self, event: ProgressEvent) -> None:
        self.progress.append(event)
        self.events.append(event)

    def on_complete(self, event: CompleteEvent) -> None:
        self.completions.append(event)
        self.events.append(event)

    @property
    def completed(self) -> Optional[CompleteEvent]:
        return self.completions[-1] if self.completions else None
