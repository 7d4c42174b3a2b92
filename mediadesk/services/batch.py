"""Batch coordinator - drives a capability provider over an ordered item list.

Items are processed strictly in input order, one provider call at a time.
Heavy inference runs inside the provider; keeping a single call in flight
bounds memory and CPU use and makes progress accounting deterministic.

Failure policy:
- A failing item is recorded as ``ItemResult.failure`` and the loop moves on
- ``UnexpectedProviderFailure`` stops the run; partial results are returned
  with ``overall_failure`` set
- Configuration failures raise ``ConfigurationError`` before any item runs
"""
from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence, TypeVar

from ..core.cancellation import CancellationToken
from ..core.errors import (
    ConfigurationError,
    ItemProcessingError,
    UnexpectedProviderFailure,
    ValidationError,
)
from ..core.models import BatchOutcome, BatchRun, ItemResult
from ..core.protocols import CapabilityProvider, ProgressSink
from .progress import ProgressChannel


logger = logging.getLogger(__name__)

T = TypeVar("T")


def validate_items(items: Sequence[str]) -> tuple[str, ...]:
    """Reject empty batches and blank item references."""
    if not items:
        raise ValidationError("Batch must contain at least one item")
    blanks = [i for i, item in enumerate(items) if not isinstance(item, str) or not item.strip()]
    if blanks:
        raise ValidationError(f"Blank item reference at position(s): {blanks}")
    return tuple(items)


class BatchCoordinator:
    """Run a provider over a batch of media items with progress reporting."""

    def configure(self, provider: CapabilityProvider[Any], options: Optional[dict[str, Any]] = None) -> None:
        """Configure a provider once, before any run. Fails fast.

        Raises:
            ConfigurationError: provider setup failed
        """
        logger.debug(f"Configuring provider {provider.name} with {sorted((options or {}).keys())}")
        try:
            provider.configure(options or {})
        except ConfigurationError:
            logger.error(f"Provider {provider.name} rejected its configuration")
            raise
        except Exception as e:
            logger.error(f"Provider {provider.name} failed to configure: {e}", exc_info=True)
            raise ConfigurationError(f"Failed to configure {provider.name}: {e}") from e

        if not provider.is_configured:
            raise ConfigurationError(f"Provider {provider.name} did not become ready")
        logger.info(f"Provider {provider.name} configured")

    def run(
        self,
        items: Sequence[str],
        provider: CapabilityProvider[T],
        sink: Optional[ProgressSink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> BatchOutcome[T]:
        """Process every item in order.

        Args:
            items: Ordered media item references (must be non-empty)
            provider: Configured capability provider
            sink: Observer for progress/completion events of this run
            cancel: Optional token checked before each item

        Returns:
            BatchOutcome with one ItemResult per processed item

        Raises:
            ValidationError: empty batch
            ConfigurationError: provider not configured
        """
        run = BatchRun(items=validate_items(items))
        if not provider.is_configured:
            raise ConfigurationError(f"Provider {provider.name} is not configured")

        logger.info(f"Batch {run.run_id[:8]}: {run.total} items with {provider.name}")
        started = time.monotonic()

        results: list[ItemResult[T]] = []
        overall_failure: Optional[str] = None
        cancelled = False

        with ProgressChannel(run.run_id, sink) as channel:
            for item in run.items:
                if cancel is not None and cancel.is_cancelled:
                    cancelled = True
                    logger.info(f"Batch {run.run_id[:8]}: cancelled after {run.processed}/{run.total}")
                    break

                try:
                    payload = provider.process(item)
                    result = ItemResult.success(item, payload)
                except UnexpectedProviderFailure as e:
                    overall_failure = str(e) or type(e).__name__
                    logger.error(
                        f"Batch {run.run_id[:8]}: provider {provider.name} failed on {item}, "
                        f"aborting after {run.processed}/{run.total}: {overall_failure}",
                        exc_info=True,
                    )
                    break
                except ItemProcessingError as e:
                    logger.warning(f"Batch {run.run_id[:8]}: {item}: {e}")
                    result = ItemResult.failure(item, str(e))
                except Exception as e:
                    logger.warning(f"Batch {run.run_id[:8]}: unexpected error on {item}: {e}", exc_info=True)
                    result = ItemResult.failure(item, str(e) or type(e).__name__)

                results.append(result)
                run.advance()
                channel.emit_progress(run, item)

            channel.complete(run, cancelled=cancelled, error=overall_failure)

        elapsed = time.monotonic() - started
        outcome = BatchOutcome(
            results=tuple(results),
            total=run.total,
            overall_failure=overall_failure,
            cancelled=cancelled,
        )
        logger.info(
            f"Batch {run.run_id[:8]}: {outcome.succeeded} ok, {outcome.failed} failed, "
            f"{outcome.processed}/{outcome.total} processed in {elapsed:.1f}s"
        )
        return outcome
