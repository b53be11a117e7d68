"""Run one unit of work per target while isolating per-target failures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """The outcome of the unit of work for a single target."""

    index: int
    target: Any
    ok: bool
    result: Any = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False)


@dataclass
class BatchResult:
    """Outcomes of one batch run, in input order."""

    outcomes: list[BatchOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def successes(self) -> list[BatchOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failures(self) -> list[BatchOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def summary(self) -> dict[str, int]:
        """Return the aggregate counts for the batch."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class BatchExecutor:
    """Apply a unit of work to every target of a list.

    An exception raised for one target is recorded as a failed outcome for
    that target and the remaining targets still run. Exceptions whose type is
    listed in ``fatal_exceptions`` are systemic: they stop the batch and
    propagate to the caller. Each target is attempted once; there are no
    retries.

    With ``max_workers`` greater than one the targets run on a bounded thread
    pool. Outcomes are always stored by input index, so the recorded order
    matches the input order whatever the completion order was.
    """

    def __init__(
        self,
        max_workers: int = 1,
        fatal_exceptions: tuple[type[BaseException], ...] = (),
    ) -> None:
        """Initialize the executor."""
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self.max_workers = max_workers
        self.fatal_exceptions = tuple(fatal_exceptions)

    def run(
        self, targets: Iterable[Any], unit_of_work: Callable[[Any], Any]
    ) -> BatchResult:
        """Run ``unit_of_work`` once per target and collect the outcomes."""
        targets = list(targets)
        if not targets:
            return BatchResult()

        if self.max_workers == 1 or len(targets) == 1:
            outcomes = [
                self._attempt(index, target, unit_of_work)
                for index, target in enumerate(targets)
            ]
        else:
            outcomes = self._run_concurrently(targets, unit_of_work)

        result = BatchResult(outcomes)
        logger.info(
            f"Batch finished: {result.succeeded} succeeded, "
            f"{result.failed} failed of {result.total}"
        )
        return result

    def _run_concurrently(
        self, targets: list[Any], unit_of_work: Callable[[Any], Any]
    ) -> list[BatchOutcome]:
        """Run the targets on a bounded pool, buffering outcomes by index."""
        outcomes: list[Optional[BatchOutcome]] = [None] * len(targets)
        workers = min(self.max_workers, len(targets))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._attempt, index, target, unit_of_work): index
                for index, target in enumerate(targets)
            }
            try:
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
            except self.fatal_exceptions:
                for future in futures:
                    future.cancel()
                raise
        return [outcome for outcome in outcomes if outcome is not None]

    def _attempt(
        self, index: int, target: Any, unit_of_work: Callable[[Any], Any]
    ) -> BatchOutcome:
        """Invoke the unit of work for one target, converting failures."""
        try:
            value = unit_of_work(target)
        except self.fatal_exceptions:
            logger.error(f"Systemic failure at batch target {index}; aborting")
            raise
        except Exception as e:
            logger.warning(f"Batch target {index} failed: {e}")
            return BatchOutcome(
                index=index,
                target=target,
                ok=False,
                error=str(e) or e.__class__.__name__,
                exception=e,
            )
        return BatchOutcome(index=index, target=target, ok=True, result=value)
