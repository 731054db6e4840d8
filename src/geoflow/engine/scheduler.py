"""Polling loop that dispatches runnable tasks one at a time."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from geoflow.engine.dependencies import DependencyResolver
from geoflow.engine.models import TaskView
from geoflow.engine.repository import WorkflowRepository
from geoflow.engine.runner import TaskRunner
from geoflow.jobs.registry import JobRegistry, default_job_registry

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


@dataclass(slots=True)
class SchedulerConfig:
    """Explicit scheduler wiring: store handle and polling cadence."""

    repository: WorkflowRepository
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    registry: JobRegistry | None = None


@dataclass(slots=True)
class SchedulerRunSummary:
    """Aggregate scheduler counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    blocked: int = 0
    idle_polls: int = 0
    workflows_completed: int = 0

    def add(self, other: SchedulerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.blocked += other.blocked
        self.idle_polls += other.idle_polls
        self.workflows_completed += other.workflows_completed


class SchedulerLoop:
    """Pull-based single-flight scheduler.

    Each cycle first stores the final result of any workflow whose tasks are
    all completed but which was never finalized.  It then lists queued
    tasks, walks them in order, skips the ones still
    blocked by dependencies and hands the first runnable one to the task
    runner.  Failures are logged and never stop the loop.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        *,
        resolver: DependencyResolver | None = None,
        runner: TaskRunner | None = None,
    ) -> None:
        self.config = config
        self.repository = config.repository
        self.poll_interval_seconds = max(0.0, config.poll_interval_seconds)
        self.resolver = resolver or DependencyResolver(config.repository)
        self.runner = runner or TaskRunner(
            repository=config.repository,
            registry=config.registry or default_job_registry(),
        )
        self._stop_requested = False

    def run_once(self) -> SchedulerRunSummary:
        """Run one scheduling cycle: dispatch at most one task."""

        summary = SchedulerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        self._finalize_completed_workflows(summary)

        try:
            task = self._select_candidate(summary)
        except Exception:
            logger.exception("Task selection failed; deferring queued tasks to next poll")
            summary.idle_polls = 1
            return summary

        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        try:
            outcome = self.runner.run(task)
        except Exception:
            logger.exception(
                "Task %s execution failed. Task status has already been updated by TaskRunner.",
                task.task_id,
            )
            summary.failed = 1
            return summary

        summary.succeeded = 1
        if outcome.workflow_completed:
            summary.workflows_completed += 1
        return summary

    def run_loop(
        self,
        *,
        max_cycles: int | None = None,
        max_idle_polls: int | None = None,
    ) -> SchedulerRunSummary:
        """Poll until stopped.

        Args:
            max_cycles: Stop after this many cycles (None = unlimited).
            max_idle_polls: Stop after this many consecutive cycles that
                dispatched nothing (None = never).
        """

        aggregate = SchedulerRunSummary()
        cycles = 0
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_cycles is not None and cycles >= max_cycles:
                    break

                summary = self.run_once()
                aggregate.add(summary)
                cycles += 1

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0

                if max_cycles is not None and cycles >= max_cycles:
                    break
                self._sleep_with_stop(self.poll_interval_seconds)
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _finalize_completed_workflows(self, summary: SchedulerRunSummary) -> None:
        """Recover workflows whose last task completed but whose final result was not stored."""

        try:
            workflow_ids = self.repository.find_unfinalized_workflows()
        except Exception:
            logger.exception("Lookup of unfinalized workflows failed; retrying next poll")
            return

        for workflow_id in workflow_ids:
            try:
                if self.runner.finalize_workflow(workflow_id):
                    summary.workflows_completed += 1
            except Exception:
                logger.exception(
                    "Finalization of workflow %s failed; retrying next poll",
                    workflow_id,
                )

    def _select_candidate(self, summary: SchedulerRunSummary) -> TaskView | None:
        for task in self.repository.find_queued_tasks():
            if not self.resolver.is_blocked(task):
                return task
            summary.blocked += 1
        return None

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping scheduler after the current task", name)
            self.request_stop()

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
