"""
Isha - Task Orchestrator
=========================
Drives long-running work that happens in an external workflow engine.

Lifecycle of one task::

    trigger_task ──► wait_for_completion ──► notify_completion
    (POST n8n)       (check source every      (POST Flowise,
                      TASK_POLL_INTERVAL_MS)   best effort)

Completion is detected through a pluggable ``CompletionSource``:
  • ``CompletionRegistry`` — push-based; the task-complete receiver
    endpoint reports results into it and the wait loop picks them up.
  • ``ElapsedTimeCompletionSource`` — completes after a fixed delay.
    Used for demos and local development without a workflow engine.

Timeout is wall-clock from trigger time.  ``process_long_running_task``
runs wait + notify as an independent ``asyncio.Task`` and hands back a
``TaskHandle`` with ``wait(timeout)`` and ``cancel()``.  Cancelling only
abandons local waiting; the external workflow is not told.
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from isha.config.settings import Settings, settings as default_settings
from isha.src.core.errors import TaskFailedError, TaskTimeoutError, TriggerError
from isha.src.core.models import CompletionCheck, Task, TaskOutcome, TaskProgress, TaskResult, TaskStatus, TriggerResult
from isha.src.utils.callbacks import Sink, maybe_await
from isha.src.utils.logger import get_logger

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_HEALTH_TIMEOUT_SECONDS = 5.0


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# ══════════════════════════════════════════════════════════════════════
#  COMPLETION SOURCES
# ══════════════════════════════════════════════════════════════════════


class CompletionSource(Protocol):
    """Answers "is this task done yet?" for the wait loop."""

    async def check(self, task_id: str, elapsed_ms: float) -> CompletionCheck: ...


class CompletionRegistry:
    """
    Push-based completion source.

    The task-complete receiver calls ``report()``; the wait loop sees the
    result on its next check.  Reports for unknown ids are kept, so a
    result that arrives before anyone waits is not lost.  At most
    *max_reports* are held; the oldest unclaimed report is dropped first.
    """

    __slots__ = ("_reports", "max_reports")

    def __init__(self, max_reports: int = 1_024) -> None:
        self._reports: OrderedDict[str, CompletionCheck] = OrderedDict()
        self.max_reports = max_reports


    def report(self, task_id: str, status: TaskStatus | str = TaskStatus.COMPLETED, data: dict[str, Any] | None = None, metadata: dict[str, Any] | None = None, progress_percent: float | None = None) -> CompletionCheck:
        status = TaskStatus(status)
        completed = status is TaskStatus.COMPLETED
        if progress_percent is None:
            progress_percent = 100.0 if status.is_terminal else 0.0
        check = CompletionCheck(
            completed=completed,
            status=status,
            progress_percent=progress_percent,
            data=data or {},
            metadata=metadata or {},
        )
        self._reports[task_id] = check
        self._reports.move_to_end(task_id)
        while len(self._reports) > self.max_reports:
            dropped, _ = self._reports.popitem(last=False)
            logger.warning("Dropping unclaimed completion report for %s.", dropped)
        logger.info("Completion report for %s: %s (%.0f%%)", task_id, status.value, progress_percent)
        return check


    async def check(self, task_id: str, elapsed_ms: float) -> CompletionCheck:
        return self._reports.get(task_id) or CompletionCheck()


    def forget(self, task_id: str) -> None:
        self._reports.pop(task_id, None)


    def __contains__(self, task_id: str) -> bool:
        return task_id in self._reports


    def __len__(self) -> int:
        return len(self._reports)


class ElapsedTimeCompletionSource:
    """Reports completion once *delay_ms* have passed since trigger."""

    __slots__ = ("delay_ms",)

    def __init__(self, delay_ms: float = 5_000) -> None:
        self.delay_ms = delay_ms


    async def check(self, task_id: str, elapsed_ms: float) -> CompletionCheck:
        progress = min(100.0, elapsed_ms / self.delay_ms * 100) if self.delay_ms > 0 else 100.0
        if elapsed_ms < self.delay_ms:
            return CompletionCheck(progress_percent=progress)
        return CompletionCheck(
            completed=True,
            status=TaskStatus.COMPLETED,
            progress_percent=100.0,
            data={"message": "Task completed successfully"},
            metadata={"processingTime": round(elapsed_ms), "completedAt": _utc_now_iso()},
        )

# ══════════════════════════════════════════════════════════════════════
#  TASK HANDLE
# ══════════════════════════════════════════════════════════════════════


class TaskHandle:
    """Live view of one background task: its state, a bounded wait and a cancel."""

    __slots__ = ("task", "_runner")

    def __init__(self, task: Task, runner: asyncio.Task) -> None:
        self.task = task
        self._runner = runner


    @property
    def task_id(self) -> str:
        return self.task.task_id


    def done(self) -> bool:
        return self._runner.done()


    def cancel(self) -> bool:
        """Stop waiting locally.  Returns False if the task had already finished."""
        if self._runner.done():
            return False
        self._runner.cancel()
        if not self.task.status.is_terminal:
            self.task.transition(TaskStatus.FAILED, "cancelled")
        logger.warning("Task %s cancelled locally.", self.task_id)
        return True


    async def wait(self, timeout: float | None = None) -> TaskOutcome:
        """
        Wait up to *timeout* seconds for the outcome.  The background task
        keeps running if this wait gives up.

        Raises
        ------
        TaskTimeoutError
            If the outcome is not ready within *timeout*.
        """
        try:
            await asyncio.wait_for(asyncio.shield(self._runner), timeout)
        except asyncio.TimeoutError:
            raise TaskTimeoutError(f"Task {self.task_id} did not finish within {timeout}s.") from None
        except asyncio.CancelledError:
            if not self._runner.cancelled():
                raise
        return self.outcome()


    def outcome(self) -> TaskOutcome | None:
        """The final outcome, or None while the task is still running."""
        if not self._runner.done():
            return None
        if self._runner.cancelled():
            return TaskOutcome(task_id=self.task_id, status=TaskStatus.FAILED, error="cancelled")
        return self._runner.result()


    def __repr__(self) -> str:
        return f"TaskHandle(task_id='{self.task_id}', status='{self.task.status.value}')"

# ══════════════════════════════════════════════════════════════════════
#  ORCHESTRATOR
# ══════════════════════════════════════════════════════════════════════


class TaskOrchestrator:
    """
    Parameters
    ----------
    settings
        Webhook URLs, timeouts and poll interval.
    http_client
        Shared ``httpx.AsyncClient``.  When omitted, one short-lived
        client is opened per request.
    registry
        Default completion source; a fresh ``CompletionRegistry`` if
        omitted.

    Running tasks are tracked until their runner finishes.  The last
    ``TASK_HISTORY_LIMIT`` finished handles stay available to
    ``get_task`` so a caller can still read the outcome.
    """

    __slots__ = ("_settings", "_client", "registry", "_handles", "_finished")

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None, registry: CompletionRegistry | None = None) -> None:
        self._settings = settings or default_settings
        self._client = http_client
        self.registry = registry if registry is not None else CompletionRegistry(self._settings.TASK_REPORT_LIMIT)
        self._handles: dict[str, TaskHandle] = {}
        self._finished: OrderedDict[str, TaskHandle] = OrderedDict()


    @staticmethod
    def generate_task_id() -> str:
        """``task_<epoch-ms>_<9 random base-36 chars>``."""
        suffix = "".join(random.choices(_ID_ALPHABET, k=9))
        return f"task_{int(time.time() * 1000)}_{suffix}"


    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        timeout = self._settings.WEBHOOK_TIMEOUT_SECONDS
        if self._client is not None:
            return await self._client.post(url, json=payload, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, json=payload)


    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=_HEALTH_TIMEOUT_SECONDS)
        async with httpx.AsyncClient(timeout=_HEALTH_TIMEOUT_SECONDS) as client:
            return await client.get(url)

    # ── Trigger ────────────────────────────────────────────────────────

    async def trigger_task(self, payload: dict[str, Any], task_id: str | None = None) -> TriggerResult:
        """
        POST the trigger envelope to the workflow engine.

        Raises
        ------
        TriggerError
            URL not configured, transport failure, or non-2xx status.
        """
        url = self._settings.N8N_WEBHOOK_URL
        if not url:
            raise TriggerError("N8N webhook URL not configured")

        task_id = task_id or payload.get("taskId") or self.generate_task_id()
        envelope = {
            "timestamp": _utc_now_iso(),
            "taskId": task_id,
            "type": "task_trigger",
            "data": payload,
            "source": self._settings.WEBHOOK_SOURCE,
        }

        logger.info("Triggering task: %s", task_id)
        try:
            response = await self._post(url, envelope)
        except httpx.HTTPError as exc:
            logger.error("Trigger webhook error for %s: %s", task_id, exc)
            raise TriggerError(f"Failed to trigger task: {exc}") from exc

        if not response.is_success:
            raise TriggerError(f"Trigger webhook returned status: {response.status_code}")

        logger.info("Task triggered successfully: %s", task_id)
        return TriggerResult(task_id=task_id, response=_response_body(response))

    # ── Wait ───────────────────────────────────────────────────────────

    async def wait_for_completion(self, task_id: str, on_progress: Sink[TaskProgress] | None = None, *, source: CompletionSource | None = None, started_at: float | None = None, timeout_ms: float | None = None) -> CompletionCheck:
        """
        Check *source* every poll interval until the task completes.

        *started_at* is a ``time.monotonic()`` reading taken at trigger
        time; the timeout counts from there.

        Raises
        ------
        TaskFailedError
            The source reported the task as failed.
        TaskTimeoutError
            No completion within *timeout_ms*.
        """
        source = self.registry if source is None else source
        started_at = time.monotonic() if started_at is None else started_at
        timeout_ms = self._settings.TASK_TIMEOUT_MS if timeout_ms is None else timeout_ms
        interval_s = self._settings.TASK_POLL_INTERVAL_MS / 1000

        while True:
            elapsed_ms = (time.monotonic() - started_at) * 1000
            check = await source.check(task_id, elapsed_ms)

            if on_progress is not None:
                status = TaskStatus.COMPLETED if check.completed else check.status
                await maybe_await(on_progress(TaskProgress(task_id=task_id, status=status, progress_percent=check.progress_percent)))

            if check.completed:
                logger.info("Task %s completed after %.0fms", task_id, elapsed_ms)
                return check
            if check.status in (TaskStatus.FAILED, TaskStatus.TIMED_OUT):
                raise TaskFailedError(f"Task {task_id} reported status {check.status.value}.")

            remaining_ms = timeout_ms - (time.monotonic() - started_at) * 1000
            if remaining_ms <= 0:
                logger.warning("Task %s timed out after %.0fms", task_id, timeout_ms)
                raise TaskTimeoutError("Task timeout exceeded")
            await asyncio.sleep(min(interval_s, remaining_ms / 1000))

    # ── Notify ─────────────────────────────────────────────────────────

    async def notify_completion(self, result: TaskResult) -> bool:
        """
        POST the completion envelope.  Best effort: a failure is logged
        and reported as ``False``, never raised and never retried.
        """
        url = self._settings.FLOWISE_WEBHOOK_URL
        if not url:
            logger.warning("Flowise webhook URL not configured; completion of %s not sent.", result.task_id)
            return False

        envelope = {
            "timestamp": _utc_now_iso(),
            "taskId": result.task_id,
            "type": "task_complete",
            "status": result.status.value,
            "data": result.data,
            "metadata": result.metadata,
            "source": self._settings.WEBHOOK_SOURCE,
        }

        try:
            response = await self._post(url, envelope)
        except httpx.HTTPError as exc:
            logger.warning("Failed to notify completion of %s: %s", result.task_id, exc)
            return False

        if not response.is_success:
            logger.warning("Completion webhook returned status %d for %s", response.status_code, result.task_id)
            return False

        logger.info("Completion notification sent: %s", result.task_id)
        return True

    # ── Background execution ───────────────────────────────────────────

    async def process_long_running_task(self, payload: dict[str, Any], on_progress: Sink[TaskProgress] | None = None, source: CompletionSource | None = None, timeout_ms: float | None = None) -> TaskHandle:
        """
        Trigger the task, then wait and notify in a background
        ``asyncio.Task``.

        Raises
        ------
        TriggerError
            Raised here, before any background work starts.
        """
        started_at = time.monotonic()
        trigger = await self.trigger_task(payload)
        task = Task(task_id=trigger.task_id, payload=payload)

        runner = asyncio.create_task(
            self._run(task, on_progress, source, started_at, timeout_ms),
            name=f"isha-task-{task.task_id}",
        )
        handle = TaskHandle(task, runner)
        self._handles[task.task_id] = handle
        runner.add_done_callback(lambda _: self._retire(handle))
        return handle


    def _retire(self, handle: TaskHandle) -> None:
        self._handles.pop(handle.task_id, None)
        self._finished[handle.task_id] = handle
        while len(self._finished) > self._settings.TASK_HISTORY_LIMIT:
            self._finished.popitem(last=False)


    async def _run(self, task: Task, on_progress: Sink[TaskProgress] | None, source: CompletionSource | None, started_at: float, timeout_ms: float | None) -> TaskOutcome:
        task.transition(TaskStatus.PROCESSING)
        try:
            check = await self.wait_for_completion(task.task_id, on_progress, source=source, started_at=started_at, timeout_ms=timeout_ms)
        except TaskTimeoutError as exc:
            task.transition(TaskStatus.TIMED_OUT, exc.message)
            return TaskOutcome(task_id=task.task_id, status=TaskStatus.TIMED_OUT, error=exc.message)
        except TaskFailedError as exc:
            task.transition(TaskStatus.FAILED, exc.message)
            return TaskOutcome(task_id=task.task_id, status=TaskStatus.FAILED, error=exc.message)
        finally:
            self.registry.forget(task.task_id)

        metadata = {"processingTime": round((time.monotonic() - started_at) * 1000), "completedAt": _utc_now_iso(), **check.metadata}
        result = TaskResult(task_id=task.task_id, status=TaskStatus.COMPLETED, data={"processedData": task.payload, **check.data}, metadata=metadata)
        task.transition(TaskStatus.COMPLETED)

        # The task stays completed whether or not the receiver hears about it.
        notified = await self.notify_completion(result)
        return TaskOutcome(task_id=task.task_id, status=TaskStatus.COMPLETED, result=result, notified=notified)

    # ── Lookup ─────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> TaskHandle | None:
        return self._handles.get(task_id) or self._finished.get(task_id)


    def cancel_task(self, task_id: str) -> bool:
        handle = self.get_task(task_id)
        return handle.cancel() if handle is not None else False


    async def shutdown(self) -> None:
        """Cancel every unfinished background task."""
        pending = [h for h in self._handles.values() if not h.done()]
        for handle in pending:
            handle.cancel()
        if pending:
            await asyncio.gather(*(h._runner for h in pending), return_exceptions=True)

    # ── Health / config ────────────────────────────────────────────────

    async def check_webhook_health(self) -> dict[str, bool]:
        """GET each configured webhook's ``/health/`` sibling of ``/webhook/``."""
        health = {"n8n": False, "flowise": False}
        for key, url in (("n8n", self._settings.N8N_WEBHOOK_URL), ("flowise", self._settings.FLOWISE_WEBHOOK_URL)):
            if not url:
                continue
            try:
                response = await self._get(url.replace("/webhook/", "/health/"))
                health[key] = response.status_code == 200
            except httpx.HTTPError as exc:
                logger.warning("%s health check failed: %s", key, exc)
        return health


    def get_webhook_config(self) -> dict[str, Any]:
        return {
            "n8nUrl": self._settings.N8N_WEBHOOK_URL,
            "flowiseUrl": self._settings.FLOWISE_WEBHOOK_URL,
            "taskTimeout": self._settings.TASK_TIMEOUT_MS,
        }


    def __repr__(self) -> str:
        return f"TaskOrchestrator(running={len(self._handles)}, finished={len(self._finished)})"


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None
