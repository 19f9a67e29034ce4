from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from autoqac.cancel import CancelToken
from autoqac.models import (
    MAX_CONCURRENT_PROCESSES,
    CleaningStats,
    ConfigurationError,
    FailureReason,
    ItemStatus,
    RunOutcome,
    RunSettings,
    RunStatus,
)
from autoqac.state.store import StateStore
from autoqac.xedit.base import (
    Cancelled,
    Exited,
    ParseError,
    ProcessRunner,
    ProcessSpawnError,
    TimedOut,
)
from autoqac.xedit.command import CommandBuilder, xedit_log_paths
from autoqac.xedit.logs import OutputParser, clear_logs
from autoqac.xedit.process import AsyncProcessRunner

logger = logging.getLogger(__name__)

# Held for the whole of a run so no two orchestrators drive xEdit at once.
_RUN_GUARD = threading.Lock()

FAILURE_MESSAGES = {
    FailureReason.MISSING_MASTERS: "Missing masters: a required master can not be found",
    FailureReason.EMPTY_PLUGIN: "Empty plugin: nothing for xEdit to load",
    FailureReason.CANCELLED: "Cancelled by user",
}


@dataclass(slots=True)
class ItemOutcome:
    status: ItemStatus
    message: str
    stats: CleaningStats = field(default_factory=CleaningStats)
    failure: FailureReason | None = None


class Orchestrator:
    def __init__(
        self,
        store: StateStore,
        *,
        runner: ProcessRunner | None = None,
        builder: CommandBuilder | None = None,
        parser: OutputParser | None = None,
    ) -> None:
        self.store = store
        self.runner = runner or AsyncProcessRunner()
        self.builder = builder or CommandBuilder()
        self.parser = parser or OutputParser()

    async def run(
        self,
        items: Sequence[str],
        settings: RunSettings,
        cancel_token: CancelToken | None = None,
    ) -> RunOutcome:
        settings.validate()
        if not _RUN_GUARD.acquire(blocking=False):
            raise ConfigurationError("Another cleaning run is already in progress.")
        try:
            return await self._run_guarded(list(items), settings, cancel_token or CancelToken())
        finally:
            _RUN_GUARD.release()

    async def _run_guarded(
        self, items: list[str], settings: RunSettings, cancel_token: CancelToken
    ) -> RunOutcome:
        if self.store.snapshot().status.active:
            raise ConfigurationError("State store already has an active run.")
        if self.store.snapshot().status is not RunStatus.IDLE:
            self.store.reset()
        self.store.begin_run(items, settings)
        logger.info(
            "Starting cleaning of %d plugins (max concurrent: %d)",
            len(items),
            MAX_CONCURRENT_PROCESSES,
        )

        permit = asyncio.Semaphore(MAX_CONCURRENT_PROCESSES)
        cancelled = False
        watcher = asyncio.ensure_future(self._watch_cancel(cancel_token))
        try:
            for index, identifier in enumerate(items):
                if cancel_token.cancelled:
                    cancelled = True
                    break
                if settings.should_skip(identifier):
                    logger.debug("Skipping plugin (in skip list): %s", identifier)
                    self.store.record_result(
                        index, ItemStatus.SKIPPED, message="In skip list"
                    )
                    continue
                if not await self._acquire(permit, cancel_token):
                    cancelled = True
                    break
                try:
                    outcome = await self._process_item(index, identifier, settings, cancel_token)
                finally:
                    permit.release()
                if outcome.failure is FailureReason.CANCELLED:
                    cancelled = True
                    break
        except Exception as exc:
            logger.exception("Cleaning run aborted by an unexpected error")
            self._fail_running_item(str(exc))
            self.store.finish(RunStatus.FAILED, partial=True, error=str(exc))
            raise
        finally:
            watcher.cancel()

        if cancelled:
            logger.warning("Cleaning cancelled; remaining plugins left pending")
            if self.store.snapshot().status is RunStatus.RUNNING:
                self.store.mark_cancelling()
            self.store.finish(RunStatus.COMPLETED, partial=True)
        else:
            self.store.finish(RunStatus.COMPLETED)

        outcome = RunOutcome.from_state(self.store.snapshot())
        logger.info(
            "Cleaning finished: cleaned=%d, failed=%d, skipped=%d, pending=%d",
            outcome.cleaned,
            outcome.failed,
            outcome.skipped,
            outcome.pending,
        )
        return outcome

    async def _watch_cancel(self, cancel_token: CancelToken) -> None:
        # Show CANCELLING while the in-flight process is still being killed.
        await cancel_token.wait()
        if self.store.snapshot().status is RunStatus.RUNNING:
            logger.info("Cancellation observed; stopping current plugin")
            self.store.mark_cancelling()

    @staticmethod
    async def _acquire(permit: asyncio.Semaphore, cancel_token: CancelToken) -> bool:
        acquire_task = asyncio.ensure_future(permit.acquire())
        cancel_task = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({acquire_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
        if acquire_task.done() and not acquire_task.cancelled():
            if cancel_token.cancelled:
                permit.release()
                return False
            return True
        acquire_task.cancel()
        return False

    def _fail_running_item(self, message: str) -> None:
        state = self.store.snapshot()
        index = state.current_index
        if index is None or state.items[index].status is not ItemStatus.RUNNING:
            return
        self.store.record_result(
            index,
            ItemStatus.FAILED,
            message=f"Error: {message}",
            failure=FailureReason.UNKNOWN_EXIT,
        )

    async def _process_item(
        self,
        index: int,
        identifier: str,
        settings: RunSettings,
        cancel_token: CancelToken,
    ) -> ItemOutcome:
        self.store.mark_running(index)
        logger.info("Cleaning plugin %d: %s", index + 1, identifier)
        started = time.monotonic()
        outcome = await self._clean(identifier, settings, cancel_token)
        duration = time.monotonic() - started
        if outcome.status is ItemStatus.FAILED:
            logger.warning("Plugin %s failed: %s", identifier, outcome.message)
        else:
            logger.info("Plugin %s %s: %s", identifier, outcome.status.value, outcome.message)
        self.store.record_result(
            index,
            outcome.status,
            message=outcome.message,
            stats=outcome.stats,
            failure=outcome.failure,
            duration_seconds=duration,
        )
        return outcome

    async def _clean(
        self, identifier: str, settings: RunSettings, cancel_token: CancelToken
    ) -> ItemOutcome:
        if settings.xedit_path is None:
            raise ConfigurationError("xEdit executable is not configured.")
        logs = xedit_log_paths(settings.xedit_path, settings.game_mode)
        try:
            clear_logs(logs)
        except OSError as exc:
            return ItemOutcome(
                ItemStatus.FAILED,
                f"Could not clear stale xEdit logs: {exc}",
                failure=FailureReason.UNKNOWN_EXIT,
            )

        command = self.builder.build(
            settings.xedit_path,
            identifier,
            game_mode=settings.game_mode,
            launcher=settings.launcher_path,
            partial_forms=settings.partial_forms,
            timeout=settings.timeout_seconds,
        )
        try:
            result = await self.runner.execute(command, settings.timeout_seconds, cancel_token)
        except ProcessSpawnError as exc:
            if settings.launcher_path is not None:
                return ItemOutcome(
                    ItemStatus.FAILED,
                    f"Launcher failed: {exc}",
                    failure=FailureReason.LAUNCHER_FAILURE,
                )
            return ItemOutcome(ItemStatus.FAILED, str(exc), failure=FailureReason.UNKNOWN_EXIT)

        match result:
            case Cancelled():
                return ItemOutcome(
                    ItemStatus.FAILED,
                    FAILURE_MESSAGES[FailureReason.CANCELLED],
                    failure=FailureReason.CANCELLED,
                )
            case TimedOut(after=after):
                return ItemOutcome(
                    ItemStatus.FAILED,
                    f"Timed out after {after:.0f}s",
                    failure=FailureReason.TIMEOUT,
                )
            case Exited(code=0):
                try:
                    stats = self.parser.parse(logs.main).stats
                except ParseError as exc:
                    logger.warning("%s; recording zero statistics for %s", exc, identifier)
                    return ItemOutcome(
                        ItemStatus.CLEANED, f"Cleaned (no statistics: {exc})"
                    )
                return ItemOutcome(ItemStatus.CLEANED, stats.summary(), stats=stats)

        failure = self.parser.classify_failure(logs.exception)
        if failure is not None:
            return ItemOutcome(ItemStatus.FAILED, FAILURE_MESSAGES[failure], failure=failure)
        return ItemOutcome(
            ItemStatus.FAILED,
            f"xEdit exited with code {result.code}",
            failure=FailureReason.UNKNOWN_EXIT,
        )
