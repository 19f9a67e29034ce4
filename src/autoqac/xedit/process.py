from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import time
from collections.abc import Callable
from typing import Any

from autoqac.cancel import CancelToken
from autoqac.xedit.base import (
    Cancelled,
    Exited,
    ProcessOutcome,
    ProcessRunner,
    ProcessSpawnError,
    TimedOut,
)
from autoqac.xedit.command import CleaningCommand

logger = logging.getLogger(__name__)

ProcessEventHook = Callable[[dict[str, Any]], None]


def _session_kwargs() -> dict[str, Any]:
    # A fresh process group lets a kill reach the launcher's child as well.
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


class AsyncProcessRunner(ProcessRunner):
    def __init__(
        self,
        *,
        kill_grace_seconds: float = 5.0,
        event_hook: ProcessEventHook | None = None,
    ) -> None:
        self.kill_grace_seconds = kill_grace_seconds
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    async def execute(
        self,
        command: CleaningCommand,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> ProcessOutcome:
        limit = command.timeout if timeout is None else timeout
        argv = command.argv()
        if cancel_token is not None and cancel_token.cancelled:
            return Cancelled()

        self._emit({"event": "xedit_process_start", "argv": argv, "timeout": limit})
        logger.info("Executing: %s", command.display())
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                **_session_kwargs(),
            )
        except OSError as exc:
            raise ProcessSpawnError(f"Failed to start {argv[0]}: {exc}") from exc

        wait_task = asyncio.ensure_future(process.wait())
        waiters: set[asyncio.Future[Any]] = {wait_task}
        cancel_task: asyncio.Future[None] | None = None
        if cancel_token is not None:
            cancel_task = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_task)

        finished = False
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=limit, return_when=asyncio.FIRST_COMPLETED
            )
            if wait_task in done:
                finished = True
                code = wait_task.result()
                elapsed = time.monotonic() - started
                self._emit(
                    {"event": "xedit_process_exit", "exit_code": code, "elapsed": elapsed}
                )
                logger.info("xEdit exited with code %d after %.2fs", code, elapsed)
                return Exited(code)

            outcome: ProcessOutcome
            if cancel_task is not None and cancel_task in done:
                outcome = Cancelled()
                self._emit({"event": "xedit_process_cancelled", "pid": process.pid})
                logger.warning("Cancelling xEdit process %d", process.pid)
            else:
                outcome = TimedOut(after=limit)
                self._emit({"event": "xedit_process_timeout", "pid": process.pid})
                logger.warning("xEdit process %d timed out after %.1fs", process.pid, limit)
            return outcome
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            if not finished:
                await self._terminate(process, wait_task)

    async def _terminate(
        self, process: asyncio.subprocess.Process, wait_task: asyncio.Future[int]
    ) -> None:
        if process.returncode is None:
            await self._kill_tree(process)
        try:
            await asyncio.wait_for(asyncio.shield(wait_task), self.kill_grace_seconds)
        except TimeoutError:
            wait_task.cancel()
            self._emit({"event": "xedit_process_kill_timeout", "pid": process.pid})
            logger.error(
                "xEdit process %d did not exit within %.1fs of being killed",
                process.pid,
                self.kill_grace_seconds,
            )

    async def _kill_tree(self, process: asyncio.subprocess.Process) -> None:
        if os.name == "nt":
            try:
                killer = await asyncio.create_subprocess_exec(
                    "taskkill",
                    "/T",
                    "/F",
                    "/PID",
                    str(process.pid),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await asyncio.wait_for(killer.wait(), self.kill_grace_seconds)
                return
            except (OSError, TimeoutError) as exc:
                logger.warning("taskkill failed for %d: %s", process.pid, exc)
        else:
            try:
                os.killpg(process.pid, signal.SIGKILL)
                return
            except ProcessLookupError:
                return
            except PermissionError as exc:
                logger.warning("killpg failed for %d: %s", process.pid, exc)
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("xEdit process %d already exited", process.pid)
