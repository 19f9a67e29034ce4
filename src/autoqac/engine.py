from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Sequence

from autoqac.cancel import CancelToken
from autoqac.load_order import read_load_order
from autoqac.models import ConfigurationError, RunOutcome, RunSettings, RunState
from autoqac.orchestrator import Orchestrator
from autoqac.state.events import StateChangeEvent
from autoqac.state.store import DEFAULT_STREAM_SIZE, EventStream, StateStore

logger = logging.getLogger(__name__)


class CleaningEngine:
    """Thread-facing entry point for callers without an event loop.

    Each run gets a worker thread running its own loop. Everything else on
    this class is safe to call from any thread while that run is going.
    """

    def __init__(
        self,
        store: StateStore | None = None,
        orchestrator: Orchestrator | None = None,
    ) -> None:
        self.store = store or StateStore()
        self.orchestrator = orchestrator or Orchestrator(self.store)
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._cancel_token: CancelToken | None = None
        self._outcome: RunOutcome | None = None
        self._error: Exception | None = None

    @property
    def is_running(self) -> bool:
        worker = self._worker
        return worker is not None and worker.is_alive()

    def snapshot(self) -> RunState:
        return self.store.snapshot()

    def subscribe(self, maxsize: int = DEFAULT_STREAM_SIZE) -> EventStream:
        return self.store.subscribe(maxsize)

    def update_settings(self, settings: RunSettings) -> StateChangeEvent:
        return self.store.update_settings(settings)

    def reset(self) -> StateChangeEvent:
        return self.store.reset()

    def start(self, settings: RunSettings, items: Sequence[str] | None = None) -> None:
        settings.validate(require_load_order=items is None)
        with self._lock:
            if self.is_running or self.store.snapshot().status.active:
                raise ConfigurationError("A cleaning run is already in progress.")
            if items is None:
                if settings.load_order_path is None:
                    raise ConfigurationError("Load order file is not configured.")
                items = read_load_order(settings.load_order_path)
            if not items:
                raise ConfigurationError("No plugins to clean.")

            token = CancelToken()
            self._cancel_token = token
            self._outcome = None
            self._error = None
            worker = threading.Thread(
                target=self._run_worker,
                args=(list(items), settings, token),
                name="autoqac-cleaning",
                daemon=True,
            )
            self._worker = worker
            worker.start()
        logger.info("Cleaning worker started for %d plugins", len(items))

    def _run_worker(self, items: list[str], settings: RunSettings, token: CancelToken) -> None:
        try:
            self._outcome = asyncio.run(self.orchestrator.run(items, settings, token))
        except Exception as exc:
            logger.error("Cleaning worker stopped with an error: %s", exc)
            self._error = exc

    def cancel(self) -> bool:
        """Request cancellation of the current run; safe to call repeatedly."""
        token = self._cancel_token
        if token is None or not self.is_running:
            return False
        requested = token.cancel()
        if requested:
            logger.info("Cancellation requested")
        return requested

    def wait(self, timeout: float | None = None) -> RunOutcome | None:
        worker = self._worker
        if worker is None:
            return None
        worker.join(timeout)
        if worker.is_alive():
            return None
        if self._error is not None:
            raise self._error
        return self._outcome
