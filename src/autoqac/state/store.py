from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator, Sequence
from dataclasses import replace

from autoqac.models import (
    CleaningStats,
    FailureReason,
    ItemStatus,
    RunSettings,
    RunState,
    RunStatus,
    WorkItem,
)
from autoqac.state.events import (
    CleaningFinished,
    CleaningStarted,
    ConfigurationChanged,
    OperationChanged,
    PluginProcessed,
    ProgressUpdated,
    SettingsChanged,
    StateChangeEvent,
    StateReset,
    SubscriberLagged,
)

logger = logging.getLogger(__name__)

DEFAULT_STREAM_SIZE = 256

Transform = Callable[[RunState], tuple[RunState, StateChangeEvent]]

_ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.IDLE: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.CANCELLING, RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.CANCELLING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.COMPLETED: {RunStatus.IDLE},
    RunStatus.FAILED: {RunStatus.IDLE},
}


class StateTransitionError(RuntimeError):
    """Raised when a mutation would break the run lifecycle."""


class EventStream:
    """Bounded per-subscriber queue.

    When full, the oldest queued event is discarded and the consumer receives a
    ``SubscriberLagged`` carrying the number of discarded events before the
    next retained one.
    """

    def __init__(self, maxsize: int, on_close: Callable[[EventStream], None]) -> None:
        if maxsize < 1:
            raise ValueError("EventStream maxsize must be at least 1.")
        self.maxsize = maxsize
        self._events: deque[StateChangeEvent] = deque()
        self._missed = 0
        self._total_missed = 0
        self._closed = False
        self._condition = threading.Condition()
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def total_missed(self) -> int:
        return self._total_missed

    def _put(self, event: StateChangeEvent) -> None:
        with self._condition:
            if self._closed:
                return
            if len(self._events) >= self.maxsize:
                self._events.popleft()
                self._missed += 1
                self._total_missed += 1
            self._events.append(event)
            self._condition.notify()

    def _take(self) -> StateChangeEvent | SubscriberLagged | None:
        if self._missed:
            lagged = SubscriberLagged(missed=self._missed)
            self._missed = 0
            return lagged
        if self._events:
            return self._events.popleft()
        return None

    def get(self, timeout: float | None = None) -> StateChangeEvent | SubscriberLagged | None:
        """Block until an event is available; ``None`` on timeout or close."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while True:
                item = self._take()
                if item is not None:
                    return item
                if self._closed:
                    return None
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._condition.wait(remaining)

    def get_nowait(self) -> StateChangeEvent | SubscriberLagged | None:
        with self._condition:
            return self._take()

    def drain(self) -> list[StateChangeEvent | SubscriberLagged]:
        drained: list[StateChangeEvent | SubscriberLagged] = []
        with self._condition:
            while (item := self._take()) is not None:
                drained.append(item)
        return drained

    def close(self) -> None:
        with self._condition:
            if self._closed:
                return
            self._closed = True
            self._condition.notify_all()
        self._on_close(self)

    def __iter__(self) -> Iterator[StateChangeEvent | SubscriberLagged]:
        while (item := self.get()) is not None:
            yield item

    def __enter__(self) -> EventStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class StateStore:
    """Single owner of ``RunState``.

    Readers get the current immutable value without locking. Writers go
    through ``mutate``; the new state is published and its event queued on
    every stream inside the same critical section.
    """

    def __init__(self, settings: RunSettings | None = None) -> None:
        self._lock = threading.Lock()
        self._state = RunState(settings=settings or RunSettings())
        self._streams: tuple[EventStream, ...] = ()

    def snapshot(self) -> RunState:
        return self._state

    def subscribe(self, maxsize: int = DEFAULT_STREAM_SIZE) -> EventStream:
        stream = EventStream(maxsize, on_close=self._unsubscribe)
        with self._lock:
            self._streams = (*self._streams, stream)
        return stream

    def _unsubscribe(self, stream: EventStream) -> None:
        with self._lock:
            self._streams = tuple(item for item in self._streams if item is not stream)

    @property
    def subscriber_count(self) -> int:
        return len(self._streams)

    def mutate(self, transform: Transform) -> StateChangeEvent:
        with self._lock:
            new_state, event = transform(self._state)
            self._state = new_state
            for stream in self._streams:
                stream._put(event)
        logger.debug("state event: %s", event)
        return event

    @staticmethod
    def _check_transition(current: RunStatus, target: RunStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise StateTransitionError(
                f"Illegal run status transition: {current.value} -> {target.value}"
            )

    @staticmethod
    def _item(state: RunState, index: int) -> WorkItem:
        if not 0 <= index < len(state.items):
            raise StateTransitionError(f"No work item at index {index}.")
        return state.items[index]

    @staticmethod
    def _replace_item(state: RunState, index: int, item: WorkItem) -> tuple[WorkItem, ...]:
        items = list(state.items)
        items[index] = item
        return tuple(items)

    def update_settings(self, settings: RunSettings) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            if state.status.active:
                raise StateTransitionError("Settings cannot change while a run is active.")
            previous = state.settings
            paths_changed = (
                previous.xedit_path != settings.xedit_path
                or previous.load_order_path != settings.load_order_path
                or previous.launcher_path != settings.launcher_path
            )
            event: StateChangeEvent
            if paths_changed:
                event = ConfigurationChanged(is_fully_configured=settings.is_fully_configured)
            else:
                event = SettingsChanged()
            return replace(state, settings=settings), event

        return self.mutate(_transform)

    def begin_run(self, identifiers: Sequence[str], settings: RunSettings) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            self._check_transition(state.status, RunStatus.RUNNING)
            items = tuple(WorkItem(identifier=identifier) for identifier in identifiers)
            new_state = RunState(
                items=items,
                status=RunStatus.RUNNING,
                settings=settings,
                current_operation="Starting cleaning...",
            )
            return new_state, CleaningStarted(total=len(items))

        return self.mutate(_transform)

    def mark_running(self, index: int) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            if state.status is not RunStatus.RUNNING:
                raise StateTransitionError(
                    f"Cannot start an item while run is {state.status.value}."
                )
            item = self._item(state, index)
            if item.status is not ItemStatus.PENDING:
                raise StateTransitionError(
                    f"Item {item.identifier} is {item.status.value}, expected pending."
                )
            if state.running_items:
                raise StateTransitionError(
                    f"Item {state.running_items[0].identifier} is still running."
                )
            new_state = replace(
                state,
                items=self._replace_item(state, index, replace(item, status=ItemStatus.RUNNING)),
                current_index=index,
                current_operation=f"Cleaning {item.identifier}...",
            )
            return new_state, ProgressUpdated(
                current=index + 1, total=len(state.items), item=item.identifier
            )

        return self.mutate(_transform)

    def record_result(
        self,
        index: int,
        status: ItemStatus,
        *,
        message: str,
        stats: CleaningStats | None = None,
        failure: FailureReason | None = None,
        duration_seconds: float | None = None,
    ) -> StateChangeEvent:
        if not status.terminal:
            raise StateTransitionError(f"{status.value} is not a terminal item status.")

        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            if not state.status.active:
                raise StateTransitionError(
                    f"Cannot record a result while run is {state.status.value}."
                )
            item = self._item(state, index)
            if item.status.terminal:
                raise StateTransitionError(
                    f"Item {item.identifier} is already {item.status.value}."
                )
            item_stats = stats if stats is not None else CleaningStats()
            finished = replace(
                item,
                status=status,
                stats=item_stats,
                failure=failure,
                message=message,
                duration_seconds=duration_seconds,
            )
            aggregate = state.aggregate
            if status is ItemStatus.CLEANED:
                aggregate = aggregate + item_stats
            new_state = replace(
                state,
                items=self._replace_item(state, index, finished),
                current_index=index,
                aggregate=aggregate,
            )
            return new_state, PluginProcessed(
                item=item.identifier,
                status=status,
                message=message,
                duration_seconds=duration_seconds,
            )

        return self.mutate(_transform)

    def set_operation(self, operation: str) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            return replace(state, current_operation=operation), OperationChanged(operation)

        return self.mutate(_transform)

    def mark_cancelling(self) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            self._check_transition(state.status, RunStatus.CANCELLING)
            operation = "Cancelling..."
            new_state = replace(
                state, status=RunStatus.CANCELLING, current_operation=operation
            )
            return new_state, OperationChanged(operation)

        return self.mutate(_transform)

    def finish(
        self, status: RunStatus, *, partial: bool = False, error: str | None = None
    ) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            self._check_transition(state.status, status)
            if state.running_items:
                raise StateTransitionError(
                    f"Item {state.running_items[0].identifier} is still running."
                )
            new_state = replace(
                state,
                status=status,
                partial=partial,
                error=error,
                current_operation="",
            )
            return new_state, CleaningFinished(
                aggregate=new_state.aggregate,
                status=status,
                partial=partial,
                cleaned=new_state.count(ItemStatus.CLEANED),
                failed=new_state.count(ItemStatus.FAILED),
                skipped=new_state.count(ItemStatus.SKIPPED),
            )

        return self.mutate(_transform)

    def reset(self) -> StateChangeEvent:
        def _transform(state: RunState) -> tuple[RunState, StateChangeEvent]:
            if state.status.active:
                raise StateTransitionError("Cannot reset while a run is active.")
            return RunState(settings=state.settings), StateReset()

        return self.mutate(_transform)
