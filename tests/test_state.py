from pathlib import Path

import pytest

from autoqac.models import (
    CleaningStats,
    FailureReason,
    ItemStatus,
    RunSettings,
    RunStatus,
)
from autoqac.state import (
    CleaningFinished,
    CleaningStarted,
    ConfigurationChanged,
    OperationChanged,
    PluginProcessed,
    ProgressUpdated,
    SettingsChanged,
    StateReset,
    StateStore,
    StateTransitionError,
    SubscriberLagged,
)


def _started_store(items: list[str]) -> StateStore:
    store = StateStore()
    store.begin_run(items, RunSettings())
    return store


def test_mutations_emit_one_event_each_in_order() -> None:
    store = StateStore()
    stream = store.subscribe()

    store.begin_run(["A.esp", "B.esp"], RunSettings())
    store.mark_running(0)
    store.record_result(
        0, ItemStatus.CLEANED, message="1 ITMs", stats=CleaningStats(removed=1)
    )
    store.record_result(1, ItemStatus.SKIPPED, message="In skip list")
    store.finish(RunStatus.COMPLETED)

    events = stream.drain()
    assert [type(event) for event in events] == [
        CleaningStarted,
        ProgressUpdated,
        PluginProcessed,
        PluginProcessed,
        CleaningFinished,
    ]
    assert events[1] == ProgressUpdated(current=1, total=2, item="A.esp")
    finished = events[-1]
    assert isinstance(finished, CleaningFinished)
    assert finished.cleaned == 1
    assert finished.skipped == 1
    assert finished.aggregate == CleaningStats(removed=1)


def test_snapshot_is_immutable_value() -> None:
    store = _started_store(["A.esp"])
    before = store.snapshot()

    store.mark_running(0)

    assert before.items[0].status is ItemStatus.PENDING
    assert store.snapshot().items[0].status is ItemStatus.RUNNING
    assert store.snapshot().current_index == 0


def test_only_one_item_may_run_at_a_time() -> None:
    store = _started_store(["A.esp", "B.esp"])
    store.mark_running(0)

    with pytest.raises(StateTransitionError):
        store.mark_running(1)


def test_terminal_items_cannot_change() -> None:
    store = _started_store(["A.esp"])
    store.mark_running(0)
    store.record_result(0, ItemStatus.FAILED, message="x", failure=FailureReason.TIMEOUT)

    with pytest.raises(StateTransitionError):
        store.record_result(0, ItemStatus.CLEANED, message="again")
    with pytest.raises(StateTransitionError):
        store.mark_running(0)


def test_aggregate_only_counts_cleaned_items() -> None:
    store = _started_store(["A.esp", "B.esp"])
    store.mark_running(0)
    store.record_result(
        0, ItemStatus.CLEANED, message="ok", stats=CleaningStats(removed=2, undeleted=1)
    )
    store.mark_running(1)
    store.record_result(
        1,
        ItemStatus.FAILED,
        message="bad",
        stats=CleaningStats(removed=5),
        failure=FailureReason.UNKNOWN_EXIT,
    )

    assert store.snapshot().aggregate == CleaningStats(removed=2, undeleted=1)


def test_lifecycle_transitions_are_enforced() -> None:
    store = StateStore()

    with pytest.raises(StateTransitionError):
        store.finish(RunStatus.COMPLETED)
    with pytest.raises(StateTransitionError):
        store.mark_cancelling()

    store.begin_run(["A.esp"], RunSettings())
    with pytest.raises(StateTransitionError):
        store.begin_run(["B.esp"], RunSettings())
    with pytest.raises(StateTransitionError):
        store.reset()

    store.mark_running(0)
    with pytest.raises(StateTransitionError):
        store.finish(RunStatus.COMPLETED)


def test_cancel_sequence_ends_partial() -> None:
    store = _started_store(["A.esp", "B.esp"])
    stream = store.subscribe()
    store.mark_running(0)
    store.record_result(0, ItemStatus.FAILED, message="c", failure=FailureReason.CANCELLED)
    store.mark_cancelling()
    store.finish(RunStatus.COMPLETED, partial=True)

    state = store.snapshot()
    assert state.status is RunStatus.COMPLETED
    assert state.partial is True
    assert state.items[1].status is ItemStatus.PENDING
    events = stream.drain()
    assert OperationChanged("Cancelling...") in events
    assert isinstance(events[-1], CleaningFinished)
    assert events[-1].partial is True


def test_reset_clears_run_but_keeps_settings(tmp_path: Path) -> None:
    settings = RunSettings(xedit_path=tmp_path / "xEdit.exe")
    store = StateStore(settings)
    store.begin_run(["A.esp"], settings)
    store.record_result(0, ItemStatus.SKIPPED, message="In skip list")
    store.finish(RunStatus.COMPLETED)
    stream = store.subscribe()

    store.reset()

    state = store.snapshot()
    assert state.status is RunStatus.IDLE
    assert state.items == ()
    assert state.settings == settings
    assert stream.drain() == [StateReset()]


def test_update_settings_distinguishes_path_changes(tmp_path: Path) -> None:
    store = StateStore()
    stream = store.subscribe()
    configured = RunSettings(
        xedit_path=tmp_path / "xEdit.exe", load_order_path=tmp_path / "plugins.txt"
    )

    store.update_settings(configured)
    store.update_settings(RunSettings(
        xedit_path=configured.xedit_path,
        load_order_path=configured.load_order_path,
        timeout_seconds=60,
    ))

    assert stream.drain() == [ConfigurationChanged(is_fully_configured=True), SettingsChanged()]


def test_update_settings_rejected_while_running() -> None:
    store = _started_store(["A.esp"])

    with pytest.raises(StateTransitionError):
        store.update_settings(RunSettings(timeout_seconds=10))


def test_every_subscriber_sees_every_event() -> None:
    store = StateStore()
    first = store.subscribe()
    second = store.subscribe()

    store.begin_run(["A.esp"], RunSettings())
    store.set_operation("Loading")

    assert first.drain() == second.drain()
    assert store.subscriber_count == 2


def test_closed_stream_is_unsubscribed() -> None:
    store = StateStore()
    with store.subscribe() as stream:
        assert store.subscriber_count == 1

    store.begin_run(["A.esp"], RunSettings())

    assert store.subscriber_count == 0
    assert stream.get(timeout=0) is None


def test_overflow_drops_oldest_and_signals_lag() -> None:
    store = StateStore()
    stream = store.subscribe(maxsize=2)

    store.begin_run(["A.esp"], RunSettings())
    for index in range(4):
        store.set_operation(f"step {index}")

    events = stream.drain()
    assert events == [
        SubscriberLagged(missed=3),
        OperationChanged("step 2"),
        OperationChanged("step 3"),
    ]
    assert stream.total_missed == 3


def test_get_times_out_without_events() -> None:
    stream = StateStore().subscribe()

    assert stream.get(timeout=0.01) is None
