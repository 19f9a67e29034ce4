import asyncio
import sys
from pathlib import Path

from autoqac.metrics import RunMetrics
from autoqac.models import CleaningStats, ItemStatus, RunSettings, RunStatus
from autoqac.state import CleaningStarted, PluginProcessed, StateStore
from autoqac.xedit.command import CleaningCommand
from autoqac.xedit.process import AsyncProcessRunner


def test_counts_plugins_and_cleaning_time() -> None:
    metrics = RunMetrics()

    metrics.record_event(CleaningStarted(total=4))
    metrics.record_event(PluginProcessed("A.esp", ItemStatus.CLEANED, "1 ITMs", 2.0))
    metrics.record_event(PluginProcessed("B.esp", ItemStatus.CLEANED, "Nothing to clean", 4.0))
    metrics.record_event(PluginProcessed("C.esp", ItemStatus.FAILED, "Timed out", 300.0))
    metrics.record_event(PluginProcessed("D.esm", ItemStatus.SKIPPED, "In skip list"))

    assert metrics.plugins_cleaned == 2
    assert metrics.plugins_failed == 1
    assert metrics.plugins_skipped == 1
    assert metrics.total_cleaning_seconds == 6.0
    assert metrics.average_cleaning_seconds == 3.0
    assert metrics.state_events == 5


def test_average_is_zero_without_cleaned_plugins() -> None:
    assert RunMetrics().average_cleaning_seconds == 0.0


def test_lagged_subscriber_counts_dropped_events() -> None:
    store = StateStore()
    stream = store.subscribe(maxsize=1)
    metrics = RunMetrics()

    store.begin_run(["A.esp", "B.esp"], RunSettings())
    store.record_result(0, ItemStatus.SKIPPED, message="In skip list")
    store.record_result(1, ItemStatus.SKIPPED, message="In skip list")
    store.finish(RunStatus.COMPLETED)
    for event in stream.drain():
        metrics.record_event(event)

    assert metrics.events_dropped == 3
    assert metrics.events_dropped == stream.total_missed
    assert metrics.state_events == 1


def test_recorded_durations_flow_from_store_events() -> None:
    store = StateStore()
    stream = store.subscribe()
    metrics = RunMetrics()

    store.begin_run(["A.esp"], RunSettings())
    store.mark_running(0)
    store.record_result(
        0,
        ItemStatus.CLEANED,
        message="1 ITMs",
        stats=CleaningStats(removed=1),
        duration_seconds=1.5,
    )
    for event in stream.drain():
        metrics.record_event(event)

    assert metrics.total_cleaning_seconds == 1.5


def test_process_telemetry_reaches_metrics_through_event_hook() -> None:
    metrics = RunMetrics()
    runner = AsyncProcessRunner(event_hook=metrics.record_process_event)
    command = CleaningCommand(
        executable=Path(sys.executable), arguments=("-c", "pass"), timeout=30
    )

    asyncio.run(runner.execute(command))
    asyncio.run(runner.execute(command, timeout=30))

    assert metrics.process_count("start") == 2
    assert metrics.process_count("exit") == 2
    assert metrics.process_count("timeout") == 0
    assert metrics.process_seconds > 0
    payload = metrics.to_dict()
    assert payload["process_events"] == {"xedit_process_start": 2, "xedit_process_exit": 2}
