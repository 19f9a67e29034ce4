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
from autoqac.state.store import EventStream, StateStore, StateTransitionError

__all__ = [
    "CleaningFinished",
    "CleaningStarted",
    "ConfigurationChanged",
    "EventStream",
    "OperationChanged",
    "PluginProcessed",
    "ProgressUpdated",
    "SettingsChanged",
    "StateChangeEvent",
    "StateReset",
    "StateStore",
    "StateTransitionError",
    "SubscriberLagged",
]
