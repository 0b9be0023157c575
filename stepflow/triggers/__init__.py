"""
Stepflow Triggers

Trigger dispatch: scheduled, event-based and manual starts.
"""

from stepflow.triggers.dispatcher import MATCH_KEYS, TriggerDispatcher

__all__ = [
    "TriggerDispatcher",
    "MATCH_KEYS",
]
