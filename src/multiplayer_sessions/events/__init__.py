"""Event-driven notification components.

One ``EventBus`` per event kind; recorded sessions emit ``FieldChange`` payloads.
"""

from .bus import EventBus, Subscription
from .domain import FieldChange

__all__ = ["EventBus", "FieldChange", "Subscription"]
