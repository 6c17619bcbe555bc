"""
Adapters layer - External integrations (busy calendars, storage, notifications).
"""

from .file_busy_calendar import FileBusyCalendar
from .graph_client import GraphBusyCalendar
from .outbox import ConfirmationOutbox, IcsDirectorySink, LoggingSink
from .reservation_store import InMemoryReservationStore, JsonReservationStore

__all__ = [
    "ConfirmationOutbox",
    "FileBusyCalendar",
    "GraphBusyCalendar",
    "IcsDirectorySink",
    "InMemoryReservationStore",
    "JsonReservationStore",
    "LoggingSink",
]
