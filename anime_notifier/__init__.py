"""
Anime airing notifier.

This package keeps a local copy of the anime airing calendar in sync with
the schedule provider and notifies subscribed users once an episode airs.
"""

__version__ = "0.1.0"

from .errors import DecodeError, ErrorKind, FetchError, NotifierError, PublishError, StoreError
from .models import NotificationEvent, ScheduleEntry
from .reconciler import ReconcileResult, reconcile
from .subscriptions import collect_due

__all__ = [
    "DecodeError",
    "ErrorKind",
    "FetchError",
    "NotificationEvent",
    "NotifierError",
    "PublishError",
    "ReconcileResult",
    "ScheduleEntry",
    "StoreError",
    "collect_due",
    "reconcile",
]
