"""Offline-first sync: remote backend, device conditions, notifications.

The orchestrator, backups and trigger modules are imported from their own
submodules (they depend on the core layer).
"""

from .backend import FolderBackend, RemoteBackend
from .conditions import DeviceConditions, SystemConditions, is_in_quiet_hours
from .notifications import LogNotifier, Notifier

__all__ = [
    "DeviceConditions",
    "FolderBackend",
    "LogNotifier",
    "Notifier",
    "RemoteBackend",
    "SystemConditions",
    "is_in_quiet_hours",
]
