"""
Logging subsystem for LedgerSync.

Modules:

- :mod:`LedgerSync.log.log` – Root logger setup, the in-memory :class:`HistoryHandler` keeping recent records and sync notifications, and the Qt message bridge.
"""
