"""
Core package for LedgerSync providing the offline-first synchronization engine.

This package includes:

- :mod:`LedgerSync.core.model` – The transaction record and sample ledger data.
- :mod:`LedgerSync.core.database` – Local SQLite key-value store for the ledger and the last sync marker.
- :mod:`LedgerSync.core.connectivity` – Network reachability monitors.
- :mod:`LedgerSync.core.service` – Remote transaction service contract and its Google Sheets implementation.
- :mod:`LedgerSync.core.merge` – Identifier-based merge of local and pulled records.
- :mod:`LedgerSync.core.retry` – Bounded retry with exponential backoff.
- :mod:`LedgerSync.core.sync` – The sync orchestrator.
- :mod:`LedgerSync.core.signals` – Application-wide Qt signals.
"""
