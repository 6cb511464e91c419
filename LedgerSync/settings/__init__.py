"""
Settings package: configuration API and schema validation.

This package provides:

- :mod:`LedgerSync.settings.lib` – Application paths, the sync.json schema and :class:`SettingsAPI`.
"""
