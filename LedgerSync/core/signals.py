"""Application-wide Qt signals for LedgerSync.

Only events that cross module boundaries live here. Sync progress and ledger
changes are emitted by the :class:`~LedgerSync.core.sync.SyncAPI` instance
itself.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals shared by the settings and the sync engine."""
    configSectionChanged = QtCore.Signal(str)  # Section name

    def __init__(self):
        super().__init__()


signals = Signals()
