"""
LedgerSync: offline-first synchronization engine for a personal transaction ledger.

This package provides:

- :mod:`LedgerSync.core` – The transaction model, local store, connectivity monitors, remote service and sync orchestrator.
- :mod:`LedgerSync.settings` – Settings management and schema validation for ``sync.json``.
- :mod:`LedgerSync.status` – Status codes and exceptions.
- :mod:`LedgerSync.log` – Application logging.

Use :func:`LedgerSync.exec_` to run the headless sync service.
"""

import sys

from PySide6 import QtCore

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('LedgerSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'Gergely Wootsch'
__license__ = 'GPL-3.0'
__copyright__ = 'Copyright (C) 2025 Gergely Wootsch'
__description__ = 'LedgerSync: offline-first synchronization of a personal transaction ledger with Google Sheets.'
__url__ = 'https://github.com/wgergely/LedgerSync'
__email__ = 'hello+LedgerSync@gergely-wootsch.com'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run the sync service and enter the Qt event loop.

    Loads the settings and the local ledger, then syncs on start and on every
    reconnect until the application quits.
    """
    from .core.connectivity import NetworkConnectivityMonitor
    from .core.database import LedgerStore
    from .core.service import SheetsTransactionService
    from .core.sync import SyncAPI
    from .settings.lib import SettingsAPI

    app = QtCore.QCoreApplication(sys.argv)

    settings = SettingsAPI()
    store = LedgerStore(settings.db_path)
    service = SheetsTransactionService.from_settings(settings)

    config = settings.get_section('connectivity')
    monitor = NetworkConnectivityMonitor(
        probe_host=config['probe_host'],
        probe_port=config['probe_port'],
        probe_timeout=config['probe_timeout'],
        poll_interval=config['poll_interval'],
        parent=app,
    )

    api = SyncAPI.from_settings(settings, store, service, monitor, parent=app)
    app.aboutToQuit.connect(api.shutdown)

    QtCore.QTimer.singleShot(0, api.start)

    sys.exit(app.exec())


if __name__ == '__main__':
    exec_()
