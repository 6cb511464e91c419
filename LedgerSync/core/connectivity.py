"""Network reachability monitors.

A monitor exposes a one-shot :meth:`ConnectivityMonitor.current_status` query and
emits :attr:`ConnectivityMonitor.connectedChanged` on every online/offline
transition. The sync engine subscribes once at startup and triggers a sync cycle
whenever the network comes back.
"""
import logging
import socket
from typing import Callable, Optional

from PySide6 import QtCore, QtNetwork

DEFAULT_PROBE_HOST: str = 'sheets.googleapis.com'
DEFAULT_PROBE_PORT: int = 443
DEFAULT_PROBE_TIMEOUT: float = 3.0
DEFAULT_POLL_INTERVAL: int = 10  # seconds


class ConnectivityMonitor(QtCore.QObject):
    """Base class for reachability monitors.

    Signals:
        connectedChanged (bool): Emitted when the reachability state changes.
    """
    connectedChanged = QtCore.Signal(bool)

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self._connected: Optional[bool] = None

    def current_status(self) -> bool:
        """Return True if the network is currently reachable."""
        raise NotImplementedError

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Subscribe to reachability transitions.

        Args:
            callback: Called with the new state on every transition.

        Returns:
            A callable that removes the subscription.
        """
        self.connectedChanged.connect(callback)

        def unsubscribe() -> None:
            try:
                self.connectedChanged.disconnect(callback)
            except (RuntimeError, TypeError):
                logging.debug('Connectivity callback was already disconnected.')

        return unsubscribe

    def _set_connected(self, connected: bool) -> None:
        """Record the state and emit connectedChanged on transitions only."""
        connected = bool(connected)
        if connected == self._connected:
            return
        self._connected = connected
        logging.info(f'Network is {"online" if connected else "offline"}.')
        self.connectedChanged.emit(connected)


class ManualConnectivityMonitor(ConnectivityMonitor):
    """Monitor whose state is set explicitly, e.g. to force offline operation."""

    def __init__(self, connected: bool = True, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self._connected = bool(connected)

    def current_status(self) -> bool:
        return bool(self._connected)

    def set_connected(self, connected: bool) -> None:
        """Change the state, emitting connectedChanged if it differs."""
        self._set_connected(connected)


def probe(host: str = DEFAULT_PROBE_HOST, port: int = DEFAULT_PROBE_PORT,
          timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """Attempt a TCP connection to ``host:port``.

    Returns:
        bool: True if the connection succeeded within ``timeout`` seconds.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as ex:
        logging.debug(f'Connectivity probe to {host}:{port} failed: {ex}')
        return False


class NetworkConnectivityMonitor(ConnectivityMonitor):
    """Reachability monitor backed by Qt's network information backend.

    If no QNetworkInformation backend with reachability support can be loaded on
    this platform, or ``use_backend`` is False, the monitor polls a TCP probe on a
    timer instead.
    """

    def __init__(
            self,
            probe_host: str = DEFAULT_PROBE_HOST,
            probe_port: int = DEFAULT_PROBE_PORT,
            probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
            poll_interval: int = DEFAULT_POLL_INTERVAL,
            use_backend: bool = True,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent)
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.probe_timeout = probe_timeout

        self._info: Optional[QtNetwork.QNetworkInformation] = None
        self._timer: Optional[QtCore.QTimer] = None

        if use_backend and QtNetwork.QNetworkInformation.loadBackendByFeatures(
                QtNetwork.QNetworkInformation.Feature.Reachability):
            self._info = QtNetwork.QNetworkInformation.instance()
            logging.debug(f'Using QNetworkInformation backend "{self._info.backendName()}".')
            self._info.reachabilityChanged.connect(self._on_reachability_changed)
            self._connected = self._is_online(self._info.reachability())
        else:
            logging.debug(
                f'No QNetworkInformation backend available, polling {probe_host}:{probe_port} '
                f'every {poll_interval}s.'
            )
            self._timer = QtCore.QTimer(self)
            self._timer.setInterval(poll_interval * 1000)
            self._timer.timeout.connect(self.poll)
            self._timer.start()

    @staticmethod
    def _is_online(reachability: QtNetwork.QNetworkInformation.Reachability) -> bool:
        return reachability == QtNetwork.QNetworkInformation.Reachability.Online

    @QtCore.Slot(QtNetwork.QNetworkInformation.Reachability)
    def _on_reachability_changed(self, reachability: QtNetwork.QNetworkInformation.Reachability) -> None:
        self._set_connected(self._is_online(reachability))

    @QtCore.Slot()
    def poll(self) -> None:
        """Run the TCP probe and emit on transitions."""
        self._set_connected(probe(self.probe_host, self.probe_port, self.probe_timeout))

    def current_status(self) -> bool:
        if self._info is not None:
            return self._is_online(self._info.reachability())
        connected = probe(self.probe_host, self.probe_port, self.probe_timeout)
        # Transitions are only emitted from the owning thread
        if QtCore.QThread.currentThread() == self.thread():
            self._set_connected(connected)
        return connected
