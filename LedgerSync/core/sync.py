"""Sync orchestrator for the offline-first ledger.

:class:`SyncAPI` owns the in-memory transaction collection and is its only
writer. Every sync cycle pushes the unsynced records first, then pulls records
created since the last successful pull and merges them in:

1. Query connectivity. When offline, report it and stop; nothing is called remotely.
2. Collect the unsynced records. If there are none, skip to the pull.
3. Push them with bounded retry and exponential backoff (1, 2, 4, 8, 16 time units
   over 5 attempts). On success flag exactly the pushed records as synced in one
   atomic write. If every attempt fails, stop; nothing is flagged.
4. Pull records created after ``lastSyncTime``, merge them and persist the merged
   set together with the new ``lastSyncTime`` in one atomic write. A failed pull is
   reported but keeps the push results.

At most one cycle runs at a time. A request that arrives while a cycle is in flight
is dropped, not queued: the next add or reconnect re-evaluates the unsynced set.

Every change to the collection is written to the store while the collection lock
is held, so the store always receives snapshots in the order they were taken.
"""
import dataclasses
import datetime
import enum
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from PySide6 import QtCore

from .connectivity import ConnectivityMonitor
from .database import LedgerStore
from .merge import merge
from .model import Transaction, TransactionKind, format_timestamp, now, sample_transactions
from .retry import MAX_ATTEMPTS, exponential_backoff, with_retry
from .service import RemoteTransactionService
from .signals import signals
from ..log.log import log_sync_status
from ..status import status

# Configuration problems are not transient and are never retried
NON_RETRYABLE_EXCEPTIONS: Tuple[type, ...] = (
    status.CredentialsNotFoundException,
    status.SpreadsheetIdNotConfiguredException,
    status.WorksheetNotConfiguredException,
    status.WorksheetNotFoundException,
    status.HeadersInvalidException,
)


class SyncState(enum.StrEnum):
    """Lifecycle state of the orchestrator."""
    Idle = 'idle'
    Syncing = 'syncing'


class SyncStatus(enum.StrEnum):
    """Progress notifications emitted at each phase boundary."""
    Starting = 'starting'
    Offline = 'offline'
    Uploading = 'uploading'
    UploadSucceeded = 'upload-succeeded'
    UploadRetrying = 'upload-failed-retrying'
    UploadFailed = 'upload-failed'
    DownloadSucceeded = 'download-succeeded'
    Error = 'error'
    Finished = 'finished'


FAILURE_STATUSES = (SyncStatus.UploadFailed, SyncStatus.Error)


class SyncOutcome(enum.StrEnum):
    """Terminal result of a sync request."""
    Skipped = 'skipped'
    Offline = 'offline'
    Succeeded = 'succeeded'
    PushFailed = 'push-failed'
    PullFailed = 'pull-failed'
    PersistenceFailed = 'persistence-failed'
    Failed = 'failed'


@dataclasses.dataclass
class SyncResult:
    """Summary of one sync request.

    Attributes:
        outcome: How the cycle ended.
        pushed: Number of records confirmed by the remote store.
        pulled: Number of new records merged into the ledger.
        attempts: Number of push attempts made.
        error: Message of the error that ended or degraded the cycle.
    """
    outcome: SyncOutcome
    pushed: int = 0
    pulled: int = 0
    attempts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == SyncOutcome.Succeeded


class SyncWorker(QtCore.QThread):
    """
    Worker thread running a single sync cycle.

    Signals:
        resultReady (object): Emitted with the SyncResult when the cycle completes.
    """
    resultReady = QtCore.Signal(object)

    def __init__(self, func: Callable[[], SyncResult], parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.func = func

    def run(self) -> None:
        self.resultReady.emit(self.func())


class SyncAPI(QtCore.QObject):
    """Offline-first synchronization engine for the transaction ledger.

    Construct one instance at startup and hand it to every consumer. The presentation
    layer reads :attr:`transactions` and :attr:`is_syncing` (or listens to the signals)
    and requests changes through :meth:`add_transaction` and :meth:`trigger_sync`.

    Signals:
        transactionsChanged (list): Emitted with a snapshot after the collection changes.
        syncingChanged (bool): Emitted when a cycle starts or ends.
        statusChanged (str, str): Emitted with a SyncStatus and a message at each phase boundary.
        syncFinished (object): Emitted with the SyncResult of every completed cycle.
    """
    transactionsChanged = QtCore.Signal(list)
    syncingChanged = QtCore.Signal(bool)
    statusChanged = QtCore.Signal(str, str)
    syncFinished = QtCore.Signal(object)

    def __init__(
            self,
            store: LedgerStore,
            service: RemoteTransactionService,
            monitor: ConnectivityMonitor,
            max_attempts: int = MAX_ATTEMPTS,
            backoff: Callable[[int], float] = exponential_backoff(),
            sleep: Callable[[float], Any] = time.sleep,
            clock: Callable[[], datetime.datetime] = now,
            asynchronous: bool = True,
            seed_samples: bool = True,
            parent: Optional[QtCore.QObject] = None,
    ) -> None:
        """
        Args:
            store: Local ledger store.
            service: Remote transaction service.
            monitor: Connectivity monitor.
            max_attempts: Push attempts per cycle.
            backoff: Delay, in seconds, after each failed push attempt.
            sleep: Blocking sleep used between push attempts.
            clock: Wall clock used to stamp ``lastSyncTime``.
            asynchronous: Run triggered cycles on a worker thread. If False, they run inline.
            seed_samples: Seed an empty ledger with sample transactions on start.
            parent: Optional Qt parent.
        """
        super().__init__(parent)
        self._store = store
        self._service = service
        self._monitor = monitor
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._sleep = sleep
        self._clock = clock
        self._asynchronous = asynchronous
        self._seed_samples = seed_samples

        self._transactions: List[Transaction] = []
        self._data_lock = threading.RLock()

        self._state = SyncState.Idle
        self._state_lock = threading.Lock()

        self._worker: Optional[SyncWorker] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_result: Optional[SyncResult] = None
        self._settings: Any = None

    @classmethod
    def from_settings(
            cls,
            settings: Any,
            store: LedgerStore,
            service: RemoteTransactionService,
            monitor: ConnectivityMonitor,
            **kwargs: Any
    ) -> 'SyncAPI':
        """Create the orchestrator using the ``sync`` section of a SettingsAPI.

        The orchestrator follows later edits of that section until :meth:`shutdown`.
        """
        config = settings.get_section('sync')
        kwargs.setdefault('max_attempts', config['max_attempts'])
        kwargs.setdefault('backoff', exponential_backoff(config['backoff_base'], config['backoff_factor']))
        kwargs.setdefault('seed_samples', config['seed_sample_data'])
        api = cls(store, service, monitor, **kwargs)
        api._settings = settings
        signals.configSectionChanged.connect(api._on_config_section_changed)
        return api

    def apply_sync_config(self, config: Dict[str, Any]) -> None:
        """Use the retry and seeding parameters of a ``sync`` section from the next cycle on."""
        self._max_attempts = config['max_attempts']
        self._backoff = exponential_backoff(config['backoff_base'], config['backoff_factor'])
        self._seed_samples = config['seed_sample_data']
        logging.info(
            f'Sync settings updated: {self._max_attempts} attempts, '
            f'backoff {config["backoff_base"]:g}x{config["backoff_factor"]:g}.'
        )

    @QtCore.Slot(str)
    def _on_config_section_changed(self, section_name: str) -> None:
        if section_name == 'sync' and self._settings is not None:
            self.apply_sync_config(self._settings.get_section('sync'))

    # ------------------------------------------------------------------ read-only views

    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        """Snapshot of the current transaction collection."""
        with self._data_lock:
            return tuple(self._transactions)

    def unsynced_transactions(self) -> List[Transaction]:
        """Return the records not yet confirmed by the remote store."""
        with self._data_lock:
            return [tx for tx in self._transactions if not tx.synced]

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state == SyncState.Syncing

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    # ------------------------------------------------------------------ lifecycle

    def load(self) -> None:
        """Load the ledger from the store, seeding sample data on first run.

        Raises:
            status.PersistenceException: If the store cannot be read or the seed cannot be saved.
        """
        transactions = self._store.load_all()
        if not transactions and self._seed_samples:
            logging.info('Ledger is empty. Seeding sample transactions.')
            transactions = sample_transactions()
            self._store.save_all(transactions)

        with self._data_lock:
            self._transactions = list(transactions)
        logging.info(f'Loaded {len(transactions)} transactions.')
        self._emit_transactions()

    @QtCore.Slot()
    def start(self) -> None:
        """Load the ledger, subscribe to connectivity changes and trigger the first sync."""
        self.load()
        if self._unsubscribe is None:
            self._unsubscribe = self._monitor.on_change(self._on_connectivity_changed)
        self.trigger_sync()

    @QtCore.Slot()
    def shutdown(self, timeout_ms: Optional[int] = None) -> None:
        """Unsubscribe from connectivity and settings changes and wait for an in-flight cycle."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._settings is not None:
            signals.configSectionChanged.disconnect(self._on_config_section_changed)
            self._settings = None
        if not self.wait(timeout_ms):
            logging.warning('Shutting down with a sync cycle still in flight.')

    def wait(self, timeout_ms: Optional[int] = None) -> bool:
        """Block until the worker thread, if any, has finished.

        Returns:
            bool: False if the timeout expired first.
        """
        worker = self._worker
        if worker is None:
            return True
        if timeout_ms is None:
            return worker.wait()
        return worker.wait(timeout_ms)

    @QtCore.Slot(bool)
    def _on_connectivity_changed(self, connected: bool) -> None:
        if connected:
            logging.debug('Network is back. Requesting sync.')
            self.trigger_sync()

    # ------------------------------------------------------------------ entry points

    def add_transaction(
            self,
            amount: float,
            category: str,
            kind: TransactionKind | str,
            occurred_at: Optional[datetime.datetime | str] = None,
            notes: str = '',
    ) -> Transaction:
        """Create a local transaction, persist it and trigger a sync.

        Returns:
            Transaction: The new unsynced record.

        Raises:
            status.TransactionInvalidException: If the fields are invalid.
            status.PersistenceException: If the ledger cannot be saved. The record is kept
                in memory and written with the next successful save.
        """
        try:
            tx = Transaction.create(amount, category, kind, occurred_at=occurred_at, notes=notes)
        except (TypeError, ValueError) as ex:
            raise status.TransactionInvalidException(str(ex)) from ex

        try:
            # The store is written under the same lock as the collection so writes land in order
            with self._data_lock:
                self._transactions.append(tx)
                logging.info(f'Added transaction {tx.id} ({tx.kind.value} {tx.amount:.2f} {tx.category}).')
                self._store.save_all(list(self._transactions))
        finally:
            self._emit_transactions()

        self.trigger_sync()
        return tx

    @QtCore.Slot()
    def trigger_sync(self) -> bool:
        """Request a sync cycle.

        Returns:
            bool: True if a cycle was started, False if one is already in flight.
        """
        if not self._asynchronous:
            return self.sync_now().outcome != SyncOutcome.Skipped

        if not self._begin():
            return False

        previous = self._worker
        if previous is not None:
            # Already past _end(), only returning from run()
            previous.wait()
            previous.deleteLater()

        self._worker = SyncWorker(self._run_guarded, self)
        self._worker.start()
        return True

    def sync_now(self) -> SyncResult:
        """Run a sync cycle in the calling thread.

        Returns:
            SyncResult: The cycle's result, or a Skipped result if a cycle is already in flight.
        """
        if not self._begin():
            return SyncResult(SyncOutcome.Skipped)
        return self._run_guarded()

    # ------------------------------------------------------------------ single flight

    def _begin(self) -> bool:
        """Test-and-set the Syncing state."""
        with self._state_lock:
            if self._state == SyncState.Syncing:
                logging.debug('Sync already in progress. Request dropped.')
                return False
            self._state = SyncState.Syncing
        self.syncingChanged.emit(True)
        return True

    def _end(self) -> None:
        with self._state_lock:
            self._state = SyncState.Idle
        self.syncingChanged.emit(False)

    def _run_guarded(self) -> SyncResult:
        """Run one cycle and return to Idle, whatever happens."""
        result = SyncResult(SyncOutcome.Failed)
        try:
            result = self._run_cycle()
        except Exception as ex:
            logging.exception('Sync cycle failed unexpectedly.')
            result = SyncResult(SyncOutcome.Failed, error=str(ex))
            self._emit_status(SyncStatus.Error, f'Sync failed: {ex}')
        finally:
            self._last_result = result
            self._end()

        self._emit_status(SyncStatus.Finished, f'Sync {result.outcome.value}.')
        self.syncFinished.emit(result)
        return result

    # ------------------------------------------------------------------ the cycle

    def _run_cycle(self) -> SyncResult:
        logging.info('Starting sync process...')
        self._emit_status(SyncStatus.Starting, 'Starting sync.')

        if not self._monitor.current_status():
            logging.info('No internet connection. Using offline data.')
            self._emit_status(SyncStatus.Offline, 'Using local data. Will sync when online.')
            return SyncResult(SyncOutcome.Offline)

        result = SyncResult(SyncOutcome.Succeeded)

        unsynced = self.unsynced_transactions()
        logging.info(f'Found {len(unsynced)} unsynced transactions.')
        if unsynced:
            if not self._push_phase(unsynced, result):
                return result

        self._pull_phase(result)
        return result

    def _push_phase(self, unsynced: List[Transaction], result: SyncResult) -> bool:
        """Push the unsynced records and flag them synced.

        Returns:
            bool: False if the cycle must stop before pulling.
        """
        self._emit_status(SyncStatus.Uploading, f'Uploading {len(unsynced)} transactions...')

        # Settings edits take effect from the next cycle
        max_attempts, backoff = self._max_attempts, self._backoff

        def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            self._emit_status(
                SyncStatus.UploadRetrying,
                f'Upload attempt {attempt}/{max_attempts} failed. Retrying in {delay:g}s.'
            )

        try:
            _, attempts = with_retry(
                lambda: self._service.push(unsynced),
                max_attempts=max_attempts,
                backoff=backoff,
                sleep=self._sleep,
                give_up_on=NON_RETRYABLE_EXCEPTIONS,
                on_retry=on_retry,
            )
        except status.RetriesExhaustedException as ex:
            result.outcome = SyncOutcome.PushFailed
            result.attempts = ex.attempts
            result.error = str(ex)
            self._emit_status(SyncStatus.UploadFailed, 'Changes saved locally. Will retry when online.')
            return False
        except NON_RETRYABLE_EXCEPTIONS as ex:
            result.outcome = SyncOutcome.PushFailed
            result.attempts = 1
            result.error = str(ex)
            self._emit_status(SyncStatus.UploadFailed, str(ex))
            return False

        result.attempts = attempts
        result.pushed = len(unsynced)

        try:
            self._mark_synced(tx.id for tx in unsynced)
        except status.PersistenceException as ex:
            result.outcome = SyncOutcome.PersistenceFailed
            result.error = str(ex)
            self._emit_status(SyncStatus.Error, 'Uploaded, but the local ledger could not be saved.')
            return True

        self._emit_status(SyncStatus.UploadSucceeded, f'{len(unsynced)} transactions synced.')
        return True

    def _mark_synced(self, ids: Iterable[str]) -> None:
        """Flag the given records as synced and persist the collection in one write.

        Records added after the push started are left untouched.
        """
        ids = set(ids)
        try:
            with self._data_lock:
                self._transactions = [
                    tx.mark_synced() if tx.id in ids else tx for tx in self._transactions
                ]
                self._store.save_all(list(self._transactions))
        finally:
            self._emit_transactions()
        logging.debug(f'Marked {len(ids)} transactions as synced.')

    def _pull_phase(self, result: SyncResult) -> None:
        try:
            since = self._store.get_last_sync_time()
            remote = self._service.pull(since)
        except Exception as ex:
            logging.error(f'Error during server sync: {ex}')
            if result.outcome == SyncOutcome.Succeeded:
                result.outcome = SyncOutcome.PullFailed
                result.error = str(ex)
            self._emit_status(SyncStatus.Error, 'Failed to sync with server. Local data preserved.')
            return

        # Captured after the pull completes; re-delivered records are dropped by id
        pulled_at = self._clock()

        error: Optional[status.PersistenceException] = None
        with self._data_lock:
            local_count = len(self._transactions)
            merged = merge(self._transactions, remote)
            added = merged[local_count:]
            self._transactions = list(merged)
            try:
                self._store.save_all_and_stamp(merged, pulled_at)
            except status.PersistenceException as ex:
                error = ex
        if added:
            self._emit_transactions()

        if error is not None:
            if result.outcome == SyncOutcome.Succeeded:
                result.outcome = SyncOutcome.PersistenceFailed
                result.error = str(error)
            self._emit_status(SyncStatus.Error, 'Downloaded, but the local ledger could not be saved.')
            return

        result.pulled = len(added)
        logging.info(
            f'Merged {len(added)} of {len(remote)} pulled transactions. '
            f'Last sync time is now {format_timestamp(pulled_at)}.'
        )
        self._emit_status(SyncStatus.DownloadSucceeded, f'Updated with {len(added)} new transactions.')

    # ------------------------------------------------------------------ notifications

    def _emit_status(self, sync_status: SyncStatus, message: str) -> None:
        level = logging.ERROR if sync_status in FAILURE_STATUSES else logging.INFO
        log_sync_status(sync_status.value, message, level)
        self.statusChanged.emit(sync_status.value, message)

    def _emit_transactions(self) -> None:
        self.transactionsChanged.emit(list(self.transactions))
