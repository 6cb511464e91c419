"""Logging setup for LedgerSync.

Log records go to stdout and to an in-memory :class:`HistoryHandler`. The handler keeps
a bounded history of recent records and, separately, a history of the sync progress
notifications. :class:`~LedgerSync.core.sync.SyncAPI` logs those through
:func:`log_sync_status`, tagging each record with its ``sync_status``.
"""
import collections
import dataclasses
import datetime
import logging
import sys
from typing import Deque, List, Optional, Tuple

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

HISTORY_SIZE = 2000
SYNC_LOGGER = 'LedgerSync.sync'

VALID_LEVELS = (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)

QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}


def set_logging_level(level: int) -> None:
    """Set the level of the root logger and all of its handlers.

    Args:
        level: One of the standard logging levels.

    Raises:
        ValueError: If ``level`` is not a standard logging level.
    """
    if not isinstance(level, int) or isinstance(level, bool) or level not in VALID_LEVELS:
        raise ValueError(f'Invalid logging level {level!r}. Use a standard level, e.g. logging.DEBUG.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """Forward Qt's own messages to the ``Qt`` logger. Fatal messages exit."""
    logging.getLogger('Qt').log(QT_LEVELS.get(mode, logging.WARNING), message.strip())
    if mode == QtMsgType.QtFatalMsg:
        sys.exit(1)


@dataclasses.dataclass(frozen=True)
class SyncEvent:
    """One sync progress notification, as recorded by :class:`HistoryHandler`."""
    timestamp: datetime.datetime
    status: str
    message: str


class HistoryHandler(logging.Handler):
    """Keep recent log records and sync notifications in memory.

    Both histories are bounded; the oldest entries are dropped first.

    Attributes:
        records: ``(levelno, formatted message)`` pairs of every handled record.
        sync_events: :class:`SyncEvent` entries for records carrying a ``sync_status``.
    """

    def __init__(self, capacity: int = HISTORY_SIZE) -> None:
        super().__init__()
        self.records: Deque[Tuple[int, str]] = collections.deque(maxlen=capacity)
        self.sync_events: Deque[SyncEvent] = collections.deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.records.append((record.levelno, self.format(record)))
        except Exception:
            self.handleError(record)
            return

        sync_status = getattr(record, 'sync_status', None)
        if sync_status is not None:
            self.sync_events.append(SyncEvent(
                timestamp=datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc),
                status=str(sync_status),
                message=record.getMessage(),
            ))

    def get_logs(self, level: int = logging.NOTSET) -> List[str]:
        """Return the formatted messages at or above ``level``, oldest first."""
        return [msg for lvl, msg in self.records if lvl >= level]

    def get_sync_history(self, sync_status: Optional[str] = None) -> List[SyncEvent]:
        """Return the recorded sync notifications, optionally only those of one status."""
        if sync_status is None:
            return list(self.sync_events)
        return [e for e in self.sync_events if e.status == sync_status]

    def clear(self) -> None:
        self.records.clear()
        self.sync_events.clear()


def log_sync_status(sync_status: str, message: str, level: int = logging.INFO) -> None:
    """Log a sync progress notification so it lands in the sync history."""
    logging.getLogger(SYNC_LOGGER).log(
        level, f'[{sync_status}] {message}', extra={'sync_status': str(sync_status)}
    )


def setup_logging(
        enable_stream_handler: bool = True,
        enable_qt_handler: bool = True,
        log_level: int = LOG_LEVEL,
        history_size: int = HISTORY_SIZE,
) -> None:
    """Configure the root logger.

    Args:
        enable_stream_handler: Log to stdout in addition to the in-memory history.
        enable_qt_handler: Route Qt's own messages through Python logging.
        log_level: Level applied to the root logger and every handler.
        history_size: Number of entries the history handler keeps.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Replace, never stack, handlers when called again
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if enable_stream_handler:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(log_level)
        root_logger.addHandler(stream_handler)

    history_handler = HistoryHandler(history_size)
    history_handler.setFormatter(formatter)
    history_handler.setLevel(log_level)
    root_logger.addHandler(history_handler)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


def get_history_handler() -> Optional[HistoryHandler]:
    """Return the HistoryHandler installed on the root logger, if any."""
    return next(
        (h for h in logging.getLogger().handlers if isinstance(h, HistoryHandler)),
        None
    )
