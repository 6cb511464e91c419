"""Tests for LedgerSync.log.log.

Run:
    python -m unittest tests.test_log
"""
import logging

from PySide6.QtCore import QtMsgType

from LedgerSync.core.sync import SyncStatus
from LedgerSync.log.log import (
    SYNC_LOGGER,
    HistoryHandler,
    get_history_handler,
    log_sync_status,
    qt_message_handler,
    set_logging_level,
    setup_logging,
)
from LedgerSync.status import status
from tests.base import BaseSyncTestCase, BaseTestCase, make_tx


class LogSetupTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        setup_logging(enable_stream_handler=False, enable_qt_handler=False, log_level=logging.DEBUG)
        self.root_logger = logging.getLogger()
        self.history: HistoryHandler = get_history_handler()

    def test_only_history_handler_without_stream(self):
        self.assertEqual([type(h) for h in self.root_logger.handlers], [HistoryHandler])

    def test_stream_handler_is_added_once(self):
        setup_logging(enable_stream_handler=True, enable_qt_handler=False, log_level=logging.INFO)
        setup_logging(enable_stream_handler=True, enable_qt_handler=False, log_level=logging.INFO)
        types = [type(h) for h in self.root_logger.handlers]
        self.assertEqual(types.count(logging.StreamHandler), 1)
        self.assertEqual(types.count(HistoryHandler), 1)
        self.assertEqual(self.root_logger.level, logging.INFO)

    def test_set_logging_level(self):
        set_logging_level(logging.WARNING)
        self.assertEqual(self.root_logger.level, logging.WARNING)
        self.assertTrue(all(h.level == logging.WARNING for h in self.root_logger.handlers))

        for level in ('INFO', 1234, True):
            with self.assertRaises(ValueError):
                set_logging_level(level)

    def test_history_filters_by_level(self):
        logging.debug('polling reachability')
        logging.error('ledger database locked')

        self.assertEqual(len(self.history.get_logs()), 2)
        errors = self.history.get_logs(logging.ERROR)
        self.assertEqual(len(errors), 1)
        self.assertIn('ledger database locked', errors[0])

        self.history.clear()
        self.assertEqual(self.history.get_logs(), [])

    def test_history_is_bounded(self):
        setup_logging(enable_stream_handler=False, enable_qt_handler=False, history_size=3)
        history = get_history_handler()
        for n in range(5):
            log_sync_status('starting', f'cycle {n}')

        self.assertEqual(len(history.get_logs()), 3)
        self.assertEqual([e.message for e in history.get_sync_history()], ['[starting] cycle 2',
                                                                            '[starting] cycle 3',
                                                                            '[starting] cycle 4'])

    def test_sync_notifications_are_kept_apart(self):
        logging.info('unrelated')
        log_sync_status('uploading', 'Uploading 2 transactions...')
        log_sync_status('upload-failed', 'Changes saved locally.', logging.ERROR)

        events = self.history.get_sync_history()
        self.assertEqual([e.status for e in events], ['uploading', 'upload-failed'])
        self.assertTrue(events[0].message.endswith('Uploading 2 transactions...'))
        self.assertIsNotNone(events[0].timestamp.tzinfo)

        self.assertEqual(len(self.history.get_sync_history('upload-failed')), 1)
        self.assertEqual(len(self.history.get_logs(logging.ERROR)), 1)

    def test_sync_notifications_use_their_own_logger(self):
        with self.assertLogs(SYNC_LOGGER, level='INFO') as logs:
            log_sync_status('finished', 'Sync succeeded.')
        self.assertEqual(logs.records[0].sync_status, 'finished')

    def test_qt_messages_are_logged(self):
        qt_message_handler(QtMsgType.QtInfoMsg, None, 'Qt info')
        qt_message_handler(QtMsgType.QtCriticalMsg, None, 'Qt critical ')

        self.assertTrue(any('Qt info' in m for m in self.history.get_logs(logging.INFO)))
        errors = self.history.get_logs(logging.ERROR)
        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].endswith('Qt critical'))

    def test_qt_fatal_message_exits(self):
        with self.assertRaises(SystemExit):
            qt_message_handler(QtMsgType.QtFatalMsg, None, 'fatal')


class SyncHistoryTests(BaseSyncTestCase):

    def setUp(self) -> None:
        super().setUp()
        setup_logging(enable_stream_handler=False, enable_qt_handler=False, log_level=logging.INFO)
        self.history: HistoryHandler = get_history_handler()

    def test_cycle_is_recorded(self):
        self.store.save_all([make_tx('a')])
        api = self.make_api()
        api.load()

        api.sync_now()

        self.assertEqual([e.status for e in self.history.get_sync_history()], self.statuses)

    def test_failed_upload_is_recorded_as_error(self):
        self.store.save_all([make_tx('a')])
        self.service.push_errors = [status.ServiceUnavailableException('down') for _ in range(5)]
        api = self.make_api()
        api.load()

        api.sync_now()

        self.assertEqual(len(self.history.get_sync_history(SyncStatus.UploadRetrying)), 5)
        failed = self.history.get_sync_history(SyncStatus.UploadFailed)
        self.assertEqual(len(failed), 1)
        self.assertTrue(any(failed[0].message in m for m in self.history.get_logs(logging.ERROR)))
