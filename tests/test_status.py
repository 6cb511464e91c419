"""Tests for LedgerSync.status.status."""
from LedgerSync.status import status
from tests.base import BaseTestCase


class StatusTests(BaseTestCase):

    def test_every_status_has_a_message(self):
        for s in status.Status:
            self.assertIn(s, status.STATUS_MESSAGE)
            self.assertEqual(status.get_message(s), status.STATUS_MESSAGE[s])

    def test_exception_message_includes_context(self):
        ex = status.ServiceUnavailableException('HTTP 503')
        self.assertEqual(ex.status, status.Status.ServiceUnavailable)
        self.assertTrue(str(ex).startswith(status.get_message(status.Status.ServiceUnavailable)))
        self.assertTrue(str(ex).endswith('HTTP 503'))

    def test_exception_is_logged_as_error(self):
        with self.assertLogs(level='ERROR') as logs:
            status.CredentialsNotFoundException()
            status.HeadersInvalidException('Amount not found.')

        self.assertEqual(len(logs.records), 2)
        self.assertEqual(logs.records[0].getMessage(), status.get_message(status.Status.CredentialsNotFound))
        self.assertTrue(logs.records[1].getMessage().endswith('Amount not found.'))

    def test_retries_exhausted_carries_attempts(self):
        ex = status.RetriesExhaustedException('gave up', attempts=5)
        self.assertEqual(ex.attempts, 5)

    def test_cache_invalid_is_a_persistence_error(self):
        self.assertTrue(issubclass(status.CacheInvalidException, status.PersistenceException))
        self.assertTrue(issubclass(status.PersistenceException, status.BaseStatusException))
