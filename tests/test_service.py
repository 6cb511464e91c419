"""Contract tests for LedgerSync.core.service.

The Google Sheets client is replaced by a stub mimicking the chained
``service.spreadsheets().values().{append|get}(...).execute()`` calls, so no
test touches the network.
"""
import datetime
import json
import types
from typing import Any, Dict, List, Optional

import httplib2
from googleapiclient.errors import HttpError

from LedgerSync.core import service as svc
from LedgerSync.core.merge import merge
from LedgerSync.core.model import Transaction, TransactionKind
from LedgerSync.status import status
from tests.base import BaseTestCase, make_tx

HEADERS = ['Date', 'Timestamp', 'Type', 'Category', 'Amount', 'Notes']

JAN_1 = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)
JAN_2 = datetime.datetime(2025, 1, 2, tzinfo=datetime.timezone.utc)


def http_error(code: int, message: str) -> HttpError:
    resp = httplib2.Response({'status': code})
    content = json.dumps({'error': {'code': code, 'message': message}}).encode('utf-8')
    return HttpError(resp, content)


def _make_service(values: Optional[List[List[Any]]] = None, append_result: Optional[Dict[str, Any]] = None,
                  error: Optional[BaseException] = None):
    """Return a stub Sheets resource recording every request in ``.requests``."""
    requests: List[tuple] = []

    class _Exec:
        def __init__(self, payload: Dict[str, Any]):
            self._payload = payload

        def execute(self):
            if error is not None:
                raise error
            return self._payload

    class _Values:
        def append(self, **kw):
            requests.append(('append', kw))
            if append_result is not None:
                return _Exec(append_result)
            return _Exec({'updates': {'updatedRows': len(kw['body']['values'])}})

        def get(self, **kw):
            requests.append(('get', kw))
            return _Exec({'values': values or []})

    class _Sheets:
        def values(self):
            return _Values()

    return types.SimpleNamespace(spreadsheets=lambda: _Sheets(), requests=requests)


class SerialDateTests(BaseTestCase):

    def test_epoch_and_known_dates(self):
        self.assertEqual(svc.datetime_to_serial(svc.SHEETS_EPOCH), 0)
        self.assertEqual(svc.datetime_to_serial(datetime.datetime(2023, 10, 28, tzinfo=datetime.timezone.utc)), 45227)
        self.assertEqual(svc.datetime_to_serial(datetime.datetime(2025, 1, 1, 12, tzinfo=datetime.timezone.utc)),
                         45658.5)

    def test_serial_roundtrip_keeps_milliseconds(self):
        dt = datetime.datetime(2025, 6, 7, 8, 9, 10, 123000, tzinfo=datetime.timezone.utc)
        self.assertEqual(svc.serial_to_datetime(svc.datetime_to_serial(dt)), dt)

    def test_serial_rejects_invalid_values(self):
        for value in ('45000', None, True, 10_000_000, -50_000):
            with self.assertRaises(ValueError):
                svc.serial_to_datetime(value)


class GetServiceTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        svc.clear_service()
        self.addCleanup(svc.clear_service)

    def test_missing_credentials(self):
        with self.assertRaises(status.CredentialsNotFoundException):
            svc.get_service(self.temp_dir / 'missing.json')
        with self.assertRaises(status.CredentialsNotFoundException):
            svc.get_service(None)

    def test_from_settings_resolves_relative_credentials(self):
        remote = self.settings.get_section('remote')
        remote['spreadsheet_id'] = 'sheet-id'
        remote['service_account_file'] = 'keys/sa.json'
        self.settings.set_section('remote', remote)

        service = svc.SheetsTransactionService.from_settings(self.settings)
        self.assertEqual(service.spreadsheet_id, 'sheet-id')
        self.assertEqual(service.worksheet, 'Transactions')
        self.assertEqual(service.credentials_path, self.settings.config_dir / 'keys' / 'sa.json')


class SheetsPushTests(BaseTestCase):

    def test_push_appends_rows_without_local_metadata(self):
        stub = _make_service()
        service = svc.SheetsTransactionService('sheet-id', 'Transactions', service=stub)
        a = make_tx('a', amount=12.5, occurred_at=JAN_1, notes='lunch')
        b = make_tx('b', kind=TransactionKind.Income, category='Salary', occurred_at=JAN_2)

        service.push([a, b])

        self.assertEqual(len(stub.requests), 1)
        kind, kw = stub.requests[0]
        self.assertEqual(kind, 'append')
        self.assertEqual(kw['spreadsheetId'], 'sheet-id')
        self.assertEqual(kw['range'], 'Transactions!A1')
        self.assertEqual(kw['valueInputOption'], 'RAW')
        self.assertEqual(kw['insertDataOption'], 'INSERT_ROWS')
        self.assertEqual(
            kw['body']['values'],
            [
                ['2025-01-01T00:00:00.000Z', 45658.0, 'expense', 'Food', 12.5, 'lunch'],
                ['2025-01-02T00:00:00.000Z', 45659.0, 'income', 'Salary', 10.0, ''],
            ]
        )
        for row in kw['body']['values']:
            self.assertNotIn('a', row)
            self.assertNotIn(False, row)

    def test_push_nothing_makes_no_request(self):
        stub = _make_service()
        svc.SheetsTransactionService('sheet-id', 'Transactions', service=stub).push([])
        self.assertEqual(stub.requests, [])

    def test_push_requires_configuration(self):
        stub = _make_service()
        with self.assertRaises(status.SpreadsheetIdNotConfiguredException):
            svc.SheetsTransactionService('', 'Transactions', service=stub).push([make_tx('a')])
        with self.assertRaises(status.WorksheetNotConfiguredException):
            svc.SheetsTransactionService('sheet-id', '', service=stub).push([make_tx('a')])
        self.assertEqual(stub.requests, [])

    def test_push_partial_write_fails(self):
        stub = _make_service(append_result={'updates': {'updatedRows': 1}})
        service = svc.SheetsTransactionService('sheet-id', 'Transactions', service=stub)
        with self.assertRaises(status.ServiceUnavailableException):
            service.push([make_tx('a'), make_tx('b')])

    def test_http_errors_are_mapped(self):
        cases = [
            (http_error(400, 'Unable to parse range: Missing'), status.WorksheetNotFoundException),
            (http_error(403, 'The caller does not have permission'), status.ServiceUnavailableException),
            (http_error(404, 'Requested entity was not found.'), status.ServiceUnavailableException),
            (http_error(503, 'The service is currently unavailable.'), status.ServiceUnavailableException),
            (TimeoutError('timed out'), status.ServiceUnavailableException),
            (ConnectionResetError('reset'), status.ServiceUnavailableException),
        ]
        for error, expected in cases:
            with self.subTest(error=error):
                service = svc.SheetsTransactionService('sheet-id', 'Missing', service=_make_service(error=error))
                with self.assertRaises(expected):
                    service.push([make_tx('a')])


class SheetsPullTests(BaseTestCase):

    def _service(self, rows: List[List[Any]], headers: List[str] = HEADERS) -> svc.SheetsTransactionService:
        self.stub = _make_service([headers] + rows)
        return svc.SheetsTransactionService('sheet-id', 'Transactions', service=self.stub)

    def test_pull_filters_by_timestamp(self):
        service = self._service([
            ['2025-01-01', 45658.0, 'expense', 'Food', 12.5, 'old'],
            ['2025-01-02', 45659.0, 'Income', 'Salary', 1000, 'new'],
        ])

        pulled = service.pull(JAN_1)

        self.assertEqual(len(pulled), 1)
        tx = pulled[0]
        self.assertIsInstance(tx, Transaction)
        self.assertEqual(tx.id, 'Transactions!3')
        self.assertEqual(tx.kind, TransactionKind.Income)
        self.assertEqual(tx.amount, 1000.0)
        self.assertEqual(tx.occurred_at, JAN_2)
        self.assertEqual(tx.notes, 'new')
        self.assertTrue(tx.synced)

        kind, kw = self.stub.requests[0]
        self.assertEqual(kind, 'get')
        self.assertEqual(kw['valueRenderOption'], 'UNFORMATTED_VALUE')

    def test_pull_uses_id_column(self):
        service = self._service(
            [['srv-1', '2025-01-02', 45659.0, 'expense', 'Food', 3, '']],
            headers=['ID'] + HEADERS,
        )
        self.assertEqual([tx.id for tx in service.pull(JAN_1)], ['srv-1'])

    def test_pull_pads_short_rows_and_skips_invalid_rows(self):
        service = self._service([
            ['2025-01-02', 45659.0, 'expense', 'Food', 3],
            ['2025-01-02', 45659.0, 'transfer', 'Food', 3, ''],
            ['2025-01-02', 45659.0, 'expense', 'Food', -3, ''],
            ['2025-01-02', 'not a date', 'expense', 'Food', 3, ''],
        ])
        pulled = service.pull(JAN_1)
        self.assertEqual([tx.id for tx in pulled], ['Transactions!2'])
        self.assertEqual(pulled[0].notes, '')

    def test_pull_empty_worksheet(self):
        self.assertEqual(self._service([]).pull(JAN_1), [])

    def test_pull_invalid_headers(self):
        with self.assertRaises(status.HeadersInvalidException):
            self._service([], headers=['Date', 'Amount']).pull(JAN_1)

        stub = _make_service([])
        with self.assertRaises(status.HeadersInvalidException):
            svc.SheetsTransactionService('sheet-id', 'Transactions', service=stub).pull(JAN_1)

    def test_pushed_rows_come_back_under_row_ids(self):
        # Without an ID column the local id never reaches the sheet
        local = make_tx('local-1', occurred_at=JAN_2, notes='lunch')
        push_stub = _make_service()
        svc.SheetsTransactionService('sheet-id', 'Transactions', service=push_stub).push([local])
        pushed_rows = push_stub.requests[0][1]['body']['values']

        pulled = self._service(pushed_rows).pull(JAN_1)

        self.assertEqual([tx.id for tx in pulled], ['Transactions!2'])
        self.assertEqual((pulled[0].amount, pulled[0].notes), (local.amount, local.notes))

        ledger = merge([local.mark_synced()], pulled)
        self.assertEqual([tx.id for tx in ledger], ['local-1', 'Transactions!2'])
