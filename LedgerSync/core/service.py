"""Remote transaction service.

:class:`RemoteTransactionService` is the contract the sync engine needs from the
remote authoritative store: push a batch of unsynced records and pull the
records created after a timestamp.

:class:`SheetsTransactionService` implements it on a Google Sheets worksheet.
Each transaction is one row. The ``Timestamp`` column holds the transaction time
as a Google Sheets serial date-time and is what pulls filter on. Rows carry the
identifier from an optional ``ID`` column; rows without one are identified by
their sheet row, which Sheets assigns when the row is appended.
"""

import datetime
import logging
import pathlib
import socket
import ssl
import threading
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .model import Transaction, format_timestamp
from ..status import status

# Cached Sheets API client to avoid repeated discovery/auth costs
_cached_service: Any = None
_service_lock = threading.Lock()

SCOPES: List[str] = ['https://www.googleapis.com/auth/spreadsheets']

SHEETS_EPOCH = datetime.datetime(1899, 12, 30, tzinfo=datetime.timezone.utc)
SECONDS_PER_DAY: int = 24 * 60 * 60

ID_HEADER: str = 'ID'
SHEET_HEADERS: List[str] = ['Date', 'Timestamp', 'Type', 'Category', 'Amount', 'Notes']


class RemoteTransactionService:
    """Abstract client for the remote transaction store."""

    def push(self, records: Sequence[Transaction]) -> None:
        """Upload records. All-or-nothing per call; raises on failure.

        Only the remote payload is transmitted: local metadata (``id`` and ``synced``)
        is stripped and the transaction time is converted to the server's timestamp.
        """
        raise NotImplementedError

    def pull(self, since: datetime.datetime) -> List[Transaction]:
        """Return every record created strictly after ``since``, each marked synced."""
        raise NotImplementedError


def datetime_to_serial(dt: datetime.datetime) -> float:
    """Converts a datetime to a Google Sheets serial date-time.

    Naive datetimes are treated as UTC.

    Args:
        dt: The datetime to convert.

    Returns:
        float: Days since 1899-12-30, with the time of day as the fraction.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    delta = dt.astimezone(datetime.timezone.utc) - SHEETS_EPOCH
    return delta.days + (delta.seconds + delta.microseconds / 1_000_000) / SECONDS_PER_DAY


def serial_to_datetime(serial: float) -> datetime.datetime:
    """Converts a Google Sheets serial date-time to an aware UTC datetime.

    Args:
        serial: The numeric serial from Google Sheets.

    Returns:
        datetime.datetime: The UTC datetime, rounded to the millisecond.

    Raises:
        ValueError: If the serial number is out of a plausible range or conversion fails.
    """
    if isinstance(serial, bool) or not isinstance(serial, (int, float)):
        raise ValueError(f'Serial date "{serial}" is not a number.')
    if serial < -20000 or serial > 2958465:
        logging.warning(f'Google date serial "{serial}" is out of plausible range.')
        raise ValueError(f'Serial date "{serial}" is out of supported range.')

    try:
        milliseconds = round(float(serial) * SECONDS_PER_DAY * 1000)
        return SHEETS_EPOCH + datetime.timedelta(milliseconds=milliseconds)
    except (OverflowError, ValueError) as e:
        logging.warning(f'Error converting serial date "{serial}": {e}.')
        raise ValueError(f'Invalid serial date value {serial}') from e


def clear_service() -> None:
    """
    Clears the cached Sheets API client.
    """
    global _cached_service

    with _service_lock:
        try:
            if _cached_service:
                _cached_service.close()
        except Exception as ex:
            logging.debug(f'Failed closing cached Sheets service client: {ex}')

        _cached_service = None


def get_service(credentials_path: str | pathlib.Path) -> Any:
    """
    Builds (or returns cached) Google Sheets service client.

    Args:
        credentials_path: Path to a Google service account key file.

    Returns:
        The Sheets API Resource, reusing a single client per process.

    Raises:
        status.CredentialsNotFoundException: If the key file does not exist.
        status.ServiceUnavailableException: If the client cannot be built.
    """
    global _cached_service

    with _service_lock:
        if _cached_service is not None:
            return _cached_service

        path = pathlib.Path(credentials_path) if credentials_path else None
        if not path or not path.is_file():
            raise status.CredentialsNotFoundException(f'"{credentials_path}" does not exist.')

        from google.oauth2 import service_account

        try:
            creds = service_account.Credentials.from_service_account_file(str(path), scopes=SCOPES)
            service: Any = build('sheets', 'v4', credentials=creds, cache_discovery=False)
        except Exception as ex:
            raise status.ServiceUnavailableException(f'Could not create the Sheets client: {ex}') from ex

        logging.debug('Google Sheets service client created successfully.')
        _cached_service = service
        return service


class SheetsTransactionService(RemoteTransactionService):
    """Remote transaction store on a Google Sheets worksheet."""

    def __init__(
            self,
            spreadsheet_id: str,
            worksheet: str,
            credentials_path: Optional[str | pathlib.Path] = None,
            service: Any = None,
    ) -> None:
        """
        Args:
            spreadsheet_id: Id of the spreadsheet holding the ledger.
            worksheet: Title of the worksheet (tab) holding the ledger.
            credentials_path: Service account key file used to build the Sheets client.
            service: A ready Sheets API resource. Takes precedence over ``credentials_path``.
        """
        self.spreadsheet_id = spreadsheet_id
        self.worksheet = worksheet
        self.credentials_path = credentials_path
        self._service = service

    @classmethod
    def from_settings(cls, settings: Any) -> 'SheetsTransactionService':
        """Create the service from the ``remote`` section of a SettingsAPI."""
        config: Dict[str, Any] = settings.get_section('remote')
        return cls(
            config.get('spreadsheet_id', ''),
            config.get('worksheet', ''),
            credentials_path=settings.resolve_path(config.get('service_account_file', '')),
        )

    @property
    def service(self) -> Any:
        """The Sheets API resource, built lazily from the credentials file."""
        if self._service is None:
            self._service = get_service(self.credentials_path)
        return self._service

    def _verify_config(self) -> None:
        if not self.spreadsheet_id:
            raise status.SpreadsheetIdNotConfiguredException
        if not self.worksheet:
            raise status.WorksheetNotConfiguredException

    def _execute(self, request: Any, action: str) -> Dict[str, Any]:
        """Execute a Sheets API request, mapping transport errors to status exceptions."""
        try:
            return request.execute() or {}
        except HttpError as ex:
            stat: Optional[int] = ex.resp.status if ex.resp else None
            if stat == 400 and 'Unable to parse range' in str(ex):
                raise status.WorksheetNotFoundException(
                    f'Worksheet "{self.worksheet}" not found in spreadsheet "{self.spreadsheet_id}".'
                ) from ex
            if stat == 404:
                raise status.ServiceUnavailableException(
                    f'Spreadsheet "{self.spreadsheet_id}" not found (HTTP 404).'
                ) from ex
            if stat == 403:
                raise status.ServiceUnavailableException(
                    f'Access denied (HTTP 403) for spreadsheet "{self.spreadsheet_id}". '
                    'Please share the sheet with the service account.'
                ) from ex
            raise status.ServiceUnavailableException(f'Error {action}: {ex}') from ex
        except socket.timeout as ex:
            raise status.ServiceUnavailableException(f'Timeout error {action}: {ex}') from ex
        except ssl.SSLError as ex:
            raise status.ServiceUnavailableException(f'SSL error {action}: {ex}') from ex
        except OSError as ex:
            raise status.ServiceUnavailableException(f'Network error {action}: {ex}') from ex

    @staticmethod
    def to_row(payload: Dict[str, Any], timestamp: float) -> List[Any]:
        """Return the worksheet row for a remote payload, in SHEET_HEADERS order."""
        return [
            payload['date'],
            timestamp,
            payload['type'],
            payload['category'],
            payload['amount'],
            payload['notes'],
        ]

    def push(self, records: Sequence[Transaction]) -> None:
        """Append the records to the worksheet in a single request.

        Rows carry no ID cell, so a later pull returns them under ``<worksheet>!<row>`` ids.

        Raises:
            status.ServiceUnavailableException: If the append fails.
        """
        self._verify_config()
        if not records:
            return

        rows: List[List[Any]] = []
        for tx in records:
            payload = tx.to_payload()
            rows.append(self.to_row(payload, datetime_to_serial(tx.occurred_at)))

        logging.debug(f'Appending {len(rows)} rows to "{self.worksheet}".')
        result = self._execute(
            self.service.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=f'{self.worksheet}!A1',
                valueInputOption='RAW',
                insertDataOption='INSERT_ROWS',
                body={'values': rows},
            ),
            'pushing transactions'
        )

        updated = result.get('updates', {}).get('updatedRows')
        if updated is not None and updated != len(rows):
            raise status.ServiceUnavailableException(
                f'Remote reported {updated} rows written, expected {len(rows)}.'
            )
        logging.info(f'Pushed {len(rows)} transactions to "{self.worksheet}".')

    def _fetch_frame(self) -> pd.DataFrame:
        """Fetch the worksheet as a DataFrame with a ``_row`` column of sheet row numbers."""
        result = self._execute(
            self.service.spreadsheets().values().get(
                spreadsheetId=self.spreadsheet_id,
                range=self.worksheet,
                valueRenderOption='UNFORMATTED_VALUE',
            ),
            'pulling transactions'
        )
        values: List[List[Any]] = result.get('values', [])
        if not values:
            raise status.HeadersInvalidException(f'Worksheet "{self.worksheet}" is empty, no header row found.')

        header = [str(cell).strip() for cell in values[0]]
        missing = [h for h in SHEET_HEADERS if h not in header]
        if missing:
            raise status.HeadersInvalidException(
                f'Worksheet headers do not match the expected configuration: {", ".join(missing)} not found.'
            )

        # Trailing empty cells are omitted by the API
        width = len(header)
        data_rows = [list(row[:width]) + [''] * (width - len(row)) for row in values[1:]]
        df = pd.DataFrame(data_rows, columns=header)
        df['_row'] = range(2, len(data_rows) + 2)
        logging.debug(f'Constructed DataFrame: {df.shape[0]} rows x {df.shape[1]} columns from "{self.worksheet}".')
        return df

    def _row_id(self, row: pd.Series) -> str:
        if ID_HEADER in row.index:
            value = row[ID_HEADER]
            if value is not None and str(value).strip():
                return str(value).strip()
        return f'{self.worksheet}!{row["_row"]}'

    def pull(self, since: datetime.datetime) -> List[Transaction]:
        """Return the worksheet rows whose timestamp is strictly after ``since``.

        Rows that cannot be parsed as transactions are skipped with a warning.

        Raises:
            status.HeadersInvalidException: If the worksheet header row is missing columns.
            status.ServiceUnavailableException: If the request fails.
        """
        self._verify_config()
        df = self._fetch_frame()
        if df.empty:
            return []

        since_serial = datetime_to_serial(since)
        timestamps = pd.to_numeric(df['Timestamp'], errors='coerce')
        df = df[timestamps > since_serial]

        transactions: List[Transaction] = []
        for _, row in df.iterrows():
            try:
                occurred_at = serial_to_datetime(float(row['Timestamp']))
                transactions.append(
                    Transaction.from_dict({
                        'id': self._row_id(row),
                        'amount': float(row['Amount']),
                        'category': str(row['Category']),
                        'type': str(row['Type']).strip().lower(),
                        'date': format_timestamp(occurred_at),
                        'notes': '' if row['Notes'] is None else str(row['Notes']),
                        'synced': True,
                    })
                )
            except (ValueError, TypeError) as ex:
                logging.warning(f'Skipping invalid row {row["_row"]} in "{self.worksheet}": {ex}')

        logging.info(f'Pulled {len(transactions)} transactions created after {format_timestamp(since)}.')
        return transactions
