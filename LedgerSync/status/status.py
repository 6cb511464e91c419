"""Status definitions and exceptions for LedgerSync.

This module provides:
    - Status: enumeration of possible engine states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., PersistenceException) for error handling in the sync engine
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of engine status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SyncConfigNotFound = enum.auto()
    SyncConfigInvalid = enum.auto()

    # Credentials status
    CredentialsNotFound = enum.auto()

    # Spreadsheet access status
    SpreadsheetIdNotConfigured = enum.auto()
    WorksheetNotConfigured = enum.auto()
    WorksheetNotFound = enum.auto()
    HeadersInvalid = enum.auto()

    # Remote service status
    ServiceUnavailable = enum.auto()
    RetriesExhausted = enum.auto()

    # Local store status
    PersistenceFailed = enum.auto()
    CacheInvalid = enum.auto()

    TransactionInvalid = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SyncConfigNotFound: 'Could not find the sync config.',
    Status.SyncConfigInvalid: 'The sync config seems to be incomplete, or contains invalid values.',

    Status.CredentialsNotFound: 'Could not find the service account credentials. Have you set up a valid credentials file?',

    Status.SpreadsheetIdNotConfigured: 'Could not find a valid spreadsheet id. Have you set up a valid spreadsheet id in the settings?',
    Status.WorksheetNotConfigured: 'Worksheet name could not be found. Have you set the worksheet name in the settings?',
    Status.WorksheetNotFound: 'Could not find the worksheet. Have you set up a valid worksheet name in the settings?',
    Status.HeadersInvalid: 'Is the worksheet\'s header row set up correctly?',

    Status.ServiceUnavailable: 'The remote transaction service is unavailable. Please check your connection.',
    Status.RetriesExhausted: 'Upload failed after all retries. Changes are saved locally and will be retried when online.',

    Status.PersistenceFailed: 'Could not write the local ledger. Changes are kept in memory until the next successful save.',
    Status.CacheInvalid: 'The local ledger could not be read. The stored data seems to be corrupted.',

    Status.TransactionInvalid: 'The transaction is incomplete, or contains invalid values.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in LedgerSync.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SyncConfigNotFoundException(BaseStatusException):
    """Exception raised when the sync configuration file cannot be found."""
    status = Status.SyncConfigNotFound


class SyncConfigInvalidException(BaseStatusException):
    """Exception raised when the sync configuration is invalid or malformed."""
    status = Status.SyncConfigInvalid


class CredentialsNotFoundException(BaseStatusException):
    """Exception raised when the service account credentials file cannot be found."""
    status = Status.CredentialsNotFound


class SpreadsheetIdNotConfiguredException(BaseStatusException):
    """Exception raised when the spreadsheet ID is not configured in settings."""
    status = Status.SpreadsheetIdNotConfigured


class WorksheetNotConfiguredException(BaseStatusException):
    """Exception raised when the worksheet name is not configured in settings."""
    status = Status.WorksheetNotConfigured


class WorksheetNotFoundException(BaseStatusException):
    """Exception raised when the specified worksheet cannot be accessed."""
    status = Status.WorksheetNotFound


class HeadersInvalidException(BaseStatusException):
    """Exception raised when the worksheet headers do not match the expected columns."""
    status = Status.HeadersInvalid


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when a push or pull call to the remote service fails."""
    status = Status.ServiceUnavailable


class RetriesExhaustedException(BaseStatusException):
    """Exception raised when an operation failed on every allowed attempt.

    Attributes:
        attempts (int): Number of attempts made before giving up.
    """
    status = Status.RetriesExhausted

    def __init__(self, message: str = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class PersistenceException(BaseStatusException):
    """Exception raised when the local ledger store cannot be read or written."""
    status = Status.PersistenceFailed


class CacheInvalidException(PersistenceException):
    """Exception raised when the stored ledger data is corrupted."""
    status = Status.CacheInvalid


class TransactionInvalidException(BaseStatusException):
    """Exception raised when a new transaction fails validation."""
    status = Status.TransactionInvalid
