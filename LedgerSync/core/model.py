"""Transaction record and ledger sample data.

A :class:`Transaction` is immutable after creation. The only change the sync
engine ever makes is flipping ``synced`` to ``True`` once the remote service
has confirmed the upload, which produces a new instance via :meth:`Transaction.mark_synced`.

The persisted form uses the keys ``id, amount, category, type, date, notes, synced``.
The remote payload is the persisted form without the local-only ``id`` and ``synced`` keys.
"""
import dataclasses
import datetime
import enum
import logging
import random
import uuid
from typing import Any, Dict, List, Optional

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

TRANSACTION_KEYS: List[str] = ['id', 'amount', 'category', 'type', 'date', 'notes', 'synced']
LOCAL_ONLY_KEYS: List[str] = ['id', 'synced']

SAMPLE_CATEGORIES: List[str] = [
    'Food',
    'Transportation',
    'Housing',
    'Utilities',
    'Entertainment',
    'Healthcare',
    'Education',
    'Shopping',
    'Personal Care',
    'Gifts',
    'Investments',
    'Salary',
    'Freelance',
    'Dividends',
    'Rental Income',
]


class TransactionKind(enum.StrEnum):
    """Direction of a transaction. The amount itself is always non-negative."""
    Income = 'income'
    Expense = 'expense'


def now() -> datetime.datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def parse_timestamp(value: Any) -> datetime.datetime:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are assumed to be UTC. A trailing ``Z`` is accepted.

    Args:
        value: ISO-8601 string or datetime.

    Returns:
        datetime.datetime: Timezone-aware datetime in UTC.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, datetime.datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.datetime.fromisoformat(value.strip())
        except ValueError as ex:
            raise ValueError(f'Invalid ISO-8601 timestamp "{value}"') from ex
    else:
        raise ValueError(f'Expected an ISO-8601 string, got {type(value)}')

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def format_timestamp(dt: datetime.datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision."""
    dt = parse_timestamp(dt)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclasses.dataclass(frozen=True)
class Transaction:
    """A single ledger entry.

    Attributes:
        id: Globally unique identifier. Client-generated uuid4 for local records,
            the server-assigned identifier for records pulled from the remote store.
        amount: Non-negative amount. The sign is conveyed by ``kind``.
        category: Free-form, non-empty label.
        kind: Income or expense.
        occurred_at: Time of the transaction, set at creation and never altered.
        notes: Free-form text, may be empty.
        synced: Local-only flag, true once the remote store confirmed the record.
    """
    id: str
    amount: float
    category: str
    kind: TransactionKind
    occurred_at: datetime.datetime
    notes: str = ''
    synced: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise ValueError('Transaction id must be a non-empty string.')
        if isinstance(self.amount, bool) or not isinstance(self.amount, (int, float)):
            raise TypeError(f'Transaction amount must be a number, got {type(self.amount)}.')
        if self.amount < 0:
            raise ValueError(f'Transaction amount must be non-negative, got {self.amount}.')
        if not isinstance(self.category, str) or not self.category.strip():
            raise ValueError('Transaction category must be a non-empty string.')
        if not isinstance(self.notes, str):
            raise TypeError(f'Transaction notes must be a string, got {type(self.notes)}.')

        # Normalize without breaking immutability for callers
        object.__setattr__(self, 'amount', float(self.amount))
        object.__setattr__(self, 'kind', TransactionKind(self.kind))
        occurred_at = parse_timestamp(self.occurred_at)
        # Stored timestamps carry millisecond precision
        occurred_at = occurred_at.replace(microsecond=occurred_at.microsecond // 1000 * 1000)
        object.__setattr__(self, 'occurred_at', occurred_at)
        object.__setattr__(self, 'synced', bool(self.synced))

    @classmethod
    def create(
            cls,
            amount: float,
            category: str,
            kind: TransactionKind | str,
            occurred_at: Optional[datetime.datetime | str] = None,
            notes: str = '',
    ) -> 'Transaction':
        """Create a new local, unsynced transaction with a fresh client-side id.

        Args:
            amount: Non-negative amount.
            category: Non-empty category label.
            kind: ``income`` or ``expense``.
            occurred_at: Time of the transaction. Defaults to now.
            notes: Optional free-form notes.

        Returns:
            Transaction: The new record with ``synced=False``.
        """
        return cls(
            id=str(uuid.uuid4()),
            amount=amount,
            category=category,
            kind=kind,
            occurred_at=occurred_at if occurred_at is not None else now(),
            notes=notes,
            synced=False,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Build a transaction from its persisted dictionary form.

        Args:
            data: Mapping with the keys of :data:`TRANSACTION_KEYS`. ``notes`` and
                ``synced`` are optional.

        Raises:
            ValueError: If a required key is missing or a value is invalid.
            TypeError: If a value has the wrong type.
        """
        if not isinstance(data, dict):
            raise TypeError(f'Transaction data must be a dict, got {type(data)}.')
        missing = [k for k in ('id', 'amount', 'category', 'type', 'date') if k not in data]
        if missing:
            raise ValueError(f'Transaction data is missing required keys: {", ".join(missing)}.')

        synced = data.get('synced', False)
        if not isinstance(synced, bool):
            raise TypeError(f'Field "synced" must be a bool, got {type(synced).__name__}.')

        return cls(
            id=str(data['id']),
            amount=data['amount'],
            category=data['category'],
            kind=data['type'],
            occurred_at=data['date'],
            notes=data.get('notes') or '',
            synced=synced,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return the persisted dictionary form."""
        return {
            'id': self.id,
            'amount': self.amount,
            'category': self.category,
            'type': self.kind.value,
            'date': format_timestamp(self.occurred_at),
            'notes': self.notes,
            'synced': self.synced,
        }

    def to_payload(self) -> Dict[str, Any]:
        """Return the remote payload: the persisted form without local metadata."""
        payload = self.to_dict()
        for key in LOCAL_ONLY_KEYS:
            payload.pop(key, None)
        return payload

    def mark_synced(self) -> 'Transaction':
        """Return a copy of this record flagged as confirmed by the remote store."""
        if self.synced:
            return self
        return dataclasses.replace(self, synced=True)


def sample_transactions(count: int = 20, seed: Optional[int] = None) -> List[Transaction]:
    """Generate a sample ledger used to seed an empty store on first run.

    Roughly 30% of the generated records are income. Amounts are between 0 and 1000
    and dates fall within the last 90 days. Every record is unsynced.

    Args:
        count: Number of records to generate.
        seed: Optional random seed for reproducible output.

    Returns:
        List[Transaction]: The generated records.
    """
    rng = random.Random(seed)
    current = now()
    items: List[Transaction] = []
    for _ in range(count):
        kind = TransactionKind.Income if rng.random() > 0.7 else TransactionKind.Expense
        category = rng.choice(SAMPLE_CATEGORIES)
        items.append(
            Transaction(
                id=str(uuid.UUID(int=rng.getrandbits(128), version=4)),
                amount=round(rng.random() * 1000, 2),
                category=category,
                kind=kind,
                occurred_at=current - datetime.timedelta(seconds=rng.randint(0, 90 * 24 * 60 * 60)),
                notes=f'Sample {kind.value} for {category}',
                synced=False,
            )
        )
    logging.debug(f'Generated {len(items)} sample transactions.')
    return items
