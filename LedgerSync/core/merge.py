"""Merge resolver for local and pulled transaction sets.

Reconciliation is identifier based: a pulled record is added only if no local
record carries the same id. Local records are never removed or modified, and a
pulled record that collides with a local id is dropped; the local copy wins.
There is no field-level conflict resolution.
"""
from typing import Iterable, List, Sequence

from .model import Transaction


def new_records(local: Iterable[Transaction], remote: Iterable[Transaction]) -> List[Transaction]:
    """Return the pulled records that are absent locally, stamped as synced.

    Duplicates inside ``remote`` itself are collapsed to their first occurrence.

    Args:
        local: The current local records.
        remote: Records returned by the remote pull, in pull order.

    Returns:
        List[Transaction]: Records to append, in pull order.
    """
    seen = {tx.id for tx in local}
    added: List[Transaction] = []
    for tx in remote:
        if tx.id in seen:
            continue
        seen.add(tx.id)
        added.append(tx.mark_synced())
    return added


def merge(local: Sequence[Transaction], remote: Iterable[Transaction]) -> List[Transaction]:
    """Reconcile local and pulled records into one set.

    The result keeps every local record unchanged and in its original order,
    followed by the pulled records whose id is not present locally, in pull order.

    Args:
        local: The current local records.
        remote: Records returned by the remote pull.

    Returns:
        List[Transaction]: The merged records.
    """
    return list(local) + new_records(local, remote)
