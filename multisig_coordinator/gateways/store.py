"""
RecordStore - persistence of transaction records with compare-and-swap updates
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import AlreadyExists, Conflict, InvalidState, NotFound
from ..records import TransactionRecord, TransactionStatus

logger = logging.getLogger(__name__)

Mutation = Callable[[TransactionRecord], None]


class StaleVersion(Conflict):
    """Expected version token no longer matches the stored record"""
    kind = "stale_version"


class RecordStore(ABC):
    """Persistence capability the coordinator relies on

    Implementations must make ``compare_and_update`` atomic per record id: the
    mutation is applied only if the stored version still equals ``expected_version``,
    and the stored version is incremented on commit.
    """

    @abstractmethod
    def create(self, record: TransactionRecord) -> TransactionRecord:
        """Insert a new record; raises AlreadyExists on id collision"""

    @abstractmethod
    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        """Return a detached copy of the record, or None"""

    @abstractmethod
    def compare_and_update(self, transaction_id: str, expected_version: int,
                           mutation: Mutation) -> TransactionRecord:
        """Apply ``mutation`` atomically if the version token matches"""

    @abstractmethod
    def query(self, statuses: Optional[Iterable[TransactionStatus]] = None,
              created_by: Optional[str] = None, needs_reconciliation: Optional[bool] = None,
              offset: int = 0, limit: Optional[int] = None) -> Tuple[List[TransactionRecord], int]:
        """Return (page of records newest first, total matching count)"""


class InMemoryRecordStore(RecordStore):
    """Thread-safe in-process store"""

    def __init__(self):
        self._records: Dict[str, TransactionRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: TransactionRecord) -> TransactionRecord:
        with self._lock:
            if record.id in self._records:
                raise AlreadyExists(f"Transaction {record.id} already exists", transaction_id=record.id)
            stored = record.copy()
            stored.version = 1
            self._records[stored.id] = stored
            return stored.copy()

    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        with self._lock:
            record = self._records.get(transaction_id)
            return record.copy() if record is not None else None

    def compare_and_update(self, transaction_id: str, expected_version: int,
                           mutation: Mutation) -> TransactionRecord:
        with self._lock:
            current = self._records.get(transaction_id)
            if current is None:
                raise NotFound("Transaction not found", transaction_id=transaction_id)
            if current.version != expected_version:
                raise StaleVersion(
                    f"Transaction {transaction_id} changed (version {current.version}, expected {expected_version})",
                    transaction_id=transaction_id,
                )
            if current.status.is_terminal:
                raise InvalidState(
                    f"Transaction is {current.status.value} and can no longer change",
                    transaction_id=transaction_id,
                )

            updated = current.copy()
            mutation(updated)
            updated.version = current.version + 1
            self._records[transaction_id] = updated
            logger.debug("Committed %s version %d (%s)", transaction_id, updated.version, updated.status.value)
            return updated.copy()

    def query(self, statuses: Optional[Iterable[TransactionStatus]] = None,
              created_by: Optional[str] = None, needs_reconciliation: Optional[bool] = None,
              offset: int = 0, limit: Optional[int] = None) -> Tuple[List[TransactionRecord], int]:
        status_filter = set(statuses) if statuses is not None else None
        with self._lock:
            matches = [
                record for record in self._records.values()
                if (status_filter is None or record.status in status_filter)
                and (created_by is None or (record.created_by or '').lower() == created_by.lower())
                and (needs_reconciliation is None or record.needs_reconciliation == needs_reconciliation)
            ]
            matches.sort(key=lambda r: (r.created_at, r.nonce), reverse=True)
            total = len(matches)
            end = None if limit is None else offset + limit
            return [record.copy() for record in matches[offset:end]], total

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
