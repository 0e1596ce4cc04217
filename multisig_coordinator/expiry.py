"""
Time-based expiry of records that never reached execution
"""

import logging
from typing import Callable, List, Optional

from .audit import log_transition
from .errors import InvalidState
from .gateways.store import RecordStore, StaleVersion
from .records import TransactionRecord, TransactionStatus, utcnow

logger = logging.getLogger(__name__)

EXPIRABLE_STATUSES = (TransactionStatus.PENDING_SIGNATURES, TransactionStatus.READY_TO_EXECUTE)


def expire_record(store: RecordStore, record: TransactionRecord, now) -> Optional[TransactionRecord]:
    """Move an overdue record to expired; None if it is not overdue or changed underneath"""
    if record.status not in EXPIRABLE_STATUSES or not record.is_past_expiry(now):
        return None

    def mutate(r: TransactionRecord):
        r.transition_to(TransactionStatus.EXPIRED, now)

    try:
        updated = store.compare_and_update(record.id, record.version, mutate)
    except (StaleVersion, InvalidState):
        logger.debug("Record %s changed before it could be expired", record.id)
        return None

    log_transition(record.id, record.status.value, updated.status.value, actor="expiry")
    return updated


class ExpirySweeper:
    """Periodic sweep moving overdue pending/ready records to expired"""

    def __init__(self, store: RecordStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    def sweep(self) -> List[str]:
        now = self.clock()
        candidates, _ = self.store.query(statuses=EXPIRABLE_STATUSES)

        expired = []
        for record in candidates:
            if record.is_past_expiry(now) and expire_record(self.store, record, now) is not None:
                expired.append(record.id)

        if expired:
            logger.info("Expired %d transaction(s)", len(expired))
        return expired
