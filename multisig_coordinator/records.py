"""
Transaction records - the central entity of the coordinator
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from .errors import InvalidState


class OperationKind(IntEnum):
    CALL = 0
    DELEGATE_CALL = 1


class TransactionStatus(Enum):
    PENDING_SIGNATURES = "pending_signatures"
    READY_TO_EXECUTE = "ready_to_execute"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TransactionStatus.COMPLETED,
    TransactionStatus.FAILED,
    TransactionStatus.EXPIRED,
})

# Directed transition graph; anything not listed is rejected
VALID_TRANSITIONS = {
    TransactionStatus.PENDING_SIGNATURES: {
        TransactionStatus.READY_TO_EXECUTE,
        TransactionStatus.EXPIRED,
    },
    TransactionStatus.READY_TO_EXECUTE: {
        TransactionStatus.EXECUTING,
        TransactionStatus.EXPIRED,
    },
    TransactionStatus.EXECUTING: {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
    },
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.EXPIRED: set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class SignatureEntry:
    """Approval from one owner over the record id"""
    signer: str  # checksummed address
    signature: str  # 0x-prefixed 65-byte hex
    added_at: datetime

    def to_dict(self) -> dict:
        return {
            'signer': self.signer,
            'signature': self.signature,
            'addedAt': _format_time(self.added_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SignatureEntry':
        return cls(
            signer=data['signer'],
            signature=data['signature'],
            added_at=_parse_time(data['addedAt']),
        )


@dataclass(frozen=True)
class DecodedEvent:
    """Event emitted during execution, tagged by name"""
    name: str
    address: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {'name': self.name, 'address': self.address, 'args': dict(self.args)}

    @classmethod
    def from_dict(cls, data: dict) -> 'DecodedEvent':
        return cls(data['name'], data['address'], dict(data.get('args') or {}))


@dataclass
class ExecutionResult:
    """Outcome of submitting a record to the execution target"""
    success: bool
    submission_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    events: List[DecodedEvent] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'submissionHash': self.submission_hash,
            'blockNumber': self.block_number,
            'gasUsed': self.gas_used,
            'events': [event.to_dict() for event in self.events],
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ExecutionResult':
        return cls(
            success=data['success'],
            submission_hash=data['submissionHash'],
            block_number=data.get('blockNumber'),
            gas_used=data.get('gasUsed'),
            events=[DecodedEvent.from_dict(e) for e in data.get('events') or []],
            error=data.get('error'),
        )


@dataclass
class TransactionRecord:
    """Canonically identified operation awaiting approval or execution"""
    id: str
    target: str
    value: int
    payload: bytes
    operation: OperationKind
    nonce: int
    required_signatures: int
    description: str
    created_at: datetime
    expires_at: datetime
    status: TransactionStatus = TransactionStatus.PENDING_SIGNATURES
    signatures: List[SignatureEntry] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    execution_result: Optional[ExecutionResult] = None

    # Reconciliation sub-state of EXECUTING
    needs_reconciliation: bool = False
    reconciliation_reason: Optional[str] = None
    submission_hash: Optional[str] = None

    # Optimistic concurrency token, bumped by the store on every committed update
    version: int = 0

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def current_signatures(self) -> int:
        return len(self.signatures)

    @property
    def payload_hex(self) -> str:
        return '0x' + self.payload.hex()

    @property
    def signatures_needed(self) -> int:
        return max(0, self.required_signatures - self.current_signatures)

    def has_signer(self, address: str) -> bool:
        """Case-insensitive signer membership"""
        address = address.lower()
        return any(entry.signer.lower() == address for entry in self.signatures)

    def is_past_expiry(self, now: datetime) -> bool:
        return now >= self.expires_at

    def transition_to(self, new_status: TransactionStatus, now: datetime):
        """Move to ``new_status`` along the transition graph"""
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise InvalidState(
                f"Cannot move transaction from {self.status.value} to {new_status.value}",
                transaction_id=self.id,
            )
        self.status = new_status
        self.updated_at = now

    def copy(self) -> 'TransactionRecord':
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Serialize record to dictionary"""
        return {
            'id': self.id,
            'target': self.target,
            'value': str(self.value),
            'data': self.payload_hex,
            'operation': int(self.operation),
            'nonce': self.nonce,
            'status': self.status.value,
            'signatures': [entry.to_dict() for entry in self.signatures],
            'requiredSignatures': self.required_signatures,
            'currentSignatures': self.current_signatures,
            'description': self.description,
            'metadata': copy.deepcopy(self.metadata),
            'createdBy': self.created_by,
            'createdAt': _format_time(self.created_at),
            'updatedAt': _format_time(self.updated_at),
            'readyAt': _format_time(self.ready_at),
            'executedAt': _format_time(self.executed_at),
            'expiresAt': _format_time(self.expires_at),
            'executionResult': self.execution_result.to_dict() if self.execution_result else None,
            'needsReconciliation': self.needs_reconciliation,
            'reconciliationReason': self.reconciliation_reason,
            'submissionHash': self.submission_hash,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TransactionRecord':
        """Deserialize record from dictionary"""
        result = data.get('executionResult')
        return cls(
            id=data['id'],
            target=data['target'],
            value=int(data['value']),
            payload=bytes.fromhex(data['data'][2:]),
            operation=OperationKind(data['operation']),
            nonce=data['nonce'],
            required_signatures=data['requiredSignatures'],
            description=data['description'],
            created_at=_parse_time(data['createdAt']),
            expires_at=_parse_time(data['expiresAt']),
            status=TransactionStatus(data['status']),
            signatures=[SignatureEntry.from_dict(s) for s in data.get('signatures') or []],
            metadata=copy.deepcopy(data.get('metadata') or {}),
            created_by=data.get('createdBy'),
            updated_at=_parse_time(data.get('updatedAt')),
            ready_at=_parse_time(data.get('readyAt')),
            executed_at=_parse_time(data.get('executedAt')),
            execution_result=ExecutionResult.from_dict(result) if result else None,
            needs_reconciliation=data.get('needsReconciliation', False),
            reconciliation_reason=data.get('reconciliationReason'),
            submission_hash=data.get('submissionHash'),
            version=data.get('version', 0),
        )
