"""
ChainGateway - the execution target seen by the coordinator

``ChainGateway`` is the interface; ``SimulatedChainGateway`` is an in-process
Safe-compatible chain used by the demo, the web interface default wiring and tests.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional

from eth_utils import keccak

from ..encoding import normalize_address, same_address
from ..errors import ChainUnavailable, InvalidSignature, SubmissionRejected
from ..hashing import transaction_hash
from ..records import DecodedEvent, ExecutionResult, SignatureEntry, TransactionRecord
from ..signer_keys import recover_signer

logger = logging.getLogger(__name__)

# Safe marks eth_sign (personal message) signatures by adding 4 to v
ETH_SIGN_V_OFFSET = 4


def pack_signatures(signatures: List[SignatureEntry]) -> bytes:
    """Concatenate signatures sorted by signer, in the layout Safe expects"""
    packed = bytearray()
    for entry in sorted(signatures, key=lambda e: int(e.signer, 16)):
        raw = bytes.fromhex(entry.signature[2:])
        v = raw[64] if raw[64] >= 27 else raw[64] + 27
        packed += raw[:64] + bytes([v + ETH_SIGN_V_OFFSET])
    return bytes(packed)


class ChainGateway(ABC):
    """Queries custody account state and submits approved operations

    All methods accept an optional ``timeout`` in seconds and raise
    ChainUnavailable when the target cannot answer in time. ``submit`` returns
    only once the target has accepted the submission; SubmissionRejected means
    it was refused outright.
    """

    chain_id: int
    custody_address: str

    @abstractmethod
    def get_nonce(self, timeout: Optional[float] = None) -> int:
        pass

    @abstractmethod
    def get_threshold(self, timeout: Optional[float] = None) -> int:
        pass

    @abstractmethod
    def get_owners(self, timeout: Optional[float] = None) -> List[str]:
        pass

    def is_owner(self, address: str, timeout: Optional[float] = None) -> bool:
        return any(same_address(owner, address) for owner in self.get_owners(timeout=timeout))

    @abstractmethod
    def submit(self, record: TransactionRecord, timeout: Optional[float] = None) -> str:
        """Submit a fully signed record; returns the submission hash"""

    @abstractmethod
    def wait_for_receipt(self, submission_hash: str, timeout: Optional[float] = None) -> ExecutionResult:
        """Block until the submission is confirmed and return its outcome"""

    @abstractmethod
    def get_receipt(self, submission_hash: str) -> Optional[ExecutionResult]:
        """Non-blocking receipt lookup; None while unconfirmed"""

    @abstractmethod
    def find_execution(self, transaction_id: str) -> Optional[ExecutionResult]:
        """Look up a confirmed execution by canonical transaction id"""


class FailureMode(Enum):
    UNAVAILABLE = "unavailable"  # submit fails before acceptance is known
    REJECT = "reject"  # submit refused outright
    REVERT = "revert"  # mined, but the execution reverted
    CONFIRMATION_TIMEOUT = "confirmation_timeout"  # mined, but waiting for it fails


class SimulatedChainGateway(ChainGateway):
    """In-process Safe-compatible execution target"""

    def __init__(self, owners: List[str], threshold: int, chain_id: int = 80002,
                 custody_address: str = "0x" + "5a" * 20, nonce: int = 0,
                 submit_delay: float = 0.0):
        if not (1 <= threshold <= len(owners)):
            raise ValueError(f"Threshold must be between 1 and {len(owners)}, got {threshold}")

        self.chain_id = chain_id
        self.custody_address = normalize_address(custody_address, "custody address")
        self.owners = [normalize_address(owner, "owner") for owner in owners]
        self.threshold = threshold
        self.nonce = nonce
        self.block_number = 1000
        self.available = True
        self.submit_delay = submit_delay

        self.submissions: List[str] = []
        self._receipts: Dict[str, ExecutionResult] = {}
        self._pending: Dict[str, ExecutionResult] = {}
        self._failures: List[FailureMode] = []
        self._lock = threading.Lock()

    # Test and demo controls

    def fail_next(self, mode: FailureMode):
        """Queue a failure for the next submission"""
        with self._lock:
            self._failures.append(mode)

    def add_owner(self, address: str):
        with self._lock:
            self.owners.append(normalize_address(address, "owner"))

    def remove_owner(self, address: str):
        with self._lock:
            self.owners = [o for o in self.owners if not same_address(o, address)]
            self.threshold = min(self.threshold, len(self.owners))

    def confirm_pending(self):
        """Mine submissions whose confirmation wait previously failed"""
        with self._lock:
            self._receipts.update(self._pending)
            self._pending.clear()

    # ChainGateway

    def _check_available(self):
        if not self.available:
            raise ChainUnavailable("Chain RPC is unavailable")

    def get_nonce(self, timeout: Optional[float] = None) -> int:
        self._check_available()
        with self._lock:
            return self.nonce

    def get_threshold(self, timeout: Optional[float] = None) -> int:
        self._check_available()
        with self._lock:
            return self.threshold

    def get_owners(self, timeout: Optional[float] = None) -> List[str]:
        self._check_available()
        with self._lock:
            return list(self.owners)

    def submit(self, record: TransactionRecord, timeout: Optional[float] = None) -> str:
        self._check_available()
        if self.submit_delay:
            time.sleep(self.submit_delay)

        with self._lock:
            mode = self._failures.pop(0) if self._failures else None
            if mode is FailureMode.UNAVAILABLE:
                raise ChainUnavailable("Connection reset while submitting transaction")
            if mode is FailureMode.REJECT:
                raise SubmissionRejected("Transaction rejected by node: insufficient funds for gas")

            self._verify_execution(record)

            submission_hash = '0x' + keccak(
                bytes.fromhex(record.id[2:]) + len(self.submissions).to_bytes(8, 'big')
            ).hex()
            self.submissions.append(submission_hash)
            self.block_number += 1

            if mode is FailureMode.REVERT:
                # safeTxGas and gasPrice are zero, so a failing inner call reverts the
                # whole transaction (GS013): no event and the nonce is not consumed
                receipt = ExecutionResult(
                    success=False,
                    submission_hash=submission_hash,
                    block_number=self.block_number,
                    gas_used=48_211,
                    events=[],
                    error="execution reverted: GS013",
                )
            else:
                self.nonce += 1
                receipt = ExecutionResult(
                    success=True,
                    submission_hash=submission_hash,
                    block_number=self.block_number,
                    gas_used=84_512 + 16 * len(record.payload),
                    events=[DecodedEvent("ExecutionSuccess", self.custody_address,
                                         {'txHash': record.id, 'payment': 0})],
                )

            if mode is FailureMode.CONFIRMATION_TIMEOUT:
                self._pending[submission_hash] = receipt
            else:
                self._receipts[submission_hash] = receipt

            logger.info("Simulated chain accepted %s as %s", record.id, submission_hash)
            return submission_hash

    def _verify_execution(self, record: TransactionRecord):
        """Re-check what the Safe contract checks in execTransaction"""
        if record.nonce != self.nonce:
            raise SubmissionRejected(f"Nonce {record.nonce} is not the current nonce {self.nonce}")

        expected_id = transaction_hash(self.chain_id, self.custody_address, record.target,
                                       record.value, record.payload, record.operation, record.nonce)
        if expected_id != record.id:
            raise SubmissionRejected("Transaction hash does not match transaction fields")

        packed = pack_signatures(record.signatures)
        if len(packed) // 65 < self.threshold:
            raise SubmissionRejected("GS020: signatures data too short")

        last_owner = 0
        for i in range(0, len(packed), 65):
            chunk = packed[i:i + 65]
            original = chunk[:64] + bytes([chunk[64] - ETH_SIGN_V_OFFSET])
            try:
                signer = recover_signer(record.id, '0x' + original.hex())
            except InvalidSignature as exc:
                raise SubmissionRejected(f"GS026: {exc}") from exc
            if not any(same_address(signer, owner) for owner in self.owners):
                raise SubmissionRejected("GS026: invalid owner provided")
            if int(signer, 16) <= last_owner:
                raise SubmissionRejected("GS026: owners not in ascending order")
            last_owner = int(signer, 16)

    def wait_for_receipt(self, submission_hash: str, timeout: Optional[float] = None) -> ExecutionResult:
        with self._lock:
            receipt = self._receipts.get(submission_hash)
        if receipt is None:
            raise ChainUnavailable(f"Timed out waiting for receipt of {submission_hash}")
        return receipt

    def get_receipt(self, submission_hash: str) -> Optional[ExecutionResult]:
        self._check_available()
        with self._lock:
            return self._receipts.get(submission_hash)

    def find_execution(self, transaction_id: str) -> Optional[ExecutionResult]:
        self._check_available()
        with self._lock:
            for receipt in self._receipts.values():
                if any(event.args.get('txHash') == transaction_id for event in receipt.events):
                    return receipt
        return None
