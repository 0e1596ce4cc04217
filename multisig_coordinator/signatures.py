"""
SignatureCollector - verifies and accumulates owner approvals

Each approval is committed with a single compare-and-swap against the record
store. The update that first reaches the threshold also moves the record to
``ready_to_execute``; later approvals are still recorded but never move it back.
"""

import logging
from typing import Callable

from .audit import log_rejection, log_transition
from .config import CoordinatorConfig
from .encoding import normalize_address, parse_signature, parse_transaction_id, same_address
from .errors import (
    ChainUnavailable, Conflict, CoordinatorError, DuplicateSigner, Expired,
    InvalidSignature, InvalidState, NotAuthorizedSigner, NotFound,
)
from .expiry import expire_record
from .gateways.chain import ChainGateway
from .gateways.store import RecordStore, StaleVersion
from .records import SignatureEntry, TransactionRecord, TransactionStatus, utcnow
from .signer_keys import recover_signer

logger = logging.getLogger(__name__)

SIGNABLE_STATUSES = (TransactionStatus.PENDING_SIGNATURES, TransactionStatus.READY_TO_EXECUTE)


class SignatureCollector:
    """Adds verified signatures to records"""

    def __init__(self, config: CoordinatorConfig, gateway: ChainGateway, store: RecordStore,
                 clock: Callable = utcnow):
        self.config = config
        self.gateway = gateway
        self.store = store
        self.clock = clock

    def add_signature(self, transaction_id: str, claimed_signer: str, signature: str) -> TransactionRecord:
        """Verify ``signature`` from ``claimed_signer`` and append it to the record

        Raises NotFound, Expired, InvalidState, DuplicateSigner, InvalidSignature,
        NotAuthorizedSigner, ChainUnavailable, or Conflict once retries run out.
        """
        try:
            return self._add_signature(transaction_id, claimed_signer, signature)
        except CoordinatorError as e:
            log_rejection("add_signature", e, transaction_id=transaction_id,
                          actor=claimed_signer, attempted="append signature")
            raise

    def _add_signature(self, transaction_id: str, claimed_signer: str, signature: str) -> TransactionRecord:
        transaction_id = parse_transaction_id(transaction_id)
        signer = normalize_address(claimed_signer, "signer")
        signature = parse_signature(signature)

        verified = False
        for attempt in range(1, self.config.conflict_retries + 1):
            record = self.store.get(transaction_id)
            if record is None:
                raise NotFound("Transaction not found", transaction_id=transaction_id)

            now = self.clock()
            if record.status == TransactionStatus.EXPIRED:
                raise Expired("Transaction has expired", transaction_id=transaction_id)
            if record.status in SIGNABLE_STATUSES and record.is_past_expiry(now):
                if expire_record(self.store, record, now) is None:
                    continue
                raise Expired("Transaction has expired", transaction_id=transaction_id)
            if record.status not in SIGNABLE_STATUSES:
                raise InvalidState(
                    f"Cannot add signature, transaction status is {record.status.value}",
                    transaction_id=transaction_id,
                )
            if record.has_signer(signer):
                raise DuplicateSigner("Address has already signed this transaction",
                                      transaction_id=transaction_id, signer=signer)

            if not verified:
                self._verify(record, signer, signature)
                verified = True

            try:
                updated = self.store.compare_and_update(
                    transaction_id, record.version,
                    lambda r: self._append(r, signer, signature, now),
                )
            except StaleVersion:
                logger.debug("Signature CAS lost for %s (attempt %d)", transaction_id, attempt)
                continue

            if updated.status != record.status:
                log_transition(transaction_id, record.status.value, updated.status.value, actor=signer)
            logger.info("Signature added to %s: %d/%d", transaction_id,
                        updated.current_signatures, updated.required_signatures)
            return updated

        raise Conflict(
            f"Transaction {transaction_id} is being modified concurrently, retry the request",
            transaction_id=transaction_id,
        )

    def _verify(self, record: TransactionRecord, signer: str, signature: str):
        """Signature must recover to the claimed signer, who must currently be an owner"""
        recovered = recover_signer(record.id, signature)
        if not same_address(recovered, signer):
            raise InvalidSignature("Signature does not match signer address",
                                   transaction_id=record.id, signer=signer)

        try:
            is_owner = self.gateway.is_owner(signer, timeout=self.config.query_timeout)
        except ChainUnavailable:
            raise
        except Exception as exc:
            raise ChainUnavailable(f"Failed to check owner status: {exc}") from exc
        if not is_owner:
            raise NotAuthorizedSigner(f"{signer} is not an owner of the custody account",
                                      transaction_id=record.id, signer=signer)

    @staticmethod
    def _append(record: TransactionRecord, signer: str, signature: str, now):
        record.signatures.append(SignatureEntry(signer=signer, signature=signature, added_at=now))
        record.updated_at = now
        if (record.status == TransactionStatus.PENDING_SIGNATURES
                and record.current_signatures >= record.required_signatures):
            record.transition_to(TransactionStatus.READY_TO_EXECUTE, now)
            record.ready_at = now
