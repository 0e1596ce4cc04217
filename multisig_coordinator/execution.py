"""
ExecutionCoordinator - at-most-once execution of ready records

The ``ready_to_execute -> executing`` claim is committed before anything is sent
to the chain, so only one caller ever submits a given record. Once a record is
executing it is never retried automatically: when the outcome of a submission is
unknown the record stays executing with ``needs_reconciliation`` set, and
``reconcile`` resolves it later from chain data.
"""

import logging
from datetime import timedelta
from typing import Callable, List, Optional

from .audit import log_rejection, log_transition
from .config import CoordinatorConfig
from .encoding import parse_transaction_id
from .errors import (
    ChainUnavailable, Conflict, CoordinatorError, ExecutionFailed, Expired,
    InsufficientSignatures, InvalidState, NotFound, ReconciliationRequired, SubmissionRejected,
)
from .expiry import expire_record
from .gateways.chain import ChainGateway
from .gateways.store import Mutation, RecordStore, StaleVersion
from .records import ExecutionResult, TransactionRecord, TransactionStatus, utcnow

logger = logging.getLogger(__name__)


class ExecutionCoordinator:
    """Claims ready records and drives them to a terminal state"""

    def __init__(self, config: CoordinatorConfig, gateway: ChainGateway, store: RecordStore,
                 clock: Callable = utcnow):
        self.config = config
        self.gateway = gateway
        self.store = store
        self.clock = clock

    def execute(self, transaction_id: str) -> ExecutionResult:
        """Submit a ready record exactly once and finalize it

        Returns the successful ExecutionResult. Raises ExecutionFailed on a
        confirmed failure and ReconciliationRequired when the outcome is unknown.
        """
        try:
            transaction_id = parse_transaction_id(transaction_id)
            record = self._claim(transaction_id)
        except CoordinatorError as e:
            log_rejection("execute", e, transaction_id=transaction_id,
                          attempted="ready_to_execute -> executing")
            raise

        return self._submit(record)

    def _claim(self, transaction_id: str) -> TransactionRecord:
        for attempt in range(1, self.config.conflict_retries + 1):
            record = self.store.get(transaction_id)
            if record is None:
                raise NotFound("Transaction not found", transaction_id=transaction_id)

            now = self.clock()
            if record.status == TransactionStatus.EXPIRED:
                raise Expired("Transaction has expired", transaction_id=transaction_id)
            if record.status == TransactionStatus.READY_TO_EXECUTE and record.is_past_expiry(now):
                if expire_record(self.store, record, now) is None:
                    continue
                raise Expired("Transaction has expired", transaction_id=transaction_id)
            if record.status != TransactionStatus.READY_TO_EXECUTE:
                raise InvalidState(
                    f"Transaction not ready for execution, status: {record.status.value}. "
                    f"Signatures: {record.current_signatures}/{record.required_signatures}",
                    transaction_id=transaction_id,
                )
            if record.current_signatures < record.required_signatures:
                raise InsufficientSignatures("Insufficient signatures", transaction_id=transaction_id)

            def claim(r: TransactionRecord):
                r.transition_to(TransactionStatus.EXECUTING, now)

            try:
                claimed = self.store.compare_and_update(transaction_id, record.version, claim)
            except StaleVersion:
                logger.debug("Execution claim lost for %s (attempt %d)", transaction_id, attempt)
                continue

            log_transition(transaction_id, record.status.value, claimed.status.value)
            return claimed

        raise Conflict(f"Transaction {transaction_id} is being modified concurrently",
                       transaction_id=transaction_id)

    def _submit(self, record: TransactionRecord) -> ExecutionResult:
        logger.info("Executing transaction %s with %d signature(s)", record.id, record.current_signatures)

        try:
            submission_hash = self.gateway.submit(record, timeout=self.config.query_timeout)
        except SubmissionRejected as exc:
            result = ExecutionResult(success=False, submission_hash="", error=exc.message)
            self._finalize(record.id, result)
            raise ExecutionFailed(f"Transaction execution failed: {exc.message}",
                                  result=result, transaction_id=record.id) from exc
        except Exception as exc:
            # Whether the node accepted the submission is unknown
            logger.exception("Submission of %s ended without a definite outcome", record.id)
            self._flag_reconciliation(record.id, None, f"Submission outcome unknown: {exc}")
            raise ReconciliationRequired(
                "Submission outcome is unknown; transaction requires reconciliation",
                transaction_id=record.id,
            ) from exc

        self._update(record.id, lambda r: setattr(r, 'submission_hash', submission_hash))

        try:
            result = self.gateway.wait_for_receipt(submission_hash, timeout=self.config.confirmation_timeout)
        except Exception as exc:
            logger.warning("Confirmation of %s (%s) failed: %s", record.id, submission_hash, exc)
            self._flag_reconciliation(record.id, submission_hash, f"Confirmation wait failed: {exc}")
            raise ReconciliationRequired(
                f"Submitted as {submission_hash} but confirmation was not observed; "
                "transaction requires reconciliation",
                submission_hash=submission_hash, transaction_id=record.id,
            ) from exc

        self._finalize(record.id, result)
        if not result.success:
            raise ExecutionFailed(f"Transaction execution failed: {result.error or 'reverted'}",
                                  result=result, transaction_id=record.id)

        logger.info("Transaction %s executed in block %s (%s)",
                    record.id, result.block_number, result.submission_hash)
        return result

    def reconcile(self, transaction_id: str) -> TransactionRecord:
        """Resolve an executing record whose outcome was not observed

        Looks the submission up by hash, or by canonical id when no hash was
        recorded. The record is finalized when the chain reports an outcome and
        is returned unchanged otherwise. A record with no submission hash whose
        nonce the custody account has already moved past is finalized as failed,
        since it can no longer execute.
        """
        transaction_id = parse_transaction_id(transaction_id)
        record = self.store.get(transaction_id)
        if record is None:
            raise NotFound("Transaction not found", transaction_id=transaction_id)
        if not self._awaiting_reconciliation(record, self.clock()):
            error = InvalidState(f"Transaction is not awaiting reconciliation (status {record.status.value})",
                                 transaction_id=transaction_id)
            log_rejection("reconcile", error, transaction_id=transaction_id, attempted="executing -> final")
            raise error

        try:
            if record.submission_hash:
                chain_nonce = None
                result = self.gateway.get_receipt(record.submission_hash)
            else:
                # read before the lookup so an execution landing in between is still found
                chain_nonce = self.gateway.get_nonce(timeout=self.config.query_timeout)
                result = self.gateway.find_execution(transaction_id)
        except ChainUnavailable as e:
            log_rejection("reconcile", e, transaction_id=transaction_id, attempted="executing -> final")
            raise
        except Exception as exc:
            error = ChainUnavailable(f"Failed to query execution outcome: {exc}")
            log_rejection("reconcile", error, transaction_id=transaction_id, attempted="executing -> final")
            raise error from exc

        if result is None and chain_nonce is not None and chain_nonce > record.nonce:
            logger.warning("Nonce %d of %s was consumed without executing it (custody nonce %d)",
                           record.nonce, transaction_id, chain_nonce)
            result = ExecutionResult(success=False, submission_hash="",
                                     error="Nonce consumed without execution")

        if result is None:
            logger.info("Transaction %s still unresolved", transaction_id)
            return record

        logger.info("Reconciled %s: success=%s", transaction_id, result.success)
        return self._finalize(transaction_id, result)

    def pending_reconciliation(self) -> List[TransactionRecord]:
        """Executing records whose outcome still needs to be established"""
        now = self.clock()
        records, _ = self.store.query(statuses=[TransactionStatus.EXECUTING])
        return [record for record in records if self._awaiting_reconciliation(record, now)]

    def _awaiting_reconciliation(self, record: TransactionRecord, now) -> bool:
        if record.status != TransactionStatus.EXECUTING:
            return False
        if record.needs_reconciliation:
            return True
        # A claim older than the confirmation window belongs to a caller that went away
        stale_after = timedelta(seconds=self.config.confirmation_timeout)
        return now - record.updated_at > stale_after

    def _flag_reconciliation(self, transaction_id: str, submission_hash: Optional[str], reason: str):
        now = self.clock()

        def flag(r: TransactionRecord):
            r.needs_reconciliation = True
            r.reconciliation_reason = reason
            r.submission_hash = submission_hash or r.submission_hash
            r.updated_at = now

        self._update(transaction_id, flag)

    def _finalize(self, transaction_id: str, result: ExecutionResult) -> TransactionRecord:
        now = self.clock()
        new_status = TransactionStatus.COMPLETED if result.success else TransactionStatus.FAILED

        def finalize(r: TransactionRecord):
            r.transition_to(new_status, now)
            r.executed_at = now
            r.execution_result = result
            r.submission_hash = result.submission_hash or r.submission_hash
            r.needs_reconciliation = False
            r.reconciliation_reason = None

        updated = self._update(transaction_id, finalize)
        log_transition(transaction_id, TransactionStatus.EXECUTING.value, updated.status.value)
        return updated

    def _update(self, transaction_id: str, mutation: Mutation) -> TransactionRecord:
        """CAS an executing record, retrying on version conflicts"""
        for _ in range(self.config.conflict_retries):
            record = self.store.get(transaction_id)
            if record.status != TransactionStatus.EXECUTING:
                # finalized by a concurrent reconciliation
                return record
            try:
                return self.store.compare_and_update(transaction_id, record.version, mutation)
            except StaleVersion:
                continue
        raise Conflict(f"Could not update transaction {transaction_id}", transaction_id=transaction_id)
