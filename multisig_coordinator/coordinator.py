"""
MultisigCoordinator - high-level interface used by the web API and scripts
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from eth_utils import function_signature_to_4byte_selector

from .audit import log_rejection
from .batch import SubOperation, encode_multisend_call
from .config import CoordinatorConfig
from .encoding import normalize_address, parse_transaction_id
from .errors import ChainUnavailable, NotAuthorizedSigner, NotFound, Unauthenticated, ValidationError
from .execution import ExecutionCoordinator
from .expiry import ExpirySweeper
from .gateways.chain import ChainGateway
from .gateways.store import RecordStore
from .proposals import TransactionProposalBuilder
from .records import OperationKind, TransactionRecord, TransactionStatus, utcnow
from .signatures import SignatureCollector

logger = logging.getLogger(__name__)

PAUSE_CALL_DATA = function_signature_to_4byte_selector("pause()")


def status_message(record: TransactionRecord) -> str:
    """Human-readable description of a record's state"""
    if record.status == TransactionStatus.PENDING_SIGNATURES:
        return f"Waiting for {record.signatures_needed} more signature(s)"
    if record.status == TransactionStatus.READY_TO_EXECUTE:
        return "Transaction has enough signatures and is ready to execute"
    if record.status == TransactionStatus.EXECUTING:
        if record.needs_reconciliation:
            return "Transaction outcome is unknown and awaits reconciliation"
        return "Transaction is currently being executed"
    if record.status == TransactionStatus.COMPLETED:
        return "Transaction has been successfully executed"
    if record.status == TransactionStatus.FAILED:
        return "Transaction execution failed"
    if record.status == TransactionStatus.EXPIRED:
        return "Transaction has expired and cannot be executed"
    return f"Transaction status: {record.status.value}"


class MultisigCoordinator:
    """Propose, approve, execute and inspect custody account transactions"""

    def __init__(self, config: CoordinatorConfig, gateway: ChainGateway, store: RecordStore,
                 clock: Callable = utcnow):
        self.config = config
        self.gateway = gateway
        self.store = store
        self.proposals = TransactionProposalBuilder(config, gateway, store, clock)
        self.signatures = SignatureCollector(config, gateway, store, clock)
        self.execution = ExecutionCoordinator(config, gateway, store, clock)
        self.sweeper = ExpirySweeper(store, clock)

    # Caller checks

    def _require_caller(self, caller: Optional[str], action: str) -> str:
        if not caller:
            error = Unauthenticated(f"Caller must be authenticated to {action}")
            log_rejection(action, error)
            raise error
        return caller

    def _require_owner(self, caller: Optional[str], action: str, transaction_id: Optional[str] = None) -> str:
        """Caller must currently be an owner of the custody account (checked live)"""
        caller = self._require_caller(caller, action)
        try:
            address = normalize_address(caller, "caller")
            is_owner = self.gateway.is_owner(address, timeout=self.config.query_timeout)
        except ValidationError:
            is_owner = False
        except ChainUnavailable as e:
            log_rejection(action, e, transaction_id=transaction_id, actor=caller)
            raise
        except Exception as exc:
            error = ChainUnavailable(f"Failed to check owner status: {exc}")
            log_rejection(action, error, transaction_id=transaction_id, actor=caller)
            raise error from exc

        if not is_owner:
            error = NotAuthorizedSigner(f"Caller {caller} is not an owner of the custody account")
            log_rejection(action, error, transaction_id=transaction_id, actor=caller)
            raise error
        return address

    # Proposals

    def _proposal_view(self, record: TransactionRecord, **extra) -> Dict[str, Any]:
        view = {
            'success': True,
            'transactionId': record.id,
            'status': record.status.value,
            'requiredSignatures': record.required_signatures,
            'currentSignatures': record.current_signatures,
            'nonce': record.nonce,
            'custodyAddress': self.config.custody_address,
            'description': record.description,
            'expiresAt': record.expires_at.isoformat(),
            'message': f"Transaction proposed successfully. Requires "
                       f"{record.required_signatures} signature(s) to execute.",
        }
        view.update(extra)
        return view

    def propose(self, to: str, value: Union[int, str, None], data: Union[str, bytes],
                operation: Union[int, OperationKind] = OperationKind.CALL, description: str = "",
                metadata: Optional[Dict[str, Any]] = None, caller: Optional[str] = None) -> Dict[str, Any]:
        caller = self._require_caller(caller, "propose")
        record = self.proposals.propose(to, value, data, operation, description, metadata, caller)
        return self._proposal_view(record)

    def propose_contract_call(self, contract_address: str, function_signature: str, args: List[Any],
                              value: Union[int, str, None] = 0, description: str = "",
                              metadata: Optional[Dict[str, Any]] = None,
                              caller: Optional[str] = None) -> Dict[str, Any]:
        caller = self._require_caller(caller, "propose_contract_call")
        record = self.proposals.propose_contract_call(contract_address, function_signature, args,
                                                      value, description, metadata, caller)
        return self._proposal_view(record, functionSignature=function_signature)

    def propose_batch(self, sub_operations: List[Union[dict, SubOperation]], description: str,
                      metadata: Optional[Dict[str, Any]] = None,
                      caller: Optional[str] = None) -> Dict[str, Any]:
        """Propose several operations as one delegate call to MultiSend (all-or-nothing)"""
        caller = self._require_caller(caller, "propose_batch")
        try:
            if not isinstance(sub_operations, list) or not sub_operations:
                raise ValidationError("Transactions array is required and must not be empty")
            if len(sub_operations) > self.config.max_batch_size:
                raise ValidationError(
                    f"Batch cannot contain more than {self.config.max_batch_size} transactions")
            entries = []
            for i, sub in enumerate(sub_operations, start=1):
                try:
                    entries.append(sub if isinstance(sub, SubOperation) else SubOperation.from_dict(sub))
                except ValidationError as e:
                    raise ValidationError(f"Transaction {i}: {e.message}")
            call_data = encode_multisend_call(entries)
        except ValidationError as e:
            log_rejection("propose_batch", e, actor=caller, attempted="create pending_signatures")
            raise

        batch_metadata = dict(metadata or {})
        batch_metadata.update({
            'batchSize': len(entries),
            'transactions': [entry.to_dict() for entry in entries],
        })
        record = self.proposals.propose(self.config.multisend_address, 0, call_data,
                                        OperationKind.DELEGATE_CALL, description, batch_metadata, caller)
        return self._proposal_view(
            record, batchSize=len(entries),
            message=f"Batch of {len(entries)} transactions proposed successfully. "
                    f"Requires {record.required_signatures} signature(s) to execute.",
        )

    def emergency_action(self, target_contract: str, reason: str,
                         caller: Optional[str] = None) -> Dict[str, Any]:
        """Propose an immediate ``pause()`` of ``target_contract``"""
        caller = self._require_caller(caller, "emergency_action")
        if not isinstance(reason, str) or len(reason.strip()) < self.config.emergency_min_reason_length:
            error = ValidationError(
                f"Emergency pause reason must be at least "
                f"{self.config.emergency_min_reason_length} characters")
            log_rejection("emergency_action", error, actor=caller, attempted="create pending_signatures")
            raise error

        reason = reason.strip()
        logger.warning("Emergency pause requested for %s by %s: %s", target_contract, caller, reason)
        record = self.proposals.propose(
            target_contract, 0, PAUSE_CALL_DATA, OperationKind.CALL,
            f"EMERGENCY PAUSE: {reason}",
            {
                'emergency': True,
                'reason': reason,
                'pausedContract': target_contract,
                'requestedAt': self.proposals.clock().isoformat(),
            },
            caller,
        )
        logger.warning("Emergency pause transaction created: %s", record.id)
        return self._proposal_view(
            record,
            message=f"Emergency pause proposed. Requires {record.required_signatures} "
                    f"signature(s) to execute.",
        )

    # Approvals and execution

    def add_signature(self, transaction_id: str, signer: str, signature: str,
                      caller: Optional[str] = None) -> Dict[str, Any]:
        self._require_owner(caller, "add_signature", transaction_id)
        record = self.signatures.add_signature(transaction_id, signer, signature)
        ready = record.status == TransactionStatus.READY_TO_EXECUTE
        return {
            'success': True,
            'transactionId': record.id,
            'status': record.status.value,
            'currentSignatures': record.current_signatures,
            'requiredSignatures': record.required_signatures,
            'readyToExecute': ready,
            'signerAddress': normalize_address(signer, "signer"),
            'message': "Signature added. Transaction is ready to execute!" if ready
                       else f"Signature added. {record.signatures_needed} more signature(s) needed.",
        }

    def execute(self, transaction_id: str, caller: Optional[str] = None) -> Dict[str, Any]:
        self._require_owner(caller, "execute", transaction_id)
        result = self.execution.execute(transaction_id)
        view = result.to_dict()
        view.update({
            'transactionId': parse_transaction_id(transaction_id),
            'status': TransactionStatus.COMPLETED.value,
            'message': f"Transaction executed successfully. Execution hash: {result.submission_hash}",
        })
        return view

    def reconcile(self, transaction_id: str, caller: Optional[str] = None) -> Dict[str, Any]:
        self._require_owner(caller, "reconcile", transaction_id)
        return self._status_view(self.execution.reconcile(transaction_id))

    def sweep_expired(self) -> Dict[str, Any]:
        expired = self.sweeper.sweep()
        return {'success': True, 'expired': expired, 'count': len(expired)}

    # Queries

    def _status_view(self, record: TransactionRecord) -> Dict[str, Any]:
        view = record.to_dict()
        view.update({
            'success': True,
            'transactionId': record.id,
            'readyToExecute': record.status == TransactionStatus.READY_TO_EXECUTE,
            'message': status_message(record),
        })
        return view

    def get_status(self, transaction_id: str) -> Dict[str, Any]:
        transaction_id = parse_transaction_id(transaction_id)
        record = self.store.get(transaction_id)
        if record is None:
            raise NotFound("Transaction not found", transaction_id=transaction_id)
        return self._status_view(record)

    def list_transactions(self, status: Optional[str] = None, created_by: Optional[str] = None,
                          page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        statuses = None
        if status:
            try:
                statuses = [TransactionStatus(status)]
            except ValueError:
                raise ValidationError(f"Unknown status filter: {status!r}")

        page = max(1, int(page or 1))
        limit = min(self.config.list_max_limit, max(1, int(limit or self.config.list_default_limit)))
        records, total = self.store.query(statuses=statuses, created_by=created_by,
                                          offset=(page - 1) * limit, limit=limit)
        return {
            'success': True,
            'records': [self._status_view(record) for record in records],
            'totalCount': total,
            'page': page,
            'limit': limit,
            'hasNext': (page - 1) * limit + len(records) < total,
            'hasPrev': page > 1,
        }

    def pending_reconciliation(self) -> List[Dict[str, Any]]:
        return [self._status_view(record) for record in self.execution.pending_reconciliation()]
