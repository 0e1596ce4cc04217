"""
TransactionProposalBuilder - turns an intended operation into a stored record
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from eth_abi import encode
from eth_abi.exceptions import ABITypeError, EncodingError, ParseError
from eth_abi.grammar import parse as parse_abi_type
from eth_utils import function_signature_to_4byte_selector

from .audit import log_rejection
from .config import CoordinatorConfig
from .encoding import normalize_address, parse_payload, parse_value
from .errors import ChainUnavailable, CoordinatorError, ValidationError
from .gateways.chain import ChainGateway
from .gateways.store import RecordStore
from .hashing import transaction_hash
from .records import OperationKind, TransactionRecord, utcnow

logger = logging.getLogger(__name__)


def encode_function_call(function_signature: str, args: List[Any]) -> bytes:
    """ABI-encode ``name(type,...)`` with ``args`` into call data"""
    if not isinstance(function_signature, str) or '(' not in function_signature \
            or not function_signature.endswith(')'):
        raise ValidationError(f"Invalid function signature: {function_signature!r}")
    if not isinstance(args, (list, tuple)):
        raise ValidationError("Function arguments must be a list")

    inner = function_signature[function_signature.index('(') + 1:-1]
    try:
        types = [c.to_type_str() for c in parse_abi_type(f"({inner})").components] if inner else []
    except (ABITypeError, ParseError, ValueError) as exc:
        raise ValidationError(f"Invalid argument types in {function_signature!r}: {exc}") from exc
    if len(types) != len(args):
        raise ValidationError(f"{function_signature} expects {len(types)} argument(s), got {len(args)}")

    try:
        encoded_args = encode(types, list(args))
    except (EncodingError, TypeError, ValueError) as exc:
        raise ValidationError(f"Cannot encode arguments for {function_signature}: {exc}") from exc
    return function_signature_to_4byte_selector(function_signature) + encoded_args


def _metadata_value(arg: Any) -> Any:
    # uint256 and bytes arguments are not JSON friendly
    if isinstance(arg, bool):
        return arg
    if isinstance(arg, int):
        return str(arg)
    if isinstance(arg, (bytes, bytearray)):
        return '0x' + bytes(arg).hex()
    if isinstance(arg, (list, tuple)):
        return [_metadata_value(item) for item in arg]
    return arg


class TransactionProposalBuilder:
    """Creates canonical, uniquely identified transaction records"""

    def __init__(self, config: CoordinatorConfig, gateway: ChainGateway, store: RecordStore,
                 clock: Callable = utcnow):
        self.config = config
        self.gateway = gateway
        self.store = store
        self.clock = clock

    def propose(self, target: str, value: Union[int, str, None], payload: Union[str, bytes],
                operation: Union[int, OperationKind] = OperationKind.CALL, description: str = "",
                metadata: Optional[Dict[str, Any]] = None,
                created_by: Optional[str] = None) -> TransactionRecord:
        """Validate, fetch nonce and threshold, hash, and persist a pending record"""
        try:
            return self._propose(target, value, payload, operation, description, metadata, created_by)
        except CoordinatorError as e:
            log_rejection("propose", e, actor=created_by, attempted="create pending_signatures")
            raise

    def _propose(self, target, value, payload, operation, description, metadata, created_by):
        target = normalize_address(target, "to")
        value = parse_value(value)
        payload = parse_payload(payload)
        try:
            operation = OperationKind(int(operation))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid operation kind: {operation!r}")
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("Description is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Metadata must be an object")

        try:
            nonce = self.gateway.get_nonce(timeout=self.config.query_timeout)
            required_signatures = self.gateway.get_threshold(timeout=self.config.query_timeout)
        except ChainUnavailable:
            raise
        except Exception as exc:
            raise ChainUnavailable(f"Failed to query custody account state: {exc}") from exc

        transaction_id = transaction_hash(
            self.config.chain_id, self.config.custody_address,
            target, value, payload, operation, nonce,
        )
        now = self.clock()
        record = TransactionRecord(
            id=transaction_id,
            target=target,
            value=value,
            payload=payload,
            operation=operation,
            nonce=nonce,
            required_signatures=required_signatures,
            description=description.strip(),
            created_at=now,
            expires_at=now + self.config.proposal_ttl,
            metadata=dict(metadata or {}),
            created_by=created_by,
        )

        stored = self.store.create(record)
        logger.info("Transaction proposal created: %s nonce=%d threshold=%d",
                    stored.id, stored.nonce, stored.required_signatures)
        return stored

    def propose_contract_call(self, contract_address: str, function_signature: str, args: List[Any],
                              value: Union[int, str, None] = 0, description: str = "",
                              metadata: Optional[Dict[str, Any]] = None,
                              created_by: Optional[str] = None) -> TransactionRecord:
        """Encode a contract function call and propose it"""
        try:
            call_data = encode_function_call(function_signature, args)
        except ValidationError as e:
            log_rejection("propose_contract_call", e, actor=created_by, attempted="create pending_signatures")
            raise

        call_metadata = dict(metadata or {})
        call_metadata.update({
            'functionSignature': function_signature,
            'args': [_metadata_value(arg) for arg in args],
            'contractAddress': contract_address,
        })
        return self.propose(contract_address, value, call_data, OperationKind.CALL,
                            description, call_metadata, created_by)
