"""
MultiSend-style batch encoding

Each sub-operation is packed as::

    operation (1) | target (20) | value (32) | payload length (32) | payload (N)

and the packed entries are concatenated in order. The packed bytes are submitted as
one outer operation. All-or-nothing semantics come from the outer operation: callers
must delegate-call a MultiSend contract (which reverts the whole batch when any entry
fails). This module does not enforce that choice.
"""

from dataclasses import dataclass
from typing import List, Sequence, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .encoding import normalize_address, parse_payload, parse_value
from .errors import ValidationError
from .records import OperationKind

_HEADER_SIZE = 1 + 20 + 32 + 32

MULTISEND_SELECTOR = function_signature_to_4byte_selector("multiSend(bytes)")


@dataclass(frozen=True)
class SubOperation:
    """One entry of a batch"""
    target: str
    value: int
    payload: bytes
    operation: OperationKind = OperationKind.CALL

    def __post_init__(self):
        # frozen, so normalised fields are set through object.__setattr__
        try:
            operation = OperationKind(int(self.operation))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid operation kind: {self.operation!r}")
        object.__setattr__(self, 'target', normalize_address(self.target, "to"))
        object.__setattr__(self, 'value', parse_value(self.value))
        object.__setattr__(self, 'payload', parse_payload(self.payload, "data"))
        object.__setattr__(self, 'operation', operation)

    @classmethod
    def from_dict(cls, data: dict) -> 'SubOperation':
        """Build from API input ({to, value, data, operation})"""
        if not isinstance(data, dict):
            raise ValidationError("Batch entry must be an object")
        return cls(
            target=data.get('to'),
            value=data.get('value'),
            payload=data.get('data'),
            operation=data.get('operation', 0),
        )

    def to_dict(self) -> dict:
        return {
            'to': self.target,
            'value': str(self.value),
            'data': '0x' + self.payload.hex(),
            'operation': int(self.operation),
        }


def encode_batch(sub_operations: Sequence[SubOperation]) -> bytes:
    """Pack sub-operations into a single payload, preserving order"""
    if not sub_operations:
        raise ValidationError("Batch must contain at least one operation")

    packed = bytearray()
    for sub in sub_operations:
        packed += int(sub.operation).to_bytes(1, 'big')
        packed += bytes.fromhex(sub.target[2:])
        packed += sub.value.to_bytes(32, 'big')
        packed += len(sub.payload).to_bytes(32, 'big')
        packed += sub.payload
    return bytes(packed)


def decode_batch(payload: Union[bytes, str]) -> List[SubOperation]:
    """Exact inverse of encode_batch"""
    if isinstance(payload, str):
        payload = parse_payload(payload)

    sub_operations = []
    offset = 0
    while offset < len(payload):
        if len(payload) - offset < _HEADER_SIZE:
            raise ValidationError(f"Truncated batch entry header at offset {offset}")

        try:
            operation = OperationKind(payload[offset])
        except ValueError:
            raise ValidationError(f"Unknown operation kind {payload[offset]} at offset {offset}")
        target = to_checksum_address(payload[offset + 1:offset + 21])
        value = int.from_bytes(payload[offset + 21:offset + 53], 'big')
        length = int.from_bytes(payload[offset + 53:offset + 85], 'big')
        offset += _HEADER_SIZE

        if len(payload) - offset < length:
            raise ValidationError(f"Truncated batch entry payload at offset {offset}")
        sub_operations.append(SubOperation(target, value, payload[offset:offset + length], operation))
        offset += length

    if not sub_operations:
        raise ValidationError("Batch payload is empty")
    return sub_operations


def encode_multisend_call(sub_operations: Sequence[SubOperation]) -> bytes:
    """Wrap the packed batch as call data for ``multiSend(bytes)``"""
    return MULTISEND_SELECTOR + encode(['bytes'], [encode_batch(sub_operations)])


def decode_multisend_call(call_data: bytes) -> List[SubOperation]:
    if call_data[:4] != MULTISEND_SELECTOR:
        raise ValidationError("Call data is not a multiSend(bytes) call")
    try:
        (packed,) = decode(['bytes'], call_data[4:])
    except DecodingError as exc:
        raise ValidationError(f"Malformed multiSend call data: {exc}") from exc
    return decode_batch(packed)
