"""
Input normalisation for addresses, call data, values, ids and signatures
"""

import re
from typing import Union

from eth_utils import is_hex_address, to_checksum_address

from .errors import ValidationError

UINT256_MAX = 2 ** 256 - 1

_HEX_DATA_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")
_TRANSACTION_ID_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")


def normalize_address(value: str, field_name: str = "address") -> str:
    """Validate a 20-byte 0x address and return its checksummed form"""
    if not isinstance(value, str) or not is_hex_address(value):
        raise ValidationError(f"Invalid {field_name} format: {value!r}")
    return to_checksum_address(value)


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def parse_payload(value: Union[str, bytes, None], field_name: str = "data") -> bytes:
    """Accept 0x-prefixed hex (whole bytes) or raw bytes"""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str) or not _HEX_DATA_RE.match(value):
        raise ValidationError(f"Invalid {field_name} hex format")
    return bytes.fromhex(value[2:])


def parse_value(value: Union[int, str, None]) -> int:
    """Parse a uint256 amount given as int or decimal string"""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValidationError("Invalid value: booleans are not amounts")
    if isinstance(value, str):
        # str.isdigit() also accepts superscripts and other scripts' digits
        if not (value.isascii() and value.isdigit()):
            raise ValidationError(f"Invalid value: {value!r}")
        value = int(value)
    if not isinstance(value, int) or not (0 <= value <= UINT256_MAX):
        raise ValidationError(f"Value out of range: {value!r}")
    return value


def parse_transaction_id(value: str) -> str:
    """Validate a 32-byte hex digest, returned lowercase"""
    if not isinstance(value, str) or not _TRANSACTION_ID_RE.match(value):
        raise ValidationError("Invalid transaction ID format")
    return value.lower()


def parse_signature(value: str) -> str:
    """Validate a 65-byte hex signature, returned lowercase"""
    if not isinstance(value, str) or not _SIGNATURE_RE.match(value):
        raise ValidationError("Invalid signature format")
    return value.lower()
