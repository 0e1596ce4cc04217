"""
Owner key utilities

Owners approve a transaction by signing its 32-byte id as an Ethereum personal
message (EIP-191). Signatures are 65 bytes: r (32) | s (32) | v (1).
"""

import hashlib
from typing import Tuple

from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_string, sigencode_string_canonize
from eth_utils import keccak, to_checksum_address

from .errors import InvalidSignature

_ORDER = SECP256k1.order
_HALF_ORDER = _ORDER // 2
_PERSONAL_PREFIX = b"\x19Ethereum Signed Message:\n32"


def personal_message_digest(transaction_id: str) -> bytes:
    """Digest an owner signs for a transaction id"""
    message = bytes.fromhex(transaction_id[2:])
    if len(message) != 32:
        raise ValueError("Transaction id must be 32 bytes")
    return keccak(_PERSONAL_PREFIX + message)


def public_key_to_address(public_key: VerifyingKey) -> str:
    """Checksummed address of a secp256k1 public key"""
    return to_checksum_address(keccak(public_key.to_string())[-20:])


def recover_signer(transaction_id: str, signature_hex: str) -> str:
    """Recover the address that produced ``signature_hex`` over ``transaction_id``

    Raises InvalidSignature for malformed, high-s or unrecoverable signatures.
    """
    signature = bytes.fromhex(signature_hex[2:])
    if len(signature) != 65:
        raise InvalidSignature("Signature must be 65 bytes")

    v = signature[64]
    if v in (27, 28):
        recovery_id = v - 27
    elif v in (0, 1):
        recovery_id = v
    else:
        raise InvalidSignature(f"Unsupported signature v value {v}")

    r, s = sigdecode_string(signature[:64], _ORDER)
    if not (1 <= r < _ORDER) or not (1 <= s <= _HALF_ORDER):
        # high-s values are malleable twins of a valid signature
        raise InvalidSignature("Signature is not canonical")

    digest = personal_message_digest(transaction_id)
    try:
        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            signature[:64], digest, curve=SECP256k1,
            hashfunc=hashlib.sha256, sigdecode=sigdecode_string,
        )
    except Exception as exc:
        raise InvalidSignature(f"Unable to recover signer: {exc}") from exc

    if recovery_id >= len(candidates):
        raise InvalidSignature("Unable to recover signer")
    return public_key_to_address(candidates[recovery_id])


class SignerKey:
    """secp256k1 owner key that signs transaction ids"""

    def __init__(self, private_key: bytes = None):
        if private_key:
            self.private_key = SigningKey.from_string(private_key, curve=SECP256k1)
        else:
            self.private_key = SigningKey.generate(curve=SECP256k1)

        self.public_key = self.private_key.get_verifying_key()
        self.address = public_key_to_address(self.public_key)

    @classmethod
    def from_hex(cls, private_key_hex: str) -> 'SignerKey':
        if private_key_hex.startswith('0x'):
            private_key_hex = private_key_hex[2:]
        return cls(bytes.fromhex(private_key_hex))

    def sign_transaction_id(self, transaction_id: str) -> str:
        """Sign a transaction id and return the 65-byte signature as hex"""
        digest = personal_message_digest(transaction_id)
        rs = self.private_key.sign_digest_deterministic(
            digest, hashfunc=hashlib.sha256, sigencode=sigencode_string_canonize,
        )

        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            rs, digest, curve=SECP256k1,
            hashfunc=hashlib.sha256, sigdecode=sigdecode_string,
        )
        own_key = self.public_key.to_string()
        recovery_id = next(
            i for i, candidate in enumerate(candidates) if candidate.to_string() == own_key
        )
        return '0x' + (rs + bytes([27 + recovery_id])).hex()

    def get_private_key_hex(self) -> str:
        return '0x' + self.private_key.to_string().hex()

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate new key pair and return (private_key_hex, address)"""
        key = SignerKey()
        return key.get_private_key_hex(), key.address
