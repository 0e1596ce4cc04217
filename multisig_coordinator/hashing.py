"""
Canonical transaction hashing

The record id is the Safe ``SafeTx`` EIP-712 digest of the operation with the gas
refund fields zeroed. It is a pure function of the custody account (chain id and
address), the operation and the nonce, and it is the exact message owners sign.
"""

from eth_abi import encode
from eth_utils import keccak

ZERO_ADDRESS = "0x" + "00" * 20

DOMAIN_SEPARATOR_TYPEHASH = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")

SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)


def domain_separator(chain_id: int, custody_address: str) -> bytes:
    """EIP-712 domain separator binding a hash to one custody account"""
    return keccak(encode(
        ['bytes32', 'uint256', 'address'],
        [DOMAIN_SEPARATOR_TYPEHASH, chain_id, custody_address],
    ))


def safe_tx_struct_hash(target: str, value: int, payload: bytes, operation: int, nonce: int) -> bytes:
    return keccak(encode(
        ['bytes32', 'address', 'uint256', 'bytes32', 'uint8',
         'uint256', 'uint256', 'uint256', 'address', 'address', 'uint256'],
        [SAFE_TX_TYPEHASH, target, value, keccak(payload), int(operation),
         0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS, nonce],
    ))


def transaction_hash(chain_id: int, custody_address: str, target: str, value: int,
                     payload: bytes, operation: int, nonce: int) -> str:
    """Compute the 0x-prefixed canonical transaction id"""
    digest = keccak(
        b"\x19\x01"
        + domain_separator(chain_id, custody_address)
        + safe_tx_struct_hash(target, value, payload, operation, nonce)
    )
    return '0x' + digest.hex()
