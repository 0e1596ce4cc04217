import unittest

from eth_abi import encode
from eth_utils import keccak

from multisig_coordinator.hashing import domain_separator, transaction_hash
from multisig_coordinator.records import OperationKind

SAFE = "0x" + "5a" * 20
TARGET = "0x" + "aa" * 20


class TestTransactionHash(unittest.TestCase):

    def test_format(self):
        tx_id = transaction_hash(80002, SAFE, TARGET, 0, b"\x12\x34", OperationKind.CALL, 0)
        self.assertRegex(tx_id, r"^0x[0-9a-f]{64}$")

    def test_deterministic(self):
        """Identical inputs always produce the identical id"""
        a = transaction_hash(80002, SAFE, TARGET, 10, b"\x12\x34", OperationKind.CALL, 4)
        b = transaction_hash(80002, SAFE, TARGET.upper().replace("0X", "0x"), 10, b"\x12\x34", 0, 4)
        self.assertEqual(a, b)

    def test_every_field_is_bound(self):
        base = dict(chain_id=80002, custody_address=SAFE, target=TARGET, value=0,
                    payload=b"\x12\x34", operation=OperationKind.CALL, nonce=0)
        reference = transaction_hash(**base)

        variations = {
            'chain_id': 137,
            'custody_address': "0x" + "5b" * 20,
            'target': "0x" + "ab" * 20,
            'value': 1,
            'payload': b"\x12\x35",
            'operation': OperationKind.DELEGATE_CALL,
            'nonce': 1,
        }
        for name, changed in variations.items():
            with self.subTest(field=name):
                self.assertNotEqual(transaction_hash(**dict(base, **{name: changed})), reference)

    def test_eip712_envelope(self):
        """Id is keccak(0x1901 | domain separator | struct hash)"""
        separator = domain_separator(80002, SAFE)
        self.assertEqual(len(separator), 32)
        self.assertNotEqual(separator, domain_separator(80002, "0x" + "5b" * 20))

        # struct hash recomputed from the type string
        typehash = keccak(text=(
            "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
            "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
        ))
        zero = "0x" + "00" * 20
        struct = keccak(encode(
            ['bytes32', 'address', 'uint256', 'bytes32', 'uint8', 'uint256', 'uint256',
             'uint256', 'address', 'address', 'uint256'],
            [typehash, TARGET, 7, keccak(b""), 0, 0, 0, 0, zero, zero, 2],
        ))
        expected = '0x' + keccak(b"\x19\x01" + separator + struct).hex()
        self.assertEqual(transaction_hash(80002, SAFE, TARGET, 7, b"", OperationKind.CALL, 2), expected)


if __name__ == '__main__':
    unittest.main()
