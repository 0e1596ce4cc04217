import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from multisig_coordinator.errors import (
    ChainUnavailable, DuplicateSigner, InvalidSignature, InvalidState,
    NotAuthorizedSigner, NotFound, ValidationError,
)
from multisig_coordinator.records import TransactionStatus
from multisig_coordinator.signer_keys import SignerKey

from tests.support import TARGET, make_coordinator


class TestSignatureCollection(unittest.TestCase):

    def setUp(self):
        self.coordinator, self.gateway, self.store, self.keys, self.clock = make_coordinator()
        self.collector = self.coordinator.signatures
        self.record = self.coordinator.proposals.propose(TARGET, 0, "0x1234", 0, "pause")
        self.tx_id = self.record.id

    def sign(self, key, tx_id=None, claimed=None):
        tx_id = tx_id or self.tx_id
        return self.collector.add_signature(tx_id, claimed or key.address, key.sign_transaction_id(tx_id))

    def test_threshold_reached(self):
        """Test the record becomes ready exactly when the threshold is reached"""
        first = self.sign(self.keys[0])
        self.assertEqual(first.current_signatures, 1)
        self.assertEqual(first.status, TransactionStatus.PENDING_SIGNATURES)
        self.assertIsNone(first.ready_at)

        second = self.sign(self.keys[1])
        self.assertEqual(second.current_signatures, 2)
        self.assertEqual(second.status, TransactionStatus.READY_TO_EXECUTE)
        self.assertEqual(second.ready_at, self.clock())

        self.assertEqual([e.signer for e in second.signatures], [self.keys[0].address, self.keys[1].address])

    def test_signature_after_ready_is_recorded(self):
        """Additional owners may still sign a ready record; it stays ready"""
        self.sign(self.keys[0])
        self.sign(self.keys[1])
        third = self.sign(self.keys[2])

        self.assertEqual(third.current_signatures, 3)
        self.assertEqual(third.status, TransactionStatus.READY_TO_EXECUTE)

    def test_duplicate_signer_rejected(self):
        self.sign(self.keys[0])
        with self.assertRaises(DuplicateSigner):
            self.sign(self.keys[0])
        with self.assertRaises(DuplicateSigner):
            self.sign(self.keys[0], claimed=self.keys[0].address.lower())
        self.assertEqual(self.store.get(self.tx_id).current_signatures, 1)

    def test_signature_for_other_transaction_rejected(self):
        """A signature over one id cannot be replayed against another"""
        other = self.coordinator.proposals.propose(TARGET, 0, "0x5678", 0, "unpause")
        signature = self.keys[0].sign_transaction_id(other.id)

        with self.assertRaises(InvalidSignature):
            self.collector.add_signature(self.tx_id, self.keys[0].address, signature)
        self.assertEqual(self.store.get(self.tx_id).current_signatures, 0)

    def test_signature_from_different_key_rejected(self):
        with self.assertRaises(InvalidSignature):
            self.sign(self.keys[0], claimed=self.keys[1].address)

    def test_non_owner_rejected(self):
        outsider = SignerKey(bytes([99]) * 32)
        with self.assertRaises(NotAuthorizedSigner):
            self.sign(outsider)
        self.assertEqual(self.store.get(self.tx_id).current_signatures, 0)

    def test_removed_owner_rejected(self):
        """Owner membership is checked live at signing time"""
        self.gateway.remove_owner(self.keys[2].address)
        with self.assertRaises(NotAuthorizedSigner):
            self.sign(self.keys[2])

    def test_added_owner_accepted(self):
        newcomer = SignerKey(bytes([42]) * 32)
        self.gateway.add_owner(newcomer.address)
        self.assertEqual(self.sign(newcomer).current_signatures, 1)

    def test_chain_unavailable_during_owner_check(self):
        self.gateway.available = False
        with self.assertRaises(ChainUnavailable):
            self.sign(self.keys[0])
        self.assertEqual(self.store.get(self.tx_id).current_signatures, 0)

    def test_malformed_input(self):
        with self.assertRaises(ValidationError):
            self.collector.add_signature("0x1234", self.keys[0].address, "0x" + "00" * 65)
        with self.assertRaises(ValidationError):
            self.collector.add_signature(self.tx_id, "alice", self.keys[0].sign_transaction_id(self.tx_id))
        with self.assertRaises(ValidationError):
            self.collector.add_signature(self.tx_id, self.keys[0].address, "0x" + "00" * 64)

    def test_unknown_transaction(self):
        with self.assertRaises(NotFound):
            self.sign(self.keys[0], tx_id="0x" + "ee" * 32)

    def test_terminal_record_rejects_signatures(self):
        self.sign(self.keys[0])
        self.sign(self.keys[1])
        self.coordinator.execution.execute(self.tx_id)

        with self.assertRaises(InvalidState):
            self.sign(self.keys[2])

    def test_rejection_is_audited(self):
        self.sign(self.keys[0])
        with self.assertLogs("multisig_coordinator.audit", level="WARNING") as logs:
            with self.assertRaises(DuplicateSigner):
                self.sign(self.keys[0])
        self.assertIn("action=add_signature", logs.output[0])
        self.assertIn(f"transaction={self.tx_id}", logs.output[0])
        self.assertIn("kind=duplicate_signer", logs.output[0])


class TestConcurrentSignatures(unittest.TestCase):

    def setUp(self):
        self.coordinator, self.gateway, self.store, self.keys, self.clock = make_coordinator(
            owner_count=6, threshold=3)
        self.record = self.coordinator.proposals.propose(TARGET, 0, "0x1234", 0, "rotate keys")

    def _run_concurrently(self, calls):
        barrier = threading.Barrier(len(calls))

        def run(call):
            barrier.wait()
            try:
                return call()
            except Exception as e:
                return e

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            return list(pool.map(run, calls))

    def test_distinct_signers_all_recorded(self):
        """Test concurrent signatures from distinct owners all land and ready fires once"""
        tx_id = self.record.id
        calls = [
            (lambda key=key: self.coordinator.signatures.add_signature(
                tx_id, key.address, key.sign_transaction_id(tx_id)))
            for key in self.keys
        ]

        with self.assertLogs("multisig_coordinator.audit", level="INFO") as logs:
            results = self._run_concurrently(calls)

        for result in results:
            self.assertNotIsInstance(result, Exception)

        stored = self.store.get(tx_id)
        self.assertEqual(stored.current_signatures, 6)
        self.assertEqual(len({e.signer for e in stored.signatures}), 6)
        self.assertEqual(stored.status, TransactionStatus.READY_TO_EXECUTE)

        transitions = [line for line in logs.output if "pending_signatures -> ready_to_execute" in line]
        self.assertEqual(len(transitions), 1)

    def test_same_signer_recorded_once(self):
        tx_id = self.record.id
        key = self.keys[0]
        signature = key.sign_transaction_id(tx_id)
        calls = [
            (lambda: self.coordinator.signatures.add_signature(tx_id, key.address, signature))
            for _ in range(4)
        ]

        results = self._run_concurrently(calls)

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 3)
        for failure in failures:
            self.assertIsInstance(failure, DuplicateSigner)
        self.assertEqual(self.store.get(tx_id).current_signatures, 1)


if __name__ == '__main__':
    unittest.main()
