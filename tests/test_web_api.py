import unittest

from multisig_coordinator.gateways.chain import FailureMode
from web_interface.app import CALLER_HEADER, create_app

from tests.support import TARGET, make_coordinator


class TestWebAPI(unittest.TestCase):

    def setUp(self):
        self.coordinator, self.gateway, self.store, self.keys, self.clock = make_coordinator()
        self.app = create_app(self.coordinator)
        self.client = self.app.test_client()
        self.alice, self.bob, self.carol = self.keys

    def headers(self, key):
        return {CALLER_HEADER: key.address}

    def propose(self, data="0x1234", description="pause"):
        response = self.client.post('/api/transactions', headers=self.headers(self.alice), json={
            'to': TARGET, 'value': '0', 'data': data, 'operation': 0, 'description': description,
        })
        self.assertEqual(response.status_code, 201)
        return response.get_json()['transactionId']

    def sign(self, key, tx_id):
        return self.client.post(f'/api/transactions/{tx_id}/signatures', headers=self.headers(key),
                                json={'signature': key.sign_transaction_id(tx_id)})

    def test_full_workflow(self):
        """Test propose, sign and execute over HTTP"""
        tx_id = self.propose()

        response = self.sign(self.alice, tx_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['currentSignatures'], 1)

        response = self.sign(self.bob, tx_id)
        self.assertTrue(response.get_json()['readyToExecute'])

        response = self.client.post(f'/api/transactions/{tx_id}/execute', headers=self.headers(self.carol))
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body['success'])
        self.assertEqual(body['status'], "completed")

        response = self.client.get(f'/api/transactions/{tx_id}')
        self.assertEqual(response.get_json()['status'], "completed")

    def test_error_responses(self):
        tx_id = self.propose()
        self.sign(self.alice, tx_id)

        duplicate = self.sign(self.alice, tx_id)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.get_json(), {
            'success': False,
            'error': "Address has already signed this transaction",
            'kind': "duplicate_signer",
            'retryable': False,
        })

        not_ready = self.client.post(f'/api/transactions/{tx_id}/execute', headers=self.headers(self.bob))
        self.assertEqual(not_ready.status_code, 409)
        self.assertEqual(not_ready.get_json()['kind'], "invalid_state")

        missing = self.client.get('/api/transactions/0x' + 'ee' * 32)
        self.assertEqual(missing.status_code, 404)

        malformed = self.client.get('/api/transactions/0x1234')
        self.assertEqual(malformed.status_code, 400)

    def test_authentication_required(self):
        response = self.client.post('/api/transactions', json={
            'to': TARGET, 'value': 0, 'data': '0x', 'description': 'pause',
        })
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()['kind'], "unauthenticated")

        tx_id = self.propose()
        response = self.client.post(f'/api/transactions/{tx_id}/signatures',
                                    headers={CALLER_HEADER: "0x" + "12" * 20},
                                    json={'signature': self.alice.sign_transaction_id(tx_id)})
        self.assertEqual(response.status_code, 403)

    def test_invalid_body(self):
        response = self.client.post('/api/transactions', headers=self.headers(self.alice), json=[1, 2])
        self.assertEqual(response.status_code, 400)

        response = self.client.post('/api/transactions', headers=self.headers(self.alice), json={
            'to': 'nope', 'value': 0, 'data': '0x', 'description': 'pause',
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['kind'], "validation_error")

    def test_superscript_value_is_bad_request(self):
        """Test a unicode digit amount is a 400, not a server error"""
        response = self.client.post('/api/transactions', headers=self.headers(self.alice), json={
            'to': TARGET, 'value': '²', 'data': '0x', 'description': 'pause',
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['kind'], "validation_error")

    def test_chain_unavailable(self):
        self.gateway.available = False
        response = self.client.post('/api/transactions', headers=self.headers(self.alice), json={
            'to': TARGET, 'value': 0, 'data': '0x', 'description': 'pause',
        })
        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.get_json()['retryable'])

    def test_contract_call_batch_and_emergency(self):
        response = self.client.post('/api/transactions/contract-call', headers=self.headers(self.alice), json={
            'contractAddress': TARGET,
            'functionSignature': "transfer(address,uint256)",
            'args': [TARGET, 5],
            'description': 'pay',
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()['functionSignature'], "transfer(address,uint256)")

        response = self.client.post('/api/transactions/batch', headers=self.headers(self.alice), json={
            'transactions': [{'to': TARGET, 'value': 0, 'data': '0x01'}],
            'description': 'batch',
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()['batchSize'], 1)

        response = self.client.post('/api/emergency/pause', headers=self.headers(self.bob), json={
            'contractAddress': TARGET, 'reason': 'short',
        })
        self.assertEqual(response.status_code, 400)

        response = self.client.post('/api/emergency/pause', headers=self.headers(self.bob), json={
            'contractAddress': TARGET, 'reason': 'Bridge exploit in progress',
        })
        self.assertEqual(response.status_code, 201)

    def test_reconciliation_endpoints(self):
        tx_id = self.propose()
        self.sign(self.alice, tx_id)
        self.sign(self.bob, tx_id)
        self.gateway.fail_next(FailureMode.CONFIRMATION_TIMEOUT)

        response = self.client.post(f'/api/transactions/{tx_id}/execute', headers=self.headers(self.alice))
        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.get_json()['kind'], "reconciliation_required")
        self.assertIsNotNone(response.get_json()['submissionHash'])

        pending = self.client.get('/api/reconciliation').get_json()
        self.assertEqual([r['transactionId'] for r in pending['records']], [tx_id])

        self.gateway.confirm_pending()
        response = self.client.post(f'/api/transactions/{tx_id}/reconcile', headers=self.headers(self.alice))
        self.assertEqual(response.get_json()['status'], "completed")

    def test_listing_and_expiry(self):
        for i in range(3):
            self.propose(data=f"0x0{i}", description=f"op {i}")

        body = self.client.get('/api/transactions?limit=2&page=1').get_json()
        self.assertEqual(body['totalCount'], 3)
        self.assertEqual(len(body['records']), 2)
        self.assertTrue(body['hasNext'])

        self.clock.advance(days=8)
        body = self.client.post('/api/maintenance/expire').get_json()
        self.assertEqual(body['count'], 3)

        body = self.client.get('/api/transactions?status=expired').get_json()
        self.assertEqual(body['totalCount'], 3)


if __name__ == '__main__':
    unittest.main()
