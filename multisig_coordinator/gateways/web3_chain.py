"""
Web3 ChainGateway - talks to a deployed Safe contract over JSON-RPC
"""

import logging
from typing import Any, List, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3RPCError
from web3.logs import DISCARD

from ..config import CoordinatorConfig
from ..encoding import normalize_address
from ..errors import ChainUnavailable, SubmissionRejected
from ..hashing import ZERO_ADDRESS
from ..records import DecodedEvent, ExecutionResult, TransactionRecord
from .chain import ChainGateway, pack_signatures

logger = logging.getLogger(__name__)

_EXECUTION_EVENT_INPUTS = [
    {"indexed": False, "name": "txHash", "type": "bytes32"},
    {"indexed": False, "name": "payment", "type": "uint256"},
]

SAFE_ABI = [
    {"name": "nonce", "type": "function", "stateMutability": "view", "inputs": [],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "getThreshold", "type": "function", "stateMutability": "view", "inputs": [],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "getOwners", "type": "function", "stateMutability": "view", "inputs": [],
     "outputs": [{"name": "", "type": "address[]"}]},
    {"name": "isOwner", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "owner", "type": "address"}],
     "outputs": [{"name": "", "type": "bool"}]},
    {"name": "execTransaction", "type": "function", "stateMutability": "payable",
     "inputs": [
         {"name": "to", "type": "address"},
         {"name": "value", "type": "uint256"},
         {"name": "data", "type": "bytes"},
         {"name": "operation", "type": "uint8"},
         {"name": "safeTxGas", "type": "uint256"},
         {"name": "baseGas", "type": "uint256"},
         {"name": "gasPrice", "type": "uint256"},
         {"name": "gasToken", "type": "address"},
         {"name": "refundReceiver", "type": "address"},
         {"name": "signatures", "type": "bytes"},
     ],
     "outputs": [{"name": "success", "type": "bool"}]},
    {"name": "ExecutionSuccess", "type": "event", "anonymous": False, "inputs": _EXECUTION_EVENT_INPUTS},
    {"name": "ExecutionFailure", "type": "event", "anonymous": False, "inputs": _EXECUTION_EVENT_INPUTS},
]

EXECUTION_EVENTS = ("ExecutionSuccess", "ExecutionFailure")

# send_raw_transaction errors meaning an earlier attempt may already be on its way
_ALREADY_BROADCAST = ("already known", "known transaction")
_BROADCAST_UNKNOWN = ("nonce too low", "replacement transaction underpriced")


def _event_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    return value


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith('0x') else '0x' + value
    return '0x' + bytes(value).hex()


class Web3ChainGateway(ChainGateway):
    """ChainGateway backed by a Safe contract reachable through ``web3``

    Per-call timeouts are bounded by the provider's request timeout; receipt waits
    use the explicit ``timeout`` argument.
    """

    def __init__(self, web3: Web3, custody_address: str, executor: LocalAccount,
                 chain_id: Optional[int] = None, lookback_blocks: int = 50_000):
        self.web3 = web3
        self.custody_address = normalize_address(custody_address, "custody address")
        self.executor = executor
        self.lookback_blocks = lookback_blocks
        self.contract = web3.eth.contract(address=self.custody_address, abi=SAFE_ABI)
        self.chain_id = chain_id if chain_id is not None else self._rpc(lambda: web3.eth.chain_id, "chain id")

    @classmethod
    def from_config(cls, config: CoordinatorConfig) -> 'Web3ChainGateway':
        if not config.rpc_url:
            raise ValueError(f"RPC URL not configured for chain ID {config.chain_id}")
        if not config.executor_private_key:
            raise ValueError("Executor private key not configured")

        web3 = Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={'timeout': config.query_timeout}))
        executor = Account.from_key(config.executor_private_key)
        return cls(web3, config.custody_address, executor, chain_id=config.chain_id)

    def _rpc(self, call, what: str):
        try:
            return call()
        except Exception as exc:
            logger.error("Error getting Safe %s: %s", what, exc)
            raise ChainUnavailable(f"Failed to get Safe {what}: {exc}") from exc

    def get_nonce(self, timeout: Optional[float] = None) -> int:
        return int(self._rpc(self.contract.functions.nonce().call, "nonce"))

    def get_threshold(self, timeout: Optional[float] = None) -> int:
        return int(self._rpc(self.contract.functions.getThreshold().call, "threshold"))

    def get_owners(self, timeout: Optional[float] = None) -> List[str]:
        owners = self._rpc(self.contract.functions.getOwners().call, "owners")
        return [normalize_address(owner, "owner") for owner in owners]

    def is_owner(self, address: str, timeout: Optional[float] = None) -> bool:
        owner = normalize_address(address, "owner")
        return bool(self._rpc(self.contract.functions.isOwner(owner).call, "ownership"))

    def submit(self, record: TransactionRecord, timeout: Optional[float] = None) -> str:
        call = self.contract.functions.execTransaction(
            record.target, record.value, record.payload, int(record.operation),
            0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS, pack_signatures(record.signatures),
        )

        try:
            tx = call.build_transaction({
                'from': self.executor.address,
                'nonce': self.web3.eth.get_transaction_count(self.executor.address, 'pending'),
                'chainId': self.chain_id,
            })
        except (ContractLogicError, Web3RPCError) as exc:
            # gas estimation reverted: nothing was broadcast
            raise SubmissionRejected(f"Safe execution would revert: {exc}") from exc
        except Exception as exc:
            raise ChainUnavailable(f"Failed to prepare Safe execution: {exc}") from exc

        signed = self.executor.sign_transaction(tx)
        try:
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as exc:
            reason = str(exc).lower()
            if any(marker in reason for marker in _ALREADY_BROADCAST):
                # the node already holds this exact signed transaction
                logger.warning("Safe transaction %s was already broadcast: %s", record.id, exc)
                tx_hash = signed.hash
            elif any(marker in reason for marker in _BROADCAST_UNKNOWN):
                raise ChainUnavailable(f"Broadcast outcome of Safe execution unknown: {exc}") from exc
            else:
                raise SubmissionRejected(f"Node rejected Safe execution: {exc}") from exc
        except Exception as exc:
            raise ChainUnavailable(f"Failed to broadcast Safe execution: {exc}") from exc

        submission_hash = _hex(tx_hash)
        logger.info("Safe transaction %s broadcast as %s", record.id, submission_hash)
        return submission_hash

    def _to_result(self, receipt) -> ExecutionResult:
        events = []
        for name in EXECUTION_EVENTS:
            for log in getattr(self.contract.events, name)().process_receipt(receipt, errors=DISCARD):
                events.append(DecodedEvent(
                    name=log['event'],
                    address=normalize_address(log['address'], "event address"),
                    args={key: _event_value(value) for key, value in dict(log['args']).items()},
                ))

        failed_inner = any(event.name == "ExecutionFailure" for event in events)
        success = receipt['status'] == 1 and not failed_inner
        return ExecutionResult(
            success=success,
            submission_hash=_hex(receipt['transactionHash']),
            block_number=receipt['blockNumber'],
            gas_used=receipt['gasUsed'],
            events=events,
            error=None if success else "Safe execution reverted",
        )

    def wait_for_receipt(self, submission_hash: str, timeout: Optional[float] = None) -> ExecutionResult:
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(submission_hash, timeout=timeout or 120)
        except TimeExhausted as exc:
            raise ChainUnavailable(f"Timed out waiting for receipt of {submission_hash}") from exc
        except Exception as exc:
            raise ChainUnavailable(f"Failed waiting for receipt of {submission_hash}: {exc}") from exc
        return self._to_result(receipt)

    def get_receipt(self, submission_hash: str) -> Optional[ExecutionResult]:
        try:
            receipt = self.web3.eth.get_transaction_receipt(submission_hash)
        except TransactionNotFound:
            return None
        except Exception as exc:
            raise ChainUnavailable(f"Failed to get receipt of {submission_hash}: {exc}") from exc
        return self._to_result(receipt)

    def find_execution(self, transaction_id: str) -> Optional[ExecutionResult]:
        wanted = bytes.fromhex(transaction_id[2:])
        latest = self._rpc(lambda: self.web3.eth.block_number, "block number")
        from_block = max(0, latest - self.lookback_blocks)

        for name in EXECUTION_EVENTS:
            event = getattr(self.contract.events, name)
            logs = self._rpc(lambda: event.get_logs(from_block=from_block), f"{name} logs")
            for log in logs:
                if bytes(log['args']['txHash']) == wanted:
                    return self.get_receipt(_hex(log['transactionHash']))
        return None
