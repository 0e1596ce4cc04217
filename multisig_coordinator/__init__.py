"""
Multisig Coordinator - threshold-approved execution for a shared custody account
Propose, collect owner signatures, and execute Safe-style transactions exactly once
"""

from .batch import SubOperation, decode_batch, encode_batch
from .config import CoordinatorConfig
from .coordinator import MultisigCoordinator
from .execution import ExecutionCoordinator
from .proposals import TransactionProposalBuilder
from .records import ExecutionResult, OperationKind, TransactionRecord, TransactionStatus
from .signatures import SignatureCollector
from .signer_keys import SignerKey

__version__ = "0.1.0"
__all__ = [
    "CoordinatorConfig",
    "MultisigCoordinator",
    "TransactionProposalBuilder",
    "SignatureCollector",
    "ExecutionCoordinator",
    "SubOperation",
    "encode_batch",
    "decode_batch",
    "TransactionRecord",
    "TransactionStatus",
    "OperationKind",
    "ExecutionResult",
    "SignerKey",
]
