"""
External collaborators - execution target and record persistence
"""

from .chain import ChainGateway, FailureMode, SimulatedChainGateway, pack_signatures
from .store import InMemoryRecordStore, RecordStore, StaleVersion

__all__ = [
    "ChainGateway",
    "FailureMode",
    "SimulatedChainGateway",
    "pack_signatures",
    "RecordStore",
    "InMemoryRecordStore",
    "StaleVersion",
]
