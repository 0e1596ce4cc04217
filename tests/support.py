"""Shared fixtures for the coordinator tests"""

from datetime import datetime, timedelta, timezone

from multisig_coordinator.config import CoordinatorConfig
from multisig_coordinator.coordinator import MultisigCoordinator
from multisig_coordinator.gateways.chain import SimulatedChainGateway
from multisig_coordinator.gateways.store import InMemoryRecordStore
from multisig_coordinator.signer_keys import SignerKey

TARGET = "0x" + "aa" * 20


class FixedClock:
    """Manually advanced clock"""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_keys(count):
    """Deterministic owner keys"""
    return [SignerKey(bytes([i + 1]) * 32) for i in range(count)]


def make_coordinator(owner_count=3, threshold=2, submit_delay=0.0, clock=None, **config_overrides):
    """Return (coordinator, gateway, store, keys, clock)"""
    keys = make_keys(owner_count)
    clock = clock or FixedClock()
    gateway = SimulatedChainGateway([key.address for key in keys], threshold, submit_delay=submit_delay)
    config = CoordinatorConfig.polygon_amoy(gateway.custody_address, **config_overrides)
    store = InMemoryRecordStore()
    coordinator = MultisigCoordinator(config, gateway, store, clock=clock)
    return coordinator, gateway, store, keys, clock
