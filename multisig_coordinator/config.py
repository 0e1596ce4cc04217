"""
Coordinator configuration and logging setup
"""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from .encoding import normalize_address

# Safe v1.3.0 MultiSend deployment, identical on Polygon Amoy and mainnet
DEFAULT_MULTISEND_ADDRESS = "0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761"


@dataclass
class CoordinatorConfig:
    """Settings shared by the proposal, signature and execution components"""

    chain_id: int
    custody_address: str
    multisend_address: str = DEFAULT_MULTISEND_ADDRESS

    proposal_ttl: timedelta = timedelta(days=7)
    max_batch_size: int = 20
    emergency_min_reason_length: int = 10

    # Bounded retries of the read-verify-CAS cycle before surfacing Conflict
    conflict_retries: int = 8

    query_timeout: float = 30.0  # seconds
    confirmation_timeout: float = 300.0  # seconds

    list_default_limit: int = 20
    list_max_limit: int = 50

    rpc_url: Optional[str] = None
    executor_private_key: Optional[str] = None

    def __post_init__(self):
        self.custody_address = normalize_address(self.custody_address, "custody address")
        self.multisend_address = normalize_address(self.multisend_address, "MultiSend address")

        if self.conflict_retries < 1:
            raise ValueError("conflict_retries must be at least 1")
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if not (1 <= self.list_default_limit <= self.list_max_limit):
            raise ValueError("list_default_limit must be between 1 and list_max_limit")
        if self.proposal_ttl <= timedelta(0):
            raise ValueError("proposal_ttl must be positive")

    @classmethod
    def polygon_amoy(cls, custody_address: str, **overrides) -> 'CoordinatorConfig':
        """Polygon Amoy testnet"""
        return cls(chain_id=80002, custody_address=custody_address, **overrides)

    @classmethod
    def polygon_mainnet(cls, custody_address: str, **overrides) -> 'CoordinatorConfig':
        """Polygon mainnet with a tighter confirmation window"""
        overrides.setdefault('confirmation_timeout', 180.0)
        return cls(chain_id=137, custody_address=custody_address, **overrides)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'CoordinatorConfig':
        """Load settings from MULTISIG_* environment variables (and an optional .env)"""
        load_dotenv(env_file)

        custody_address = os.environ.get("MULTISIG_CUSTODY_ADDRESS")
        if not custody_address:
            raise ValueError("MULTISIG_CUSTODY_ADDRESS is not configured")

        return cls(
            chain_id=int(os.environ.get("MULTISIG_CHAIN_ID", 80002)),
            custody_address=custody_address,
            multisend_address=os.environ.get("MULTISIG_MULTISEND_ADDRESS", DEFAULT_MULTISEND_ADDRESS),
            proposal_ttl=timedelta(hours=float(os.environ.get("MULTISIG_PROPOSAL_TTL_HOURS", 7 * 24))),
            conflict_retries=int(os.environ.get("MULTISIG_CONFLICT_RETRIES", 8)),
            query_timeout=float(os.environ.get("MULTISIG_QUERY_TIMEOUT", 30)),
            confirmation_timeout=float(os.environ.get("MULTISIG_CONFIRMATION_TIMEOUT", 300)),
            rpc_url=os.environ.get("MULTISIG_RPC_URL"),
            executor_private_key=os.environ.get("MULTISIG_EXECUTOR_PRIVATE_KEY"),
        )


def configure_logging(level: Optional[str] = None):
    """Configure root logging; level defaults to $LOG_LEVEL or INFO"""
    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
