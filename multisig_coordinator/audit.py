"""
Audit trail for rejected mutations
"""

import logging
from typing import Optional

from .errors import CoordinatorError

audit_logger = logging.getLogger("multisig_coordinator.audit")


def log_rejection(action: str, error: CoordinatorError, transaction_id: Optional[str] = None,
                  actor: Optional[str] = None, attempted: Optional[str] = None):
    """Record a rejected mutation with its full context"""
    audit_logger.warning(
        "rejected action=%s transaction=%s actor=%s attempted=%s kind=%s reason=%s",
        action, transaction_id, actor, attempted, error.kind, error.message,
    )


def log_transition(transaction_id: str, old_status: str, new_status: str, actor: Optional[str] = None):
    audit_logger.info(
        "transition transaction=%s %s -> %s actor=%s", transaction_id, old_status, new_status, actor,
    )
