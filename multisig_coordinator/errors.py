"""
Error taxonomy for the multisig coordinator

Every error carries a stable ``kind`` string, a ``retryable`` flag and the HTTP
status the web interface renders it with.
"""

from typing import Any, Dict, Optional


class CoordinatorError(Exception):
    """Base class for all coordinator errors"""

    kind = "coordinator_error"
    retryable = False
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error for API responses"""
        return {
            'success': False,
            'error': self.message,
            'kind': self.kind,
            'retryable': self.retryable,
        }


class ValidationError(CoordinatorError):
    kind = "validation_error"
    http_status = 400


class Unauthenticated(CoordinatorError):
    kind = "unauthenticated"
    http_status = 401


class NotFound(CoordinatorError):
    kind = "not_found"
    http_status = 404


class AlreadyExists(CoordinatorError):
    """Raised when a record id collides with a stored record"""
    kind = "already_exists"
    http_status = 409


class InvalidState(CoordinatorError):
    kind = "invalid_state"
    http_status = 409


class Expired(InvalidState):
    """Record passed its expiry horizon; a new proposal is required"""
    kind = "expired"
    http_status = 410


class DuplicateSigner(CoordinatorError):
    kind = "duplicate_signer"
    http_status = 409


class InvalidSignature(CoordinatorError):
    kind = "invalid_signature"
    http_status = 400


class NotAuthorizedSigner(CoordinatorError):
    kind = "not_authorized_signer"
    http_status = 403


class InsufficientSignatures(CoordinatorError):
    kind = "insufficient_signatures"
    http_status = 409


class Conflict(CoordinatorError):
    """Lost an optimistic concurrency race too many times; safe to retry"""
    kind = "conflict"
    retryable = True
    http_status = 409


class ChainUnavailable(CoordinatorError):
    """Execution target could not be reached in time; safe to retry"""
    kind = "chain_unavailable"
    retryable = True
    http_status = 503


class SubmissionRejected(CoordinatorError):
    """Execution target explicitly refused the submission"""
    kind = "submission_rejected"
    http_status = 422


class ExecutionFailed(CoordinatorError):
    """Execution reached a confirmed failure; the record is terminal"""
    kind = "execution_failed"
    http_status = 422

    def __init__(self, message: str, result: Optional['ExecutionResult'] = None, **context: Any):
        super().__init__(message, **context)
        self.result = result

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.result is not None:
            data['executionResult'] = self.result.to_dict()
        return data


class ReconciliationRequired(CoordinatorError):
    """Submission outcome is unknown; the record stays executing until reconciled"""
    kind = "reconciliation_required"
    http_status = 202

    def __init__(self, message: str, submission_hash: Optional[str] = None, **context: Any):
        super().__init__(message, **context)
        self.submission_hash = submission_hash

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['submissionHash'] = self.submission_hash
        return data
