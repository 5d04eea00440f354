"""
Error kinds raised by the smart-account core.

Every error carries a machine-readable ``kind`` and a human-readable
``detail`` so a presentation layer can render it without interpreting raw
provider errors.
"""
from enum import Enum
from typing import Any, Dict, Optional


class NexusError(Exception):
    """Base class for all orchestrator errors."""

    kind = "error"
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'detail': self.detail,
            'retryable': self.retryable,
        }


class ValidationError(NexusError):
    """Malformed caller input. Raised before any network call."""
    kind = "validation"


class PreconditionError(NexusError):
    """Operation not allowed in the current state (wrong recovery state,
    key not live, missing owner/factory context, ...)."""
    kind = "precondition"


class UpstreamError(NexusError):
    """
    A chain read or bundler call failed.

    Retryable by the caller, but only after rebuilding the operation with a
    fresh nonce. A signed payload must never be resent as-is.
    """
    kind = "upstream"
    retryable = True


class RejectionReason(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    INSUFFICIENT_GAS = "insufficient_gas"
    NONCE_ALREADY_USED = "nonce_already_used"
    INIT_CODE_FAILURE = "init_code_failure"
    PAYMASTER_FAILURE = "paymaster_failure"
    UNKNOWN = "unknown"


class BundlerRejectedError(UpstreamError):
    """The bundler answered with a structured rejection."""
    kind = "bundler_rejected"

    def __init__(self, detail: str, reason: RejectionReason = RejectionReason.UNKNOWN,
                 code: Optional[int] = None):
        super().__init__(detail)
        self.reason = reason
        self.code = code

    @property
    def retryable(self) -> bool:
        # A bad signature will be bad again after a rebuild
        return self.reason is not RejectionReason.INVALID_SIGNATURE

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['reason'] = self.reason.value
        data['code'] = self.code
        return data


class SigningError(NexusError):
    """The signer is unavailable or refused to sign."""
    kind = "signing"
