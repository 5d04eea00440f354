"""
Nexus - Account Abstraction smart-account orchestrator

Core modules:
- Config: Multi-chain network configuration
- ChainGateway / AddressDeriver: On-chain reads and counterfactual addresses
- UserOperationBuilder / OperationSubmitter: Build, sign and relay user operations
- SessionKeyRegistry / GuardianSet / RecoveryCoordinator: Delegation and recovery
- SmartAccountClient: Caller-facing surface
"""

from .config import Config, NetworkConfig, DEFAULT_ENTRYPOINT
from .errors import (
    NexusError,
    ValidationError,
    PreconditionError,
    UpstreamError,
    BundlerRejectedError,
    RejectionReason,
    SigningError,
)
from .account import SmartAccount
from .chain import ChainGateway
from .address import AddressDeriver
from .signing import SigningAgent, LocalSigningAgent, CallbackSigningAgent
from .user_operation import Call, GasLimits, UserOperation, UnsignedOperation, SignedOperation, OperationHandle
from .builder import UserOperationBuilder
from .bundler import BundlerClient, BundlerConfig
from .submitter import OperationSubmitter
from .session_keys import SessionKey, SessionKeyRegistry
from .guardians import GuardianSet
from .recovery import RecoveryCoordinator, RecoveryRequest, RecoveryState
from .client import SmartAccountClient

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "Config",
    "NetworkConfig",
    "DEFAULT_ENTRYPOINT",

    # Errors
    "NexusError",
    "ValidationError",
    "PreconditionError",
    "UpstreamError",
    "BundlerRejectedError",
    "RejectionReason",
    "SigningError",

    # Accounts and chain access
    "SmartAccount",
    "ChainGateway",
    "AddressDeriver",

    # Signing
    "SigningAgent",
    "LocalSigningAgent",
    "CallbackSigningAgent",

    # User operations
    "Call",
    "GasLimits",
    "UserOperation",
    "UnsignedOperation",
    "SignedOperation",
    "OperationHandle",
    "UserOperationBuilder",
    "BundlerClient",
    "BundlerConfig",
    "OperationSubmitter",

    # Policy layers
    "SessionKey",
    "SessionKeyRegistry",
    "GuardianSet",
    "RecoveryCoordinator",
    "RecoveryRequest",
    "RecoveryState",

    "SmartAccountClient",
]
