"""
Social recovery state machine.

    NO_ACTIVE_REQUEST --initiate--> INITIATED --confirm--> CONFIRMED --execute--> EXECUTED

After EXECUTED there is no active request and a new cycle may start. The
local state is a cache of the account contract's state and is re-checked
against chain before every transition.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from .abi import ACCOUNT_ABI, encode_call
from .account import SmartAccount
from .chain import ChainGateway, RecoveryStatus
from .errors import PreconditionError, ValidationError
from .user_operation import Call, OperationHandle
from .validation import require_bytes32, require_nonzero_address

logger = logging.getLogger(__name__)


class RecoveryState(str, Enum):
    NO_ACTIVE_REQUEST = "no_active_request"
    INITIATED = "initiated"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"


@dataclass
class RecoveryRequest:
    id: bytes
    proposed_owner: str
    state: RecoveryState = RecoveryState.INITIATED
    operations: List[str] = field(default_factory=list)

    @property
    def id_hex(self) -> str:
        return "0x" + self.id.hex()

    def to_dict(self) -> dict:
        return {
            'id': self.id_hex,
            'proposed_owner': self.proposed_owner,
            'state': self.state.value,
            'operations': list(self.operations),
        }


class RecoveryCoordinator:
    """
    Drives one account's recovery lifecycle. At most one request is active
    at a time; a second ``initiate`` while one is pending is refused locally
    even if the contract would accept it.
    """

    def __init__(self, account: SmartAccount, gateway: ChainGateway,
                 dispatch: Optional[Callable[[Call], Awaitable[OperationHandle]]] = None):
        self.account = account
        self.gateway = gateway
        self._dispatch = dispatch
        self._active: Optional[RecoveryRequest] = None
        self.history: List[RecoveryRequest] = []

    @property
    def state(self) -> RecoveryState:
        if self._active is None:
            return RecoveryState.NO_ACTIVE_REQUEST
        return self._active.state

    @property
    def active_request(self) -> Optional[RecoveryRequest]:
        return self._active

    def _require_dispatch(self):
        if self._dispatch is None:
            raise PreconditionError("No signer configured for recovery operations")
        return self._dispatch

    def _require_active(self, recovery_id: bytes, expected: RecoveryState) -> RecoveryRequest:
        request = self._active
        if request is None or request.id != recovery_id:
            raise PreconditionError(f"Unknown recovery request 0x{recovery_id.hex()}")
        if request.state is not expected:
            raise PreconditionError(
                f"Recovery request {request.id_hex} is {request.state.value}, "
                f"expected {expected.value}"
            )
        return request

    async def _send(self, fn_name: str, arg) -> OperationHandle:
        dispatch = self._require_dispatch()
        data = encode_call(ACCOUNT_ABI, fn_name, [arg])
        return await dispatch(Call(target=self.account.address, value=0, data=data))

    def _finish(self, request: RecoveryRequest):
        request.state = RecoveryState.EXECUTED
        self.history.append(request)
        self._active = None

    async def _chain_status(self, request: RecoveryRequest) -> RecoveryStatus:
        """Read the request from chain, folding an on-chain execution into local state."""
        status = await self.gateway.get_recovery_request(self.account.address, request.id)
        if not status.exists:
            raise PreconditionError(f"Recovery request {request.id_hex} is not recorded on chain yet")
        if status.new_owner != request.proposed_owner:
            raise PreconditionError(
                f"Recovery request {request.id_hex} proposes {status.new_owner} on chain, "
                f"{request.proposed_owner} locally"
            )
        if status.executed:
            self._finish(request)
            raise PreconditionError(f"Recovery request {request.id_hex} was already executed")
        return status

    # ============================================
    # Transitions
    # ============================================

    async def initiate(self, new_owner: str) -> RecoveryRequest:
        """
        Propose ``new_owner``. Allowed only with no active request.

        Returns:
            RecoveryRequest in state INITIATED
        """
        new_owner = require_nonzero_address(new_owner, "new_owner")
        if self.account.is_owner(new_owner):
            raise ValidationError("Proposed owner is already the current owner")
        if self._active is not None:
            raise PreconditionError(
                f"Recovery request {self._active.id_hex} is already {self._active.state.value}; "
                f"abandon() it first if its operation never landed"
            )
        self._require_dispatch()

        if not await self.gateway.is_deployed(self.account.address):
            raise PreconditionError(f"Account {self.account.address} is not deployed; nothing to recover")

        recovery_id = await self.gateway.preview_recovery_id(self.account.address, new_owner)
        handle = await self._send("initiateRecovery", new_owner)

        request = RecoveryRequest(id=recovery_id, proposed_owner=new_owner,
                                  operations=[handle.user_op_hash])
        self._active = request
        logger.info("Recovery %s initiated for %s -> %s",
                    request.id_hex, self.account.address, new_owner)
        return request

    async def confirm(self, recovery_id: Union[bytes, str]) -> RecoveryRequest:
        """Move INITIATED -> CONFIRMED. Single confirmation, no quorum."""
        recovery_id = require_bytes32(recovery_id, "recovery id")
        request = self._require_active(recovery_id, RecoveryState.INITIATED)
        self._require_dispatch()

        status = await self._chain_status(request)
        if status.confirmed:
            request.state = RecoveryState.CONFIRMED
            raise PreconditionError(f"Recovery request {request.id_hex} is already confirmed")

        handle = await self._send("confirmRecovery", recovery_id)
        request.operations.append(handle.user_op_hash)
        request.state = RecoveryState.CONFIRMED
        logger.info("Recovery %s confirmed", request.id_hex)
        return request

    async def execute(self, recovery_id: Union[bytes, str]) -> RecoveryRequest:
        """Move CONFIRMED -> EXECUTED and free the slot for a future cycle."""
        recovery_id = require_bytes32(recovery_id, "recovery id")
        request = self._require_active(recovery_id, RecoveryState.CONFIRMED)
        self._require_dispatch()

        status = await self._chain_status(request)
        if not status.confirmed:
            raise PreconditionError(f"Recovery request {request.id_hex} is not confirmed on chain yet")

        handle = await self._send("executeRecovery", recovery_id)
        request.operations.append(handle.user_op_hash)
        self._finish(request)
        logger.info("Recovery %s executed; new owner %s pending inclusion",
                    request.id_hex, request.proposed_owner)
        return request

    async def abandon(self) -> Optional[RecoveryRequest]:
        """
        Drop the active request if the chain never recorded it, e.g. its
        initiateRecovery operation was dropped by the bundler or reverted.
        A request that is on chain cannot be abandoned locally; one that was
        executed meanwhile is moved to history.

        Returns:
            The dropped or finished request, None if nothing was active
        """
        request = self._active
        if request is None:
            return None

        status = await self.gateway.get_recovery_request(self.account.address, request.id)
        if status.executed:
            self._finish(request)
            return request
        if status.exists:
            raise PreconditionError(
                f"Recovery request {request.id_hex} is recorded on chain; confirm or execute it"
            )

        self._active = None
        logger.warning("Recovery %s abandoned: never recorded on chain", request.id_hex)
        return request

    async def track(self, recovery_id: Union[bytes, str]) -> RecoveryRequest:
        """
        Adopt a request that was initiated elsewhere (another device, a
        guardian) by reading it from chain. A different active request is
        replaced only if the chain never recorded it.
        """
        recovery_id = require_bytes32(recovery_id, "recovery id")
        status = await self.gateway.get_recovery_request(self.account.address, recovery_id)
        if not status.exists:
            raise PreconditionError(f"Recovery request 0x{recovery_id.hex()} is not recorded on chain")

        if self._active is not None and self._active.id != recovery_id:
            await self.abandon()

        request = self._active or RecoveryRequest(id=recovery_id, proposed_owner=status.new_owner)
        if status.executed:
            self._finish(request)
        elif status.confirmed:
            request.state = RecoveryState.CONFIRMED
            self._active = request
        else:
            request.state = RecoveryState.INITIATED
            self._active = request
        return request
