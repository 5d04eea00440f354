"""Guardian set of an account."""
import logging
from typing import Awaitable, Callable, Optional, Set

from .abi import ACCOUNT_ABI, encode_call
from .account import SmartAccount
from .chain import ChainGateway
from .errors import PreconditionError, ValidationError
from .user_operation import Call, OperationHandle
from .validation import require_address, require_nonzero_address

logger = logging.getLogger(__name__)


class GuardianSet:
    """
    Cached guardian membership. Additions and removals are owner-signed
    operations sent through ``dispatch``.
    """

    def __init__(self, account: SmartAccount, gateway: Optional[ChainGateway] = None,
                 dispatch: Optional[Callable[[Call], Awaitable[OperationHandle]]] = None):
        self.account = account
        self.gateway = gateway
        self._dispatch = dispatch
        self._members: Set[str] = set()

    def __contains__(self, address: str) -> bool:
        return self.is_guardian(address)

    def __len__(self) -> int:
        return len(self._members)

    @property
    def members(self) -> Set[str]:
        return set(self._members)

    def is_guardian(self, address: str) -> bool:
        return require_address(address, "guardian") in self._members

    async def _send(self, fn_name: str, guardian: str) -> OperationHandle:
        if self._dispatch is None:
            raise PreconditionError("No owner signer configured for guardian changes")
        data = encode_call(ACCOUNT_ABI, fn_name, [guardian])
        return await self._dispatch(Call(target=self.account.address, value=0, data=data))

    async def add(self, guardian: str) -> OperationHandle:
        guardian = require_nonzero_address(guardian, "guardian")
        if self.account.is_owner(guardian):
            raise ValidationError("The owner cannot be its own guardian")
        if guardian in self._members:
            raise PreconditionError(f"{guardian} is already a guardian")

        handle = await self._send("addGuardian", guardian)
        self._members.add(guardian)
        logger.info("Guardian %s added to %s", guardian, self.account.address)
        return handle

    async def remove(self, guardian: str) -> OperationHandle:
        guardian = require_nonzero_address(guardian, "guardian")
        if guardian not in self._members:
            raise PreconditionError(f"{guardian} is not a guardian of {self.account.address}")

        handle = await self._send("removeGuardian", guardian)
        self._members.discard(guardian)
        logger.info("Guardian %s removed from %s", guardian, self.account.address)
        return handle

    async def load(self, guardian: str) -> bool:
        """Refresh membership of one address from chain."""
        if self.gateway is None:
            raise PreconditionError("No chain gateway configured")
        guardian = require_nonzero_address(guardian, "guardian")

        member = await self.gateway.is_guardian(self.account.address, guardian)
        if member:
            self._members.add(guardian)
        else:
            self._members.discard(guardian)
        return member
