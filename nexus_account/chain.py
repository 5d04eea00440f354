"""
Read-only view of on-chain state used by every other component.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from .abi import ACCOUNT_ABI, ENTRY_POINT_ABI, FACTORY_ABI
from .config import NetworkConfig
from .errors import PreconditionError, UpstreamError
from .validation import ZERO_ADDRESS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeData:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass(frozen=True)
class SessionKeyState:
    valid_until: int
    gas_limit: int
    targets: Tuple[str, ...]


@dataclass(frozen=True)
class RecoveryStatus:
    new_owner: str
    confirmed: bool
    executed: bool

    @property
    def exists(self) -> bool:
        return self.new_owner != ZERO_ADDRESS


class ChainGateway:
    """
    Async read-only access to the EntryPoint, the account factory and the
    account contracts of one network.

    Every provider failure is re-raised as UpstreamError; nothing is
    defaulted.
    """

    def __init__(self, network: NetworkConfig, w3: Optional[AsyncWeb3] = None):
        self.network = network
        self._w3 = w3

    @property
    def w3(self) -> AsyncWeb3:
        """Lazy-load AsyncWeb3 instance."""
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncHTTPProvider(self.network.rpc_url))
        return self._w3

    @property
    def entry_point(self) -> str:
        if not self.network.entrypoint_address:
            raise PreconditionError("EntryPoint address not configured")
        return to_checksum_address(self.network.entrypoint_address)

    @property
    def factory(self) -> str:
        if not self.network.factory_address:
            raise PreconditionError("Factory address not configured")
        return to_checksum_address(self.network.factory_address)

    def _contract(self, address: str, abi: List[Dict[str, Any]]):
        return self.w3.eth.contract(address=to_checksum_address(address), abi=abi)

    async def read(self, address: str, abi: List[Dict[str, Any]], fn_name: str, *args,
                   tx: Optional[Dict[str, Any]] = None):
        """Generic contract view call (eth_call)."""
        contract = self._contract(address, abi)
        try:
            fn = getattr(contract.functions, fn_name)(*args)
            if tx is not None:
                result = await fn.call(tx)
            else:
                result = await fn.call()
        except Exception as exc:
            raise UpstreamError(f"{fn_name} call on {address} failed: {exc}") from exc
        logger.debug("read %s.%s%r -> %r", address, fn_name, args, result)
        return result

    # ============================================
    # EntryPoint / factory
    # ============================================

    async def get_nonce(self, account: str, key: int = 0) -> int:
        """EntryPoint.getNonce(sender, key)."""
        return await self.read(self.entry_point, ENTRY_POINT_ABI, "getNonce",
                               to_checksum_address(account), key)

    async def get_address(self, owner: str, salt: int) -> str:
        """Factory.getAddress(owner, salt): counterfactual account address."""
        address = await self.read(self.factory, FACTORY_ABI, "getAddress",
                                  to_checksum_address(owner), salt)
        return to_checksum_address(address)

    async def is_deployed(self, address: str) -> bool:
        """True if there is contract code at ``address``."""
        try:
            code = await self.w3.eth.get_code(to_checksum_address(address))
        except Exception as exc:
            raise UpstreamError(f"get_code for {address} failed: {exc}") from exc
        return len(code) > 0

    async def get_chain_id(self) -> int:
        try:
            return await self.w3.eth.chain_id
        except Exception as exc:
            raise UpstreamError(f"chain id lookup failed: {exc}") from exc

    async def get_fee_data(self) -> FeeData:
        """
        Current gas prices for EIP-1559 networks (base fee * 2 + priority fee),
        falling back to the legacy gas price when the chain has no base fee.
        """
        try:
            latest_block = await self.w3.eth.get_block('latest')
            base_fee = latest_block.get('baseFeePerGas', 0)

            if base_fee > 0:
                max_priority_fee = await self.w3.eth.max_priority_fee
                return FeeData(
                    max_fee_per_gas=base_fee * 2 + max_priority_fee,
                    max_priority_fee_per_gas=max_priority_fee,
                )

            gas_price = await self.w3.eth.gas_price
            return FeeData(max_fee_per_gas=gas_price, max_priority_fee_per_gas=gas_price)
        except Exception as exc:
            raise UpstreamError(f"fee data lookup failed: {exc}") from exc

    # ============================================
    # Account views
    # ============================================

    async def get_owner(self, account: str) -> str:
        owner = await self.read(account, ACCOUNT_ABI, "owner")
        return to_checksum_address(owner)

    async def get_session_key(self, account: str, key: str) -> SessionKeyState:
        valid_until, gas_limit, targets = await self.read(
            account, ACCOUNT_ABI, "getSessionKey", to_checksum_address(key))
        return SessionKeyState(
            valid_until=valid_until,
            gas_limit=gas_limit,
            targets=tuple(to_checksum_address(t) for t in targets),
        )

    async def is_guardian(self, account: str, guardian: str) -> bool:
        return await self.read(account, ACCOUNT_ABI, "isGuardian",
                               to_checksum_address(guardian))

    async def get_recovery_request(self, account: str, recovery_id: bytes) -> RecoveryStatus:
        new_owner, confirmed, executed = await self.read(
            account, ACCOUNT_ABI, "getRecoveryRequest", recovery_id)
        return RecoveryStatus(
            new_owner=to_checksum_address(new_owner),
            confirmed=confirmed,
            executed=executed,
        )

    async def preview_recovery_id(self, account: str, new_owner: str) -> bytes:
        """
        Simulate initiateRecovery(newOwner) as a self-call of the account,
        which is what execute(account, 0, ...) will do, and return the id the
        contract would assign.
        """
        account = to_checksum_address(account)
        recovery_id = await self.read(account, ACCOUNT_ABI, "initiateRecovery",
                                      to_checksum_address(new_owner),
                                      tx={'from': account})
        return bytes(recovery_id)
