"""
Session keys: delegated signing keys limited by expiry, gas cap and a
target allowlist.
"""
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Optional

from eth_utils import is_address, to_checksum_address

from .abi import ACCOUNT_ABI, encode_call
from .account import SmartAccount
from .chain import ChainGateway
from .errors import PreconditionError, ValidationError
from .user_operation import Call, OperationHandle
from .validation import (
    require_address,
    require_address_set,
    require_future,
    require_nonzero_address,
    require_uint,
)

logger = logging.getLogger(__name__)

Dispatch = Callable[[Call], Awaitable[OperationHandle]]


@dataclass(frozen=True)
class SessionKey:
    key_address: str
    valid_until: int
    gas_limit: int
    targets: FrozenSet[str]

    def is_live(self, now: float) -> bool:
        return self.valid_until != 0 and now < self.valid_until

    def allows(self, target: str, now: float) -> bool:
        # An empty target set allows nothing
        return self.is_live(now) and target in self.targets


class SessionKeyRegistry:
    """
    Local mirror of one account's session keys.

    The local model is a cache: it is refreshed from chain with ``load`` and
    updated after each successful mutation. It pre-filters which operations
    get built on a key's behalf; the account contract remains the authority.

    Mutations go through ``dispatch``, which must build and submit an
    owner-signed operation for the given call.
    """

    def __init__(self, account: SmartAccount, gateway: Optional[ChainGateway] = None,
                 dispatch: Optional[Dispatch] = None,
                 clock: Callable[[], float] = time.time):
        self.account = account
        self.gateway = gateway
        self._dispatch = dispatch
        self._clock = clock
        self._keys: Dict[str, SessionKey] = {}

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def get(self, key: str) -> Optional[SessionKey]:
        return self._keys.get(require_address(key, "session key"))

    def keys(self) -> Iterable[SessionKey]:
        return list(self._keys.values())

    # ============================================
    # Queries (no network)
    # ============================================

    def is_live(self, key: str, now: Optional[float] = None) -> bool:
        session_key = self.get(key)
        return session_key is not None and session_key.is_live(self._now(now))

    def is_authorized(self, key: str, target: str, now: Optional[float] = None) -> bool:
        """False for unknown keys, expired keys and malformed addresses."""
        if not (is_address(key) and is_address(target)):
            return False
        session_key = self.get(key)
        if session_key is None:
            return False
        return session_key.allows(to_checksum_address(target), self._now(now))

    def ensure_authorized(self, key: str, target: str, gas: int = 0,
                          now: Optional[float] = None) -> SessionKey:
        """
        Like is_authorized, but explains the refusal and also enforces the
        per-operation gas cap.

        Raises:
            PreconditionError: If the key may not make this call
        """
        now = self._now(now)
        target = require_address(target, "target")
        session_key = self.get(key)

        if session_key is None:
            raise PreconditionError(f"Session key {key} is not registered on {self.account.address}")
        if not session_key.is_live(now):
            raise PreconditionError(f"Session key {session_key.key_address} expired at {session_key.valid_until}")
        if target not in session_key.targets:
            raise PreconditionError(f"Session key {session_key.key_address} may not call {target}")
        if gas > session_key.gas_limit:
            raise PreconditionError(
                f"Session key {session_key.key_address} gas cap {session_key.gas_limit} below {gas}"
            )
        return session_key

    # ============================================
    # Mutations (owner-signed operations)
    # ============================================

    def _require_dispatch(self) -> Dispatch:
        if self._dispatch is None:
            raise PreconditionError("No owner signer configured for session key changes")
        return self._dispatch

    async def add(self, key: str, valid_until: int, gas_limit: int,
                  targets: Iterable[str], now: Optional[float] = None) -> OperationHandle:
        """
        Register a session key on the account.

        Raises:
            ValidationError: Bad address, expiry not in the future, gas limit
                not positive, or an empty target set
        """
        key = require_nonzero_address(key, "session key")
        if self.account.is_owner(key):
            raise ValidationError("The owner key cannot be registered as a session key")
        valid_until = require_future(valid_until, self._now(now))
        gas_limit = require_uint(gas_limit, "gas_limit")
        if gas_limit == 0:
            raise ValidationError("gas_limit must be positive")
        target_list = require_address_set(targets)
        if not target_list:
            raise ValidationError("A session key needs at least one target contract")

        dispatch = self._require_dispatch()
        data = encode_call(ACCOUNT_ABI, "addSessionKey", [key, valid_until, gas_limit, target_list])
        handle = await dispatch(Call(target=self.account.address, value=0, data=data))

        self._keys[key] = SessionKey(
            key_address=key,
            valid_until=valid_until,
            gas_limit=gas_limit,
            targets=frozenset(target_list),
        )
        logger.info("Session key %s added to %s (valid until %d, %d targets)",
                    key, self.account.address, valid_until, len(target_list))
        return handle

    async def remove(self, key: str) -> OperationHandle:
        key = require_nonzero_address(key, "session key")
        dispatch = self._require_dispatch()

        data = encode_call(ACCOUNT_ABI, "removeSessionKey", [key])
        handle = await dispatch(Call(target=self.account.address, value=0, data=data))

        self._keys.pop(key, None)
        logger.info("Session key %s removed from %s", key, self.account.address)
        return handle

    # ============================================
    # Chain refresh
    # ============================================

    async def load(self, key: str) -> Optional[SessionKey]:
        """Refresh one key from chain. A zero expiry means not registered."""
        if self.gateway is None:
            raise PreconditionError("No chain gateway configured")
        key = require_nonzero_address(key, "session key")

        state = await self.gateway.get_session_key(self.account.address, key)
        if state.valid_until == 0:
            self._keys.pop(key, None)
            return None

        session_key = SessionKey(
            key_address=key,
            valid_until=state.valid_until,
            gas_limit=state.gas_limit,
            targets=frozenset(state.targets),
        )
        self._keys[key] = session_key
        return session_key
