"""
Counterfactual address derivation.
"""
import logging
from typing import Dict, Tuple

from .chain import ChainGateway
from .validation import require_nonzero_address, require_uint

logger = logging.getLogger(__name__)


class AddressDeriver:
    """
    Computes the deterministic account address for (owner, salt) on one
    factory / chain, whether or not the account is deployed yet.

    Results are memoised per (chain id, factory, owner, salt): the factory's
    answer for a given key never changes, so a second call with the same
    inputs returns the same address without a network round-trip.
    """

    def __init__(self, gateway: ChainGateway):
        self.gateway = gateway
        self._cache: Dict[Tuple[int, str, str, int], str] = {}

    async def derive(self, owner: str, salt: int = 0) -> str:
        owner = require_nonzero_address(owner, "owner")
        salt = require_uint(salt, "salt")

        key = (self.gateway.network.chain_id, self.gateway.factory, owner, salt)
        if key not in self._cache:
            address = await self.gateway.get_address(owner, salt)
            logger.debug("Derived account %s for owner=%s salt=%d", address, owner, salt)
            self._cache[key] = address
        return self._cache[key]
