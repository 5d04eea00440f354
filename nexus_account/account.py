"""
SmartAccount: the counterfactual account bookkeeping record.
"""
from dataclasses import dataclass
from typing import Any, Dict

from .validation import require_nonzero_address, require_uint


@dataclass
class SmartAccount:
    """
    One Nexus smart account on one chain.

    ``owner`` is the key that currently controls the account. ``salt`` and
    ``address`` are fixed at creation; the address stays valid after an
    ownership recovery. Deployment state is not stored here,
    ask ChainGateway.is_deployed() instead.
    """
    owner: str
    salt: int
    address: str
    factory: str
    chain_id: int

    def __post_init__(self):
        self.owner = require_nonzero_address(self.owner, "owner")
        self.salt = require_uint(self.salt, "salt")
        self.address = require_nonzero_address(self.address, "address")
        self.factory = require_nonzero_address(self.factory, "factory")

    def is_owner(self, address: str) -> bool:
        return address.lower() == self.owner.lower()

    def rotate_owner(self, new_owner: str):
        """Record an ownership change observed on chain."""
        self.owner = require_nonzero_address(new_owner, "new_owner")

    def __repr__(self):
        return (
            f"<SmartAccount address={self.address} "
            f"owner={self.owner} salt={self.salt} chain={self.chain_id}>"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner': self.owner,
            'salt': self.salt,
            'address': self.address,
            'factory': self.factory,
            'chain_id': self.chain_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SmartAccount':
        return cls(**data)
