"""
Signing capability for user operations.

The core only needs "give me a signature over this 32-byte hash". Where the
key lives (in-process key, browser wallet, hardware device) is the signer's
business.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from .errors import SigningError, ValidationError
from .validation import require_address

logger = logging.getLogger(__name__)


class SigningAgent(ABC):
    """Abstract signer. ``sign`` may suspend for a long time (user confirmation)."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Address of the key that produces the signatures."""

    @abstractmethod
    async def sign(self, user_op_hash: bytes) -> bytes:
        """Return a 65-byte (r, s, v) signature over ``user_op_hash``."""


def _require_hash(user_op_hash: bytes):
    if not isinstance(user_op_hash, (bytes, bytearray)) or len(user_op_hash) != 32:
        raise ValidationError("user operation hash must be 32 bytes")


class LocalSigningAgent(SigningAgent):
    """
    Signs with an in-process private key.

    The hash is signed as an EIP-191 personal message over the raw 32 bytes,
    which is what the account's validateUserOp recovers against.
    """

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key) -> 'LocalSigningAgent':
        try:
            return cls(Account.from_key(private_key))
        except Exception as exc:
            raise SigningError(f"Invalid private key: {exc}") from exc

    @property
    def address(self) -> str:
        return self._account.address

    async def sign(self, user_op_hash: bytes) -> bytes:
        _require_hash(user_op_hash)
        try:
            signed = self._account.sign_message(encode_defunct(primitive=bytes(user_op_hash)))
        except Exception as exc:
            raise SigningError(f"Sign UserOperation failed: {exc}") from exc
        return bytes(signed.signature)


class CallbackSigningAgent(SigningAgent):
    """
    Delegates to an async callback, e.g. a bridge to a browser wallet or a
    hardware device waiting for the user to confirm.

    Args:
        address: Address of the external key
        callback: ``async (hash) -> signature``
        timeout: Seconds to wait for the callback (None waits forever)
    """

    def __init__(self, address: str, callback: Callable[[bytes], Awaitable[bytes]],
                 timeout: Optional[float] = None):
        self._address = require_address(address, "signer address")
        self._callback = callback
        self.timeout = timeout

    @property
    def address(self) -> str:
        return self._address

    async def sign(self, user_op_hash: bytes) -> bytes:
        _require_hash(user_op_hash)
        try:
            signature = await asyncio.wait_for(self._callback(bytes(user_op_hash)), self.timeout)
        except asyncio.TimeoutError as exc:
            raise SigningError(f"Signer {self._address} did not answer within {self.timeout}s") from exc
        except SigningError:
            raise
        except Exception as exc:
            raise SigningError(f"Signer {self._address} rejected the request: {exc}") from exc

        if not signature or len(signature) != 65:
            raise SigningError(f"Signer {self._address} returned a malformed signature")
        logger.debug("External signer %s produced a signature", self._address)
        return bytes(signature)
