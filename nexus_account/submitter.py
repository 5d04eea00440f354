"""
OperationSubmitter: signs a built operation and relays it to the bundler.
"""
import logging
from typing import Dict, Optional, Set

from .bundler import BundlerClient, bundler_payload_summary
from .errors import PreconditionError
from .signing import SigningAgent
from .user_operation import GasLimits, OperationHandle, SignedOperation, UnsignedOperation

logger = logging.getLogger(__name__)


class OperationSubmitter:
    """
    Exactly one relay attempt per ``submit`` call, never an automatic retry.

    An UnsignedOperation can go out once. If the relay fails, or the nonce
    gets consumed by something else, the caller has to rebuild (fresh nonce)
    and submit the new operation.

    Relayed hashes are remembered per sender until an operation built from a
    higher nonce comes through; by then the older nonces are consumed and
    their operations can never be valid again.
    """

    def __init__(self, bundler: BundlerClient):
        self.bundler = bundler
        self._relayed: Dict[str, Dict[bytes, int]] = {}

    def relayed(self, sender: str) -> Set[bytes]:
        """Hashes relayed for ``sender`` whose nonce may still be open."""
        return set(self._relayed.get(sender, {}))

    def _prune(self, sender: str, nonce: int):
        seen = self._relayed.get(sender)
        if not seen:
            return
        for user_op_hash in [h for h, n in seen.items() if n < nonce]:
            del seen[user_op_hash]

    async def sign(self, unsigned: UnsignedOperation, signer: SigningAgent) -> SignedOperation:
        signature = await signer.sign(unsigned.user_op_hash)
        return SignedOperation.attach(unsigned, signature)

    async def submit(self, unsigned: UnsignedOperation, signer: SigningAgent) -> OperationHandle:
        """
        Sign ``unsigned`` with ``signer`` and relay it.

        Returns:
            OperationHandle carrying the bundler-assigned user operation hash

        Raises:
            PreconditionError: If this exact operation was already relayed
            SigningError: If the signer is unavailable or refuses
            UpstreamError / BundlerRejectedError: If the relay fails
        """
        self._prune(unsigned.sender, unsigned.nonce)
        if unsigned.user_op_hash in self._relayed.get(unsigned.sender, {}):
            raise PreconditionError(
                f"Operation 0x{unsigned.user_op_hash.hex()} was already submitted; "
                f"rebuild it with a fresh nonce"
            )

        signed = await self.sign(unsigned, signer)

        self._relayed.setdefault(unsigned.sender, {})[unsigned.user_op_hash] = unsigned.nonce
        logger.info("Relaying user operation %s signed by %s",
                    bundler_payload_summary(signed.user_op), signer.address)
        bundler_hash = await self.bundler.send_user_operation(signed.user_op, signed.entry_point)

        local_hash = "0x" + signed.user_op_hash.hex()
        if bundler_hash.lower() != local_hash:
            logger.warning("Bundler hash %s differs from local hash %s", bundler_hash, local_hash)

        return OperationHandle(
            user_op_hash=bundler_hash,
            sender=signed.user_op.sender,
            nonce=signed.user_op.nonce,
            deployed_by_operation=unsigned.deploys_account,
        )

    async def estimate_gas(self, unsigned: UnsignedOperation,
                           dummy_signature: Optional[bytes] = None) -> GasLimits:
        """
        Ask the bundler for gas limits. Bundlers simulate with whatever
        signature is attached, so a well-formed dummy is sent.
        """
        signed = SignedOperation.attach(unsigned, dummy_signature or DUMMY_SIGNATURE)
        return await self.bundler.estimate_user_operation_gas(signed.user_op, signed.entry_point)


# Well-formed 65-byte ECDSA signature that recovers to some address, used
# only for gas estimation
DUMMY_SIGNATURE = bytes.fromhex("f" * 31 + "0" * 33 + "7" + "a" * 63 + "1c")
