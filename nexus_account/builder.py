"""
UserOperationBuilder: turns a caller's Call into an unsigned user operation.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Optional

from .account import SmartAccount
from .chain import ChainGateway
from .errors import PreconditionError
from .user_operation import (
    Call,
    GasLimits,
    UnsignedOperation,
    UserOperation,
    encode_execute,
    encode_init_code,
)

logger = logging.getLogger(__name__)

DEFAULT_NONCE_KEY = 0


class UserOperationBuilder:
    """
    Assembles unsigned operations from on-chain state and caller input.

    Nonce and deployment state are fetched on every build. Reusing a stale
    value would either collide with an operation already in flight or try to
    deploy the account twice.
    """

    def __init__(self, gateway: ChainGateway, default_gas: Optional[GasLimits] = None):
        self.gateway = gateway
        self.default_gas = default_gas or GasLimits()

    async def build(self, account: SmartAccount, call: Optional[Call] = None,
                    gas: Optional[GasLimits] = None) -> UnsignedOperation:
        """
        Build an unsigned operation for ``account``.

        Args:
            account: The sending smart account
            call: Target call, wrapped into execute(dest, value, func).
                  None builds a deploy-only operation with empty callData.
            gas: Gas limits (defaults applied if not provided)

        Returns:
            UnsignedOperation with its canonical hash

        Raises:
            UpstreamError: If a chain read fails (retryable after rebuild)
            PreconditionError: If the account does not belong to this network
        """
        if account.chain_id != self.gateway.network.chain_id:
            raise PreconditionError(
                f"Account {account.address} lives on chain {account.chain_id}, "
                f"builder is configured for {self.gateway.network.chain_id}"
            )

        nonce, deployed, fees = await asyncio.gather(
            self.gateway.get_nonce(account.address, DEFAULT_NONCE_KEY),
            self.gateway.is_deployed(account.address),
            self.gateway.get_fee_data(),
        )

        if deployed:
            init_code = b''
            gas = gas or self.default_gas
        else:
            init_code = encode_init_code(account.factory, account.owner, account.salt)
            gas = gas or GasLimits.for_deployment(self.default_gas)

        call_data = encode_execute(call) if call is not None else b''

        user_op = UserOperation(
            sender=account.address,
            nonce=nonce,
            init_code=init_code,
            call_data=call_data,
            call_gas_limit=gas.call_gas_limit,
            verification_gas_limit=gas.verification_gas_limit,
            pre_verification_gas=gas.pre_verification_gas,
            max_fee_per_gas=fees.max_fee_per_gas,
            max_priority_fee_per_gas=fees.max_priority_fee_per_gas,
        )

        unsigned = self._finalize(user_op)
        logger.info(
            "Built user operation sender=%s nonce=%d deploy=%s hash=0x%s",
            account.address, nonce, bool(init_code), unsigned.user_op_hash.hex()
        )
        return unsigned

    def with_gas(self, unsigned: UnsignedOperation, gas: GasLimits) -> UnsignedOperation:
        """Apply new gas limits (e.g. a bundler estimate) and re-hash."""
        user_op = replace(
            unsigned.user_op,
            call_gas_limit=gas.call_gas_limit,
            verification_gas_limit=gas.verification_gas_limit,
            pre_verification_gas=gas.pre_verification_gas,
        )
        return self._finalize(user_op)

    def _finalize(self, user_op: UserOperation) -> UnsignedOperation:
        entry_point = self.gateway.entry_point
        chain_id = self.gateway.network.chain_id
        return UnsignedOperation(
            user_op=user_op,
            user_op_hash=user_op.hash(entry_point, chain_id),
            entry_point=entry_point,
            chain_id=chain_id,
        )
