"""
UserOperation primitives for ERC-4337 (EntryPoint v0.6 layout).
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from eth_abi import encode
from web3 import Web3

from .abi import ACCOUNT_ABI, FACTORY_ABI, encode_call
from .errors import ValidationError
from .validation import require_address, require_bytes, require_uint


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _hex_int(value: int) -> str:
    return hex(value)


@dataclass(frozen=True)
class Call:
    """A call the account should make through execute(dest, value, func)."""
    target: str
    value: int = 0
    data: bytes = b''

    def __post_init__(self):
        object.__setattr__(self, 'target', require_address(self.target, "target"))
        object.__setattr__(self, 'value', require_uint(self.value, "value"))
        object.__setattr__(self, 'data', require_bytes(self.data, "data"))

    @classmethod
    def from_ether(cls, target: str, ether: Union[str, Decimal] = "0",
                   data: Union[bytes, str, None] = b'') -> 'Call':
        """Build a call from a human-entered ether amount (e.g. "0.01")."""
        try:
            amount = Decimal(ether or "0")
        except InvalidOperation:
            raise ValidationError(f"value is not a number: {ether!r}")
        if amount < 0:
            raise ValidationError(f"value cannot be negative: {ether}")
        try:
            wei = Web3.to_wei(amount, 'ether')
        except ValueError as exc:
            raise ValidationError(f"value out of range: {ether}") from exc
        if wei != amount * 10 ** 18:
            raise ValidationError(f"value has more than 18 decimals: {ether}")
        return cls(target=target, value=int(wei), data=data)


@dataclass(frozen=True)
class GasLimits:
    call_gas_limit: int = 100000
    verification_gas_limit: int = 150000
    pre_verification_gas: int = 50000

    # Verification gas used when the operation also deploys the account
    DEPLOY_VERIFICATION_GAS = 500000

    @classmethod
    def for_deployment(cls, base: Optional['GasLimits'] = None) -> 'GasLimits':
        base = base or cls()
        return replace(
            base,
            verification_gas_limit=max(base.verification_gas_limit, cls.DEPLOY_VERIFICATION_GAS),
        )

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> 'GasLimits':
        """Parse an eth_estimateUserOperationGas result."""
        def parse(value):
            if isinstance(value, int):
                return value
            return int(value, 16)

        try:
            return cls(
                call_gas_limit=parse(data["callGasLimit"]),
                verification_gas_limit=parse(data["verificationGasLimit"]),
                pre_verification_gas=parse(data["preVerificationGas"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed gas estimate: {data!r}") from exc


@dataclass(frozen=True)
class UserOperation:
    sender: str
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b''
    signature: bytes = b''

    def pack(self) -> bytes:
        """abi.encode of the operation with dynamic fields hashed."""
        return encode(
            ['address', 'uint256', 'bytes32', 'bytes32', 'uint256',
             'uint256', 'uint256', 'uint256', 'uint256', 'bytes32'],
            [
                self.sender,
                self.nonce,
                Web3.keccak(self.init_code),
                Web3.keccak(self.call_data),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                Web3.keccak(self.paymaster_and_data),
            ]
        )

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """
        Canonical user operation hash, as EntryPoint.getUserOpHash() computes it:
        keccak(abi.encode(keccak(pack(op)), entryPoint, chainId)).
        The signature is not part of the hash.
        """
        return bytes(Web3.keccak(encode(
            ['bytes32', 'address', 'uint256'],
            [Web3.keccak(self.pack()), entry_point, chain_id]
        )))

    def to_rpc(self) -> Dict[str, str]:
        """JSON-RPC representation used by bundlers."""
        return {
            'sender': self.sender,
            'nonce': _hex_int(self.nonce),
            'initCode': _hex(self.init_code),
            'callData': _hex(self.call_data),
            'callGasLimit': _hex_int(self.call_gas_limit),
            'verificationGasLimit': _hex_int(self.verification_gas_limit),
            'preVerificationGas': _hex_int(self.pre_verification_gas),
            'maxFeePerGas': _hex_int(self.max_fee_per_gas),
            'maxPriorityFeePerGas': _hex_int(self.max_priority_fee_per_gas),
            'paymasterAndData': _hex(self.paymaster_and_data),
            'signature': _hex(self.signature),
        }


@dataclass(frozen=True)
class UnsignedOperation:
    """A built, not yet signed, not yet submitted operation."""
    user_op: UserOperation
    user_op_hash: bytes
    entry_point: str
    chain_id: int

    @property
    def sender(self) -> str:
        return self.user_op.sender

    @property
    def nonce(self) -> int:
        return self.user_op.nonce

    @property
    def deploys_account(self) -> bool:
        return len(self.user_op.init_code) > 0


@dataclass(frozen=True)
class SignedOperation:
    user_op: UserOperation
    user_op_hash: bytes
    entry_point: str
    chain_id: int

    @classmethod
    def attach(cls, unsigned: UnsignedOperation, signature: bytes) -> 'SignedOperation':
        return cls(
            user_op=replace(unsigned.user_op, signature=bytes(signature)),
            user_op_hash=unsigned.user_op_hash,
            entry_point=unsigned.entry_point,
            chain_id=unsigned.chain_id,
        )


@dataclass(frozen=True)
class OperationHandle:
    """What the caller gets back after a successful relay."""
    user_op_hash: str
    sender: str
    nonce: int
    deployed_by_operation: bool = False
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)


def encode_execute(call: Call) -> bytes:
    return encode_call(ACCOUNT_ABI, "execute", [call.target, call.value, call.data])


def encode_init_code(factory: str, owner: str, salt: int) -> bytes:
    """initCode = factory address || createAccount(owner, salt) calldata."""
    factory_bytes = bytes.fromhex(require_address(factory, "factory")[2:])
    return factory_bytes + encode_call(FACTORY_ABI, "createAccount", [owner, salt])
