from dataclasses import replace

import pytest
from eth_abi import decode

from nexus_account import Call, GasLimits, UserOperation, ValidationError
from nexus_account.abi import ACCOUNT_ABI, FACTORY_ABI, function_selector
from nexus_account.user_operation import SignedOperation, UnsignedOperation, encode_execute, encode_init_code

ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
SENDER = "0x1234567890123456789012345678901234567890"
TARGET = "0x2222222222222222222222222222222222222222"


def make_op(**overrides):
    fields = dict(
        sender=SENDER,
        nonce=0,
        init_code=b'',
        call_data=b'\x01\x02',
        call_gas_limit=100000,
        verification_gas_limit=150000,
        pre_verification_gas=50000,
        max_fee_per_gas=3 * 10 ** 9,
        max_priority_fee_per_gas=10 ** 9,
    )
    fields.update(overrides)
    return UserOperation(**fields)


def test_call_normalizes_input():
    call = Call(target=TARGET.lower(), value=5, data="0xdeadbeef")
    assert call.target == TARGET
    assert call.data == bytes.fromhex("deadbeef")


@pytest.mark.parametrize("kwargs", [
    {"target": "0x1234", "value": 0},
    {"target": TARGET, "value": -1},
    {"target": TARGET, "value": 2 ** 256},
    {"target": TARGET, "value": 0, "data": "zz"},
    {"target": TARGET, "value": True},
])
def test_call_rejects_malformed_input(kwargs):
    with pytest.raises(ValidationError):
        Call(**kwargs)


def test_call_from_ether():
    assert Call.from_ether(TARGET, "0.5").value == 5 * 10 ** 17
    assert Call.from_ether(TARGET, "").value == 0
    with pytest.raises(ValidationError):
        Call.from_ether(TARGET, "abc")
    with pytest.raises(ValidationError):
        Call.from_ether(TARGET, "-1")
    with pytest.raises(ValidationError):
        Call.from_ether(TARGET, "0.0000000000000000001")


def test_encode_execute():
    call = Call(target=TARGET, value=7, data=b'\xaa')
    data = encode_execute(call)

    assert data[:4] == function_selector(ACCOUNT_ABI, "execute")
    dest, value, func = decode(['address', 'uint256', 'bytes'], data[4:])
    assert dest == TARGET
    assert value == 7
    assert func == b'\xaa'


def test_init_code_is_factory_plus_create_account():
    owner = "0x" + "a" * 40
    factory = "0x" + "f" * 40
    init_code = encode_init_code(factory, owner, 3)

    assert init_code[:20] == bytes.fromhex("f" * 40)
    assert init_code[20:24] == function_selector(FACTORY_ABI, "createAccount")
    decoded_owner, salt = decode(['address', 'uint256'], init_code[24:])
    assert decoded_owner.lower() == owner
    assert salt == 3


def test_hash_binds_every_field():
    op = make_op()
    base = op.hash(ENTRY_POINT, 84532)
    assert len(base) == 32

    variants = [
        replace(op, nonce=1),
        replace(op, init_code=b'\x01'),
        replace(op, call_data=b''),
        replace(op, call_gas_limit=1),
        replace(op, max_fee_per_gas=1),
        replace(op, paymaster_and_data=b'\x01'),
    ]
    for variant in variants:
        assert variant.hash(ENTRY_POINT, 84532) != base

    assert op.hash(ENTRY_POINT, 1) != base
    assert op.hash("0x0000000071727De22E5E9d8BAf0edAc6f37da032", 84532) != base


def test_signature_not_part_of_hash():
    op = make_op()
    assert replace(op, signature=b'\x01' * 65).hash(ENTRY_POINT, 1) == op.hash(ENTRY_POINT, 1)


def test_to_rpc_format():
    rpc = make_op(nonce=16).to_rpc()
    assert rpc['nonce'] == "0x10"
    assert rpc['initCode'] == "0x"
    assert rpc['callData'] == "0x0102"
    assert rpc['callGasLimit'] == hex(100000)
    assert rpc['signature'] == "0x"


def test_signed_operation_keeps_hash():
    op = make_op()
    unsigned = UnsignedOperation(op, op.hash(ENTRY_POINT, 1), ENTRY_POINT, 1)
    signed = SignedOperation.attach(unsigned, b'\x05' * 65)

    assert signed.user_op.signature == b'\x05' * 65
    assert signed.user_op_hash == unsigned.user_op_hash
    assert unsigned.user_op.signature == b''


def test_gas_limits():
    deploy = GasLimits.for_deployment()
    assert deploy.verification_gas_limit == GasLimits.DEPLOY_VERIFICATION_GAS
    assert deploy.call_gas_limit == GasLimits().call_gas_limit

    parsed = GasLimits.from_rpc({
        "callGasLimit": "0x100",
        "verificationGasLimit": "0x200",
        "preVerificationGas": 300,
    })
    assert parsed == GasLimits(256, 512, 300)

    with pytest.raises(ValueError):
        GasLimits.from_rpc({"callGasLimit": "0x1"})
