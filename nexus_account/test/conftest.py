"""
Shared fixtures: an in-memory chain and a bundler that "includes" every
operation it accepts, so multi-step flows can be exercised without a node.
"""
import pytest
from eth_abi import decode
from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3

from nexus_account import (
    BundlerRejectedError,
    LocalSigningAgent,
    NetworkConfig,
    RejectionReason,
    UpstreamError,
)
from nexus_account.abi import ACCOUNT_ABI, function_selector
from nexus_account.chain import ChainGateway, FeeData, RecoveryStatus, SessionKeyState
from nexus_account.user_operation import GasLimits
from nexus_account.validation import ZERO_ADDRESS

OWNER = "0x" + "a" * 40
FACTORY = "0x" + "f" * 40
ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
CHAIN_ID = 84532


class FakeGateway(ChainGateway):
    """In-memory stand-in for the chain, same async surface as ChainGateway."""

    def __init__(self, network):
        super().__init__(network)
        self.nonces = {}
        self.deployed = set()
        self.owners = {}
        self.session_keys = {}
        self.guardians = {}
        self.recoveries = {}
        self.address_lookups = 0
        self.nonce_lookups = 0
        self.fail_reads = False

    def _check(self):
        if self.fail_reads:
            raise UpstreamError("RPC timeout")

    async def get_nonce(self, account, key=0):
        self._check()
        self.nonce_lookups += 1
        return self.nonces.get(to_checksum_address(account), 0)

    async def get_address(self, owner, salt):
        self._check()
        self.address_lookups += 1
        digest = Web3.keccak(
            bytes.fromhex(self.factory[2:]) + bytes.fromhex(owner[2:]) + salt.to_bytes(32, 'big')
        )
        address = to_checksum_address(digest[12:])
        self.owners.setdefault(address, to_checksum_address(owner))
        return address

    async def is_deployed(self, address):
        self._check()
        return to_checksum_address(address) in self.deployed

    async def get_chain_id(self):
        self._check()
        return self.network.chain_id

    async def get_fee_data(self):
        self._check()
        return FeeData(max_fee_per_gas=3 * 10 ** 9, max_priority_fee_per_gas=10 ** 9)

    async def get_owner(self, account):
        self._check()
        return self.owners[to_checksum_address(account)]

    async def get_session_key(self, account, key):
        self._check()
        return self.session_keys.get((account, key), SessionKeyState(0, 0, ()))

    async def is_guardian(self, account, guardian):
        self._check()
        return guardian in self.guardians.get(account, set())

    async def get_recovery_request(self, account, recovery_id):
        self._check()
        return self.recoveries.get((account, recovery_id), RecoveryStatus(ZERO_ADDRESS, False, False))

    async def preview_recovery_id(self, account, new_owner):
        self._check()
        count = sum(1 for (acct, _) in self.recoveries if acct == account)
        return bytes(Web3.keccak(
            bytes.fromhex(account[2:]) + bytes.fromhex(new_owner[2:]) + count.to_bytes(32, 'big')
        ))


class FakeBundler:
    """
    Accepts an operation only if its nonce is the account's current one,
    then applies it to the FakeGateway as if it had been included.
    """

    def __init__(self, gateway, auto_include=True):
        self.gateway = gateway
        self.auto_include = auto_include
        self.sent = []
        self.pending = []
        self.estimate = GasLimits(call_gas_limit=80000, verification_gas_limit=120000,
                                  pre_verification_gas=45000)

    async def send_user_operation(self, user_op, entry_point):
        current = self.gateway.nonces.get(user_op.sender, 0)
        if user_op.nonce != current:
            raise BundlerRejectedError("AA25 invalid account nonce",
                                       reason=RejectionReason.NONCE_ALREADY_USED, code=-32500)
        self.sent.append(user_op)
        if self.auto_include:
            self.include(user_op)
        else:
            self.pending.append(user_op)
        return "0x" + user_op.hash(entry_point, self.gateway.network.chain_id).hex()

    async def estimate_user_operation_gas(self, user_op, entry_point):
        return self.estimate

    async def close(self):
        pass

    def include_pending(self):
        while self.pending:
            self.include(self.pending.pop(0))

    def include(self, user_op):
        gw = self.gateway
        sender = user_op.sender
        if gw.nonces.get(sender, 0) != user_op.nonce:
            raise AssertionError("nonce already consumed")
        gw.nonces[sender] = user_op.nonce + 1
        if user_op.init_code:
            gw.deployed.add(sender)
        if user_op.call_data:
            self._apply(sender, user_op.call_data)

    def _apply(self, sender, call_data):
        dest, _value, func = decode(['address', 'uint256', 'bytes'], call_data[4:])
        if to_checksum_address(dest) != sender or len(func) < 4:
            return
        selector, args = func[:4], func[4:]
        gw = self.gateway

        def is_fn(name):
            return selector == function_selector(ACCOUNT_ABI, name)

        if is_fn("addSessionKey"):
            key, valid_until, gas_limit, targets = decode(
                ['address', 'uint48', 'uint256', 'address[]'], args)
            gw.session_keys[(sender, to_checksum_address(key))] = SessionKeyState(
                valid_until, gas_limit, tuple(to_checksum_address(t) for t in targets))
        elif is_fn("removeSessionKey"):
            (key,) = decode(['address'], args)
            gw.session_keys.pop((sender, to_checksum_address(key)), None)
        elif is_fn("addGuardian"):
            (guardian,) = decode(['address'], args)
            gw.guardians.setdefault(sender, set()).add(to_checksum_address(guardian))
        elif is_fn("removeGuardian"):
            (guardian,) = decode(['address'], args)
            gw.guardians.get(sender, set()).discard(to_checksum_address(guardian))
        elif is_fn("initiateRecovery"):
            (new_owner,) = decode(['address'], args)
            new_owner = to_checksum_address(new_owner)
            count = sum(1 for (acct, _) in gw.recoveries if acct == sender)
            recovery_id = bytes(Web3.keccak(
                bytes.fromhex(sender[2:]) + bytes.fromhex(new_owner[2:]) + count.to_bytes(32, 'big')
            ))
            gw.recoveries[(sender, recovery_id)] = RecoveryStatus(new_owner, False, False)
        elif is_fn("confirmRecovery"):
            (recovery_id,) = decode(['bytes32'], args)
            status = gw.recoveries[(sender, recovery_id)]
            gw.recoveries[(sender, recovery_id)] = RecoveryStatus(status.new_owner, True, False)
        elif is_fn("executeRecovery"):
            (recovery_id,) = decode(['bytes32'], args)
            status = gw.recoveries[(sender, recovery_id)]
            gw.recoveries[(sender, recovery_id)] = RecoveryStatus(status.new_owner, True, True)
            gw.owners[sender] = status.new_owner


@pytest.fixture
def network():
    return NetworkConfig(
        chain_id=CHAIN_ID,
        rpc_url="https://sepolia.base.org",
        entrypoint_address=ENTRY_POINT,
        factory_address=FACTORY,
        bundler_url="https://bundler.example.com",
        name="Base Sepolia"
    )


@pytest.fixture
def gateway(network):
    return FakeGateway(network)


@pytest.fixture
def bundler(gateway):
    return FakeBundler(gateway)


@pytest.fixture
def owner_signer():
    return LocalSigningAgent(Account.create())


@pytest.fixture
def other_signer():
    return LocalSigningAgent(Account.create())
