"""
SmartAccountClient: the caller-facing surface of the orchestrator.
Tracks counterfactual accounts and routes every request through
build -> sign -> relay.
"""
import asyncio
import json
import logging
import os
import time
from typing import Callable, Dict, List, Optional, Tuple

from .account import SmartAccount
from .address import AddressDeriver
from .builder import DEFAULT_NONCE_KEY, UserOperationBuilder
from .bundler import BundlerClient, BundlerConfig
from .chain import ChainGateway
from .config import Config, NetworkConfig
from .errors import PreconditionError
from .guardians import GuardianSet
from .recovery import RecoveryCoordinator, RecoveryRequest
from .session_keys import SessionKeyRegistry
from .signing import SigningAgent
from .submitter import OperationSubmitter
from .user_operation import Call, GasLimits, OperationHandle
from .validation import require_address

logger = logging.getLogger(__name__)


class SmartAccountClient:
    """
    Orchestrates Nexus smart accounts on one network.

    Usage:
        client = SmartAccountClient.from_config("base_sepolia")
        account = await client.open_account(owner_address, salt=0)
        client.set_owner_signer(account, LocalSigningAgent.from_key(key))

        handle = await client.execute(account, Call(target, value, data))
        await client.add_session_key(account, key, valid_until, gas_limit, [target])

    Building and submitting is serialized per (account, nonce key): an
    operation is built from a fresh nonce only after the previous one for
    the same account has been relayed. Different accounts do not wait on
    each other.
    """

    def __init__(
        self,
        network: NetworkConfig,
        gateway: Optional[ChainGateway] = None,
        bundler: Optional[BundlerClient] = None,
        default_gas: Optional[GasLimits] = None,
        storage_path: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        self.network = network
        self.gateway = gateway or ChainGateway(network)
        if bundler is None and network.bundler_url:
            bundler = BundlerClient(BundlerConfig(url=network.bundler_url))
        self.bundler = bundler

        self.deriver = AddressDeriver(self.gateway)
        self.builder = UserOperationBuilder(self.gateway, default_gas)
        self._submitter = OperationSubmitter(bundler) if bundler is not None else None
        self.storage_path = storage_path
        self._clock = clock

        self._accounts: Dict[str, SmartAccount] = {}
        self._owner_signers: Dict[str, SigningAgent] = {}
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = {}
        self._session_keys: Dict[str, SessionKeyRegistry] = {}
        self._guardians: Dict[str, GuardianSet] = {}
        self._recoveries: Dict[str, RecoveryCoordinator] = {}

        if storage_path and os.path.exists(storage_path):
            self.load()

    @classmethod
    def from_config(cls, network_name: str, config: Optional[Config] = None, **kwargs) -> 'SmartAccountClient':
        """Create a client for a network registered in Config, env overrides applied."""
        config = config or Config()
        network = config.apply_env_overrides(network_name)
        return cls(network, **kwargs)

    @property
    def submitter(self) -> OperationSubmitter:
        if self._submitter is None:
            raise PreconditionError("Bundler RPC URL required")
        return self._submitter

    # ============================================
    # Account bookkeeping
    # ============================================

    async def compute_address(self, owner: str, salt: int = 0) -> str:
        """Counterfactual address for (owner, salt); works before deployment."""
        return await self.deriver.derive(owner, salt)

    async def open_account(self, owner: str, salt: int = 0, save: bool = True) -> SmartAccount:
        """
        Start tracking the account for (owner, salt). Nothing is deployed;
        the account comes into existence on chain with its first operation.
        """
        address = await self.deriver.derive(owner, salt)
        if address in self._accounts:
            return self._accounts[address]

        account = SmartAccount(
            owner=owner,
            salt=salt,
            address=address,
            factory=self.gateway.factory,
            chain_id=self.network.chain_id,
        )
        self._accounts[address] = account
        logger.info("Tracking account %s (owner=%s salt=%d)", address, account.owner, salt)

        if save and self.storage_path:
            self.save()
        return account

    def get_account(self, address: str) -> SmartAccount:
        address = require_address(address, "account")
        if address not in self._accounts:
            raise KeyError(f"Account {address} is not tracked on {self.network.name or self.network.chain_id}")
        return self._accounts[address]

    def list_accounts(self) -> List[SmartAccount]:
        return list(self._accounts.values())

    async def is_deployed(self, account: SmartAccount) -> bool:
        return await self.gateway.is_deployed(account.address)

    async def verify_network(self) -> int:
        """Check that the RPC endpoint serves the configured chain."""
        chain_id = await self.gateway.get_chain_id()
        if chain_id != self.network.chain_id:
            raise PreconditionError(
                f"RPC endpoint serves chain {chain_id}, configuration says {self.network.chain_id}"
            )
        return chain_id

    async def refresh_owner(self, account: SmartAccount) -> str:
        """Re-read the owner from chain, e.g. after a recovery was included."""
        owner = await self.gateway.get_owner(account.address)
        if not account.is_owner(owner):
            logger.info("Owner of %s changed %s -> %s", account.address, account.owner, owner)
            account.rotate_owner(owner)
            self._owner_signers.pop(account.address, None)
            if self.storage_path:
                self.save()
        return account.owner

    # ============================================
    # Signers
    # ============================================

    def set_owner_signer(self, account: SmartAccount, signer: SigningAgent):
        """Register the signer used for owner-authorized operations."""
        if not account.is_owner(signer.address):
            raise PreconditionError(
                f"Signer {signer.address} is not the owner {account.owner} of {account.address}"
            )
        self._owner_signers[account.address] = signer

    def _owner_signer(self, account: SmartAccount) -> SigningAgent:
        signer = self._owner_signers.get(account.address)
        if signer is None or not account.is_owner(signer.address):
            raise PreconditionError(f"No owner signer registered for {account.address}")
        return signer

    # ============================================
    # Operation pipeline
    # ============================================

    def _lock(self, account: SmartAccount, nonce_key: int = DEFAULT_NONCE_KEY) -> asyncio.Lock:
        # One lock per tracked account, kept for the lifetime of the client
        key = (account.address, nonce_key)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _send(
        self,
        account: SmartAccount,
        call: Optional[Call],
        signer: SigningAgent,
        gas: Optional[GasLimits] = None,
        estimate_gas: bool = False,
        require_deploy: bool = False,
        session_keys: Optional[SessionKeyRegistry] = None
    ) -> OperationHandle:
        submitter = self.submitter

        async with self._lock(account):
            unsigned = await self.builder.build(account, call, gas)

            if require_deploy and not unsigned.deploys_account:
                raise PreconditionError(f"Account {account.address} is already deployed")

            if estimate_gas:
                estimate = await submitter.estimate_gas(unsigned)
                unsigned = self.builder.with_gas(unsigned, estimate)

            if session_keys is not None:
                op = unsigned.user_op
                total_gas = op.call_gas_limit + op.verification_gas_limit + op.pre_verification_gas
                session_keys.ensure_authorized(signer.address, call.target, gas=total_gas,
                                               now=self._clock())

            return await submitter.submit(unsigned, signer)

    def _owner_dispatch(self, account: SmartAccount):
        async def dispatch(call: Call) -> OperationHandle:
            return await self._send(account, call, self._owner_signer(account))
        return dispatch

    async def deploy(self, account: SmartAccount, gas: Optional[GasLimits] = None) -> OperationHandle:
        """
        Deploy the account with a deploy-only operation (initCode, empty
        callData), signed by the owner.
        """
        signer = self._owner_signer(account)
        if await self.gateway.is_deployed(account.address):
            raise PreconditionError(f"Account {account.address} is already deployed")
        return await self._send(account, None, signer, gas=gas, require_deploy=True)

    async def execute(
        self,
        account: SmartAccount,
        call: Call,
        signer: Optional[SigningAgent] = None,
        gas: Optional[GasLimits] = None,
        estimate_gas: bool = False
    ) -> OperationHandle:
        """
        Make the account call ``call.target``. Deploys the account on the
        way if this is its first operation.

        Args:
            signer: Owner signer (default) or a session-key signer. Session
                    keys are checked against the local registry first.
        """
        if signer is None or account.is_owner(signer.address):
            return await self._send(account, call, signer or self._owner_signer(account),
                                    gas=gas, estimate_gas=estimate_gas)

        registry = self.session_keys(account)
        registry.ensure_authorized(signer.address, call.target, now=self._clock())
        if not await self.gateway.is_deployed(account.address):
            raise PreconditionError(
                f"Account {account.address} is not deployed; deploy it with the owner signer first"
            )
        return await self._send(account, call, signer, gas=gas, estimate_gas=estimate_gas,
                                session_keys=registry)

    # ============================================
    # Session keys / guardians / recovery
    # ============================================

    def session_keys(self, account: SmartAccount) -> SessionKeyRegistry:
        if account.address not in self._session_keys:
            self._session_keys[account.address] = SessionKeyRegistry(
                account, self.gateway, self._owner_dispatch(account), clock=self._clock)
        return self._session_keys[account.address]

    def guardians(self, account: SmartAccount) -> GuardianSet:
        if account.address not in self._guardians:
            self._guardians[account.address] = GuardianSet(
                account, self.gateway, self._owner_dispatch(account))
        return self._guardians[account.address]

    def recovery(self, account: SmartAccount) -> RecoveryCoordinator:
        if account.address not in self._recoveries:
            self._recoveries[account.address] = RecoveryCoordinator(
                account, self.gateway, self._owner_dispatch(account))
        return self._recoveries[account.address]

    async def add_session_key(self, account: SmartAccount, key: str, valid_until: int,
                              gas_limit: int, targets: List[str]) -> OperationHandle:
        return await self.session_keys(account).add(key, valid_until, gas_limit, targets)

    async def remove_session_key(self, account: SmartAccount, key: str) -> OperationHandle:
        return await self.session_keys(account).remove(key)

    async def add_guardian(self, account: SmartAccount, guardian: str) -> OperationHandle:
        return await self.guardians(account).add(guardian)

    async def remove_guardian(self, account: SmartAccount, guardian: str) -> OperationHandle:
        return await self.guardians(account).remove(guardian)

    async def initiate_recovery(self, account: SmartAccount, new_owner: str) -> RecoveryRequest:
        return await self.recovery(account).initiate(new_owner)

    async def confirm_recovery(self, account: SmartAccount, recovery_id) -> RecoveryRequest:
        return await self.recovery(account).confirm(recovery_id)

    async def execute_recovery(self, account: SmartAccount, recovery_id) -> RecoveryRequest:
        return await self.recovery(account).execute(recovery_id)

    async def abandon_recovery(self, account: SmartAccount) -> Optional[RecoveryRequest]:
        return await self.recovery(account).abandon()

    # ============================================
    # Persistence
    # ============================================

    def save(self, path: Optional[str] = None):
        """
        Save account bookkeeping (owner, salt, address) to disk. Keys,
        signers and cached chain state are not persisted.
        """
        save_path = path or self.storage_path
        if not save_path:
            raise ValueError("No storage path configured")

        data = {
            'chain_id': self.network.chain_id,
            'accounts': [account.to_dict() for account in self._accounts.values()],
        }
        with open(save_path, 'w') as f:
            json.dump(data, f, indent=2)

    def load(self, path: Optional[str] = None):
        """
        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file belongs to another chain
        """
        load_path = path or self.storage_path
        if not load_path or not os.path.exists(load_path):
            raise FileNotFoundError(f"Account file not found: {load_path}")

        with open(load_path, 'r') as f:
            data = json.load(f)

        if data.get('chain_id') != self.network.chain_id:
            raise ValueError(
                f"Account file is for chain {data.get('chain_id')}, "
                f"client is on {self.network.chain_id}"
            )

        self._accounts.clear()
        for account_data in data.get('accounts', []):
            account = SmartAccount.from_dict(account_data)
            self._accounts[account.address] = account

    async def close(self):
        if self.bundler is not None:
            await self.bundler.close()

    def __repr__(self):
        return (
            f"<SmartAccountClient network={self.network.name or self.network.chain_id} "
            f"accounts={len(self._accounts)}>"
        )
