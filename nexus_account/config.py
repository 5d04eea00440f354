"""
Network configuration for the Nexus smart-account client.
Manages RPC, bundler, EntryPoint and factory settings per network.
"""
from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict
import json
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_ENTRYPOINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"

# Environment overrides, applied by Config.apply_env_overrides()
ENV_RPC_URL = "NEXUS_RPC_URL"
ENV_BUNDLER_URL = "NEXUS_BUNDLER_RPC_URL"
ENV_ENTRYPOINT = "NEXUS_ENTRYPOINT"
ENV_FACTORY = "NEXUS_FACTORY"


@dataclass
class NetworkConfig:
    """Configuration for a single network."""
    chain_id: int
    rpc_url: str
    entrypoint_address: Optional[str] = DEFAULT_ENTRYPOINT
    factory_address: Optional[str] = None
    bundler_url: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if not self.rpc_url:
            raise ValueError("RPC URL cannot be empty")
        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ValueError(f"Invalid chain id: {self.chain_id!r}")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'NetworkConfig':
        """Create from dictionary."""
        return cls(**data)


class Config:
    """
    Global configuration singleton for managing network settings.
    Automatically loads from and saves to nexus_config.json.

    Usage:
        config = Config()  # Auto-loads from nexus_config.json if exists
        config.add_network("base_sepolia", NetworkConfig(...))
        network = config.get_network("base_sepolia")
    """

    _instance = None
    DEFAULT_CONFIG_PATH = "nexus_config.json"

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._networks: Dict[str, NetworkConfig] = {}
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._initialized = True

        if os.path.exists(self.config_path):
            self.load_from_json()

    @classmethod
    def reset(cls):
        """Drop the singleton instance. Mostly useful in tests."""
        cls._instance = None

    def add_network(self, network_name: str, network_config: NetworkConfig, save: bool = True):
        """
        Add or update a network configuration.

        Args:
            network_name: Unique identifier for the network (e.g., "base_sepolia")
            network_config: NetworkConfig object with network details
            save: Whether to save to the config file immediately (default: True)
        """
        self._networks[network_name] = network_config

        if save:
            self.save_to_json()

    def get_network(self, network_name: str) -> NetworkConfig:
        """
        Get network configuration by name.

        Raises:
            KeyError: If network not found
        """
        if network_name not in self._networks:
            raise KeyError(f"Network '{network_name}' not configured")
        return self._networks[network_name]

    def _update(self, network_name: str, save: bool, **fields) -> NetworkConfig:
        network = self.get_network(network_name)
        for field_name, value in fields.items():
            setattr(network, field_name, value)
        if save:
            self.save_to_json()
        return network

    def set_factory(self, network_name: str, factory_address: str, save: bool = True) -> NetworkConfig:
        return self._update(network_name, save, factory_address=factory_address)

    def set_bundler(self, network_name: str, bundler_url: str, save: bool = True) -> NetworkConfig:
        return self._update(network_name, save, bundler_url=bundler_url)

    def apply_env_overrides(self, network_name: str, environ: Optional[Dict[str, str]] = None) -> NetworkConfig:
        """
        Override a network's endpoints and contract addresses from environment
        variables (NEXUS_RPC_URL, NEXUS_BUNDLER_RPC_URL, NEXUS_ENTRYPOINT,
        NEXUS_FACTORY). Unset or empty variables leave the stored value
        untouched. Overrides are not written back to the config file.

        Returns:
            The updated NetworkConfig
        """
        env = os.environ if environ is None else environ
        fields = {
            'rpc_url': env.get(ENV_RPC_URL),
            'bundler_url': env.get(ENV_BUNDLER_URL),
            'entrypoint_address': env.get(ENV_ENTRYPOINT),
            'factory_address': env.get(ENV_FACTORY),
        }
        overrides = {name: value for name, value in fields.items() if value}
        if overrides:
            logger.debug("Overriding %s of %s from environment", sorted(overrides), network_name)
        return self._update(network_name, False, **overrides)

    # ============================================
    # JSON Persistence
    # ============================================

    def to_dict(self) -> Dict[str, Any]:
        return {'networks': {name: network.to_dict() for name, network in sorted(self._networks.items())}}

    def save_to_json(self, path: Optional[str] = None):
        """Write every configured network to ``path`` (default: config_path)."""
        save_path = path or self.config_path
        with open(save_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.debug("Saved %d networks to %s", len(self._networks), save_path)

    def load_from_json(self, path: Optional[str] = None):
        """
        Replace the configured networks with the ones stored at ``path``.
        Nothing changes if the file holds a malformed entry.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If a network entry is malformed
        """
        load_path = path or self.config_path
        with open(load_path, 'r') as f:
            stored = json.load(f)

        try:
            networks = {
                name: NetworkConfig.from_dict(data)
                for name, data in stored.get('networks', {}).items()
            }
        except (AttributeError, TypeError) as exc:
            raise ValueError(f"Malformed network entry in {load_path}: {exc}") from exc
        self._networks = networks

    def load_default_networks(self, save: bool = True):
        """
        Load default network configurations. The factory address is
        deployment specific and has to be set separately.
        """
        self.add_network("base_sepolia", NetworkConfig(
            chain_id=84532,
            rpc_url="https://sepolia.base.org",
            name="Base Sepolia"
        ), save=False)

        self.add_network("sepolia", NetworkConfig(
            chain_id=11155111,
            rpc_url="https://rpc.sepolia.org",
            name="Sepolia Testnet"
        ), save=False)

        self.add_network("localhost", NetworkConfig(
            chain_id=31337,
            rpc_url="http://127.0.0.1:8545",
            bundler_url="http://127.0.0.1:4337",
            name="Local Hardhat"
        ), save=False)

        if save:
            self.save_to_json()

    def __repr__(self):
        return f"<Config networks={list(self._networks.keys())} path={self.config_path}>"
