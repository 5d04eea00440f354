"""
Smoke run against a local Hardhat node and a local bundler.

Deploy the contracts first (npx hardhat run scripts/deploy-local.ts --network localhost),
start a bundler on http://127.0.0.1:4337, then:

    python -m nexus_account.local_deployment
"""

import asyncio
import json
import logging
import os
import time

from web3 import Web3

from nexus_account import Call, Config, LocalSigningAgent, NetworkConfig, SmartAccountClient

# Hardhat default mnemonic, first account
HARDHAT_TEST_KEY = '0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80'


def load_deployment_info():
    """Load deployment info from local_deployment.json"""
    deployment_path = os.path.join(os.path.dirname(__file__), 'local_deployment.json')

    if not os.path.exists(deployment_path):
        raise FileNotFoundError(
            f"Deployment file not found: {deployment_path}\n"
            "Please deploy contracts first using: npx hardhat run scripts/deploy-local.ts --network localhost"
        )

    with open(deployment_path, 'r') as f:
        return json.load(f)


async def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    print("=" * 60)
    print("Local deployment smoke run")
    print("=" * 60)

    print("\n1. Loading deployment configuration...")
    deployment = load_deployment_info()
    print(f"   Chain ID: {deployment['chainId']}")
    print(f"   EntryPoint: {deployment['entryPoint']}")
    print(f"   Factory: {deployment['factory']}")

    print("\n2. Configuring network...")
    config = Config()
    config.add_network('localhost', NetworkConfig.from_dict({
        'chain_id': deployment['chainId'],
        'rpc_url': 'http://127.0.0.1:8545',
        'entrypoint_address': deployment['entryPoint'],
        'factory_address': deployment['factory'],
        'bundler_url': 'http://127.0.0.1:4337',
        'name': 'localhost',
    }), save=False)
    client = SmartAccountClient.from_config('localhost', config, storage_path='accounts_local.json')
    print(f"   ✓ RPC serves chain {await client.verify_network()}")

    print("\n3. Opening account...")
    signer = LocalSigningAgent.from_key(HARDHAT_TEST_KEY)
    account = await client.open_account(signer.address, salt=0)
    client.set_owner_signer(account, signer)
    print(f"   Owner: {signer.address}")
    print(f"   Counterfactual address: {account.address}")
    print(f"   Deployed: {await client.is_deployed(account)}")
    print("   Note: the account must hold ETH to pay for its first operation")

    print("\n4. Sending an operation...")
    handle = await client.execute(account, Call.from_ether(signer.address, "0"), estimate_gas=True)
    print(f"   userOpHash: {handle.user_op_hash}")
    print(f"   nonce: {handle.nonce}, deploys account: {handle.deployed_by_operation}")

    print("\n5. Registering a session key...")
    session = LocalSigningAgent.from_key(Web3.keccak(text="nexus-local-session").hex())
    handle = await client.add_session_key(
        account, session.address, int(time.time()) + 3600, 500000, [signer.address])
    print(f"   ✓ Session key {session.address} queued in {handle.user_op_hash}")

    await client.close()
    print("\n" + "=" * 60)
    print("✅ Done")
    print("=" * 60)


if __name__ == '__main__':
    asyncio.run(main())
