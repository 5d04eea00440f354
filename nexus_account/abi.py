"""
Contract ABIs used by the client and a small calldata encoder.

The account's view functions (owner, getSessionKey, isGuardian,
getRecoveryRequest) are the read surface the client relies on to refresh its
cached session-key, guardian and recovery state.
"""
from typing import Any, Dict, List, Sequence

from eth_abi import encode
from web3 import Web3


# EntryPoint.getNonce(address sender, uint192 key)
ENTRY_POINT_ABI = [{
    "inputs": [
        {"name": "sender", "type": "address"},
        {"name": "key", "type": "uint192"}
    ],
    "name": "getNonce",
    "outputs": [{"name": "nonce", "type": "uint256"}],
    "stateMutability": "view",
    "type": "function"
}]

FACTORY_ABI = [
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "uint256"}
        ],
        "name": "createAccount",
        "outputs": [{"name": "account", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "uint256"}
        ],
        "name": "getAddress",
        "outputs": [{"name": "account", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    }
]

ACCOUNT_ABI = [
    {
        "inputs": [
            {"name": "dest", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "func", "type": "bytes"}
        ],
        "name": "execute",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "sessionKey", "type": "address"},
            {"name": "validUntil", "type": "uint48"},
            {"name": "gasLimit", "type": "uint256"},
            {"name": "targetContracts", "type": "address[]"}
        ],
        "name": "addSessionKey",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "sessionKey", "type": "address"}],
        "name": "removeSessionKey",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "guardian", "type": "address"}],
        "name": "addGuardian",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "guardian", "type": "address"}],
        "name": "removeGuardian",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "newOwner", "type": "address"}],
        "name": "initiateRecovery",
        "outputs": [{"name": "recoveryId", "type": "bytes32"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "recoveryId", "type": "bytes32"}],
        "name": "confirmRecovery",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "recoveryId", "type": "bytes32"}],
        "name": "executeRecovery",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    # ---- views ----
    {
        "inputs": [],
        "name": "owner",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "sessionKey", "type": "address"}],
        "name": "getSessionKey",
        "outputs": [
            {"name": "validUntil", "type": "uint48"},
            {"name": "gasLimit", "type": "uint256"},
            {"name": "targetContracts", "type": "address[]"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "guardian", "type": "address"}],
        "name": "isGuardian",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "recoveryId", "type": "bytes32"}],
        "name": "getRecoveryRequest",
        "outputs": [
            {"name": "newOwner", "type": "address"},
            {"name": "confirmed", "type": "bool"},
            {"name": "executed", "type": "bool"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
]


def _find_function(abi: List[Dict[str, Any]], fn_name: str) -> Dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == fn_name:
            return entry
    raise KeyError(f"Function '{fn_name}' not found in ABI")


def function_selector(abi: List[Dict[str, Any]], fn_name: str) -> bytes:
    """4-byte selector of ``fn_name`` as declared in ``abi``."""
    entry = _find_function(abi, fn_name)
    types = ",".join(item["type"] for item in entry["inputs"])
    return bytes(Web3.keccak(text=f"{fn_name}({types})")[:4])


def encode_call(abi: List[Dict[str, Any]], fn_name: str, args: Sequence[Any]) -> bytes:
    """
    ABI-encode a call to ``fn_name``.

    Returns:
        selector || abi.encode(args)
    """
    entry = _find_function(abi, fn_name)
    types = [item["type"] for item in entry["inputs"]]
    if len(types) != len(args):
        raise ValueError(f"{fn_name} expects {len(types)} arguments, got {len(args)}")
    return function_selector(abi, fn_name) + encode(types, list(args))
