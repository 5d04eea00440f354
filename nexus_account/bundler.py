"""Minimal ERC-4337 bundler JSON-RPC client."""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import BundlerRejectedError, RejectionReason, UpstreamError
from .user_operation import GasLimits, UserOperation

logger = logging.getLogger(__name__)

# ERC-4337 bundler error codes
CODE_ENTRYPOINT_REJECTED = -32500
CODE_PAYMASTER_REJECTED = -32501
CODE_INVALID_SIGNATURE = -32507

_AA_CODE = re.compile(r"\bAA(\d)(\d)\b")


def classify_rejection(code: Optional[int], message: str) -> RejectionReason:
    """
    Map a bundler error to a RejectionReason using the RPC error code and the
    EntryPoint "AAxx" revert code embedded in the message.
    """
    text = message or ""
    match = _AA_CODE.search(text)
    if match:
        group, detail = match.group(1), match.group(2)
        if group == "1":
            return RejectionReason.INIT_CODE_FAILURE
        if group == "3":
            return RejectionReason.PAYMASTER_FAILURE
        if group == "2":
            if detail == "5":
                return RejectionReason.NONCE_ALREADY_USED
            if detail in ("3", "4"):
                return RejectionReason.INVALID_SIGNATURE
            if detail == "1":
                return RejectionReason.INSUFFICIENT_GAS
        if group in ("4", "5", "9"):
            return RejectionReason.INSUFFICIENT_GAS

    if code == CODE_INVALID_SIGNATURE:
        return RejectionReason.INVALID_SIGNATURE
    if code == CODE_PAYMASTER_REJECTED:
        return RejectionReason.PAYMASTER_FAILURE

    lowered = text.lower()
    if "nonce" in lowered:
        return RejectionReason.NONCE_ALREADY_USED
    if "signature" in lowered:
        return RejectionReason.INVALID_SIGNATURE
    if "initcode" in lowered:
        return RejectionReason.INIT_CODE_FAILURE
    if "paymaster" in lowered:
        return RejectionReason.PAYMASTER_FAILURE
    if "gas" in lowered or "prefund" in lowered or "funds" in lowered:
        return RejectionReason.INSUFFICIENT_GAS
    return RejectionReason.UNKNOWN


@dataclass
class BundlerConfig:
    url: str
    timeout_seconds: float = 30.0


class BundlerClient:
    """
    Talks to one bundler endpoint. Every call is a single HTTP request; the
    client never retries on its own.
    """

    def __init__(self, config: BundlerConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not config.url:
            raise ValueError("Bundler URL cannot be empty")
        self._config = config
        self._client = httpx.AsyncClient(timeout=config.timeout_seconds, transport=transport)
        self._request_id = 0

    @property
    def url(self) -> str:
        return self._config.url

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        try:
            response = await self._client.post(self._config.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Bundler request {method} failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"Bundler returned invalid JSON for {method}") from exc

        if not isinstance(data, dict):
            raise UpstreamError(f"Bundler returned a non-object response for {method}")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            reason = classify_rejection(code, message)
            logger.warning("Bundler rejected %s: code=%s reason=%s message=%s",
                           method, code, reason.value, message)
            raise BundlerRejectedError(f"Bundler rejected {method}: {message}", reason=reason, code=code)

        return data.get("result")

    async def send_user_operation(self, user_op: UserOperation, entry_point: str) -> str:
        result = await self._rpc("eth_sendUserOperation", [user_op.to_rpc(), entry_point])
        if not isinstance(result, str):
            raise UpstreamError("Bundler returned invalid user op hash")
        return result

    async def estimate_user_operation_gas(self, user_op: UserOperation, entry_point: str) -> GasLimits:
        result = await self._rpc("eth_estimateUserOperationGas", [user_op.to_rpc(), entry_point])
        if not isinstance(result, dict):
            raise UpstreamError("Bundler returned invalid gas estimate payload")
        try:
            return GasLimits.from_rpc(result)
        except ValueError as exc:
            raise UpstreamError(str(exc)) from exc

    async def supported_entry_points(self) -> List[str]:
        result = await self._rpc("eth_supportedEntryPoints", [])
        if not isinstance(result, list):
            raise UpstreamError("Bundler returned invalid entry point list")
        return result

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> 'BundlerClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<BundlerClient url={self._config.url}>"


def bundler_payload_summary(user_op: UserOperation) -> Dict[str, Any]:
    """Short, log-friendly view of an operation."""
    return {
        'sender': user_op.sender,
        'nonce': user_op.nonce,
        'deploy': bool(user_op.init_code),
        'callDataBytes': len(user_op.call_data),
    }
