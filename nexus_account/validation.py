"""
Input validation helpers. All of them run locally and raise ValidationError
before anything touches the network.
"""
from typing import Iterable, List, Union

from eth_utils import is_address, is_hex, to_checksum_address
from hexbytes import HexBytes

from .errors import ValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

UINT48_MAX = 2 ** 48 - 1
UINT256_MAX = 2 ** 256 - 1


def require_address(value, field: str = "address") -> str:
    """Return the checksum form of ``value`` or raise ValidationError."""
    if not isinstance(value, str) or not is_address(value):
        raise ValidationError(f"{field} is not a valid address: {value!r}")
    return to_checksum_address(value)


def require_nonzero_address(value, field: str = "address") -> str:
    address = require_address(value, field)
    if address == ZERO_ADDRESS:
        raise ValidationError(f"{field} cannot be the zero address")
    return address


def require_uint(value, field: str, max_value: int = UINT256_MAX) -> int:
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer, got {value!r}")
    if value < 0 or value > max_value:
        raise ValidationError(f"{field} out of range: {value}")
    return value


def require_bytes(value: Union[bytes, str, None], field: str = "data") -> bytes:
    """Accept raw bytes or a 0x-prefixed hex string. None and "0x" mean empty."""
    if value is None:
        return b''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        if value in ("", "0x"):
            return b''
        if not value.startswith("0x") or not is_hex(value) or len(value) % 2:
            raise ValidationError(f"{field} is not valid hex: {value!r}")
        return bytes(HexBytes(value))
    raise ValidationError(f"{field} must be bytes or a hex string, got {type(value).__name__}")


def require_bytes32(value: Union[bytes, str], field: str = "id") -> bytes:
    raw = require_bytes(value, field)
    if len(raw) != 32:
        raise ValidationError(f"{field} must be 32 bytes, got {len(raw)}")
    return raw


def require_future(valid_until, now: float, field: str = "valid_until") -> int:
    valid_until = require_uint(valid_until, field, UINT48_MAX)
    if valid_until <= now:
        raise ValidationError(f"{field} must be in the future (got {valid_until}, now {int(now)})")
    return valid_until


def require_address_set(values: Iterable[str], field: str = "targets") -> List[str]:
    """Checksum every address, drop duplicates, keep input order."""
    if isinstance(values, str):
        raise ValidationError(f"{field} must be a collection of addresses, not a string")
    result: List[str] = []
    for value in values:
        address = require_nonzero_address(value, field)
        if address not in result:
            result.append(address)
    return result
