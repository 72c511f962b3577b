"""
Position identity.

- Position key: "<collateral>:<index>:<true|false>", account independent and
  stable across sessions. Addresses are lower-cased so keys built from
  checksummed event arguments match keys built from the token list.
- Contract key: keccak256(abi.encodePacked(account, collateral, index, isLong)),
  identical to the vault's own position key, used to match on-chain events.
"""
from typing import Optional, Union

from web3 import Web3

from perp_positions.constants import ADDRESS_ZERO
from perp_positions.exceptions import ValidationError


def _address_bytes(address: str) -> bytes:
    hex_part = address[2:] if address.lower().startswith("0x") else address
    if len(hex_part) != 40:
        raise ValidationError(f"Invalid address: {address!r}")
    try:
        return bytes.fromhex(hex_part)
    except ValueError as e:
        raise ValidationError(f"Invalid address: {address!r}") from e


def get_position_key(
    collateral_token: str,
    index_token: str,
    is_long: bool,
    native_token_address: Optional[str] = None,
) -> str:
    """Deterministic session-independent key for (collateral, index, side)."""
    if native_token_address:
        if collateral_token.lower() == ADDRESS_ZERO:
            collateral_token = native_token_address
        if index_token.lower() == ADDRESS_ZERO:
            index_token = native_token_address
    side = "true" if is_long else "false"
    return f"{collateral_token.lower()}:{index_token.lower()}:{side}"


def get_position_contract_key(account: str, collateral_token: str, index_token: str, is_long: bool) -> str:
    """Vault position key for an account, as 0x-prefixed lower-case hex."""
    packed = (
        _address_bytes(account)
        + _address_bytes(collateral_token)
        + _address_bytes(index_token)
        + (b"\x01" if is_long else b"\x00")
    )
    return Web3.to_hex(Web3.keccak(packed)).lower()


def normalize_key(value: Union[str, bytes, bytearray]) -> str:
    """Normalize an event key (bytes32 / HexBytes / hex string) to lower-case 0x hex."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value)).lower()
    text = str(value).lower()
    return text if text.startswith("0x") else f"0x{text}"
