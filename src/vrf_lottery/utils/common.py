"""Common utility functions for the lottery service."""

from typing import Optional

from web3 import Web3


def shorten_eth_address(address: Optional[str]) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.
    Returns the first 6 and last 4 characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def normalize_eth_address(address: str) -> str:
    """Return the checksummed form of `address`.

    Raises ValueError when the value is not a 20-byte hex address.
    """
    if not isinstance(address, str):
        raise ValueError(f"Address must be a string, got {type(address).__name__}")
    if not address.startswith("0x"):
        address = "0x" + address
    if not Web3.is_address(address):
        raise ValueError(f"Invalid Ethereum address: {address}")
    return Web3.to_checksum_address(address)
