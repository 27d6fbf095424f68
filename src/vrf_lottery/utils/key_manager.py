"""Operator key validation utilities.

Used by the payout side to check the configured operator key before any
value transfer is attempted.
"""

import re
from typing import Tuple


def validate_eth_private_key_format(private_key: str) -> Tuple[bool, str]:
    """Validate Ethereum private key format.

    Expected format: 0x followed by 64 hexadecimal characters

    Returns:
        tuple: (is_valid, error_message)
    """
    if not isinstance(private_key, str):
        return False, "Private key must be a string"

    if not private_key.startswith("0x"):
        return False, "Private key must start with '0x' prefix"

    if len(private_key) != 66:
        return False, f"Private key must be 66 characters long (0x + 64 hex), got {len(private_key)}"

    if not re.match(r'^[0-9a-fA-F]{64}$', private_key[2:]):
        return False, "Private key must contain only hexadecimal characters after '0x'"

    return True, ""
