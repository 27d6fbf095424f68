"""
Configuration Management
"""

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from web3 import Web3

from vrf_lottery.lottery.models import LotteryConfig, RandomnessParams
from vrf_lottery.utils.common import normalize_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent.parent / "config" / "lottery.conf"

# Default gas lane for the local network
DEFAULT_KEY_HASH = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"

_ENV_SECTIONS = {
    "LOTTERY_": "lottery",
    "VRF_": "vrf",
    "BLOCKCHAIN_": "blockchain",
    "KEEPER_": "keeper",
    "SERVER_": "server",
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from files and environment variables"""
    config: Dict[str, Any] = {}

    path = Path(config_file or os.getenv("LOTTERY_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, 'r') as f:
                config.update(json.load(f))
            logger.info(f"Loaded configuration from {path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
    else:
        logger.warning(f"Config file {path} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)
    logger.debug(f"Configuration after applying environment overrides: {json.dumps(config, indent=2, default=str)}")
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        if key == "LOTTERY_CONFIG_FILE":
            continue
        for prefix, section in _ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def save_config(config: Dict[str, Any], config_file: Optional[str] = None) -> Path:
    """Save configuration to file"""
    path = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(config, f, indent=2)
    logger.info(f"Configuration saved to {path}")
    return path


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    value = config
    try:
        for key in key_path.split('.'):
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def build_entrance_fee(config: Dict[str, Any]) -> int:
    """Entrance fee in wei; `entrance_fee_wei` wins over `entrance_fee_eth`."""
    wei = get_config_value(config, "lottery.entrance_fee_wei")
    if wei is not None:
        fee = int(wei)
    else:
        eth = get_config_value(config, "lottery.entrance_fee_eth", "0.01")
        fee = int(Web3.to_wei(Decimal(str(eth)), "ether"))
    if fee <= 0:
        raise ValueError(f"Entrance fee must be positive, got {fee} wei")
    return fee


def build_lottery_config(
    config: Dict[str, Any],
    coordinator_address: str,
    subscription_id: Optional[int] = None,
) -> LotteryConfig:
    """Build the immutable LotteryConfig from the raw configuration dict.

    `subscription_id` overrides `vrf.subscription_id` when given.
    """
    if subscription_id is None:
        subscription_id = int(get_config_value(config, "vrf.subscription_id", 0))
    interval = int(get_config_value(config, "lottery.interval", 30))
    if interval < 0:
        raise ValueError(f"Interval must not be negative, got {interval}")

    params = RandomnessParams(
        key_hash=str(get_config_value(config, "vrf.key_hash", DEFAULT_KEY_HASH)),
        subscription_id=int(subscription_id),
        callback_gas_limit=int(get_config_value(config, "vrf.callback_gas_limit", 500000)),
        request_confirmations=int(get_config_value(config, "vrf.request_confirmations", 3)),
    )

    return LotteryConfig(
        entrance_fee=build_entrance_fee(config),
        interval=interval,
        vrf_coordinator=normalize_eth_address(coordinator_address),
        randomness=params,
        request_timeout=int(get_config_value(config, "lottery.request_timeout", 3600)),
    )


def keeper_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Normalised keeper options with defaults."""
    return {
        "check_interval": float(get_config_value(config, "keeper.check_interval", 5.0)),
        "auto_fulfill": _as_bool(get_config_value(config, "keeper.auto_fulfill", True)),
        "fulfill_delay": float(get_config_value(config, "keeper.fulfill_delay", 0.0)),
    }
