#!/usr/bin/env python3
"""
VRF Lottery Application

Main entry point: builds the lottery, its randomness coordinator, payout sink
and upkeep keeper from configuration, then serves the HTTP API until a
shutdown signal arrives.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env before the logger reads LOG_LEVEL / LOG_FILE
load_dotenv(Path.cwd() / ".env")

from eth_account import Account  # noqa: E402

from vrf_lottery.blockchain.coordinator import CoordinatorBinding, LocalVRFCoordinator
from vrf_lottery.blockchain.payout import LedgerPayoutSink, PayoutSink, Web3PayoutSink
from vrf_lottery.lottery.core import LotteryCore
from vrf_lottery.lottery.event_manager import MemoryStore
from vrf_lottery.lottery.keeper import UpkeepKeeper
from vrf_lottery.utils.config import (
    build_lottery_config,
    get_config_value,
    keeper_settings,
    load_config,
)
from vrf_lottery.utils.logger import configure_logging, get_logger
from vrf_lottery.web_server import LotteryWebServer

logger = get_logger(__name__)


def build_payout_sink(config: Dict[str, Any]) -> PayoutSink:
    """Web3 transfers when an operator key is configured, else an in-memory ledger."""
    if get_config_value(config, "blockchain.operator_private_key"):
        return Web3PayoutSink(config)
    logger.warning("No operator key configured; prizes are credited to the in-memory ledger")
    return LedgerPayoutSink()


def build_lottery(config: Dict[str, Any], payout: Optional[PayoutSink] = None):
    """Wire coordinator, subscription and core together.

    Returns (lottery, coordinator, store).
    """
    coordinator = LocalVRFCoordinator(get_config_value(config, "vrf.coordinator_address"))
    lottery_address = get_config_value(config, "lottery.address") or Account.create().address

    configured_id = get_config_value(config, "vrf.subscription_id")
    subscription_id = coordinator.create_subscription(
        subscription_id=int(configured_id) if configured_id not in (None, "") else None
    )
    coordinator.fund_subscription(
        subscription_id, int(get_config_value(config, "vrf.fund_amount_wei", 30 * 10**18))
    )
    coordinator.add_consumer(subscription_id, lottery_address)

    lottery = LotteryCore(
        build_lottery_config(config, coordinator.address, subscription_id),
        CoordinatorBinding(coordinator, lottery_address),
        payout or build_payout_sink(config),
    )

    store = MemoryStore(
        feed_capacity=int(get_config_value(config, "store.live_feed_max_entries", 1000)),
        history_capacity=int(get_config_value(config, "store.round_history_max", 100)),
    )
    store.attach(lottery)
    return lottery, coordinator, store


class LotteryApp:
    """Owns the lottery and its services for the lifetime of the process."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_config()
        configure_logging(
            get_config_value(self.config, "logging.level"),
            get_config_value(self.config, "logging.file"),
        )
        self.lottery: Optional[LotteryCore] = None
        self.coordinator: Optional[LocalVRFCoordinator] = None
        self.store: Optional[MemoryStore] = None
        self.keeper: Optional[UpkeepKeeper] = None
        self.web_server: Optional[LotteryWebServer] = None
        self.running = True

    def _display_config_summary(self) -> None:
        assert self.lottery is not None
        cfg = self.lottery.config
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Entrance fee: {cfg.entrance_fee} wei")
        logger.info(f"Interval: {cfg.interval}s")
        logger.info(f"Coordinator: {cfg.vrf_coordinator}")
        logger.info(f"Subscription: {cfg.randomness.subscription_id}")
        logger.info(f"Request timeout: {cfg.request_timeout}s")
        server_config = self.config.get('server', {})
        logger.info(f"Server: {server_config.get('host', '0.0.0.0')}:{server_config.get('port', 6080)}")
        logger.info("=" * 60)

    def initialize(self) -> None:
        logger.info("Initializing VRF lottery application")
        self.lottery, self.coordinator, self.store = build_lottery(self.config)

        settings = keeper_settings(self.config)
        self.keeper = UpkeepKeeper(
            self.lottery,
            check_interval=settings["check_interval"],
            coordinator=self.coordinator,
            auto_fulfill=settings["auto_fulfill"],
            fulfill_delay=settings["fulfill_delay"],
        )
        self.web_server = LotteryWebServer(self.config, self.lottery, self.store, self.keeper)
        self._display_config_summary()

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    async def start(self) -> None:
        """Start services and run until a shutdown signal is received."""
        self.initialize()
        assert self.keeper is not None and self.web_server is not None

        server_host = self.config.get('server', {}).get('host', '0.0.0.0')
        server_port = int(self.config.get('server', {}).get('port', 6080))

        try:
            await self.keeper.start()
            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            while self.running and not server_task.done():
                await asyncio.sleep(1)
            logger.info("Shutdown requested, stopping application...")
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop all services."""
        self.running = False
        if self.keeper:
            try:
                await self.keeper.stop()
            except Exception as e:
                logger.error(f"Error stopping keeper: {e}")
        if self.web_server:
            try:
                await self.web_server.stop()
            except Exception as e:
                logger.error(f"Error stopping web server: {e}")
        logger.info("VRF lottery application stopped")


async def main() -> None:
    app = LotteryApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.exception(f"Application failed: {e}")
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
