import pytest
from eth_account import Account

from vrf_lottery.blockchain.coordinator import CoordinatorBinding, LocalVRFCoordinator
from vrf_lottery.blockchain.payout import LedgerPayoutSink
from vrf_lottery.lottery.core import LotteryCore
from vrf_lottery.lottery.event_manager import MemoryStore
from vrf_lottery.lottery.models import LotteryConfig, RandomnessParams

START_TIME = 1_700_000_000
ENTRANCE_FEE = 10**16  # 0.01 ETH
INTERVAL = 30
KEY_HASH = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"


class FakeClock:
    def __init__(self, now: int = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator():
    return LocalVRFCoordinator()


@pytest.fixture
def ledger():
    return LedgerPayoutSink()


@pytest.fixture
def lottery_address():
    return Account.create().address


@pytest.fixture
def players():
    return [Account.create().address for _ in range(4)]


@pytest.fixture
def make_lottery(clock, coordinator, ledger, lottery_address):
    """Build a lottery bound to a funded subscription on the local coordinator."""

    def _make(entrance_fee=ENTRANCE_FEE, interval=INTERVAL, request_timeout=3600, register_consumer=True):
        subscription_id = coordinator.create_subscription()
        coordinator.fund_subscription(subscription_id, 100 * 10**18)
        if register_consumer:
            coordinator.add_consumer(subscription_id, lottery_address)
        config = LotteryConfig(
            entrance_fee=entrance_fee,
            interval=interval,
            vrf_coordinator=coordinator.address,
            randomness=RandomnessParams(key_hash=KEY_HASH, subscription_id=subscription_id),
            request_timeout=request_timeout,
        )
        return LotteryCore(config, CoordinatorBinding(coordinator, lottery_address), ledger, clock=clock)

    return _make


@pytest.fixture
def lottery(make_lottery):
    return make_lottery()


@pytest.fixture
def store(lottery):
    memory = MemoryStore()
    memory.attach(lottery)
    return memory


@pytest.fixture
def ready_lottery(lottery, players, clock):
    """One entry in, interval elapsed: upkeep is due."""
    lottery.enter(players[0], lottery.entrance_fee)
    clock.advance(INTERVAL + 1)
    return lottery
