"""Randomness coordinator.

`LocalVRFCoordinator` behaves like Chainlink's `VRFCoordinatorV2Mock`: it
keeps subscriptions and pending requests, and only delivers random words when
someone explicitly asks it to fulfill a request. Words are derived from the
request id exactly like the mock does, so draws are reproducible in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from eth_account import Account
from web3 import Web3

from vrf_lottery.lottery.models import RandomnessParams
from vrf_lottery.utils.common import normalize_eth_address, shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

BASE_FEE = Web3.to_wei("0.25", "ether")
GAS_PRICE_LINK = 10**9


class RandomnessPort(Protocol):
    def request_random_words(self, params: RandomnessParams) -> int:
        ...

    def cancel_request(self, request_id: int) -> bool:
        ...


class RandomWordsConsumer(Protocol):
    def fulfill_random_words(self, caller: str, request_id: int, random_words: Sequence[int]) -> Any:
        ...


class CoordinatorError(Exception):
    """Base class for coordinator rejections."""


class NonexistentRequest(CoordinatorError):
    def __init__(self, request_id: int) -> None:
        super().__init__("nonexistent request")
        self.request_id = request_id


class InvalidSubscription(CoordinatorError):
    pass


class InvalidConsumer(CoordinatorError):
    pass


class InsufficientBalance(CoordinatorError):
    pass


@dataclass
class Subscription:
    subscription_id: int
    owner: str
    balance: int = 0
    consumers: Set[str] = field(default_factory=set)


@dataclass
class RandomWordsRequest:
    request_id: int
    subscription_id: int
    consumer: str
    key_hash: str
    callback_gas_limit: int
    request_confirmations: int
    num_words: int


def derive_random_words(request_id: int, num_words: int) -> List[int]:
    """uint256(keccak256(abi.encode(requestId, i))) for i in [0, num_words)."""
    return [
        int.from_bytes(Web3.solidity_keccak(["uint256", "uint256"], [request_id, i]), "big")
        for i in range(num_words)
    ]


class LocalVRFCoordinator:
    """In-process coordinator with explicit, deferred fulfillment."""

    def __init__(
        self,
        address: Optional[str] = None,
        *,
        base_fee: int = BASE_FEE,
        gas_price_link: int = GAS_PRICE_LINK,
    ) -> None:
        self.address = normalize_eth_address(address) if address else Account.create().address
        self.base_fee = base_fee
        self.gas_price_link = gas_price_link
        self._lock = Lock()
        self._next_subscription_id = 1
        self._next_request_id = 1
        self._subscriptions: Dict[int, Subscription] = {}
        self._requests: Dict[int, RandomWordsRequest] = {}
        logger.info("Local VRF coordinator at %s", shorten_eth_address(self.address))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def create_subscription(self, owner: Optional[str] = None, subscription_id: Optional[int] = None) -> int:
        """Create a subscription, under `subscription_id` when one is given."""
        with self._lock:
            if subscription_id is None:
                subscription_id = self._next_subscription_id
            subscription_id = int(subscription_id)
            if subscription_id in self._subscriptions:
                raise InvalidSubscription(f"Subscription {subscription_id} already exists")
            self._next_subscription_id = max(self._next_subscription_id, subscription_id + 1)
            self._subscriptions[subscription_id] = Subscription(
                subscription_id=subscription_id,
                owner=normalize_eth_address(owner) if owner else self.address,
            )
        logger.info("Created subscription %d", subscription_id)
        return subscription_id

    def fund_subscription(self, subscription_id: int, amount: int) -> int:
        with self._lock:
            subscription = self._get_subscription(subscription_id)
            subscription.balance += int(amount)
            balance = subscription.balance
        logger.info("Funded subscription %d with %s (balance %s)", subscription_id, amount, balance)
        return balance

    def add_consumer(self, subscription_id: int, consumer: str) -> None:
        consumer = normalize_eth_address(consumer)
        with self._lock:
            self._get_subscription(subscription_id).consumers.add(consumer)
        logger.info("Added consumer %s to subscription %d", shorten_eth_address(consumer), subscription_id)

    def get_subscription(self, subscription_id: int) -> Subscription:
        with self._lock:
            return self._get_subscription(subscription_id)

    def _get_subscription(self, subscription_id: int) -> Subscription:
        subscription = self._subscriptions.get(int(subscription_id))
        if subscription is None:
            raise InvalidSubscription(f"Subscription {subscription_id} does not exist")
        return subscription

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def request_random_words(self, params: RandomnessParams, consumer: str) -> int:
        consumer = normalize_eth_address(consumer)
        with self._lock:
            subscription = self._get_subscription(params.subscription_id)
            if consumer not in subscription.consumers:
                raise InvalidConsumer(
                    f"{consumer} is not a consumer of subscription {params.subscription_id}"
                )
            request_id = self._next_request_id
            self._next_request_id += 1
            self._requests[request_id] = RandomWordsRequest(
                request_id=request_id,
                subscription_id=params.subscription_id,
                consumer=consumer,
                key_hash=params.key_hash,
                callback_gas_limit=params.callback_gas_limit,
                request_confirmations=params.request_confirmations,
                num_words=params.num_words,
            )
        logger.info(
            "Random words requested: request %d by %s (%d words)",
            request_id,
            shorten_eth_address(consumer),
            params.num_words,
        )
        return request_id

    def pending_requests(self) -> List[RandomWordsRequest]:
        with self._lock:
            return sorted(self._requests.values(), key=lambda item: item.request_id)

    def cancel_request(self, request_id: int) -> bool:
        """Drop a pending request; returns False if it was not pending."""
        with self._lock:
            request = self._requests.pop(int(request_id), None)
        if request is None:
            return False
        logger.info("Cancelled request %d", request.request_id)
        return True

    def fulfill_random_words(self, request_id: int, consumer: RandomWordsConsumer) -> Any:
        """Deliver derived words for `request_id` to `consumer`."""
        request = self._lookup(request_id)
        words = derive_random_words(request.request_id, request.num_words)
        return self._deliver(request, consumer, words)

    def fulfill_random_words_with_override(
        self,
        request_id: int,
        consumer: RandomWordsConsumer,
        words: Sequence[int],
    ) -> Any:
        """Deliver caller-chosen words; lets tests pin the winner."""
        request = self._lookup(request_id)
        if len(words) != request.num_words:
            raise CoordinatorError(f"Expected {request.num_words} words, got {len(words)}")
        return self._deliver(request, consumer, [int(word) for word in words])

    def _lookup(self, request_id: int) -> RandomWordsRequest:
        with self._lock:
            request = self._requests.get(int(request_id))
        if request is None:
            raise NonexistentRequest(int(request_id))
        return request

    def _deliver(self, request: RandomWordsRequest, consumer: RandomWordsConsumer, words: List[int]) -> Any:
        payment = self.base_fee + self.gas_price_link * request.callback_gas_limit
        with self._lock:
            subscription = self._get_subscription(request.subscription_id)
            if subscription.balance < payment:
                raise InsufficientBalance(
                    f"Subscription {subscription.subscription_id} balance {subscription.balance} < {payment}"
                )

        # The request stays pending until the consumer accepts the words
        result = consumer.fulfill_random_words(self.address, request.request_id, words)

        with self._lock:
            self._requests.pop(request.request_id, None)
            subscription.balance -= payment
        logger.info("Fulfilled request %d (payment %s)", request.request_id, payment)
        return result


class CoordinatorBinding:
    """Adapts a coordinator to the lottery's randomness port for one consumer."""

    def __init__(self, coordinator: LocalVRFCoordinator, consumer_address: str) -> None:
        self.coordinator = coordinator
        self.consumer_address = normalize_eth_address(consumer_address)

    def request_random_words(self, params: RandomnessParams) -> int:
        return self.coordinator.request_random_words(params, self.consumer_address)

    def cancel_request(self, request_id: int) -> bool:
        return self.coordinator.cancel_request(request_id)
