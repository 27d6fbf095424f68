import pytest
from eth_account import Account
from web3 import Web3

from tests.conftest import KEY_HASH
from vrf_lottery.blockchain.coordinator import (
    CoordinatorBinding,
    CoordinatorError,
    InsufficientBalance,
    InvalidConsumer,
    InvalidSubscription,
    LocalVRFCoordinator,
    NonexistentRequest,
    derive_random_words,
)
from vrf_lottery.lottery.models import RandomnessParams


class RecordingConsumer:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def fulfill_random_words(self, caller, request_id, random_words):
        if self.fail:
            raise RuntimeError("consumer rejected words")
        self.calls.append((caller, request_id, list(random_words)))
        return "ok"


@pytest.fixture
def consumer_address():
    return Account.create().address


@pytest.fixture
def subscription(coordinator, consumer_address):
    subscription_id = coordinator.create_subscription()
    coordinator.fund_subscription(subscription_id, 10**19)
    coordinator.add_consumer(subscription_id, consumer_address)
    return subscription_id


def params(subscription_id, num_words=1):
    return RandomnessParams(key_hash=KEY_HASH, subscription_id=subscription_id, num_words=num_words)


def test_derived_words_match_abi_encoded_keccak():
    expected = int.from_bytes(
        Web3.keccak((5).to_bytes(32, "big") + (0).to_bytes(32, "big")), "big"
    )
    assert derive_random_words(5, 1) == [expected]
    assert len(set(derive_random_words(5, 3))) == 3


def test_request_ids_start_at_one_and_increase(coordinator, subscription, consumer_address):
    first = coordinator.request_random_words(params(subscription), consumer_address)
    second = coordinator.request_random_words(params(subscription), consumer_address)
    assert (first, second) == (1, 2)
    assert [req.request_id for req in coordinator.pending_requests()] == [1, 2]


def test_unknown_subscription_is_rejected(coordinator, consumer_address):
    with pytest.raises(InvalidSubscription):
        coordinator.request_random_words(params(42), consumer_address)


def test_unregistered_consumer_is_rejected(coordinator, subscription):
    with pytest.raises(InvalidConsumer):
        coordinator.request_random_words(params(subscription), Account.create().address)


def test_fulfill_delivers_derived_words_once(coordinator, subscription, consumer_address):
    request_id = coordinator.request_random_words(params(subscription, num_words=2), consumer_address)
    consumer = RecordingConsumer()

    assert coordinator.fulfill_random_words(request_id, consumer) == "ok"
    assert consumer.calls == [(coordinator.address, request_id, derive_random_words(request_id, 2))]
    assert coordinator.pending_requests() == []
    with pytest.raises(NonexistentRequest, match="nonexistent request"):
        coordinator.fulfill_random_words(request_id, consumer)


def test_fulfill_charges_the_subscription(coordinator, subscription, consumer_address):
    before = coordinator.get_subscription(subscription).balance
    request_id = coordinator.request_random_words(params(subscription), consumer_address)
    coordinator.fulfill_random_words(request_id, RecordingConsumer())
    charged = coordinator.base_fee + coordinator.gas_price_link * 500000
    assert coordinator.get_subscription(subscription).balance == before - charged


def test_underfunded_subscription_cannot_be_fulfilled(coordinator, consumer_address):
    subscription_id = coordinator.create_subscription()
    coordinator.add_consumer(subscription_id, consumer_address)
    request_id = coordinator.request_random_words(params(subscription_id), consumer_address)
    with pytest.raises(InsufficientBalance):
        coordinator.fulfill_random_words(request_id, RecordingConsumer())
    assert len(coordinator.pending_requests()) == 1


def test_consumer_failure_keeps_request_pending(coordinator, subscription, consumer_address):
    request_id = coordinator.request_random_words(params(subscription), consumer_address)
    before = coordinator.get_subscription(subscription).balance
    with pytest.raises(RuntimeError):
        coordinator.fulfill_random_words(request_id, RecordingConsumer(fail=True))
    assert [req.request_id for req in coordinator.pending_requests()] == [request_id]
    assert coordinator.get_subscription(subscription).balance == before


def test_override_requires_matching_word_count(coordinator, subscription, consumer_address):
    request_id = coordinator.request_random_words(params(subscription), consumer_address)
    consumer = RecordingConsumer()
    with pytest.raises(CoordinatorError):
        coordinator.fulfill_random_words_with_override(request_id, consumer, [1, 2])
    coordinator.fulfill_random_words_with_override(request_id, consumer, [99])
    assert consumer.calls[0][2] == [99]


def test_binding_requests_for_its_consumer(coordinator, subscription, consumer_address):
    binding = CoordinatorBinding(coordinator, consumer_address.lower())
    request_id = binding.request_random_words(params(subscription))
    assert coordinator.pending_requests()[0].consumer == consumer_address
    assert request_id == 1


def test_configured_address_is_checksummed():
    address = Account.create().address
    assert LocalVRFCoordinator(address.lower()).address == address


def test_subscription_can_be_created_under_a_given_id(coordinator):
    assert coordinator.create_subscription(subscription_id=5) == 5
    assert coordinator.create_subscription() == 6
    with pytest.raises(InvalidSubscription):
        coordinator.create_subscription(subscription_id=5)


def test_cancelled_request_is_no_longer_pending(coordinator, subscription, consumer_address):
    binding = CoordinatorBinding(coordinator, consumer_address)
    first = binding.request_random_words(params(subscription))
    second = binding.request_random_words(params(subscription))

    assert binding.cancel_request(first) is True
    assert binding.cancel_request(first) is False
    assert [req.request_id for req in coordinator.pending_requests()] == [second]
    with pytest.raises(NonexistentRequest):
        coordinator.fulfill_random_words(first, RecordingConsumer())
