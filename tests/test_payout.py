from unittest.mock import MagicMock

import pytest
from eth_account import Account

from web3.exceptions import TimeExhausted

from vrf_lottery.blockchain.coordinator import CoordinatorBinding, LocalVRFCoordinator
from vrf_lottery.blockchain.payout import LedgerPayoutSink, TransferRejected, Web3PayoutSink
from vrf_lottery.lottery.core import LotteryCore
from vrf_lottery.lottery.errors import PayoutFailed
from vrf_lottery.lottery.models import LotteryConfig, LotteryState, RandomnessParams


def test_ledger_credits_recipients():
    sink = LedgerPayoutSink()
    recipient = Account.create().address
    sink.transfer(recipient.lower(), 5)
    sink.transfer(recipient, 7)
    assert sink.balance_of(recipient) == 12
    assert [t.amount for t in sink.transfers] == [5, 7]


def test_ledger_rejects_blocked_recipient():
    sink = LedgerPayoutSink()
    recipient = Account.create().address
    sink.reject(recipient)
    with pytest.raises(TransferRejected):
        sink.transfer(recipient, 1)
    assert sink.balance_of(recipient) == 0
    assert sink.transfers == []


@pytest.fixture
def operator():
    return Account.create()


@pytest.fixture
def fake_w3():
    w3 = MagicMock()
    w3.eth.gas_price = 10**9
    w3.eth.get_transaction_count.return_value = 3
    w3.eth.send_raw_transaction.return_value = b"\x12" * 32
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    return w3


def make_sink(operator, w3):
    key = "0x" + bytes(operator.key).hex()
    config = {"blockchain": {"operator_private_key": key, "chain_id": 31337}}
    return Web3PayoutSink(config, w3=w3)


def test_web3_sink_signs_and_sends_value_transfer(operator, fake_w3):
    sink = make_sink(operator, fake_w3)
    recipient = Account.create().address

    record = sink.transfer(recipient, 12345)

    raw = fake_w3.eth.send_raw_transaction.call_args.args[0]
    assert Account.recover_transaction(raw) == operator.address
    assert record.recipient == recipient
    assert record.amount == 12345
    assert record.tx_hash == (b"\x12" * 32).hex()
    fake_w3.eth.get_transaction_count.assert_called_once_with(operator.address, "pending")


def test_web3_sink_raises_on_reverted_transfer(operator, fake_w3):
    fake_w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
    sink = make_sink(operator, fake_w3)
    with pytest.raises(TransferRejected):
        sink.transfer(Account.create().address, 1)


def test_web3_sink_requires_valid_key(fake_w3):
    with pytest.raises(ValueError):
        Web3PayoutSink({"blockchain": {"operator_private_key": "0x1234"}}, w3=fake_w3)


def test_web3_sink_waits_on_unmined_transfer_instead_of_resending(operator, fake_w3):
    fake_w3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("not mined"), {"status": 1}]
    sink = make_sink(operator, fake_w3)
    recipient = Account.create().address

    with pytest.raises(TransferRejected):
        sink.transfer(recipient, 500)
    record = sink.transfer(recipient, 500)

    assert fake_w3.eth.send_raw_transaction.call_count == 1
    assert record.tx_hash == (b"\x12" * 32).hex()
    waited = [c.args[0] for c in fake_w3.eth.wait_for_transaction_receipt.call_args_list]
    assert waited == [b"\x12" * 32, b"\x12" * 32]


def test_web3_sink_sends_again_after_a_settled_transfer(operator, fake_w3):
    sink = make_sink(operator, fake_w3)
    recipient = Account.create().address
    sink.transfer(recipient, 500)
    sink.transfer(recipient, 500)
    assert fake_w3.eth.send_raw_transaction.call_count == 2


def test_redelivered_draw_pays_winner_once_after_receipt_timeout(operator, fake_w3):
    fake_w3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("not mined"), {"status": 1}]
    sink = make_sink(operator, fake_w3)
    coordinator = LocalVRFCoordinator()
    consumer = Account.create().address
    subscription_id = coordinator.create_subscription()
    coordinator.fund_subscription(subscription_id, 10**20)
    coordinator.add_consumer(subscription_id, consumer)
    config = LotteryConfig(
        entrance_fee=10,
        interval=0,
        vrf_coordinator=coordinator.address,
        randomness=RandomnessParams(key_hash="0x" + "00" * 32, subscription_id=subscription_id),
    )
    lottery = LotteryCore(config, CoordinatorBinding(coordinator, consumer), sink, clock=lambda: 1000)
    winner = Account.create().address
    lottery.enter(winner, 10)
    request_id = lottery.perform_upkeep()

    with pytest.raises(PayoutFailed):
        coordinator.fulfill_random_words(request_id, lottery)
    assert lottery.get_lottery_state() == LotteryState.DRAWING

    result = coordinator.fulfill_random_words(request_id, lottery)

    assert result.winner == winner
    assert lottery.get_lottery_state() == LotteryState.OPEN
    assert fake_w3.eth.send_raw_transaction.call_count == 1
