from tests.conftest import START_TIME
from vrf_lottery.lottery.event_manager import MemoryStore


def test_entries_update_participants_and_feed(lottery, store, players):
    fee = lottery.entrance_fee
    lottery.enter(players[0], fee)
    lottery.enter(players[1], fee * 3)
    lottery.enter(players[0], fee)

    summaries = store.get_participants()
    assert [s.address for s in summaries] == [players[1], players[0]]
    assert summaries[1].entries == 2
    assert summaries[1].total_amount == fee * 2

    feed = store.get_live_feed()
    assert [item.event_type for item in feed] == ["lottery_enter"] * 3
    assert feed[0].event_time == START_TIME


def test_completed_draw_is_recorded_in_history(ready_lottery, store, players, coordinator):
    request_id = ready_lottery.perform_upkeep()
    coordinator.fulfill_random_words(request_id, ready_lottery)

    history = store.get_round_history()
    assert len(history) == 1
    assert history[0].round_number == 1
    assert history[0].request_id == request_id
    assert history[0].winner == players[0]
    assert history[0].prize == ready_lottery.entrance_fee
    assert store.get_participants() == []
    assert [item.event_type for item in store.get_live_feed()][-2:] == ["draw_requested", "winner_picked"]


def test_serialize_feed_is_newest_first(lottery, store, players):
    lottery.enter(players[0], lottery.entrance_fee)
    lottery.enter(players[1], lottery.entrance_fee)
    feed = store.serialize_feed(limit=1)
    assert len(feed) == 1
    assert feed[0]["details"]["player"] == players[1]


def test_capacities_bound_feed_and_history():
    store = MemoryStore(feed_capacity=2, history_capacity=1)
    for i in range(3):
        store.add_live_feed(event_type="note", message=f"m{i}", details={"timestamp": i})
    assert [item.message for item in store.get_live_feed()] == ["m1", "m2"]

    for request_id in (1, 2):
        store.on_winner_picked({"winner": "0x" + "1" * 40, "prize": 5, "requestId": request_id})
    assert [snap.request_id for snap in store.get_round_history()] == [2]


def test_totals_include_rounds_evicted_from_history():
    store = MemoryStore(history_capacity=1)
    for request_id, prize in ((1, 5), (2, 7)):
        store.on_winner_picked({"winner": "0x" + "1" * 40, "prize": prize, "requestId": request_id})
    assert len(store.get_round_history()) == 1
    assert store.get_totals() == {"totalRounds": 2, "totalPaidWei": 12}
