"""Lottery state machine.

Collects paid entries, decides when a draw is due, asks the randomness
coordinator for a random word and, once the word arrives in a separate call,
pays the whole pool to one player and opens the next round.

    OPEN --perform_upkeep--> DRAWING --fulfill_random_words--> OPEN
"""

from __future__ import annotations

import time
from collections import defaultdict
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from vrf_lottery.blockchain.coordinator import RandomnessPort
from vrf_lottery.blockchain.payout import PayoutSink
from vrf_lottery.lottery.errors import (
    DrawNotStale,
    InsufficientPayment,
    InvalidParticipant,
    InvalidRandomWords,
    NotOpen,
    PayoutFailed,
    RandomnessRequestFailed,
    UnauthorizedFulfillment,
    UnknownRequest,
    UpkeepNotNeeded,
)
from vrf_lottery.lottery.models import (
    DrawResult,
    Drawing,
    LotteryConfig,
    LotteryState,
    Open,
    Phase,
    UpkeepStatus,
    phase_request_id,
)
from vrf_lottery.utils.common import normalize_eth_address, shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class LotteryCore:
    """Single owner of all lottery state.

    Mutations (`enter`, `perform_upkeep`, `fulfill_random_words`,
    `retry_draw`) are serialized by one lock. Listeners are notified after the
    lock is released, so they may read the core freely. The payout sink is
    called while the lock is held and must not call back into the core.
    """

    def __init__(
        self,
        config: LotteryConfig,
        randomness: RandomnessPort,
        payout: PayoutSink,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._randomness = randomness
        self._payout = payout
        self._clock = clock
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

        self._phase: Phase = Open()
        self._players: List[str] = []
        self._balance = 0
        self._last_timestamp = self._now(None)
        self._recent_winner: Optional[str] = None

        logger.info(
            "Lottery created: fee=%s wei, interval=%ss, coordinator=%s",
            config.entrance_fee,
            config.interval,
            shorten_eth_address(config.vrf_coordinator),
        )

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(dict(payload))
            except Exception as exc:  # pragma: no cover
                logger.error("Listener for %s failed: %s", event_type, exc)

    def _now(self, now: Optional[int]) -> int:
        return int(self._clock()) if now is None else int(now)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------
    def enter(self, player: str, value: int, now: Optional[int] = None) -> int:
        """Accept one paid entry; returns the player's index in this round."""
        try:
            player = normalize_eth_address(player)
        except ValueError as exc:
            raise InvalidParticipant(str(exc)) from exc
        value = int(value)

        with self._lock:
            if not isinstance(self._phase, Open):
                raise NotOpen()
            if value < self._config.entrance_fee:
                raise InsufficientPayment(value, self._config.entrance_fee)
            self._players.append(player)
            self._balance += value
            index = len(self._players) - 1
            event_time = self._now(now)

        logger.info("Player %s entered with %s wei (#%d)", shorten_eth_address(player), value, index)
        self._emit("lottery_enter", {"player": player, "value": value, "index": index, "timestamp": event_time})
        return index

    # ------------------------------------------------------------------
    # Upkeep
    # ------------------------------------------------------------------
    def _upkeep_status(self, now: int) -> UpkeepStatus:
        return UpkeepStatus(
            state=self._phase.state,
            balance=self._balance,
            num_players=len(self._players),
            time_passed=now - self._last_timestamp,
            interval=self._config.interval,
        )

    def check_upkeep(self, now: Optional[int] = None) -> Tuple[bool, UpkeepStatus]:
        """Report whether a draw is due, with the evaluated conditions."""
        now = self._now(now)
        with self._lock:
            status = self._upkeep_status(now)
        return status.upkeep_needed, status

    def check_eligible(self, now: Optional[int] = None) -> bool:
        return self.check_upkeep(now)[0]

    def perform_upkeep(self, now: Optional[int] = None) -> int:
        """Close entries and request randomness; returns the request id."""
        now = self._now(now)
        with self._lock:
            status = self._upkeep_status(now)
            if not status.upkeep_needed:
                raise UpkeepNotNeeded(status)
            request_id = self._request_randomness()
            self._phase = Drawing(request_id=request_id, requested_at=now)

        logger.info("Draw requested: request %s for %d players", request_id, status.num_players)
        self._emit("draw_requested", {"requestId": request_id, "timestamp": now, "retry": False})
        return request_id

    trigger_draw = perform_upkeep

    def _request_randomness(self) -> int:
        try:
            return int(self._randomness.request_random_words(self._config.randomness))
        except Exception as exc:
            logger.error("Randomness request failed: %s", exc)
            raise RandomnessRequestFailed(str(exc)) from exc

    def retry_draw(self, now: Optional[int] = None) -> int:
        """Replace a stale pending request with a fresh one."""
        now = self._now(now)
        timeout = self._config.request_timeout
        with self._lock:
            phase = self._phase
            if not isinstance(phase, Drawing):
                raise DrawNotStale("No draw in progress")
            if timeout <= 0 or now - phase.requested_at < timeout:
                raise DrawNotStale(
                    f"Request {phase.request_id} is {now - phase.requested_at}s old; timeout is {timeout}s"
                )
            request_id = self._request_randomness()
            self._phase = Drawing(request_id=request_id, requested_at=now)

        logger.warning("Request %s went stale; re-requested as %s", phase.request_id, request_id)
        try:
            self._randomness.cancel_request(phase.request_id)
        except Exception as exc:
            # replaced id is rejected by the core either way
            logger.warning("Could not cancel replaced request %s: %s", phase.request_id, exc)
        self._emit(
            "draw_requested",
            {"requestId": request_id, "timestamp": now, "retry": True, "replaces": phase.request_id},
        )
        return request_id

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------
    def fulfill_random_words(
        self,
        caller: str,
        request_id: int,
        random_words: Sequence[int],
        now: Optional[int] = None,
    ) -> DrawResult:
        """Coordinator callback: pick the winner, pay the pool, reset."""
        now = self._now(now)
        if caller is None or caller.lower() != self._config.vrf_coordinator.lower():
            raise UnauthorizedFulfillment(str(caller), self._config.vrf_coordinator)

        with self._lock:
            phase = self._phase
            pending = phase_request_id(phase)
            if pending is None or int(request_id) != pending:
                raise UnknownRequest(int(request_id), pending)
            if not random_words:
                raise InvalidRandomWords(f"No random words delivered for request {request_id}")

            random_word = int(random_words[0])
            player_count = len(self._players)
            winner_index = random_word % player_count
            winner = self._players[winner_index]
            prize = self._balance

            try:
                self._payout.transfer(winner, prize)
            except Exception as exc:
                logger.error("Payout of %s wei to %s failed: %s", prize, shorten_eth_address(winner), exc)
                raise PayoutFailed(winner, prize) from exc

            self._recent_winner = winner
            self._players = []
            self._balance = 0
            self._last_timestamp = now
            self._phase = Open()

        result = DrawResult(
            request_id=pending,
            winner=winner,
            winner_index=winner_index,
            random_word=random_word,
            prize=prize,
            player_count=player_count,
            drawn_at=now,
        )
        logger.info(
            "Winner picked for request %s: %s (#%d of %d) receives %s wei",
            pending,
            shorten_eth_address(winner),
            winner_index,
            player_count,
            prize,
        )
        self._emit(
            "winner_picked",
            {
                "winner": winner,
                "prize": prize,
                "requestId": pending,
                "playerCount": player_count,
                "timestamp": now,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def config(self) -> LotteryConfig:
        return self._config

    @property
    def entrance_fee(self) -> int:
        return self._config.entrance_fee

    @property
    def interval(self) -> int:
        return self._config.interval

    @property
    def num_words(self) -> int:
        return self._config.randomness.num_words

    @property
    def request_confirmations(self) -> int:
        return self._config.randomness.request_confirmations

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase

    @property
    def pending_request_id(self) -> Optional[int]:
        with self._lock:
            return phase_request_id(self._phase)

    @property
    def balance(self) -> int:
        with self._lock:
            return self._balance

    @property
    def recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._recent_winner

    def get_lottery_state(self) -> LotteryState:
        with self._lock:
            return self._phase.state

    def get_number_of_players(self) -> int:
        with self._lock:
            return len(self._players)

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._players):
                raise IndexError(f"No player at index {index}")
            return self._players[index]

    def get_players(self) -> List[str]:
        with self._lock:
            return list(self._players)

    def get_latest_timestamp(self) -> int:
        with self._lock:
            return self._last_timestamp

    def snapshot(self) -> Dict[str, Any]:
        """Consistent copy of every state field."""
        with self._lock:
            return {
                "state": self._phase.state.value,
                "stateLabel": self._phase.state.name,
                "pendingRequestId": phase_request_id(self._phase),
                "requestedAt": self._phase.requested_at if isinstance(self._phase, Drawing) else None,
                "players": list(self._players),
                "balanceWei": self._balance,
                "lastTimestamp": self._last_timestamp,
                "recentWinner": self._recent_winner,
                "entranceFeeWei": self._config.entrance_fee,
                "interval": self._config.interval,
            }
