"""Core data models for the VRF lottery."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional, Union


class LotteryState(IntEnum):
    """Lottery phase as exposed by `getLotteryState()`."""

    OPEN = 0
    DRAWING = 1


@dataclass(frozen=True)
class RandomnessParams:
    """Parameters forwarded to the VRF coordinator with every request."""

    key_hash: str
    subscription_id: int
    callback_gas_limit: int = 500000
    request_confirmations: int = 3
    num_words: int = 1


@dataclass(frozen=True)
class LotteryConfig:
    """Immutable lottery settings fixed at construction."""

    entrance_fee: int
    interval: int
    vrf_coordinator: str
    randomness: RandomnessParams
    request_timeout: int = 3600


@dataclass(frozen=True)
class Open:
    """Accepting entries; no randomness request outstanding."""

    @property
    def state(self) -> LotteryState:
        return LotteryState.OPEN


@dataclass(frozen=True)
class Drawing:
    """Waiting for the coordinator to deliver words for `request_id`."""

    request_id: int
    requested_at: int

    @property
    def state(self) -> LotteryState:
        return LotteryState.DRAWING


Phase = Union[Open, Drawing]


@dataclass(frozen=True)
class UpkeepStatus:
    """Evaluated sub-conditions of an upkeep check."""

    state: LotteryState
    balance: int
    num_players: int
    time_passed: int
    interval: int

    @property
    def is_open(self) -> bool:
        return self.state == LotteryState.OPEN

    @property
    def time_elapsed(self) -> bool:
        return self.time_passed >= self.interval

    @property
    def upkeep_needed(self) -> bool:
        return self.is_open and self.time_elapsed and self.num_players > 0 and self.balance > 0

    def to_dict(self) -> Dict[str, int | str | bool]:
        return {
            "state": self.state.value,
            "stateLabel": self.state.name,
            "balanceWei": self.balance,
            "numPlayers": self.num_players,
            "timePassed": self.time_passed,
            "interval": self.interval,
            "upkeepNeeded": self.upkeep_needed,
        }


@dataclass(frozen=True)
class DrawResult:
    """Outcome of a settled draw."""

    request_id: int
    winner: str
    winner_index: int
    random_word: int
    prize: int
    player_count: int
    drawn_at: int


@dataclass
class RoundSnapshot:
    """Historical record of a completed draw."""

    round_number: int
    request_id: int
    winner: str
    prize: int
    player_count: int
    finished_at: int


@dataclass
class LiveFeedItem:
    """Entry pushed to the activity feed."""

    event_type: str
    message: str
    details: Dict[str, int | str | bool] = field(default_factory=dict)
    event_time: int = 0

    def get_item_id(self) -> str:
        return f"{self.event_time}-{self.event_type}-{self.details.get('requestId', 0)}"


@dataclass
class ParticipantSummary:
    """Aggregated entries of one address in the open round."""

    address: str
    entries: int = 0
    total_amount: int = 0


def phase_request_id(phase: Phase) -> Optional[int]:
    return phase.request_id if isinstance(phase, Drawing) else None
