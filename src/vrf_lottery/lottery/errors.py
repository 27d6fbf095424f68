"""Errors raised by the lottery state machine.

Each error aborts the attempted operation; state is left untouched.
"""

from __future__ import annotations

from typing import Optional

from vrf_lottery.lottery.models import UpkeepStatus


class LotteryError(Exception):
    """Base class for rejected lottery operations."""


class InsufficientPayment(LotteryError):
    def __init__(self, value: int, required: int) -> None:
        super().__init__(f"Lottery__NotEnoughETHEntered: sent {value} wei, entrance fee is {required} wei")
        self.value = value
        self.required = required


class NotOpen(LotteryError):
    def __init__(self) -> None:
        super().__init__("Lottery__NotOpen: a draw is in progress")


class InvalidParticipant(LotteryError):
    pass


class UpkeepNotNeeded(LotteryError):
    """Trigger attempted while ineligible; `status` says which condition failed."""

    def __init__(self, status: UpkeepStatus) -> None:
        super().__init__(
            "Lottery__UpkeepNotNeeded("
            f"balance={status.balance}, players={status.num_players}, "
            f"state={status.state.value}, time_passed={status.time_passed})"
        )
        self.status = status


class UnknownRequest(LotteryError):
    def __init__(self, request_id: int, pending: Optional[int]) -> None:
        super().__init__(f"Unknown randomness request {request_id} (pending: {pending})")
        self.request_id = request_id
        self.pending = pending


class UnauthorizedFulfillment(LotteryError):
    def __init__(self, have: str, want: str) -> None:
        super().__init__(f"OnlyCoordinatorCanFulfill(have={have}, want={want})")
        self.have = have
        self.want = want


class InvalidRandomWords(LotteryError):
    pass


class RandomnessRequestFailed(LotteryError):
    pass


class PayoutFailed(LotteryError):
    def __init__(self, winner: str, amount: int) -> None:
        super().__init__(f"Lottery__TransferFailed: {amount} wei to {winner}")
        self.winner = winner
        self.amount = amount


class DrawNotStale(LotteryError):
    pass
