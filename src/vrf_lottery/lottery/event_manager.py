"""In-memory activity feed and draw history fed by lottery events."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Any, Dict, List, Optional

from vrf_lottery.lottery.models import LiveFeedItem, ParticipantSummary, RoundSnapshot
from vrf_lottery.utils.common import shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

LOTTERY_EVENTS = ("lottery_enter", "draw_requested", "winner_picked")


class MemoryStore:
    """Volatile storage for the live feed, participants and draw history."""

    def __init__(self, *, feed_capacity: int = 100, history_capacity: int = 20) -> None:
        self._lock = Lock()
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._history: deque[RoundSnapshot] = deque(maxlen=history_capacity)
        self._participant_summaries: Dict[str, ParticipantSummary] = {}
        self._rounds_completed = 0
        self._total_paid = 0

    def attach(self, lottery: Any) -> None:
        """Subscribe to every event a LotteryCore emits."""
        lottery.add_listener("lottery_enter", self.on_lottery_enter)
        lottery.add_listener("draw_requested", self.on_draw_requested)
        lottery.add_listener("winner_picked", self.on_winner_picked)
        logger.info("[MemoryStore] Attached to lottery events %s", ", ".join(LOTTERY_EVENTS))

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def on_lottery_enter(self, payload: Dict[str, Any]) -> None:
        player = payload["player"]
        value = int(payload.get("value", 0))
        with self._lock:
            summary = self._participant_summaries.setdefault(player, ParticipantSummary(address=player))
            summary.entries += 1
            summary.total_amount += value

        self.add_live_feed(
            event_type="lottery_enter",
            message=f"{shorten_eth_address(player)} entered with {value} wei",
            details={"player": player, "value": value, "timestamp": payload.get("timestamp", 0)},
        )

    def on_draw_requested(self, payload: Dict[str, Any]) -> None:
        request_id = payload["requestId"]
        if payload.get("retry"):
            message = f"Draw re-requested as request {request_id}"
        else:
            message = f"Draw requested (request {request_id})"
        self.add_live_feed(event_type="draw_requested", message=message, details=dict(payload))

    def on_winner_picked(self, payload: Dict[str, Any]) -> None:
        winner = payload["winner"]
        prize = int(payload.get("prize", 0))
        with self._lock:
            self._rounds_completed += 1
            self._total_paid += prize
            snapshot = RoundSnapshot(
                round_number=self._rounds_completed,
                request_id=int(payload.get("requestId", 0)),
                winner=winner,
                prize=prize,
                player_count=int(payload.get("playerCount", 0)),
                finished_at=int(payload.get("timestamp", 0)),
            )
            self._history.append(snapshot)
            self._participant_summaries = {}

        logger.info(f"[MemoryStore] Added history snapshot: {snapshot}")
        self.add_live_feed(
            event_type="winner_picked",
            message=f"{shorten_eth_address(winner)} won {prize} wei",
            details=dict(payload),
        )

    def add_live_feed(
        self,
        *,
        event_type: str,
        message: str,
        details: Dict[str, Any] | None = None
    ) -> LiveFeedItem:
        """Append a live-feed item."""
        safe_details = dict(details or {})
        feed_item = LiveFeedItem(
            event_type=event_type,
            message=message,
            details=safe_details,
            event_time=int(safe_details.get("timestamp", 0) or 0),
        )
        with self._lock:
            self._live_feed.append(feed_item)
        logger.info("[MemoryStore] appended live feed item %s:  %s", event_type, message)
        return feed_item

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_participants(self) -> List[ParticipantSummary]:
        with self._lock:
            return sorted(
                self._participant_summaries.values(),
                key=lambda item: item.total_amount,
                reverse=True,
            )

    def get_round_history(self, limit: Optional[int] = None) -> List[RoundSnapshot]:
        with self._lock:
            items = list(self._history)
        if limit is not None:
            return items[-limit:]
        return items

    def get_totals(self) -> Dict[str, int]:
        """All-time round count and paid amount, including rounds evicted from history."""
        with self._lock:
            return {"totalRounds": self._rounds_completed, "totalPaidWei": self._total_paid}

    def get_live_feed(self, limit: Optional[int] = None) -> List[LiveFeedItem]:
        with self._lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:]
        return items

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def serialize_participants(self) -> dict:
        participants = [
            {
                "address": summary.address,
                "entries": summary.entries,
                "totalAmountWei": summary.total_amount,
            }
            for summary in self.get_participants()
        ]
        return {
            "participants": participants,
            "totalParticipants": len(participants),
        }

    def serialize_history_round(self, snapshot: RoundSnapshot) -> dict:
        return {
            "roundNumber": snapshot.round_number,
            "requestId": snapshot.request_id,
            "winner": snapshot.winner,
            "prizeWei": snapshot.prize,
            "playerCount": snapshot.player_count,
            "finishedAt": snapshot.finished_at,
        }

    def _serialize_feed_item(self, item: LiveFeedItem) -> dict:
        return {
            "id": item.get_item_id(),
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "timestamp": item.event_time,
        }

    def serialize_feed(self, limit: Optional[int] = None) -> List[dict]:
        return [self._serialize_feed_item(item) for item in reversed(self.get_live_feed(limit))]
