"""FastAPI web server exposing the lottery's read, entry and automation interfaces."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from vrf_lottery.lottery.core import LotteryCore
from vrf_lottery.lottery.errors import (
    InsufficientPayment,
    InvalidParticipant,
    LotteryError,
    NotOpen,
    UpkeepNotNeeded,
)
from vrf_lottery.lottery.event_manager import MemoryStore
from vrf_lottery.lottery.keeper import UpkeepKeeper
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class EnterRequest(BaseModel):
    player: str
    value_wei: int


def _error_status(exc: LotteryError) -> int:
    if isinstance(exc, (InsufficientPayment, InvalidParticipant)):
        return 400
    if isinstance(exc, (NotOpen, UpkeepNotNeeded)):
        return 409
    return 500


class LotteryWebServer:
    """HTTP gateway for one lottery instance."""

    def __init__(
        self,
        config: Dict[str, Any],
        lottery: LotteryCore,
        store: MemoryStore,
        keeper: Optional[UpkeepKeeper] = None,
    ) -> None:
        self.config = config
        self.lottery = lottery
        self.keeper = keeper
        self._store = store
        self._server = None

        self.app = FastAPI(
            title="VRF Lottery API",
            description="Entry, read and automation interface of the VRF lottery",
            version="1.0.0",
        )
        self._setup_middleware()
        self._setup_routes()

    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "components": {
                    "web": True,
                    "keeper": self.keeper.get_status() if self.keeper else {"status": "disabled"},
                    "lottery": self.lottery.get_lottery_state().name,
                },
            }

        # ------------------------------------------------------------------
        # Lottery state
        # ------------------------------------------------------------------
        @self.app.get("/api/lottery")
        async def get_lottery() -> Dict[str, Any]:
            snapshot = self.lottery.snapshot()
            players = snapshot.pop("players")
            snapshot["numberOfPlayers"] = len(players)
            snapshot["numWords"] = self.lottery.num_words
            snapshot["requestConfirmations"] = self.lottery.request_confirmations
            return snapshot

        @self.app.get("/api/lottery/players")
        async def get_players() -> Dict[str, Any]:
            players = self.lottery.get_players()
            summary = self._store.serialize_participants()
            return {
                "players": players,
                "numberOfPlayers": len(players),
                "participants": summary["participants"],
            }

        @self.app.get("/api/lottery/players/{index}")
        async def get_player(index: int) -> Dict[str, Any]:
            try:
                return {"index": index, "player": self.lottery.get_player(index)}
            except IndexError as exc:
                raise HTTPException(status_code=404, detail=str(exc))

        @self.app.post("/api/lottery/enter")
        async def enter(request: EnterRequest) -> Dict[str, Any]:
            try:
                index = self.lottery.enter(request.player, request.value_wei)
            except LotteryError as exc:
                logger.info("Entry rejected for %s: %s", request.player, exc)
                raise HTTPException(status_code=_error_status(exc), detail=str(exc))
            return {
                "status": "entered",
                "index": index,
                "numberOfPlayers": self.lottery.get_number_of_players(),
            }

        # ------------------------------------------------------------------
        # Automation
        # ------------------------------------------------------------------
        @self.app.get("/api/upkeep")
        async def check_upkeep() -> Dict[str, Any]:
            _, status = self.lottery.check_upkeep()
            return status.to_dict()

        @self.app.post("/api/upkeep/perform")
        async def perform_upkeep() -> Dict[str, Any]:
            try:
                request_id = self.lottery.perform_upkeep()
            except UpkeepNotNeeded as exc:
                raise HTTPException(
                    status_code=409,
                    detail={"error": str(exc), "status": exc.status.to_dict()},
                )
            except LotteryError as exc:
                raise HTTPException(status_code=_error_status(exc), detail=str(exc))
            return {"status": "requested", "requestId": request_id}

        # ------------------------------------------------------------------
        # History & activity
        # ------------------------------------------------------------------
        @self.app.get("/api/history")
        async def get_history(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            rounds = [self._store.serialize_history_round(item) for item in self._store.get_round_history(limit)]
            rounds.reverse()
            totals = self._store.get_totals()
            return {
                "rounds": rounds,
                "summary": {
                    "total_rounds": totals["totalRounds"],
                    "total_paid_wei": totals["totalPaidWei"],
                },
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @self.app.get("/api/activities")
        async def get_live_feed(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            return {"activities": self._store.serialize_feed(limit)}

    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Lottery web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping lottery web server")
        if self._server is not None:
            self._server.should_exit = True
