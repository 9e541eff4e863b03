from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel


log = logging.getLogger("gdsfm")


class SwitchPayload(BaseModel):
    on: bool


class SwitchBridge:
    """The three operations a smart-home bridge accessory needs.

    ``turn_on``/``turn_off`` are fire-and-forget: the controller never raises
    from play/pause, so the scheduled task is only kept alive until it ends.
    """

    def __init__(self, controller: Any) -> None:
        self._controller = controller
        self._pending: set[asyncio.Task] = set()

    def _schedule(self, coro: Any) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def turn_on(self) -> asyncio.Task:
        return self._schedule(self._controller.play())

    def turn_off(self) -> asyncio.Task:
        return self._schedule(self._controller.pause())

    def set_on(self, on: bool) -> asyncio.Task:
        return self.turn_on() if on else self.turn_off()

    async def query_on_state(self) -> bool:
        return await self._controller.status()


def create_switch_router(*, bridge: SwitchBridge) -> APIRouter:
    router = APIRouter()

    @router.get("/api/switch")
    async def switch_state() -> dict:
        try:
            on = await bridge.query_on_state()
        except Exception as exc:
            log.warning("Sonos status query failed: %s", exc)
            raise HTTPException(status_code=502, detail=f"Sonos status unavailable: {exc}") from exc
        return {"on": on}

    @router.put("/api/switch")
    async def switch_set(payload: SwitchPayload) -> dict:
        bridge.set_on(payload.on)
        return {"on": payload.on}

    @router.post("/api/switch/on")
    async def switch_on() -> dict:
        bridge.turn_on()
        return {"on": True}

    @router.post("/api/switch/off")
    async def switch_off() -> dict:
        bridge.turn_off()
        return {"on": False}

    return router
