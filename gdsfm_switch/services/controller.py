from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from gdsfm_switch.services.sequencer import Sequencer
from gdsfm_switch.services.topology import flatten, members_of


log = logging.getLogger("gdsfm")

STATION_ID = "s218325"
STATION_TITLE = "GDS.FM"
DEVICE_TTL_SECONDS = 2 * 60


async def adjust_volume(
    speaker: Any,
    *,
    compact_model: str,
    compact_volume: int,
    default_volume: int,
) -> None:
    name = await speaker.get_name()
    await speaker.set_volume(compact_volume if name == compact_model else default_volume)


class SonosController:
    """Drives every Sonos group on the network as a single GDS.FM switch.

    The discovered entry-point device is cached for ``device_ttl`` seconds and
    dropped after any failed operation. Cache reads and writes only happen in
    tasks queued on the controller's :class:`Sequencer`.
    """

    def __init__(
        self,
        *,
        discover: Callable[[], Awaitable[Any]],
        # Roam louder than the rest, as the original deployment tuned it
        compact_model: str = "Sonos Roam",
        compact_volume: int = 20,
        default_volume: int = 10,
        device_ttl: float = DEVICE_TTL_SECONDS,
        sequencer_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._discover = discover
        self._compact_model = compact_model
        self._compact_volume = int(compact_volume)
        self._default_volume = int(default_volume)
        self._device_ttl = float(device_ttl)
        self._clock = clock
        self._sequencer = Sequencer(timeout=sequencer_timeout)
        self._device: Optional[Any] = None
        self._last_updated = 0.0

    async def _get_device(self) -> Any:
        return await self._sequencer.queue(self._acquire_device)

    async def _acquire_device(self) -> Any:
        if self._device is None or self._clock() - self._last_updated > self._device_ttl:
            self._device = None
            device = await self._discover()
            self._device = device
            self._last_updated = self._clock()
        return self._device

    async def _invalidate(self) -> None:
        async def _clear() -> None:
            self._device = None

        await self._sequencer.queue(_clear)

    async def _adjust_volume(self, speaker: Any) -> None:
        await adjust_volume(
            speaker,
            compact_model=self._compact_model,
            compact_volume=self._compact_volume,
            default_volume=self._default_volume,
        )

    async def _merge_into(
        self,
        main_device: Any,
        members: list[Any],
        adjust: Callable[[Any], Awaitable[None]],
    ) -> None:
        log.info("Getting main device name...")
        main_device_name = await main_device.get_name()
        log.info("Main device name: %s", main_device_name)

        async def _join(member: Any) -> None:
            started = time.monotonic()
            await member.join_group(main_device_name)
            log.info("[%s] Took %.0fms to join group", member.host, (time.monotonic() - started) * 1000)

        await asyncio.gather(*(step for member in members for step in (_join(member), adjust(member))))

    async def status(self) -> bool:
        try:
            device = await self._get_device()
            groups = await device.get_all_groups()
            coordinators = [group.coordinator_device() for group in groups]
            states = await asyncio.gather(*(c.get_current_state() for c in coordinators))
        except Exception:
            await self._invalidate()
            raise
        log.info("Sonos states: %s", ", ".join(states))
        return any(state == "playing" for state in states)

    async def play(self) -> None:
        log.info("Setting up %s...", STATION_TITLE)
        try:
            log.info("Getting device...")
            device = await self._get_device()

            log.info("Getting all groups...")
            groups = await device.get_all_groups()
            if not groups:
                log.warning("Found no Sonos devices")
                return

            log.info("Found %d groups", len(groups))
            main_group, *other_groups = groups
            main_device = main_group.coordinator_device()

            async def _volume(member: Any) -> None:
                started = time.monotonic()
                await self._adjust_volume(member)
                log.info("[%s] Took %.0fms to adjust volume", member.host, (time.monotonic() - started) * 1000)

            main_members = members_of(main_group)
            other_members = flatten(members_of(group) for group in other_groups)

            tasks: list[Awaitable[None]] = [_volume(member) for member in main_members]
            if other_members:
                log.info("Found %d speakers that need to join the group", len(other_members))
                tasks.append(self._merge_into(main_device, other_members, _volume))

            await asyncio.gather(*tasks)

            log.info("Starting to play %s...", STATION_TITLE)
            await main_device.play_tunein_radio(STATION_ID, STATION_TITLE)
            log.info("Started playing %s", STATION_TITLE)
        except Exception as exc:
            log.error("Failed to start %s: %s", STATION_TITLE, exc)
            await self._invalidate()

    async def pause(self) -> None:
        log.info("Stopping %s...", STATION_TITLE)
        try:
            log.info("Getting device...")
            device = await self._get_device()
            log.info("Getting all groups...")
            groups = await device.get_all_groups()
            log.info("Found %d groups", len(groups))
            coordinators = [group.coordinator_device() for group in groups]
            await asyncio.gather(*(c.stop() for c in coordinators))
            log.info("Stopped playing Sonos")
        except Exception as exc:
            log.error("Failed to stop %s: %s", STATION_TITLE, exc)
            await self._invalidate()
