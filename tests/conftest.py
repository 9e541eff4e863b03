"""Test fixtures for gdsfm_switch tests."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from gdsfm_switch.services.topology import Group, ZoneMember


class FakeSpeaker:
    """In-memory stand-in for a Sonos speaker that records every call."""

    def __init__(
        self,
        host: str,
        name: str,
        *,
        state: str = "stopped",
        log: Optional[list] = None,
        fail_on: Optional[str] = None,
        delay: float = 0.0,
    ) -> None:
        self.host = host
        self.name = name
        self.state = state
        self.volume: Optional[int] = None
        self.joined: Optional[str] = None
        self.log = log if log is not None else []
        self.fail_on = fail_on
        self.delay = delay

    async def _call(self, op: str, *args: object) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.log.append((self.host, op, *args))
        if self.fail_on == op:
            raise RuntimeError(f"{self.host} {op} failed")

    async def get_name(self) -> str:
        await self._call("get_name")
        return self.name

    async def set_volume(self, percent: int) -> None:
        await self._call("set_volume", percent)
        self.volume = percent

    async def get_current_state(self) -> str:
        await self._call("get_current_state")
        return self.state

    async def join_group(self, zone_name: str) -> None:
        await self._call("join_group", zone_name)
        self.joined = zone_name

    async def stop(self) -> None:
        await self._call("stop")

    async def play_tunein_radio(self, station_id: str, title: str) -> None:
        await self._call("play_tunein_radio", station_id, title)


class FakeNetwork:
    """A fixed topology plus an entry-point device exposing it."""

    def __init__(self, groups: list[list[str]], *, log: Optional[list] = None) -> None:
        self.log = log if log is not None else []
        self.speakers: dict[str, FakeSpeaker] = {}
        self.layout = groups
        self.fail_groups = False
        self.discover_calls = 0

    def add(self, speaker: FakeSpeaker) -> FakeSpeaker:
        speaker.log = self.log
        self.speakers[speaker.host] = speaker
        return speaker

    def groups(self) -> list[Group]:
        result = []
        for index, hosts in enumerate(self.layout):
            members = [
                ZoneMember(
                    uuid=f"RINCON_{host.replace('.', '')}",
                    location=f"http://{host}:1400/xml/device_description.xml",
                    zone_name=self.speakers[host].name,
                )
                for host in hosts
            ]
            result.append(
                Group(
                    coordinator_uuid=members[0].uuid if members else "",
                    group_id=f"group-{index}",
                    members=members,
                    speaker_factory=self.speakers.__getitem__,
                )
            )
        return result

    async def get_all_groups(self) -> list[Group]:
        self.log.append(("entry", "get_all_groups"))
        if self.fail_groups:
            raise RuntimeError("topology unavailable")
        return self.groups()

    async def discover(self) -> "FakeNetwork":
        self.discover_calls += 1
        return self


def build_network(layout: list[list[tuple[str, str]]], **speaker_kwargs: object) -> FakeNetwork:
    """Build a network from ``[[(host, name), ...], ...]``; first host is coordinator."""
    network = FakeNetwork([[host for host, _ in group] for group in layout])
    for group in layout:
        for host, name in group:
            network.add(FakeSpeaker(host, name, **speaker_kwargs))
    return network


@pytest.fixture
def single_speaker_network() -> FakeNetwork:
    return build_network([[("10.0.0.1", "Kitchen")]])


@pytest.fixture
def three_group_network() -> FakeNetwork:
    return build_network(
        [
            [("10.0.0.1", "Living Room"), ("10.0.0.2", "Sonos Roam")],
            [("10.0.0.3", "Kitchen"), ("10.0.0.4", "Bath")],
            [("10.0.0.5", "Office"), ("10.0.0.6", "Bedroom")],
        ]
    )
