"""Zone group topology: parsing and flattening.

Everything here is synchronous and free of I/O. Speakers are built through a
caller-supplied factory so the same helpers work for real devices and fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, TypeVar
from urllib.parse import urlparse
from xml.etree import ElementTree


T = TypeVar("T")

SpeakerFactory = Callable[[str], Any]


@dataclass(frozen=True)
class ZoneMember:
    uuid: str
    location: str
    zone_name: str
    invisible: bool = False


@dataclass
class Group:
    coordinator_uuid: str
    group_id: str
    members: list[ZoneMember]
    speaker_factory: SpeakerFactory = field(repr=False, compare=False)

    def find_member_by_name(self, zone_name: str) -> Optional[ZoneMember]:
        needle = zone_name.strip().lower()
        for member in self.members:
            if member.zone_name.strip().lower() == needle:
                return member
        return None

    def coordinator(self) -> ZoneMember:
        for member in self.members:
            if member.uuid == self.coordinator_uuid:
                return member
        raise ValueError(f"Coordinator {self.coordinator_uuid} is not a member of group {self.group_id}")

    def coordinator_device(self) -> Any:
        return self.speaker_factory(host_from_location(self.coordinator().location))


def host_from_location(location: str) -> str:
    """Return the bare host of an advertised location URL."""

    host = urlparse((location or "").strip()).hostname
    if not host:
        raise ValueError(f"No host in location {location!r}")
    return host


def members_of(group: Group) -> list[Any]:
    return [group.speaker_factory(host_from_location(member.location)) for member in group.members]


def flatten(lists: Iterable[Iterable[T]]) -> list[T]:
    flat: list[T] = []
    for items in lists:
        flat.extend(items)
    return flat


def _zone_groups_root(xml_text: str) -> ElementTree.Element:
    root = ElementTree.fromstring(xml_text)
    if root.tag == "ZoneGroupState" or root.tag == "ZoneGroups":
        return root
    # SOAP envelope: the state document arrives escaped inside <ZoneGroupState>
    inner = root.findtext(".//{*}ZoneGroupState")
    if inner is None or not inner.strip():
        raise ValueError("Response carries no ZoneGroupState")
    return ElementTree.fromstring(inner.strip())


def parse_zone_group_state(xml_text: str, speaker_factory: SpeakerFactory) -> list[Group]:
    """Parse a GetZoneGroupState response into groups, in document order.

    Accepts the full SOAP envelope or the bare state document. Only direct
    ``ZoneGroupMember`` children count as members; bonded satellites nested
    below a member are not separately addressable players.
    """

    root = _zone_groups_root(xml_text)
    groups: list[Group] = []
    for zone_group in root.iter("ZoneGroup"):
        members = [
            ZoneMember(
                uuid=el.get("UUID", ""),
                location=el.get("Location", ""),
                zone_name=el.get("ZoneName", ""),
                invisible=el.get("Invisible") == "1",
            )
            for el in zone_group.findall("ZoneGroupMember")
        ]
        groups.append(
            Group(
                coordinator_uuid=zone_group.get("Coordinator", ""),
                group_id=zone_group.get("ID", ""),
                members=members,
                speaker_factory=speaker_factory,
            )
        )
    return groups
