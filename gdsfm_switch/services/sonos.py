from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urlparse
from xml.etree import ElementTree
from xml.sax.saxutils import escape as xml_escape

import httpx

from gdsfm_switch.services.topology import Group, parse_zone_group_state


log = logging.getLogger("gdsfm")

SONOS_PORT = 1400
ZONE_PLAYER_DEVICE_TYPE = "urn:schemas-upnp-org:device:ZonePlayer:1"
SSDP_ADDR = ("239.255.255.250", 1900)

AVTRANSPORT_CONTROL = "/MediaRenderer/AVTransport/Control"
RENDERING_CONTROL = "/MediaRenderer/RenderingControl/Control"
DEVICE_PROPERTIES_CONTROL = "/DeviceProperties/Control"
ZONE_GROUP_TOPOLOGY_CONTROL = "/ZoneGroupTopology/Control"

TUNEIN_SERVICE_ID = 254

# UPnP CurrentTransportState -> short state name
TRANSPORT_STATES = {
    "PLAYING": "playing",
    "STOPPED": "stopped",
    "PAUSED_PLAYBACK": "paused",
    "TRANSITIONING": "transitioning",
    "NO_MEDIA_PRESENT": "no_media",
}


class SonosError(RuntimeError):
    pass


class SonosDiscoveryError(SonosError):
    pass


class SonosSoapError(SonosError):
    def __init__(self, service: str, action: str, detail: str) -> None:
        super().__init__(f"Sonos SOAP {service}.{action} failed: {detail}")
        self.service = service
        self.action = action
        self.detail = detail


def _parse_upnp_fault(xml_text: str) -> Optional[str]:
    try:
        root = ElementTree.fromstring(xml_text)
    except Exception:
        return None
    fault = root.find(".//{*}Fault")
    if fault is None:
        return None
    error_code = root.findtext(".//{*}errorCode")
    error_desc = root.findtext(".//{*}errorDescription")
    if error_code or error_desc:
        code = (error_code or "").strip()
        desc = (error_desc or "").strip()
        if code and desc:
            return f"UPnPError {code}: {desc}"
        return f"UPnPError {code or desc}".strip()
    fault_string = root.findtext(".//{*}faultstring")
    if fault_string:
        return fault_string.strip()
    return "UPnPError (unknown SOAP fault)"


def tunein_uri(station_id: str) -> str:
    return f"x-sonosapi-stream:{station_id}?sid={TUNEIN_SERVICE_ID}&flags=8224&sn=0"


def tunein_metadata(station_id: str, title: str) -> str:
    """Return DIDL-Lite metadata for a TuneIn radio station."""

    return (
        '<DIDL-Lite xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/" '
        'xmlns:r="urn:schemas-rinconnetworks-com:metadata-1-0/" '
        'xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/">'
        f'<item id="F00092020{xml_escape(station_id)}" parentID="L" restricted="true">'
        f"<dc:title>{xml_escape(title)}</dc:title>"
        "<upnp:class>object.item.audioItem.audioBroadcast</upnp:class>"
        '<desc id="cdudn" nameSpace="urn:schemas-rinconnetworks-com:metadata-1-0/">'
        "SA_RINCON65031_"
        "</desc>"
        "</item>"
        "</DIDL-Lite>"
    )


class SonosSoapClient:
    def __init__(
        self,
        *,
        http_user_agent: str,
        control_timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http_user_agent = http_user_agent
        self._control_timeout = float(control_timeout)
        self._transport = transport

    async def soap_action_text(
        self,
        ip: str,
        *,
        service: str,
        action: str,
        control_path: str,
        arguments: dict[str, str],
        timeout: Optional[float] = None,
    ) -> str:
        target = f"http://{ip}:{SONOS_PORT}{control_path}"
        ns = f"urn:schemas-upnp-org:service:{service}:1"
        body_parts = [f"<{k}>{xml_escape(v)}</{k}>" for k, v in arguments.items()]
        envelope = (
            "<?xml version=\"1.0\" encoding=\"utf-8\"?>"
            "<s:Envelope xmlns:s=\"http://schemas.xmlsoap.org/soap/envelope/\" "
            "s:encodingStyle=\"http://schemas.xmlsoap.org/soap/encoding/\">"
            "<s:Body>"
            f"<u:{action} xmlns:u=\"{ns}\">"
            + "".join(body_parts)
            + f"</u:{action}>"
            "</s:Body>"
            "</s:Envelope>"
        )
        headers = {
            "Content-Type": "text/xml; charset=\"utf-8\"",
            "SOAPACTION": f'\"{ns}#{action}\"',
            "User-Agent": self._http_user_agent,
            "Connection": "close",
        }
        effective_timeout = self._control_timeout if timeout is None else float(timeout)
        async with httpx.AsyncClient(timeout=effective_timeout, transport=self._transport) as client:
            resp = await client.post(target, content=envelope.encode("utf-8"), headers=headers)

        fault_msg = _parse_upnp_fault(resp.text or "")
        if resp.status_code >= 400 or fault_msg:
            detail = fault_msg or (resp.text or "").strip() or f"HTTP {resp.status_code}"
            raise SonosSoapError(service, action, detail)
        return resp.text

    async def soap_action(self, ip: str, **kwargs: Any) -> None:
        await self.soap_action_text(ip, **kwargs)


class Speaker:
    """One physical player, addressed by its IPv4 host."""

    def __init__(self, host: str, client: SonosSoapClient) -> None:
        self.host = host
        self._client = client

    def __repr__(self) -> str:
        return f"Speaker({self.host!r})"

    def _speaker(self, host: str) -> "Speaker":
        return Speaker(host, self._client)

    async def _response_field(self, field: str, **kwargs: Any) -> Optional[str]:
        xml_text = await self._client.soap_action_text(self.host, **kwargs)
        try:
            root = ElementTree.fromstring(xml_text)
        except ElementTree.ParseError as exc:
            raise SonosError(f"Unparseable {kwargs.get('action')} response from {self.host}: {exc}") from exc
        value = root.findtext(f".//{{*}}{field}")
        return value.strip() if value else None

    async def get_name(self) -> str:
        """Return the Sonos app 'room' / zone name for this device."""

        name = await self._response_field(
            "CurrentZoneName",
            service="DeviceProperties",
            action="GetZoneAttributes",
            control_path=DEVICE_PROPERTIES_CONTROL,
            arguments={},
        )
        if not name:
            raise SonosError(f"Sonos device {self.host} reported no zone name")
        return name

    async def get_current_state(self) -> str:
        state = await self._response_field(
            "CurrentTransportState",
            service="AVTransport",
            action="GetTransportInfo",
            control_path=AVTRANSPORT_CONTROL,
            arguments={"InstanceID": "0"},
        )
        if not state:
            raise SonosError(f"Sonos device {self.host} reported no transport state")
        return TRANSPORT_STATES.get(state.upper(), state.lower())

    async def set_volume(self, percent: int) -> None:
        await self._client.soap_action(
            self.host,
            service="RenderingControl",
            action="SetVolume",
            control_path=RENDERING_CONTROL,
            arguments={
                "InstanceID": "0",
                "Channel": "Master",
                "DesiredVolume": str(max(0, min(100, int(percent)))),
            },
        )

    async def get_all_groups(self) -> list[Group]:
        xml_text = await self._client.soap_action_text(
            self.host,
            service="ZoneGroupTopology",
            action="GetZoneGroupState",
            control_path=ZONE_GROUP_TOPOLOGY_CONTROL,
            arguments={},
        )
        try:
            return parse_zone_group_state(xml_text, self._speaker)
        except (ElementTree.ParseError, ValueError) as exc:
            raise SonosError(f"Unparseable zone group state from {self.host}: {exc}") from exc

    async def set_av_transport_uri(self, uri: str, metadata: str = "") -> None:
        await self._client.soap_action(
            self.host,
            service="AVTransport",
            action="SetAVTransportURI",
            control_path=AVTRANSPORT_CONTROL,
            arguments={
                "InstanceID": "0",
                "CurrentURI": uri,
                "CurrentURIMetaData": metadata or "",
            },
        )

    async def join_group(self, zone_name: str) -> None:
        """Join the group that currently contains the zone called ``zone_name``."""

        groups = await self.get_all_groups()
        for group in groups:
            if group.find_member_by_name(zone_name) is not None:
                await self.set_av_transport_uri(f"x-rincon:{group.coordinator_uuid}")
                return
        raise SonosError(f"Sonos zone {zone_name!r} not found")

    async def play(self) -> None:
        await self._client.soap_action(
            self.host,
            service="AVTransport",
            action="Play",
            control_path=AVTRANSPORT_CONTROL,
            arguments={"InstanceID": "0", "Speed": "1"},
        )

    async def play_tunein_radio(self, station_id: str, title: str) -> None:
        await self.set_av_transport_uri(tunein_uri(station_id), tunein_metadata(station_id, title))
        await self.play()

    async def stop(self) -> None:
        await self._client.soap_action(
            self.host,
            service="AVTransport",
            action="Stop",
            control_path=AVTRANSPORT_CONTROL,
            arguments={"InstanceID": "0"},
        )


def parse_ssdp_response(data: bytes) -> dict[str, str]:
    text = data.decode("utf-8", errors="ignore")
    lines = [line.strip() for line in text.split("\r\n") if line.strip()]
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        headers[k.strip().lower()] = v.strip()
    return headers


async def ssdp_discover(
    client: SonosSoapClient,
    *,
    timeout: float,
    ssdp_addr: tuple[str, int] = SSDP_ADDR,
    device_type: str = ZONE_PLAYER_DEVICE_TYPE,
) -> Speaker:
    """Return the first Sonos device answering an SSDP M-SEARCH."""

    message = (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {ssdp_addr[0]}:{ssdp_addr[1]}\r\n"
        'MAN: "ssdp:discover"\r\n'
        "MX: 1\r\n"
        f"ST: {device_type}\r\n"
        "\r\n"
    ).encode("utf-8")
    loop = asyncio.get_running_loop()
    found: asyncio.Future[str] = loop.create_future()

    class _Proto(asyncio.DatagramProtocol):
        def connection_made(self, transport):
            transport.sendto(message, ssdp_addr)

        def datagram_received(self, data, addr):
            headers = parse_ssdp_response(data)
            location = headers.get("location")
            if not location:
                return
            if "sonos" not in headers.get("server", "").lower() and headers.get("st") != device_type:
                return
            ip = urlparse(location).hostname or addr[0]
            if ip and not found.done():
                found.set_result(ip)

        def error_received(self, exc):
            if not found.done():
                found.set_exception(SonosDiscoveryError(f"SSDP socket error: {exc}"))

    transport = None
    try:
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _Proto(),
                local_addr=("0.0.0.0", 0),
            )
        except OSError as exc:
            raise SonosDiscoveryError(f"SSDP discovery could not open a socket: {exc}") from exc
        try:
            ip = await asyncio.wait_for(found, timeout=max(0.2, timeout))
        except asyncio.TimeoutError as exc:
            raise SonosDiscoveryError(f"No Sonos device answered SSDP within {timeout:.1f}s") from exc
    finally:
        if transport:
            transport.close()

    log.info("Sonos SSDP discovery found entry point %s", ip)
    return Speaker(ip, client)
