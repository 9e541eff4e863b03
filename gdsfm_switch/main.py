import logging
import os
from typing import Optional

from fastapi import FastAPI

from gdsfm_switch.api.health import create_health_router
from gdsfm_switch.api.switch import SwitchBridge, create_switch_router
from gdsfm_switch.services.controller import STATION_TITLE, SonosController
from gdsfm_switch.services.sonos import SonosSoapClient, ssdp_discover


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
log = logging.getLogger("gdsfm")

SONOS_HTTP_USER_AGENT = os.getenv("SONOS_HTTP_USER_AGENT", "GDSFM-Switch/1.0").strip() or "GDSFM-Switch/1.0"
SONOS_CONTROL_TIMEOUT = float(os.getenv("SONOS_CONTROL_TIMEOUT", "8"))
SONOS_DISCOVERY_TIMEOUT = float(os.getenv("SONOS_DISCOVERY_TIMEOUT", "5"))
SONOS_DEVICE_TTL = float(os.getenv("SONOS_DEVICE_TTL", "120"))
_raw_sequencer_timeout = os.getenv("SONOS_SEQUENCER_TIMEOUT", "60").strip()
SONOS_SEQUENCER_TIMEOUT: Optional[float] = float(_raw_sequencer_timeout) if _raw_sequencer_timeout not in {"", "0"} else None
# Roam 20, others 10: levels carried over from the original deployment
SONOS_COMPACT_MODEL = os.getenv("SONOS_COMPACT_MODEL", "Sonos Roam")
SONOS_COMPACT_VOLUME = int(os.getenv("SONOS_COMPACT_VOLUME", "20"))
SONOS_DEFAULT_VOLUME = int(os.getenv("SONOS_DEFAULT_VOLUME", "10"))


def create_controller(soap_client: Optional[SonosSoapClient] = None) -> SonosController:
    client = soap_client or SonosSoapClient(
        http_user_agent=SONOS_HTTP_USER_AGENT,
        control_timeout=SONOS_CONTROL_TIMEOUT,
    )

    async def _discover():
        return await ssdp_discover(client, timeout=SONOS_DISCOVERY_TIMEOUT)

    return SonosController(
        discover=_discover,
        compact_model=SONOS_COMPACT_MODEL,
        compact_volume=SONOS_COMPACT_VOLUME,
        default_volume=SONOS_DEFAULT_VOLUME,
        device_ttl=SONOS_DEVICE_TTL,
        sequencer_timeout=SONOS_SEQUENCER_TIMEOUT,
    )


def create_app(controller: Optional[SonosController] = None) -> FastAPI:
    bridge = SwitchBridge(controller or create_controller())
    app = FastAPI(title="GDS.FM switch")
    app.include_router(create_health_router(station_title=STATION_TITLE))
    app.include_router(create_switch_router(bridge=bridge))
    log.info("GDS.FM switch ready (device ttl=%ss, discovery timeout=%ss)", SONOS_DEVICE_TTL, SONOS_DISCOVERY_TIMEOUT)
    return app


app = create_app()
