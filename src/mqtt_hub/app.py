"""Process-level wiring: settings, broker client and hub, run until signalled.

Importing this module reads the ``MQTT_HUB_*`` environment, so the entry point
imports it only after an ``--env`` file has been applied.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import socket
from pathlib import Path

from mqtt_hub.const import MQTT_HUB_RECONNECT_DELAY, WILL_TOPIC
from mqtt_hub.exceptions import HubConfigError
from mqtt_hub.hub import MQTTHub, status_topic
from mqtt_hub.logging_abstraction import get_logger
from mqtt_hub.mqtt.client import MQTTClient
from mqtt_hub.settings import load_settings, migrate_settings

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False


async def run_hub(settings_file: Path, stop_event: asyncio.Event | None = None) -> int:
    """Run the hub until ``stop_event`` is set (SIGINT/SIGTERM by default)."""
    try:
        settings = load_settings(settings_file.expanduser())
    except HubConfigError:
        logger.exception("Failed to load settings")
        return 1
    settings, migrated = migrate_settings(settings, socket.gethostname())
    if migrated:
        logger.info("Settings migrated", extra={"device_id": settings.device_id})

    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)

    client = MQTTClient(will_topic=status_topic(WILL_TOPIC, settings.hub_id) or None)
    hub = MQTTHub(client, settings)
    try:
        while not await hub.start():
            if MQTT_HUB_RECONNECT_DELAY <= 0:
                return 1
            logger.info("Retrying start in %s seconds...", MQTT_HUB_RECONNECT_DELAY)
            try:
                _ = await asyncio.wait_for(stop_event.wait(), timeout=MQTT_HUB_RECONNECT_DELAY)
            except TimeoutError:
                continue
            return 0
        _ = await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await hub.shutdown()
    return 0
