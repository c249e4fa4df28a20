"""Hub settings: YAML loading, legacy key migration and enabled-device tracking."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from mqtt_hub.const import DEFAULT_DEVICE_ID
from mqtt_hub.exceptions import HubConfigError
from mqtt_hub.logging_abstraction import get_logger
from mqtt_hub.structs import DeviceChanges, HubSettings

logger = get_logger(__name__)


def load_settings(settings_file: Path) -> HubSettings:
    """Parse the YAML settings file.

    A missing or empty file yields default settings.

    Raises:
        HubConfigError: the file is not valid YAML or does not match the schema

    """
    if not settings_file.exists():
        logger.info("Settings file not found, using defaults", extra={"path": str(settings_file)})
        return HubSettings()

    logger.debug("Parsing settings file: %s", settings_file)
    try:
        with settings_file.open() as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise HubConfigError(f"Failed to read settings file {settings_file}: {exc}") from exc

    if data is None:
        return HubSettings()
    if not isinstance(data, Mapping):
        raise HubConfigError(f"Settings file {settings_file} must contain a mapping")
    return parse_settings(data)


def parse_settings(data: Mapping[str, object]) -> HubSettings:
    try:
        return HubSettings.model_validate(dict(data))
    except ValidationError as exc:
        raise HubConfigError(f"Invalid settings: {exc}") from exc


def migrate_settings(settings: HubSettings, system_name: str | None = None) -> tuple[HubSettings, bool]:
    """Bring settings written by earlier releases up to date.

    Moves ``topic_root`` to ``homie_topic``, records the current system name
    and derives ``device_id`` from it when unset.

    Returns:
        The migrated settings and whether anything changed

    """
    system_name = system_name or settings.system_name or DEFAULT_DEVICE_ID
    if settings.device_id is not None and settings.system_name == system_name and not settings.topic_root:
        return settings, False

    update: dict[str, object] = {"system_name": system_name, "topic_root": None}
    if settings.topic_root and not settings.homie_topic:
        update["homie_topic"] = settings.topic_root
    update["device_id"] = settings.device_id or system_name

    migrated = settings.model_copy(update=update)
    logger.debug("Settings migrated, device id: %s", migrated.device_id)
    return migrated, True


class DeviceRegistry:
    """Tracks which device ids are enabled for publishing.

    Devices missing from the settings map are enabled.
    """

    def __init__(self, devices: Mapping[str, bool] | None = None) -> None:
        self._enabled: dict[str, bool] = dict(devices or {})

    def is_enabled(self, device_id: str) -> bool:
        return self._enabled.get(device_id, True)

    def compute_changes(self, devices: Mapping[str, bool] | None) -> DeviceChanges:
        """Diff ``devices`` against the current map without applying it."""
        devices = devices or {}
        changes = DeviceChanges()
        for device_id in set(self._enabled) | set(devices):
            was_enabled = self.is_enabled(device_id)
            now_enabled = devices.get(device_id, True)
            if was_enabled and not now_enabled:
                changes.disabled.add(device_id)
            elif now_enabled and not was_enabled:
                changes.enabled.add(device_id)
        return changes

    def set_enabled_devices(self, devices: Mapping[str, bool] | None) -> None:
        self._enabled = dict(devices or {})
