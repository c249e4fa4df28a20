import os

from mqtt_hub import __version__

__all__ = [
    "BIRTH_MESSAGE",
    "BIRTH_TOPIC",
    "DEFAULT_DEVICE_ID",
    "DEFAULT_PROTOCOL",
    "DEFAULT_QOS",
    "DRAIN_SUMMARY_THRESHOLD",
    "HUB_OWNER_ID",
    "MQTT_HUB_CLIENT_ID",
    "MQTT_HUB_DEBUG",
    "MQTT_HUB_KEEPALIVE",
    "MQTT_HUB_LOG_FORMAT",
    "MQTT_HUB_LOG_HUMAN_OUTPUT",
    "MQTT_HUB_LOG_JSON_FILE",
    "MQTT_HUB_MQTT_HOST",
    "MQTT_HUB_MQTT_PASS",
    "MQTT_HUB_MQTT_PORT",
    "MQTT_HUB_MQTT_USER",
    "MQTT_HUB_QUEUE_DELAY_MS",
    "MQTT_HUB_RECONNECT_DELAY",
    "MQTT_HUB_SETTINGS_FILE",
    "MQTT_HUB_VERSION",
    "STATUS_QOS",
    "STOP_FLUSH_TIMEOUT",
    "WILL_MESSAGE",
    "WILL_TOPIC",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")

MQTT_HUB_VERSION: str = __version__

# Birth & last will. An empty topic omits the message.
BIRTH_TOPIC: str = os.environ.get("MQTT_HUB_BIRTH_TOPIC", "{device_id}/hub/status")
BIRTH_MESSAGE: str = os.environ.get("MQTT_HUB_BIRTH_MSG", "online")
WILL_TOPIC: str = os.environ.get("MQTT_HUB_WILL_TOPIC", "{device_id}/hub/status")
WILL_MESSAGE: str = os.environ.get("MQTT_HUB_WILL_MSG", "offline")
STATUS_QOS: int = 1

DEFAULT_QOS: int = 0
DEFAULT_DEVICE_ID: str = "Homey"
DEFAULT_PROTOCOL: str = "homie3"
HUB_OWNER_ID: str = "hub"
# drain cycles publishing at least this many messages are summarised at INFO
DRAIN_SUMMARY_THRESHOLD: int = 10

MQTT_HUB_MQTT_HOST: str = os.environ.get("MQTT_HUB_MQTT_HOST", "localhost")
_mqtt_port = os.environ.get("MQTT_HUB_MQTT_PORT", "1883")
try:
    _mqtt_port_value: int = int(_mqtt_port) if _mqtt_port else 1883
except ValueError:
    _mqtt_port_value = 1883
MQTT_HUB_MQTT_PORT: int = _mqtt_port_value
MQTT_HUB_MQTT_USER: str | None = os.environ.get("MQTT_HUB_MQTT_USER") or None
MQTT_HUB_MQTT_PASS: str | None = os.environ.get("MQTT_HUB_MQTT_PASS") or None
MQTT_HUB_CLIENT_ID: str = os.environ.get("MQTT_HUB_CLIENT_ID", "mqtt_hub")
MQTT_HUB_KEEPALIVE: int = int(os.environ.get("MQTT_HUB_KEEPALIVE", "60"))

# Delay between two publishes of a drain cycle, 0 disables throttling
_queue_delay = os.environ.get("MQTT_HUB_QUEUE_DELAY_MS", "0")
try:
    _queue_delay_value: int = max(0, int(_queue_delay)) if _queue_delay else 0
except ValueError:
    _queue_delay_value = 0
MQTT_HUB_QUEUE_DELAY_MS: int = _queue_delay_value

# Seconds to wait before reconnecting after the broker connection is lost, 0 disables
MQTT_HUB_RECONNECT_DELAY: int = int(os.environ.get("MQTT_HUB_RECONNECT_DELAY", "10"))
# Seconds stop() waits for an in-progress drain before publishing the last will
STOP_FLUSH_TIMEOUT: float = 5.0

MQTT_HUB_SETTINGS_FILE: str = os.environ.get("MQTT_HUB_SETTINGS_FILE", "~/.config/mqtt-hub/settings.yaml")

MQTT_HUB_DEBUG: bool = os.environ.get("MQTT_HUB_DEBUG", "0").casefold() in YES_ANSWER

# Logging Configuration
MQTT_HUB_LOG_FORMAT: str = os.environ.get("MQTT_HUB_LOG_FORMAT", "human")  # "json", "human", or "both"
MQTT_HUB_LOG_JSON_FILE: str | None = os.environ.get("MQTT_HUB_LOG_JSON_FILE") or None
MQTT_HUB_LOG_HUMAN_OUTPUT: str = os.environ.get("MQTT_HUB_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or path
