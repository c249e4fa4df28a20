"""MQTT Hub: bridges a home-automation hub's device state to an MQTT broker."""

__version__ = "3.0.0"
