"""
Unit tests for the command line entry point and process wiring.
"""

import asyncio
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mqtt_hub.app import run_hub
from mqtt_hub.main import load_env_file, main, parse_cli


class TestParseCli:
    """Tests for parse_cli"""

    def test_defaults(self):
        args = parse_cli([])

        assert args.debug is False
        assert args.env is None
        assert args.settings is None

    def test_options(self):
        args = parse_cli(["-D", "-s", "/tmp/settings.yaml", "--env", "/tmp/.env"])

        assert args.debug is True
        assert args.settings == Path("/tmp/settings.yaml")
        assert args.env == Path("/tmp/.env")


class TestLoadEnvFile:
    """Tests for load_env_file"""

    def test_missing_file(self, tmp_path):
        assert load_env_file(tmp_path / "missing.env") is False

    def test_loads_variables(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("MQTT_HUB_TEST_VALUE=42\n")
        monkeypatch.delenv("MQTT_HUB_TEST_VALUE", raising=False)

        assert load_env_file(env_file) is True

        assert os.environ["MQTT_HUB_TEST_VALUE"] == "42"
        monkeypatch.delenv("MQTT_HUB_TEST_VALUE")


class TestRunHub:
    """Tests for run_hub"""

    @pytest.mark.asyncio
    async def test_invalid_settings_exit_code(self, tmp_path):
        settings_file = tmp_path / "settings.yaml"
        settings_file.write_text("- not a mapping\n")

        assert await run_hub(settings_file, asyncio.Event()) == 1

    @pytest.mark.asyncio
    async def test_runs_until_stop_event(self, tmp_path):
        """Test that the hub is started and shut down around the stop event"""
        stop_event = asyncio.Event()
        stop_event.set()
        with (
            patch("mqtt_hub.app.MQTTClient") as mock_client_cls,
            patch("mqtt_hub.app.MQTTHub") as mock_hub_cls,
        ):
            hub = MagicMock()
            hub.start = AsyncMock(return_value=True)
            hub.shutdown = AsyncMock()
            mock_hub_cls.return_value = hub

            code = await run_hub(tmp_path / "settings.yaml", stop_event)

        assert code == 0
        hub.start.assert_awaited_once()
        hub.shutdown.assert_awaited_once()
        assert mock_client_cls.call_args.kwargs["will_topic"].endswith("/hub/status")

    @pytest.mark.asyncio
    async def test_stop_event_interrupts_start_retries(self, tmp_path):
        """Test that a pending retry ends when shutdown is requested"""
        stop_event = asyncio.Event()
        stop_event.set()
        with (
            patch("mqtt_hub.app.MQTTClient"),
            patch("mqtt_hub.app.MQTTHub") as mock_hub_cls,
            patch("mqtt_hub.app.MQTT_HUB_RECONNECT_DELAY", 5),
        ):
            hub = MagicMock()
            hub.start = AsyncMock(return_value=False)
            hub.shutdown = AsyncMock()
            mock_hub_cls.return_value = hub

            code = await run_hub(tmp_path / "settings.yaml", stop_event)

        assert code == 0
        hub.start.assert_awaited_once()
        hub.shutdown.assert_awaited_once()


class TestMain:
    """Tests for main"""

    def test_main_returns_run_hub_exit_code(self):
        with (
            patch("mqtt_hub.main.uvloop.run", return_value=0) as mock_run,
            patch("mqtt_hub.app.run_hub", new=MagicMock(return_value="coro")) as mock_run_hub,
        ):
            assert main(["-s", "/tmp/settings.yaml"]) == 0

        mock_run.assert_called_once_with("coro")
        mock_run_hub.assert_called_once_with(Path("/tmp/settings.yaml"))

    def test_env_file_is_applied_before_the_hub_runs(self, tmp_path, monkeypatch):
        """Test that --env values are in the environment when the hub is wired up"""
        env_file = tmp_path / ".env"
        env_file.write_text("MQTT_HUB_TEST_BROKER=broker.lan\n")
        monkeypatch.delenv("MQTT_HUB_TEST_BROKER", raising=False)
        seen = {}

        def fake_run_hub(settings_file):
            seen["broker"] = os.environ.get("MQTT_HUB_TEST_BROKER")
            return "coro"

        with (
            patch("mqtt_hub.main.uvloop.run", return_value=0),
            patch("mqtt_hub.app.run_hub", new=fake_run_hub),
        ):
            assert main(["--env", str(env_file)]) == 0

        assert seen["broker"] == "broker.lan"
        monkeypatch.delenv("MQTT_HUB_TEST_BROKER")

    def test_main_handles_keyboard_interrupt(self):
        with (
            patch("mqtt_hub.main.uvloop.run", side_effect=KeyboardInterrupt),
            patch("mqtt_hub.app.run_hub", new=MagicMock(return_value="coro")),
        ):
            assert main([]) == 0

    def test_main_reports_fatal_error(self):
        with (
            patch("mqtt_hub.main.uvloop.run", side_effect=RuntimeError("boom")),
            patch("mqtt_hub.app.run_hub", new=MagicMock(return_value="coro")),
        ):
            assert main([]) == 1
