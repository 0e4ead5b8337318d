"""Tests for the MQTT processor handlers (no broker required)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

from rssi_ranger.config_manager import ConfigManager
from rssi_ranger.mqtt_processor import MQTTRangingProcessor


class FakeMessage:
    """Minimal stand-in for paho's MQTTMessage."""

    def __init__(self, payload: bytes, topic: str = "/scanner/rssi/scanner-1") -> None:
        self.payload = payload
        self.topic = topic


class TestHandlers:
    """on_connect / on_message behaviour."""

    def test_on_connect_subscribes(self, config: ConfigManager) -> None:
        processor = MQTTRangingProcessor(config)
        client = MagicMock()
        reason_code = MagicMock(is_failure=False)
        processor.on_connect(client, None, {}, reason_code, None)
        client.subscribe.assert_called_once_with("/scanner/rssi/+")

    def test_on_connect_failure(self, config: ConfigManager) -> None:
        processor = MQTTRangingProcessor(config)
        client = MagicMock()
        processor.on_connect(client, None, {}, MagicMock(is_failure=True), None)
        client.subscribe.assert_not_called()

    def test_on_message_publishes_readings(self, config: ConfigManager) -> None:
        processor = MQTTRangingProcessor(config)
        client = MagicMock()
        msg = FakeMessage(b"AA:BB:CC:DD:EE:01,-50,2412,office;AA:BB:CC:DD:EE:02,-90,2412;scanner-1")
        processor.on_message(client, None, msg)

        client.publish.assert_called_once()
        topic, payload = client.publish.call_args.args
        assert topic == "/scanner/distance/scanner-1"
        readings = json.loads(payload)
        assert [r["emitter_id"] for r in readings] == ["AA:BB:CC:DD:EE:01"]
        assert readings[0]["display_name"] == "office"
        assert readings[0]["status"] == "ok"
        assert readings[0]["distance"] > 0
        assert "AA:BB:CC:DD:EE:01" in processor.pipeline.registry

    def test_on_message_ignores_garbage(self, config: ConfigManager) -> None:
        processor = MQTTRangingProcessor(config)
        client = MagicMock()
        processor.on_message(client, None, FakeMessage(b"nonsense"))
        processor.on_message(client, None, FakeMessage(b"\xff\xfe"))
        client.publish.assert_not_called()

    def test_state_carries_across_messages(self, config: ConfigManager) -> None:
        processor = MQTTRangingProcessor(config)
        client = MagicMock()
        processor.on_message(client, None, FakeMessage(b"ap,-50,2412;scanner-1"))
        processor.on_message(client, None, FakeMessage(b"ap,-55,2412;scanner-1"))
        first = json.loads(client.publish.call_args_list[0].args[1])[0]
        second = json.loads(client.publish.call_args_list[1].args[1])[0]
        assert first["raw_distance"] < second["distance"] < second["raw_distance"]

    def test_stop_without_client(self, config: ConfigManager) -> None:
        MQTTRangingProcessor(config).stop_mqtt_client()
