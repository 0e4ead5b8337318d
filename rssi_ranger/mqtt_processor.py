from __future__ import annotations

import json
import logging
import threading
from typing import List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .config_manager import ConfigManager
from .models import DistanceReading, ScanBatch
from .pipeline import RangingPipeline


logger = logging.getLogger(__name__)


class MQTTRangingProcessor:
    def __init__(self, config_manager: ConfigManager, pipeline: Optional[RangingPipeline] = None):
        # 注册表与滤波器不加锁，所有周期在此互斥执行
        self.lock = threading.Lock()
        self.config_manager = config_manager
        self.pipeline = pipeline if pipeline is not None else self.config_manager.build_pipeline()
        self.client: Optional[mqtt.Client] = None

    # ---------- Core processing ----------
    def process_batch(self, batch: ScanBatch) -> List[DistanceReading]:
        with self.lock:
            readings = self.pipeline.process_cycle(batch)
        available = sum(1 for r in readings if r.available)
        logger.info(
            "扫描器 %s: 收到 %d 条读数，输出 %d 条，可用 %d 条",
            batch.scanner_id,
            len(batch),
            len(readings),
            available,
        )
        for line in self.pipeline.display_lines(readings):
            logger.debug("  %s", line)
        return readings

    @staticmethod
    def encode_readings(readings: List[DistanceReading]) -> str:
        return json.dumps([r.to_dict() for r in readings], ensure_ascii=False)

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        mqtt_config = self.config_manager.get_mqtt_config()
        try:
            self.client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)

    def stop_mqtt_client(self):
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT连接已断开")
            except OSError as e:
                logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("连接失败，返回码: %s", reason_code)
            return
        logger.info("成功连接到MQTT服务器")
        mqtt_config = self.config_manager.get_mqtt_config()
        topic = mqtt_config.get("downlink_topic", "/scanner/rssi/+")
        client.subscribe(topic)
        logger.info("已订阅主题: %s", topic)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("消息不是有效的 UTF-8 文本，主题: %s", msg.topic)
            return
        batch = ScanBatch.parse(payload)
        if batch is None or batch.is_empty:
            logger.warning("消息解析无有效读数: %s", payload)
            return
        try:
            readings = self.process_batch(batch)
            mqtt_config = self.config_manager.get_mqtt_config()
            topic = mqtt_config.get("uplink_topic", "/scanner/distance/{scannerId}")
            client.publish(topic.format(scannerId=batch.scanner_id), self.encode_readings(readings))
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
