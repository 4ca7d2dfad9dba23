from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .anchor_store import AnchorStore
from .config_manager import ConfigManager
from .locator import BeaconLocator
from .models import BeaconObservation


logger = logging.getLogger(__name__)


class MQTTDataProcessor:
    """
    网关上报格式（JSON）：
    {"advertisements": [{"data": "0215...", "rssi": -60, "company_id": 76}],
     "beacons": [{"uuid": "...", "major": 1, "minor": 2, "rssi": -60, "distance": 1.8}]}
    """

    def __init__(self, config_manager: ConfigManager, locator: Optional[BeaconLocator] = None):
        self.lock = threading.Lock()
        self.config_manager = config_manager
        self.client: Optional[mqtt.Client] = None
        self.current_topic: Optional[str] = None
        self.gateway_id = "default"
        self.anchor_store: Optional[AnchorStore] = None

        if locator is None:
            # 锚点与定位流水线
            self.anchor_store = AnchorStore(self.config_manager)
            anchors = self.anchor_store.load()
            locator = BeaconLocator(self.config_manager.get_locator_settings(), anchors)
        self.locator = locator
        self.locator.add_listener(self.on_beacons_updated)

    # ---------- Core processing ----------
    def ingest(self, payload: Dict[str, Any]) -> int:
        """把一条网关上报写入定位流水线，返回被接收的观测数"""
        accepted = 0
        for adv in payload.get("advertisements") or []:
            try:
                data = adv["data"]
                rssi = int(adv["rssi"])
            except (KeyError, TypeError, ValueError, OverflowError):
                logger.warning("广播字段缺失或非法: %s", adv)
                continue
            company_id = adv.get("company_id")
            if self.locator.push_advertisement(data, rssi, company_id=company_id) is not None:
                accepted += 1
        for beacon in payload.get("beacons") or []:
            if not isinstance(beacon, dict):
                logger.warning("测距数据格式非法: %s", beacon)
                continue
            if self.locator.push_ranged(beacon) is not None:
                accepted += 1
        return accepted

    def on_beacons_updated(self, observations: List[BeaconObservation]) -> None:
        """去抖后的批量回调：发布信标列表与当前定位结果"""
        if self.client is None:
            return
        mqtt_config = self.config_manager.get_mqtt_config()
        beacons_topic = mqtt_config.get("beacons_topic", "/beacon/{gatewayId}/beacons")
        self.client.publish(
            beacons_topic.format(gatewayId=self.gateway_id),
            json.dumps([o.to_dict() for o in observations]),
        )

        estimate = self.locator.estimate_position()
        if estimate is None:
            logger.debug("暂无定位结果，信标数: %d", len(observations))
            return
        logger.info(
            "定位成功: %s, 方法: %s, 锚点数: %d, 残差: %.3f, 质量: %s",
            ", ".join(f"{c:.2f}" for c in estimate.coordinates),
            estimate.method.value,
            estimate.anchors_used,
            estimate.residual,
            estimate.quality.value,
        )
        position_topic = mqtt_config.get("position_topic", "/beacon/{gatewayId}/position")
        self.client.publish(position_topic.format(gatewayId=self.gateway_id), json.dumps(estimate.to_dict()))

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect
        self.locator.start_scanning()
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], mqtt_config["port"], 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)
            self.locator.stop_scanning()

    def stop_mqtt_client(self):
        # 先停止扫描，避免断开后仍有批量通知
        self.locator.stop_scanning()
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT连接已断开")
            except Exception as e:
                logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info("成功连接到MQTT服务器")
            mqtt_config = self.config_manager.get_mqtt_config()
            topic = mqtt_config.get("downlink_topic", "/beacon/gateway/+")
            client.subscribe(topic)
            self.current_topic = topic
            logger.info("已订阅主题: %s", topic)
        else:
            logger.error("连接失败，返回码: %s", reason_code)

    def on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning("MQTT连接断开，返回码: %s", reason_code)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
            if not isinstance(payload, dict):
                logger.warning("消息格式非法: %s", payload)
                return
            with self.lock:
                self.gateway_id = msg.topic.rstrip("/").rsplit("/", 1)[-1] or "default"
                accepted = self.ingest(payload)
            if accepted == 0:
                logger.warning("消息解析无有效信标数据: %s", msg.topic)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("消息解码失败: %s", e)
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
