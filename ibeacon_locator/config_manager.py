from __future__ import annotations

import copy
import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

import yaml

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


def _split_list(v: str) -> List[str]:
    return [item.strip() for item in v.split(",") if item.strip()]


DEFAULT_CONFIG_PATH = _env_or_default(
    "IBEACON_LOCATOR_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


@dataclass(frozen=True)
class LocatorSettings:
    """定位流水线参数（已校验）"""

    tx_power: int = -59
    path_loss_exponent: float = 2.0
    ema_alpha: float = 0.35
    debounce_ms: float = 500.0
    quality_high: float = 1.0
    quality_medium: float = 4.0
    uuids: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.tx_power, int) or not -128 <= self.tx_power <= 127:
            raise InvalidConfiguration(f"tx_power 必须是 -128..127 的整数: {self.tx_power!r}")
        if not math.isfinite(self.path_loss_exponent) or self.path_loss_exponent <= 0:
            raise InvalidConfiguration(f"路径损耗指数必须为正数: {self.path_loss_exponent!r}")
        if not math.isfinite(self.ema_alpha) or not 0 < self.ema_alpha <= 1:
            raise InvalidConfiguration(f"EMA 平滑系数必须在 (0, 1] 内: {self.ema_alpha!r}")
        if not math.isfinite(self.debounce_ms) or self.debounce_ms <= 0:
            raise InvalidConfiguration(f"去抖窗口必须大于 0: {self.debounce_ms!r}")
        if not 0 < self.quality_high <= self.quality_medium or not math.isfinite(self.quality_medium):
            raise InvalidConfiguration(
                f"质量阈值需满足 0 < high <= medium: {self.quality_high!r}, {self.quality_medium!r}"
            )


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("IBEACON_MQTT_IP", "localhost"),
                "port": _env_or_default("IBEACON_MQTT_PORT", 1883, int),
                "downlink_topic": _env_or_default("IBEACON_MQTT_DOWNLINK_TOPIC", "/beacon/gateway/+"),
                "beacons_topic": _env_or_default("IBEACON_MQTT_BEACONS_TOPIC", "/beacon/{gatewayId}/beacons"),
                "position_topic": _env_or_default("IBEACON_MQTT_POSITION_TOPIC", "/beacon/{gatewayId}/position"),
            },
            "rssi_model": {
                "tx_power": _env_or_default("IBEACON_RSSI_TX_POWER", -59, int),
                "path_loss_exponent": _env_or_default("IBEACON_RSSI_PATH_LOSS", 2.0, float),
            },
            "smoothing": {
                "alpha": _env_or_default("IBEACON_EMA_ALPHA", 0.35, float),
            },
            "aggregator": {
                "debounce_ms": _env_or_default("IBEACON_DEBOUNCE_MS", 500, float),
            },
            "solver": {
                "quality_high": _env_or_default("IBEACON_QUALITY_HIGH", 1.0, float),
                "quality_medium": _env_or_default("IBEACON_QUALITY_MEDIUM", 4.0, float),
            },
            "scan": {
                "uuids": _env_or_default("IBEACON_SCAN_UUIDS", [], _split_list),
            },
            "paths": {
                "anchor_db": _env_or_default(
                    "IBEACON_PATH_ANCHOR_DB", os.path.join(".", "anchors", "anchors.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            # 发生异常时回退到默认配置
            logger.warning("读取配置文件 %s 失败，使用默认配置: %s", self.config_file, e)
            self.config = copy.deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置文件 %s 失败: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_rssi_model_config(self):
        return self.config["rssi_model"]

    def get_smoothing_config(self):
        return self.config["smoothing"]

    def get_aggregator_config(self):
        return self.config["aggregator"]

    def get_solver_config(self):
        return self.config["solver"]

    def get_scan_config(self):
        return self.config["scan"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_anchor_db_path(self):
        return self.get_paths()["anchor_db"]

    def get_locator_settings(self) -> LocatorSettings:
        """汇总并校验定位参数，非法时抛出 InvalidConfiguration"""
        rssi = self.get_rssi_model_config()
        solver = self.get_solver_config()
        uuids = self.get_scan_config().get("uuids") or []
        if isinstance(uuids, str):
            uuids = _split_list(uuids)
        try:
            return LocatorSettings(
                tx_power=int(rssi["tx_power"]),
                path_loss_exponent=float(rssi["path_loss_exponent"]),
                ema_alpha=float(self.get_smoothing_config()["alpha"]),
                debounce_ms=float(self.get_aggregator_config()["debounce_ms"]),
                quality_high=float(solver["quality_high"]),
                quality_medium=float(solver["quality_medium"]),
                uuids=tuple(str(u) for u in uuids),
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, InvalidConfiguration):
                raise
            raise InvalidConfiguration(f"配置文件 {self.config_file} 参数非法: {e}") from e

    def set_mqtt_config(self, ip, port, downlink_topic=None, beacons_topic=None, position_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if downlink_topic is not None:
            self.config["mqtt"]["downlink_topic"] = downlink_topic
        if beacons_topic is not None:
            self.config["mqtt"]["beacons_topic"] = beacons_topic
        if position_topic is not None:
            self.config["mqtt"]["position_topic"] = position_topic
        self.save_config()

    def set_rssi_model_config(self, tx_power: int, path_loss_exponent: float):
        self.config["rssi_model"]["tx_power"] = tx_power
        self.config["rssi_model"]["path_loss_exponent"] = path_loss_exponent
        self.save_config()

    def set_smoothing_config(self, alpha: float):
        self.config["smoothing"]["alpha"] = alpha
        self.save_config()

    def set_solver_config(self, quality_high: float = 1.0, quality_medium: float = 4.0):
        self.config["solver"]["quality_high"] = quality_high
        self.config["solver"]["quality_medium"] = quality_medium
        self.save_config()
