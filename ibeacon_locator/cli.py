from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading

from .anchor_store import AnchorStore
from .calculator import MultilaterationSolver
from .config_manager import ConfigManager
from .decoder import AdvertisementDecoder
from .errors import InvalidConfiguration, MalformedAdvertisement
from .models import BeaconIdentity, is_valid_distance
from .mqtt_processor import MQTTDataProcessor

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def run_mqtt(args):
    config = ConfigManager(args.config)
    processor = MQTTDataProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()
    return 0


def run_decode(args):
    config = ConfigManager(args.config)
    settings = config.get_locator_settings()
    decoder = AdvertisementDecoder(settings.path_loss_exponent, settings.tx_power)
    try:
        observation = decoder.decode(args.payload, args.rssi)
    except MalformedAdvertisement as e:
        print(f"无效广播: {e}", file=sys.stderr)
        return 1
    print(json.dumps(observation.to_dict(), ensure_ascii=False))
    return 0


def run_locate(args):
    """从 JSON 文件读取各信标距离（或 RSSI），按配置的锚点求解"""
    config = ConfigManager(args.config)
    settings = config.get_locator_settings()
    anchors = AnchorStore(config).load(args.anchors)
    decoder = AdvertisementDecoder(settings.path_loss_exponent, settings.tx_power)
    tx_powers = {a.key: a.tx_power for a in anchors}

    try:
        with open(args.ranges, "r", encoding="utf-8") as f:
            entries = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("无法读取距离文件 %s: %s", args.ranges, e)
        return 1
    if not isinstance(entries, list):
        logger.error("距离文件应为 JSON 列表: %s", args.ranges)
        return 1

    ranges = {}
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning("跳过非法距离条目: %s", entry)
            continue
        try:
            identity = BeaconIdentity(uuid=entry["uuid"], major=int(entry["major"]), minor=int(entry["minor"]))
            distance = entry.get("distance")
            if is_valid_distance(distance):
                distance = float(distance)
            elif entry.get("rssi") is not None:
                tx_power = tx_powers.get(identity.key)
                if tx_power is None and entry.get("txPower") is not None:
                    tx_power = float(entry["txPower"])
                distance = decoder.distance_for(float(entry["rssi"]), tx_power)
            else:
                distance = None
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("跳过非法距离条目 %s: %s", entry, e)
            continue
        if distance is not None:
            ranges[identity.key] = distance

    solver = MultilaterationSolver(settings.quality_high, settings.quality_medium)
    estimate = solver.solve(anchors, ranges)
    print(json.dumps(estimate.to_dict() if estimate else None, ensure_ascii=False))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ibeacon-locator", description="iBeacon Locator CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 IBEACON_LOCATOR_CONFIG")
    parser.add_argument("--verbose", "-v", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 网关监听")
    p_run.set_defaults(func=run_mqtt)

    p_decode = sub.add_parser("decode", help="解码 iBeacon 厂商数据（十六进制）")
    p_decode.add_argument("payload", help="厂商数据，如 0215e2c56db5...c5")
    p_decode.add_argument("--rssi", type=int, required=True, help="接收信号强度 (dBm)")
    p_decode.set_defaults(func=run_decode)

    p_locate = sub.add_parser("locate", help="由距离文件计算位置")
    p_locate.add_argument("ranges", help="JSON 列表: [{uuid, major, minor, distance|rssi}]")
    p_locate.add_argument("--anchors", default=None, help="锚点 CSV 路径，默认读取配置 paths.anchor_db")
    p_locate.set_defaults(func=run_locate)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        # 无子命令/无参数时默认启动服务
        if not hasattr(args, "func"):
            return run_mqtt(args)
        return args.func(args)
    except InvalidConfiguration as e:
        logger.error("配置错误: %s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
