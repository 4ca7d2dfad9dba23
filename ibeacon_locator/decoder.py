from __future__ import annotations

import logging
import math
from typing import Optional, Union

from .errors import InvalidConfiguration, MalformedAdvertisement
from .models import BeaconIdentity, BeaconObservation

logger = logging.getLogger(__name__)

# Apple 厂商 ID（小端为 4C 00），iBeacon 数据位于该厂商自定义数据中
APPLE_COMPANY_ID = 0x004C
IBEACON_TYPE = 0x02
IBEACON_LENGTH = 0x15
IBEACON_PAYLOAD_SIZE = 23

DEFAULT_TX_POWER = -59
DEFAULT_PATH_LOSS_EXPONENT = 2.0

Payload = Union[bytes, bytearray, memoryview, str]


def rssi_to_distance(
    rssi: float,
    tx_power: float = DEFAULT_TX_POWER,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> Optional[float]:
    """
    对数距离路径损耗模型，返回距离（米）
    d = 10 ^ ((TxPower - RSSI) / (10 * n))，TxPower 为 1 米处的 RSSI
    结果非有限或不大于 0 时返回 None
    """
    try:
        distance = math.pow(10, (tx_power - rssi) / (10.0 * path_loss_exponent))
    except (OverflowError, ZeroDivisionError):
        return None
    if not math.isfinite(distance) or distance <= 0:
        return None
    return distance


def _to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, str):
        try:
            return bytes.fromhex(payload.replace(":", "").replace(" ", ""))
        except ValueError as e:
            raise MalformedAdvertisement(f"非法十六进制数据: {payload!r}") from e
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    raise MalformedAdvertisement(f"不支持的数据类型: {type(payload).__name__}")


def _to_rssi(rssi: float) -> int:
    try:
        value = float(rssi)
    except (TypeError, ValueError) as e:
        raise MalformedAdvertisement(f"RSSI 非数值: {rssi!r}") from e
    if not math.isfinite(value):
        raise MalformedAdvertisement(f"RSSI 非有限值: {rssi!r}")
    return int(value)


def encode_advertisement(identity: BeaconIdentity, tx_power: int = DEFAULT_TX_POWER) -> bytes:
    """生成 23 字节 iBeacon 厂商数据（解码的逆过程）"""
    if not -128 <= tx_power <= 127:
        raise InvalidConfiguration(f"tx_power 超出有符号 8 位范围: {tx_power}")
    return (
        bytes([IBEACON_TYPE, IBEACON_LENGTH])
        + identity.to_bytes()
        + tx_power.to_bytes(1, "big", signed=True)
    )


class AdvertisementDecoder:
    """iBeacon 厂商数据解码器"""

    def __init__(
        self,
        path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        default_tx_power: int = DEFAULT_TX_POWER,
    ):
        if not math.isfinite(path_loss_exponent) or path_loss_exponent <= 0:
            raise InvalidConfiguration(f"路径损耗指数必须为正数: {path_loss_exponent}")
        self.path_loss_exponent = float(path_loss_exponent)
        self.default_tx_power = default_tx_power

    def distance_for(self, rssi: float, tx_power: Optional[float] = None) -> Optional[float]:
        if tx_power is None:
            tx_power = self.default_tx_power
        return rssi_to_distance(rssi, tx_power, self.path_loss_exponent)

    def decode(
        self,
        payload: Payload,
        rssi: int,
        company_id: Optional[int] = None,
        timestamp: Optional[float] = None,
    ) -> BeaconObservation:
        """
        解析厂商数据：
        - [0]=0x02, [1]=0x15 为 iBeacon 标识
        - [2:18] UUID，[18:20] major（大端），[20:22] minor（大端）
        - [22] 1 米处校准功率（有符号）
        """
        if company_id is not None and (isinstance(company_id, bool) or company_id != APPLE_COMPANY_ID):
            raise MalformedAdvertisement(f"厂商 ID 不是 Apple: {company_id!r}")
        rssi = _to_rssi(rssi)
        data = _to_bytes(payload)
        if len(data) < IBEACON_PAYLOAD_SIZE:
            raise MalformedAdvertisement(f"数据长度不足: {len(data)} < {IBEACON_PAYLOAD_SIZE}")
        if data[0] != IBEACON_TYPE or data[1] != IBEACON_LENGTH:
            raise MalformedAdvertisement(f"非 iBeacon 标识: {data[0]:02x}{data[1]:02x}")

        identity = BeaconIdentity(
            uuid=data[2:18].hex(),
            major=int.from_bytes(data[18:20], "big"),
            minor=int.from_bytes(data[20:22], "big"),
        )
        tx_power = int.from_bytes(data[22:23], "big", signed=True)
        kwargs = {} if timestamp is None else {"timestamp": timestamp}
        return BeaconObservation(
            identity=identity,
            rssi=rssi,
            tx_power=tx_power,
            distance=self.distance_for(rssi, tx_power),
            **kwargs,
        )

    def try_decode(
        self,
        payload: Payload,
        rssi: int,
        company_id: Optional[int] = None,
        timestamp: Optional[float] = None,
    ) -> Optional[BeaconObservation]:
        try:
            return self.decode(payload, rssi, company_id=company_id, timestamp=timestamp)
        except MalformedAdvertisement as e:
            logger.debug("丢弃无效广播: %s", e)
            return None
