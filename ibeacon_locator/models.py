from __future__ import annotations

import math
import time
import uuid as uuid_lib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import InvalidConfiguration, MalformedAdvertisement


@dataclass(frozen=True)
class BeaconIdentity:
    """信标身份：(UUID, major, minor) 三元组"""

    uuid: str
    major: int
    minor: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "uuid", normalize_uuid(self.uuid))
        for name in ("major", "minor"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFF:
                raise InvalidConfiguration(f"{name} 必须是 0-65535 的整数，实际: {value!r}")

    @property
    def key(self) -> str:
        # 聚合器、平滑器、求解器统一使用该键
        return f"{self.uuid}-{self.major}-{self.minor}"

    def to_bytes(self) -> bytes:
        return uuid_lib.UUID(self.uuid).bytes + self.major.to_bytes(2, "big") + self.minor.to_bytes(2, "big")

    @classmethod
    def parse(cls, key: str) -> "BeaconIdentity":
        # UUID 自身带 4 个短横线，major/minor 在最后两段
        try:
            uuid_part, major, minor = key.rsplit("-", 2)
            return cls(uuid=uuid_part, major=int(major), minor=int(minor))
        except ValueError as e:
            raise InvalidConfiguration(f"非法信标键: {key!r}") from e

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class BeaconObservation:
    """单次信标观测"""

    identity: BeaconIdentity
    rssi: int
    tx_power: Optional[int] = None
    distance: Optional[float] = None  # 原始估算距离（米），无效时为 None
    timestamp: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return self.identity.key

    @property
    def has_distance(self) -> bool:
        return is_valid_distance(self.distance)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "uuid": self.identity.uuid,
            "major": self.identity.major,
            "minor": self.identity.minor,
            "rssi": self.rssi,
            "txPower": self.tx_power,
            "distance": self.distance,
        }
        return {k: v for k, v in d.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BeaconObservation":
        """由平台测距结果构造观测（绕过广播解码）"""
        try:
            identity = BeaconIdentity(
                uuid=str(data["uuid"]), major=int(data["major"]), minor=int(data["minor"])
            )
            rssi = int(data["rssi"])
            tx_power = data.get("txPower", data.get("tx_power"))
            tx_power = int(tx_power) if tx_power is not None else None
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedAdvertisement(f"信标数据字段缺失或非法: {data!r}") from e
        distance = data.get("distance")
        return cls(
            identity=identity,
            rssi=rssi,
            tx_power=tx_power,
            distance=float(distance) if is_valid_distance(distance) else None,
        )


@dataclass(frozen=True)
class AnchorBeacon:
    """位置已知的固定锚点信标，坐标单位为米"""

    identity: BeaconIdentity
    x: float
    y: float
    z: float = 0.0
    tx_power: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("x", "y", "z"):
            value = getattr(self, name)
            try:
                value = float(value)
            except (TypeError, ValueError) as e:
                raise InvalidConfiguration(f"锚点 {self.identity} 坐标 {name} 非数值: {value!r}") from e
            if not math.isfinite(value):
                raise InvalidConfiguration(f"锚点 {self.identity} 坐标 {name} 非有限值: {value!r}")
            object.__setattr__(self, name, value)

    @property
    def key(self) -> str:
        return self.identity.key

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


class PositionQuality(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SolveMethod(Enum):
    MULTILATERATION_3D = "multilateration_3d"
    MULTILATERATION_2D = "multilateration_2d"


@dataclass(frozen=True)
class PositionEstimate:
    """
    定位结果
    coordinates 为 (x, y) 或 (x, y, z)
    """

    coordinates: Tuple[float, ...]
    anchors_used: int
    residual: float
    quality: PositionQuality
    method: SolveMethod

    @property
    def dimensions(self) -> int:
        return len(self.coordinates)

    @property
    def x(self) -> float:
        return self.coordinates[0]

    @property
    def y(self) -> float:
        return self.coordinates[1]

    @property
    def z(self) -> Optional[float]:
        return self.coordinates[2] if self.dimensions == 3 else None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "anchorsUsed": self.anchors_used,
            "residual": self.residual,
            "quality": self.quality.value,
            "method": self.method.value,
        }
        return {k: v for k, v in d.items() if v is not None}


def normalize_uuid(value: Any) -> str:
    """统一为小写 8-4-4-4-12 格式"""
    try:
        return str(uuid_lib.UUID(str(value)))
    except ValueError as e:
        raise InvalidConfiguration(f"非法 UUID: {value!r}") from e


def is_valid_distance(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0
