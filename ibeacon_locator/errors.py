from __future__ import annotations


class LocatorError(Exception):
    """定位流水线异常基类"""


class MalformedAdvertisement(LocatorError):
    """广播数据不符合 iBeacon 格式，调用方丢弃即可"""


class InsufficientAnchors(LocatorError):
    """可用锚点不足，无法求解"""

    def __init__(self, required: int, available: int):
        super().__init__(f"需要至少 {required} 个可用锚点，实际 {available} 个")
        self.required = required
        self.available = available


class DegenerateGeometry(LocatorError):
    """法方程矩阵接近奇异（锚点共面/共线等）"""

    def __init__(self, determinant: float, tolerance: float):
        super().__init__(f"法方程行列式 {determinant:.3e} 低于阈值 {tolerance:.0e}")
        self.determinant = determinant
        self.tolerance = tolerance


class InvalidConfiguration(LocatorError, ValueError):
    """配置非法（平滑系数越界、锚点坐标非有限值等）"""
