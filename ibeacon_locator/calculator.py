from __future__ import annotations

import logging
import math
from typing import Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .errors import DegenerateGeometry, InsufficientAnchors, InvalidConfiguration
from .models import (
    AnchorBeacon,
    PositionEstimate,
    PositionQuality,
    SolveMethod,
    is_valid_distance,
)

logger = logging.getLogger(__name__)

Pair = Tuple[AnchorBeacon, float]

DEFAULT_QUALITY_HIGH = 1.0
DEFAULT_QUALITY_MEDIUM = 4.0
DET_TOLERANCE_3D = 1e-9
DET_TOLERANCE_2D = 1e-12


class MultilaterationSolver:
    """基于锚点距离的最小二乘多边定位（三维，退化或锚点不足时回退二维）"""

    def __init__(
        self,
        high_threshold: float = DEFAULT_QUALITY_HIGH,
        medium_threshold: float = DEFAULT_QUALITY_MEDIUM,
        det_tolerance_3d: float = DET_TOLERANCE_3D,
        det_tolerance_2d: float = DET_TOLERANCE_2D,
    ):
        if not 0 < high_threshold <= medium_threshold or not math.isfinite(medium_threshold):
            raise InvalidConfiguration(
                f"质量阈值需满足 0 < high <= medium: high={high_threshold}, medium={medium_threshold}"
            )
        self.high_threshold = float(high_threshold)
        self.medium_threshold = float(medium_threshold)
        self.det_tolerance_3d = det_tolerance_3d
        self.det_tolerance_2d = det_tolerance_2d

    @staticmethod
    def usable_pairs(anchors: Iterable[AnchorBeacon], ranges: Mapping[str, float]) -> List[Pair]:
        """按锚点顺序匹配距离，无观测或距离无效的锚点不参与本次求解"""
        pairs: List[Pair] = []
        for anchor in anchors:
            distance = ranges.get(anchor.key)
            if not is_valid_distance(distance):
                continue
            if not all(math.isfinite(c) for c in anchor.position):
                continue
            pairs.append((anchor, float(distance)))
        return pairs

    def classify(self, residual: float) -> PositionQuality:
        if residual < self.high_threshold:
            return PositionQuality.HIGH
        if residual < self.medium_threshold:
            return PositionQuality.MEDIUM
        return PositionQuality.LOW

    def solve(
        self, anchors: Iterable[AnchorBeacon], ranges: Mapping[str, float]
    ) -> Optional[PositionEstimate]:
        """
        - >=4 个可用锚点：三维求解，法方程退化时回退二维
        - 3 个可用锚点：二维求解
        - 不足 3 个：返回 None
        """
        pairs = self.usable_pairs(anchors, ranges)
        if len(pairs) >= 4:
            try:
                return self.solve_3d(pairs)
            except DegenerateGeometry as e:
                logger.debug("三维求解退化，回退二维: %s", e)
        try:
            return self.solve_2d(pairs)
        except InsufficientAnchors as e:
            logger.debug("锚点不足，无法定位: %s", e)
        except DegenerateGeometry as e:
            logger.debug("二维求解退化: %s", e)
        return None

    def solve_3d(self, pairs: List[Pair]) -> PositionEstimate:
        if len(pairs) < 4:
            raise InsufficientAnchors(4, len(pairs))
        a, b = self._linearize(pairs, 3)
        ata = a.T @ a
        inv = self.invert_3x3(ata, self.det_tolerance_3d)
        solution = inv @ (a.T @ b)
        return self._estimate(pairs, solution, SolveMethod.MULTILATERATION_3D)

    def solve_2d(self, pairs: List[Pair]) -> PositionEstimate:
        if len(pairs) < 3:
            raise InsufficientAnchors(3, len(pairs))
        a, b = self._linearize(pairs, 2)
        ata = a.T @ a
        inv = self.invert_2x2(ata, self.det_tolerance_2d)
        solution = inv @ (a.T @ b)
        return self._estimate(pairs, solution, SolveMethod.MULTILATERATION_2D)

    @staticmethod
    def _linearize(pairs: List[Pair], dims: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        以第一个锚点为参考，逐个与其球面方程相减得到线性方程：
        2(x0 - xi)x + 2(y0 - yi)y + 2(z0 - zi)z
            = di^2 - d0^2 - (xi^2 - x0^2) - (yi^2 - y0^2) - (zi^2 - z0^2)
        """
        ref_anchor, d0 = pairs[0]
        p0 = np.array(ref_anchor.position[:dims], dtype=float)
        rows = []
        rhs = []
        # 右侧为两球面方程直接相减的结果，平方项符号为负
        for anchor, di in pairs[1:]:
            pi = np.array(anchor.position[:dims], dtype=float)
            rows.append(2.0 * (p0 - pi))
            rhs.append(di * di - d0 * d0 - float(np.sum(pi * pi - p0 * p0)))
        return np.array(rows, dtype=float), np.array(rhs, dtype=float)

    @staticmethod
    def invert_3x3(m: np.ndarray, tolerance: float = DET_TOLERANCE_3D) -> np.ndarray:
        """余子式展开求 3x3 逆矩阵"""
        (a, b, c), (d, e, f), (g, h, i) = m
        co_a = e * i - f * h
        co_b = -(d * i - f * g)
        co_c = d * h - e * g
        co_d = -(b * i - c * h)
        co_e = a * i - c * g
        co_f = -(a * h - b * g)
        co_g = b * f - c * e
        co_h = -(a * f - c * d)
        co_i = a * e - b * d
        det = a * co_a + b * co_b + c * co_c
        if not math.isfinite(det) or abs(det) < tolerance:
            raise DegenerateGeometry(det, tolerance)
        return np.array(
            [
                [co_a, co_d, co_g],
                [co_b, co_e, co_h],
                [co_c, co_f, co_i],
            ],
            dtype=float,
        ) / det

    @staticmethod
    def invert_2x2(m: np.ndarray, tolerance: float = DET_TOLERANCE_2D) -> np.ndarray:
        (a, b), (c, d) = m
        det = a * d - b * c
        if not math.isfinite(det) or abs(det) < tolerance:
            raise DegenerateGeometry(det, tolerance)
        return np.array([[d, -b], [-c, a]], dtype=float) / det

    def _estimate(self, pairs: List[Pair], solution: np.ndarray, method: SolveMethod) -> PositionEstimate:
        if not np.all(np.isfinite(solution)):
            raise DegenerateGeometry(float("nan"), 0.0)
        dims = len(solution)
        residual = 0.0
        for anchor, distance in pairs:
            estimated = float(np.linalg.norm(solution - np.array(anchor.position[:dims], dtype=float)))
            residual += (estimated - distance) ** 2
        return PositionEstimate(
            coordinates=tuple(float(v) for v in solution),
            anchors_used=len(pairs),
            residual=residual,
            quality=self.classify(residual),
            method=method,
        )
