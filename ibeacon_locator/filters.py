from __future__ import annotations

import math
import threading
from typing import Dict, Optional, Union

from .errors import InvalidConfiguration
from .models import BeaconIdentity, is_valid_distance

DEFAULT_EMA_ALPHA = 0.35


def _key(identity: Union[BeaconIdentity, str]) -> str:
    return identity.key if isinstance(identity, BeaconIdentity) else identity


class DistanceSmoother:
    """按信标身份维护距离的指数移动平均（EMA）"""

    def __init__(self, alpha: float = DEFAULT_EMA_ALPHA):
        if not isinstance(alpha, (int, float)) or not math.isfinite(alpha) or not 0 < alpha <= 1:
            raise InvalidConfiguration(f"EMA 平滑系数必须在 (0, 1] 内: {alpha!r}")
        self.alpha = float(alpha)
        self._estimates: Dict[str, float] = {}
        self._lock = threading.Lock()

    def smooth(self, identity: Union[BeaconIdentity, str], raw_distance: Optional[float]) -> Optional[float]:
        """
        首个有效样本直接作为初值返回；
        之后 new = alpha * raw + (1 - alpha) * prev。
        非有限或不大于 0 的输入原样返回，不更新状态。
        """
        if not is_valid_distance(raw_distance):
            return raw_distance
        raw = float(raw_distance)
        key = _key(identity)
        with self._lock:
            prev = self._estimates.get(key)
            value = raw if prev is None else self.alpha * raw + (1 - self.alpha) * prev
            self._estimates[key] = value
        return value

    def current(self, identity: Union[BeaconIdentity, str]) -> Optional[float]:
        with self._lock:
            return self._estimates.get(_key(identity))

    def reset(self, identity: Union[BeaconIdentity, str, None] = None) -> None:
        with self._lock:
            if identity is None:
                self._estimates.clear()
            else:
                self._estimates.pop(_key(identity), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._estimates)

    def __contains__(self, identity: object) -> bool:
        key = identity.key if isinstance(identity, BeaconIdentity) else identity
        with self._lock:
            return key in self._estimates
