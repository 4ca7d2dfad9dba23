from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import InvalidConfiguration
from .models import BeaconIdentity, BeaconObservation

logger = logging.getLogger(__name__)

BatchListener = Callable[[List[BeaconObservation]], None]
TimerFactory = Callable[[float, Callable[[], None]], Any]

DEFAULT_DEBOUNCE_MS = 500


class ObservationAggregator:
    """
    按信标身份保存最新观测（后到覆盖），并以固定窗口去抖批量通知。
    每个窗口内无论 record 多少次，只通知一次，内容为触发时刻的完整快照。
    """

    def __init__(
        self,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
        timer_factory: TimerFactory = threading.Timer,
    ):
        if not debounce_ms > 0:
            raise InvalidConfiguration(f"去抖窗口必须大于 0: {debounce_ms}")
        self.debounce_ms = debounce_ms
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._observations: Dict[str, BeaconObservation] = {}
        self._listeners: List[BatchListener] = []
        self._timer: Optional[Any] = None
        # 每次调度递增，用于丢弃已取消但仍在执行的触发
        self._generation = 0

    # ---- Listeners ----
    def add_listener(self, listener: BatchListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: BatchListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ---- Write ----
    def record(self, observation: BeaconObservation) -> None:
        with self._lock:
            self._observations[observation.key] = observation
            if self._timer is None:
                self._schedule()

    def _schedule(self) -> None:
        # 调用方需持有锁
        self._generation += 1
        generation = self._generation
        timer = self._timer_factory(self.debounce_ms / 1000.0, lambda: self._fire(generation))
        if hasattr(timer, "daemon"):
            timer.daemon = True
        self._timer = timer
        timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._timer is None:
                return
            self._timer = None
            snapshot = list(self._observations.values())
            listeners = list(self._listeners)

        logger.debug("批量通知 %d 个信标", len(snapshot))
        for listener in listeners:
            try:
                listener(list(snapshot))
            except Exception as e:
                logger.exception("信标批量回调出错: %s", e)

    # ---- Lifecycle ----
    def cancel(self) -> None:
        """取消待触发的通知，保留已有观测"""
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def reset(self) -> None:
        self.cancel()
        with self._lock:
            self._observations.clear()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    # ---- Read ----
    def snapshot(self) -> List[BeaconObservation]:
        with self._lock:
            return list(self._observations.values())

    def get(self, identity: Union[BeaconIdentity, str]) -> Optional[BeaconObservation]:
        key = identity.key if isinstance(identity, BeaconIdentity) else identity
        with self._lock:
            return self._observations.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observations)

    def __contains__(self, identity: object) -> bool:
        key = identity.key if isinstance(identity, BeaconIdentity) else identity
        with self._lock:
            return key in self._observations
