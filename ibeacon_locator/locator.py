from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .aggregator import BatchListener, ObservationAggregator, TimerFactory
from .calculator import MultilaterationSolver
from .config_manager import LocatorSettings
from .decoder import AdvertisementDecoder, Payload
from .errors import MalformedAdvertisement
from .filters import DistanceSmoother
from .models import AnchorBeacon, BeaconObservation, PositionEstimate, normalize_uuid

logger = logging.getLogger(__name__)


class BeaconLocator:
    """
    信标定位流水线：
    广播解码 -> 观测聚合（去抖） -> 距离平滑 -> 多边定位
    由宿主程序创建并持有，不使用全局状态。
    """

    def __init__(
        self,
        settings: Optional[LocatorSettings] = None,
        anchors: Iterable[AnchorBeacon] = (),
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.settings = settings or LocatorSettings()
        self.decoder = AdvertisementDecoder(
            path_loss_exponent=self.settings.path_loss_exponent,
            default_tx_power=self.settings.tx_power,
        )
        self.aggregator = ObservationAggregator(
            debounce_ms=self.settings.debounce_ms, timer_factory=timer_factory
        )
        self.smoother = DistanceSmoother(alpha=self.settings.ema_alpha)
        self.solver = MultilaterationSolver(
            high_threshold=self.settings.quality_high,
            medium_threshold=self.settings.quality_medium,
        )
        self._anchors: Tuple[AnchorBeacon, ...] = ()
        self._anchor_index: Dict[str, AnchorBeacon] = {}
        self.set_anchors(anchors)

        self._scanning = False
        self._uuid_filter: frozenset = frozenset()
        self._state_lock = threading.Lock()
        self.aggregator.add_listener(self._on_batch)

    # ---------- Scan session ----------
    def start_scanning(self, uuids: Optional[Iterable[str]] = None) -> None:
        if uuids is None:
            uuids = self.settings.uuids
        uuid_filter = frozenset(normalize_uuid(u) for u in uuids)
        with self._state_lock:
            self._uuid_filter = uuid_filter
            self._scanning = True
        logger.info("开始接收信标数据，UUID 过滤: %s", sorted(uuid_filter) or "无")

    def stop_scanning(self) -> None:
        """停止接收并取消待触发的批量通知，保留最近观测"""
        with self._state_lock:
            self._scanning = False
        self.aggregator.cancel()
        logger.info("已停止接收信标数据")

    @property
    def is_scanning(self) -> bool:
        with self._state_lock:
            return self._scanning

    def reset(self) -> None:
        self.aggregator.reset()
        self.smoother.reset()

    # ---------- Input ----------
    def push_observation(self, observation: BeaconObservation) -> bool:
        with self._state_lock:
            scanning = self._scanning
            uuid_filter = self._uuid_filter
        if not scanning:
            logger.debug("未在扫描，丢弃观测: %s", observation.key)
            return False
        if uuid_filter and observation.identity.uuid not in uuid_filter:
            return False
        self.aggregator.record(observation)
        return True

    def push_advertisement(
        self, payload: Payload, rssi: int, company_id: Optional[int] = None
    ) -> Optional[BeaconObservation]:
        """原始厂商数据入口，无效广播直接丢弃"""
        observation = self.decoder.try_decode(payload, rssi, company_id=company_id)
        if observation is None or not self.push_observation(observation):
            return None
        return observation

    def push_ranged(
        self, beacon: Union[BeaconObservation, Mapping[str, Any]]
    ) -> Optional[BeaconObservation]:
        """平台已完成测距的信标（uuid/major/minor/rssi/distance），跳过解码"""
        if not isinstance(beacon, BeaconObservation):
            try:
                beacon = BeaconObservation.from_dict(beacon)
            except MalformedAdvertisement as e:
                logger.debug("丢弃无效测距数据: %s", e)
                return None
        if not self.push_observation(beacon):
            return None
        return beacon

    # ---------- Output ----------
    def add_listener(self, listener: BatchListener) -> None:
        self.aggregator.add_listener(listener)

    def remove_listener(self, listener: BatchListener) -> None:
        self.aggregator.remove_listener(listener)

    def get_last_seen(self) -> List[BeaconObservation]:
        return self.aggregator.snapshot()

    # ---------- Anchors ----------
    def set_anchors(self, anchors: Iterable[AnchorBeacon]) -> None:
        anchors = tuple(anchors)
        index = {anchor.key: anchor for anchor in anchors}
        self._anchors = anchors
        self._anchor_index = index
        logger.info("已设置 %d 个锚点", len(anchors))

    @property
    def anchors(self) -> Tuple[AnchorBeacon, ...]:
        return self._anchors

    # ---------- Ranging ----------
    def range_for(self, observation: BeaconObservation) -> Optional[float]:
        """
        观测对应的原始距离：
        1. 观测自带有效距离（解码或平台测距）时直接使用
        2. 否则按 锚点校准功率 > 观测校准功率 > 默认值 由 RSSI 估算
        """
        if observation.has_distance:
            return observation.distance
        anchor = self._anchor_index.get(observation.key)
        tx_power = observation.tx_power
        if anchor is not None and anchor.tx_power is not None:
            tx_power = anchor.tx_power
        return self.decoder.distance_for(observation.rssi, tx_power)

    def _on_batch(self, observations: List[BeaconObservation]) -> None:
        for observation in observations:
            self.smoother.smooth(observation.identity, self.range_for(observation))

    def current_ranges(self) -> Dict[str, float]:
        """当前快照中每个信标的平滑距离（尚无平滑状态时使用瞬时距离）"""
        ranges: Dict[str, float] = {}
        for observation in self.aggregator.snapshot():
            distance = self.smoother.current(observation.identity)
            if distance is None:
                distance = self.range_for(observation)
            if distance is not None:
                ranges[observation.key] = distance
        return ranges

    def estimate_position(self) -> Optional[PositionEstimate]:
        estimate = self.solver.solve(self._anchors, self.current_ranges())
        if estimate is None:
            logger.debug("可用锚点不足或几何退化，暂无定位结果")
        return estimate
