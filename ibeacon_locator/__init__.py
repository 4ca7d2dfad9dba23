"""iBeacon Locator package.

This package provides:
- AdvertisementDecoder: iBeacon manufacturer-data decoding and RSSI ranging
- ObservationAggregator: latest-wins beacon snapshot with debounced batches
- DistanceSmoother: per-beacon EMA distance smoothing
- MultilaterationSolver: least-squares 3D/2D positioning with quality grading
- BeaconLocator: the assembled pipeline
- ConfigManager / AnchorStore: YAML configuration and CSV anchor tables
- MQTTDataProcessor: MQTT gateway ingestion
"""

from .aggregator import ObservationAggregator
from .anchor_store import AnchorStore
from .calculator import MultilaterationSolver
from .config_manager import ConfigManager, LocatorSettings
from .decoder import AdvertisementDecoder, encode_advertisement, rssi_to_distance
from .errors import (
    DegenerateGeometry,
    InsufficientAnchors,
    InvalidConfiguration,
    LocatorError,
    MalformedAdvertisement,
)
from .filters import DistanceSmoother
from .locator import BeaconLocator
from .models import (
    AnchorBeacon,
    BeaconIdentity,
    BeaconObservation,
    PositionEstimate,
    PositionQuality,
    SolveMethod,
)
from .mqtt_processor import MQTTDataProcessor

__all__ = [
    "AdvertisementDecoder",
    "AnchorBeacon",
    "AnchorStore",
    "BeaconIdentity",
    "BeaconLocator",
    "BeaconObservation",
    "ConfigManager",
    "DegenerateGeometry",
    "DistanceSmoother",
    "InsufficientAnchors",
    "InvalidConfiguration",
    "LocatorError",
    "LocatorSettings",
    "MQTTDataProcessor",
    "MalformedAdvertisement",
    "MultilaterationSolver",
    "ObservationAggregator",
    "PositionEstimate",
    "PositionQuality",
    "SolveMethod",
    "encode_advertisement",
    "rssi_to_distance",
]
