from __future__ import annotations

import logging
import math
import os
from typing import Iterable, List, Optional, Union, cast

import pandas as pd

from .config_manager import ConfigManager
from .errors import InvalidConfiguration
from .models import AnchorBeacon, BeaconIdentity

logger = logging.getLogger(__name__)

COLUMNS = ["uuid", "major", "minor", "x", "y", "z", "tx_power"]

SAMPLE_UUID = "e2c56db5-dffb-48d2-b060-d0f5a71096e0"


class AnchorStore:
    """管理锚点信标的存储与访问（pandas + CSV）

    行顺序即求解器选取参考锚点的顺序，读写时均保持文件顺序，不排序。
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._df = pd.DataFrame(columns=COLUMNS[3:])
        self._df.index.name = "key"
        self._config = config_manager

    def _path(self, path: Optional[str]) -> str:
        if path:
            return path
        if self._config is None:
            raise InvalidConfiguration("未指定锚点文件路径")
        return self._config.get_anchor_db_path()

    # ---- Utils ----
    @staticmethod
    def _row_to_anchor(key: str, row: pd.Series) -> AnchorBeacon:
        tx_power = row.at["tx_power"]
        return AnchorBeacon(
            identity=BeaconIdentity.parse(str(key)),
            x=float(row.at["x"]),
            y=float(row.at["y"]),
            z=float(row.at["z"]),
            tx_power=None if pd.isna(tx_power) else int(tx_power),
        )

    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in ("uuid", "major", "minor", "x", "y") if col not in df.columns]
        if missing:
            raise InvalidConfiguration(f"锚点文件缺少列: {', '.join(missing)}")
        if "z" not in df.columns:
            df["z"] = 0.0
        if "tx_power" not in df.columns:
            df["tx_power"] = float("nan")
        for col in ("x", "y", "z", "tx_power"):
            df[col] = pd.to_numeric(df[col], errors="coerce")

        keys = []
        for i, row in df.iterrows():
            try:
                identity = BeaconIdentity(
                    uuid=str(row["uuid"]), major=int(row["major"]), minor=int(row["minor"])
                )
            except (TypeError, ValueError) as e:
                raise InvalidConfiguration(f"锚点第 {i} 行身份非法: {e}") from e
            for col in ("x", "y", "z"):
                if not math.isfinite(row[col]):
                    raise InvalidConfiguration(f"锚点 {identity} 坐标 {col} 非有限值")
            keys.append(identity.key)

        df = df.assign(key=keys)[["key", "x", "y", "z", "tx_power"]]
        df = df.drop_duplicates(subset=["key"], keep="last").set_index("key")
        df = df.astype({"x": "float64", "y": "float64", "z": "float64", "tx_power": "float64"})
        df.index.name = "key"
        return df

    def _to_csv_frame(self) -> pd.DataFrame:
        rows = []
        for anchor in self.all():
            rows.append(
                {
                    "uuid": anchor.identity.uuid,
                    "major": anchor.identity.major,
                    "minor": anchor.identity.minor,
                    "x": anchor.x,
                    "y": anchor.y,
                    "z": anchor.z,
                    "tx_power": anchor.tx_power,
                }
            )
        return pd.DataFrame(rows, columns=COLUMNS)

    # ---- Load/Save ----
    def load(self, anchor_file_path: Optional[str] = None) -> List[AnchorBeacon]:
        csv_path = self._path(anchor_file_path)
        if not os.path.exists(csv_path):
            logger.warning("锚点文件 %s 不存在，生成示例文件", csv_path)
            self._create_sample(csv_path)
            return self.all()
        try:
            df = pd.read_csv(csv_path, dtype={"uuid": str})
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise InvalidConfiguration(f"无法读取锚点文件 {csv_path}: {e}") from e
        self._df = self._normalize_df(df)
        logger.info("已加载 %d 个锚点: %s", len(self._df), csv_path)
        return self.all()

    def _create_sample(self, anchor_file_path: str) -> None:
        df = pd.DataFrame(
            [
                {"uuid": SAMPLE_UUID, "major": 1, "minor": 1, "x": 0.0, "y": 0.0, "z": 0.0},
                {"uuid": SAMPLE_UUID, "major": 1, "minor": 2, "x": 4.0, "y": 0.0, "z": 0.0},
                {"uuid": SAMPLE_UUID, "major": 1, "minor": 3, "x": 0.0, "y": 4.0, "z": 0.0},
                {"uuid": SAMPLE_UUID, "major": 1, "minor": 4, "x": 0.0, "y": 0.0, "z": 2.5},
            ]
        )
        self._df = self._normalize_df(df)
        self.save(anchor_file_path)

    def save(self, anchor_file_path: Optional[str] = None) -> None:
        csv_path = self._path(anchor_file_path)
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self._to_csv_frame().to_csv(csv_path, index=False, encoding="utf-8")

    # ---- CRUD ----
    def add(self, anchor: AnchorBeacon) -> None:
        # 新增或覆盖，已存在的锚点保持原有位置
        self._df.loc[anchor.key] = [
            anchor.x,
            anchor.y,
            anchor.z,
            float("nan") if anchor.tx_power is None else float(anchor.tx_power),
        ]

    def update(self, anchor: AnchorBeacon) -> bool:
        if anchor.key in self._df.index:
            self.add(anchor)
            return True
        return False

    def delete(self, identity: Union[BeaconIdentity, str]) -> bool:
        key = identity.key if isinstance(identity, BeaconIdentity) else identity
        if key in self._df.index:
            self._df = self._df.drop(index=key)
            return True
        return False

    def replace(self, anchors: Iterable[AnchorBeacon]) -> None:
        self._df = pd.DataFrame(columns=COLUMNS[3:])
        self._df.index.name = "key"
        for anchor in anchors:
            self.add(anchor)

    # ---- Accessors ----
    def has(self, identity: Union[BeaconIdentity, str]) -> bool:
        key = identity.key if isinstance(identity, BeaconIdentity) else identity
        return key in self._df.index

    def get(self, identity: Union[BeaconIdentity, str]) -> Optional[AnchorBeacon]:
        key = identity.key if isinstance(identity, BeaconIdentity) else identity
        if key not in self._df.index:
            return None
        return self._row_to_anchor(key, cast(pd.Series, self._df.loc[key]))

    def all(self) -> List[AnchorBeacon]:
        return [self._row_to_anchor(str(key), cast(pd.Series, row)) for key, row in self._df.iterrows()]

    def __len__(self) -> int:
        return len(self._df)
