"""Tests for the CSV-backed anchor store."""

from __future__ import annotations

import pytest

from ibeacon_locator.anchor_store import AnchorStore
from ibeacon_locator.config_manager import ConfigManager
from ibeacon_locator.errors import InvalidConfiguration
from ibeacon_locator.models import AnchorBeacon

UUID = "e2c56db5-dffb-48d2-b060-d0f5a71096e0"


@pytest.fixture
def csv_path(tmp_path):
    return tmp_path / "anchors.csv"


@pytest.fixture
def store():
    return AnchorStore()


def write_csv(path, body):
    path.write_text("uuid,major,minor,x,y,z,tx_power\n" + body, encoding="utf-8")


class TestLoad:
    def test_file_order_is_preserved(self, store, csv_path):
        write_csv(
            csv_path,
            f"{UUID},1,3,0,4,0,\n{UUID},1,1,0,0,0,-60\n{UUID},1,2,4,0,0,\n",
        )

        anchors = store.load(str(csv_path))

        assert [a.identity.minor for a in anchors] == [3, 1, 2]
        assert anchors[0].position == (0.0, 4.0, 0.0)
        assert anchors[0].tx_power is None
        assert anchors[1].tx_power == -60

    def test_optional_columns(self, store, csv_path):
        csv_path.write_text(f"uuid,major,minor,x,y\n{UUID},1,1,1.5,2.5\n", encoding="utf-8")

        anchor = store.load(str(csv_path))[0]

        assert anchor.z == 0.0
        assert anchor.tx_power is None

    def test_missing_file_creates_sample(self, tmp_path):
        path = tmp_path / "nested" / "anchors.csv"

        anchors = AnchorStore().load(str(path))

        assert path.exists()
        assert len(anchors) == 4
        assert anchors[0].position == (0.0, 0.0, 0.0)

    def test_path_from_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("IBEACON_PATH_ANCHOR_DB", str(tmp_path / "from_env.csv"))
        config = ConfigManager(str(tmp_path / "config.yaml"))

        AnchorStore(config).load()

        assert (tmp_path / "from_env.csv").exists()

    @pytest.mark.parametrize(
        "row",
        [
            f"{UUID},1,1,abc,0,0,",
            f"{UUID},1,1,,0,0,",
            "not-a-uuid,1,1,0,0,0,",
            f"{UUID},70000,1,0,0,0,",
        ],
    )
    def test_bad_rows(self, store, csv_path, row):
        write_csv(csv_path, row + "\n")
        with pytest.raises(InvalidConfiguration):
            store.load(str(csv_path))

    def test_missing_columns(self, store, csv_path):
        csv_path.write_text(f"uuid,x,y\n{UUID},0,0\n", encoding="utf-8")
        with pytest.raises(InvalidConfiguration):
            store.load(str(csv_path))

    def test_no_path(self, store):
        with pytest.raises(InvalidConfiguration):
            store.load()


class TestCrud:
    def test_add_update_delete(self, store, identity):
        store.add(AnchorBeacon(identity(1), 0.0, 0.0, 0.0))
        store.add(AnchorBeacon(identity(2), 1.0, 0.0, 0.0, tx_power=-61))

        assert store.update(AnchorBeacon(identity(1), 5.0, 5.0, 1.0))
        assert not store.update(AnchorBeacon(identity(9), 0.0, 0.0, 0.0))

        assert [a.identity.minor for a in store.all()] == [1, 2]
        assert store.get(identity(1)).position == (5.0, 5.0, 1.0)
        assert store.get(identity(2)).tx_power == -61
        assert store.has(identity(2).key)

        assert store.delete(identity(1))
        assert not store.delete(identity(1))
        assert store.get(identity(1)) is None
        assert len(store) == 1

    def test_replace(self, store, tetra_anchors):
        store.add(tetra_anchors[0])
        store.replace(tetra_anchors[1:])
        assert store.all() == tetra_anchors[1:]

    def test_save_and_reload(self, store, csv_path, tetra_anchors, identity):
        store.replace(tetra_anchors + [AnchorBeacon(identity(5), 1.0, 1.0, 1.0, tx_power=-70)])
        store.save(str(csv_path))

        reloaded = AnchorStore().load(str(csv_path))

        assert reloaded == store.all()
        assert reloaded[-1].tx_power == -70
