#!/usr/bin/env python3

from __future__ import annotations

import pandas as pd

from ember.geo.catalog import RasterCatalog, Snapshot, build_catalog, locate
from ember.geo.window import TimeWindow
from ember.registry.sources import registry_from_mapping


def _window(start, end):
    return TimeWindow(pd.Timestamp(start), pd.Timestamp(end))


def _catalog(*dates, hours=None):
    snaps = tuple(Snapshot(path=f"img_{i}.tif", acquired=pd.Timestamp(d)) for i, d in enumerate(dates))
    return RasterCatalog(source="test", snapshots=snaps, hours=hours)


def test_locate_returns_first_match_in_catalog_order():
    cat = _catalog("2020-07-01", "2020-07-03", "2020-07-04")
    snap = locate(cat, _window("2020-07-03", "2020-07-05"))
    assert snap == cat.snapshots[1]


def test_locate_returns_none_without_match():
    cat = _catalog("2020-06-01", "2020-08-01")
    assert locate(cat, _window("2020-07-03", "2020-07-05")) is None
    assert locate(_catalog(), _window("2020-07-03", "2020-07-05")) is None


def test_locate_window_end_is_exclusive():
    cat = _catalog("2020-07-05")
    assert locate(cat, _window("2020-07-03", "2020-07-05")) is None
    assert locate(cat, _window("2020-07-05", "2020-07-06")) == cat.snapshots[0]


def test_locate_applies_hour_filter():
    cat = _catalog("2020-07-04 10:00", "2020-07-04 14:00", hours=(14,))
    snap = locate(cat, _window("2020-07-03", "2020-07-05"))
    assert snap.acquired == pd.Timestamp("2020-07-04 14:00")


def test_locate_is_repeatable():
    cat = _catalog("2020-07-04", "2020-07-04 12:00")
    w = _window("2020-07-03", "2020-07-05")
    assert locate(cat, w) == locate(cat, w)


def test_build_catalog_parses_dates_and_sorts(tmp_path):
    for name in ("LST_2020_07_05.tif", "LST_2020_07_03.tif", "LST_notes.tif"):
        (tmp_path / name).write_bytes(b"")

    registry = registry_from_mapping({
        "temperature": {
            "kind": "time-indexed",
            "path_glob": str(tmp_path / "LST_*.tif"),
            "date_pattern": r"(\d{4}_\d{2}_\d{2})",
            "date_format": "%Y_%m_%d",
            "window": {"lead": {"days": 1}, "lag": {"days": 1}},
            "variables": {"lst": {"bands": ["LST_Day_1km"], "outputs": {"mean": "temperatureMean"}}},
        }
    })
    cat = build_catalog(registry.get("temperature"))

    assert [s.acquired for s in cat.snapshots] == [pd.Timestamp("2020-07-03"), pd.Timestamp("2020-07-05")]
    assert all(s.path.endswith(".tif") and "notes" not in s.path for s in cat.snapshots)


def test_build_catalog_static_has_single_undated_snapshot():
    registry = registry_from_mapping({
        "dem": {
            "kind": "static",
            "path": "data/raw/nasadem/NASADEM_HGT.tif",
            "variables": {"elevation": {"bands": ["elevation"], "outputs": {"mean": "elevation"}}},
        }
    })
    cat = build_catalog(registry.get("dem"))
    assert cat.snapshots == (Snapshot(path="data/raw/nasadem/NASADEM_HGT.tif"),)
