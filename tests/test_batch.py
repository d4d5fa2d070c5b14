#!/usr/bin/env python3

from __future__ import annotations

from dataclasses import replace

import pandas as pd
import pytest
from shapely.geometry import Point, Polygon

from conftest import POLYGON_P
from ember.events import EventCollection
from ember.features.batch import run_batch
from ember.features.export import export_table, write_failures
from ember.schema import FIRE, NON_FIRE, OUTPUT_COLUMNS


def _rows(n):
    return [{"ID": f"E{i}", "CONT_DATE": "2020-07-04", "geometry": POLYGON_P} for i in range(n)]


def test_one_malformed_event_does_not_sink_the_batch(world, make_events):
    rows = _rows(4)
    rows[2]["CONT_DATE"] = "not a date"
    collection = EventCollection(make_events(rows), name="FireNew")

    result = run_batch(collection, FIRE, world.registry, world.catalogs, world.settings)

    assert [r["ID"] for r in result.records] == ["E0", "E1", "E3"]
    assert len(result.failures) == 1
    assert result.failures[0].event_id == "E2"
    assert "CONT_DATE" in result.failures[0].reason


def test_empty_geometry_is_isolated(world, make_events):
    rows = _rows(3)
    rows[0]["geometry"] = Polygon()
    collection = EventCollection(make_events(rows), name="FireNew")

    result = run_batch(collection, FIRE, world.registry, world.catalogs, world.settings)

    assert [r["ID"] for r in result.records] == ["E1", "E2"]
    assert [f.event_id for f in result.failures] == ["E0"]


def test_parallel_batch_keeps_input_order_and_matches_sequential(world, make_events):
    rows = _rows(6)
    rows[1]["geometry"] = Point(-119.955, 39.955)
    rows[4]["CONT_DATE"] = "2021-01-15"
    collection = EventCollection(make_events(rows), name="NonFireNew")

    seq = run_batch(collection, NON_FIRE, world.registry, world.catalogs, world.settings)
    par = run_batch(collection, NON_FIRE, world.registry, world.catalogs, replace(world.settings, workers=4))

    assert [r["ID"] for r in par.records] == [f"E{i}" for i in range(6)]
    assert [dict(r) for r in par.records] == [dict(r) for r in seq.records]
    assert all(r["fire"] == 0 for r in par.records)


def test_limit(world, make_events):
    collection = EventCollection(make_events(_rows(5)), name="FireNew")
    result = run_batch(collection, FIRE, world.registry, world.catalogs, world.settings, limit=2)
    assert len(result.records) == 2


def test_export_table_writes_fixed_columns_and_empty_sentinels(world, make_events, tmp_path):
    collection = EventCollection(make_events(_rows(2)), name="FireNew")
    result = run_batch(collection, FIRE, world.registry, world.catalogs, world.settings)

    out = export_table(result.records, tmp_path / "Fire", "Fire_Data_Corrected")
    assert out == tmp_path / "Fire" / "Fire_Data_Corrected.csv"

    header = out.read_text().splitlines()[0]
    assert header.split(",") == list(OUTPUT_COLUMNS)

    df = pd.read_csv(out, keep_default_na=False)
    assert len(df) == 2
    assert (df["population"] == "").all()
    assert df["temperatureMean"].astype(float).tolist() == pytest.approx([36.85, 36.85])
    assert df["fire"].tolist() == [1, 1]


def test_export_empty_batch_still_has_header(tmp_path):
    out = export_table([], tmp_path, "Non_Fire_Data_Corrected")
    assert out.read_text().strip().split(",") == list(OUTPUT_COLUMNS)


def test_write_failures(world, make_events, tmp_path):
    rows = _rows(2)
    rows[1]["CONT_DATE"] = ""
    collection = EventCollection(make_events(rows), name="FireNew")
    result = run_batch(collection, FIRE, world.registry, world.catalogs, world.settings)

    qa = pd.read_csv(write_failures(result.failures, tmp_path / "qa" / "failures.csv"))
    assert qa["ID"].tolist() == ["E1"]
    assert "missing CONT_DATE" in qa["reason"].iloc[0]
