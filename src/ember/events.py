#!/usr/bin/env python3
"""ember.events

Fire / non-fire event collections.

An Event is the lightweight record the extraction routine iterates over: ID,
raw CONT_DATE and the precomputed attributes. Geometry is not
carried; it is fetched by ID from the backing collection each time it is
needed, so the geometry used is always the one stored in the collection.

Input collections are anything geopandas reads (GeoPackage, shapefile,
GeoJSON) with at least the columns ID, CONT_DATE, Lat, Long, D_Road, D_Water.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry.base import BaseGeometry

from ember.errors import MalformedEvent
from ember.schema import ATTRIBUTE_FIELDS, REQUIRED_EVENT_FIELDS

EVENT_CRS = "EPSG:4326"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _as_scalar(x: Any) -> Any:
    """Numpy scalars -> Python scalars, NaN/None -> None."""
    if x is None:
        return None
    if isinstance(x, np.generic):
        x = x.item()
    if isinstance(x, float) and math.isnan(x):
        return None
    return x


def parse_timestamp(value: Any, event_id: Any = None) -> pd.Timestamp:
    """Parse CONT_DATE into a naive (UTC) timestamp.

    Accepts datetimes/dates, ISO-like strings, and epoch milliseconds (the
    form catalog exports write dates in). Raises MalformedEvent otherwise.
    """
    value = _as_scalar(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedEvent(event_id, "missing CONT_DATE")
    try:
        if isinstance(value, bool):
            raise ValueError("boolean date")
        if isinstance(value, (int, float)):
            ts = pd.to_datetime(value, unit="ms")
        elif isinstance(value, (datetime, date, pd.Timestamp)):
            ts = pd.Timestamp(value)
        else:
            ts = pd.Timestamp(str(value).strip())
    except (ValueError, TypeError, OverflowError) as e:
        raise MalformedEvent(event_id, f"unparsable CONT_DATE {value!r}: {e}") from e

    if pd.isna(ts):
        raise MalformedEvent(event_id, f"unparsable CONT_DATE {value!r}")
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


# -----------------------------------------------------------------------------
# Types
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    id: Any
    timestamp: Any
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))


class EventCollection:
    """Read-only view over an event GeoDataFrame."""

    def __init__(self, gdf: gpd.GeoDataFrame, name: str = "events"):
        missing = [c for c in REQUIRED_EVENT_FIELDS if c not in gdf.columns]
        if missing:
            raise ValueError(f"{name}: missing required column(s) {missing}")
        self.name = name
        self._gdf = gdf

    def __len__(self) -> int:
        return len(self._gdf)

    def events(self, limit: Optional[int] = None) -> Iterator[Event]:
        rows = self._gdf if limit is None else self._gdf.head(int(limit))
        for _, row in rows.iterrows():
            yield Event(
                id=_as_scalar(row["ID"]),
                timestamp=row["CONT_DATE"],
                attributes={out: _as_scalar(row[src]) for out, src in ATTRIBUTE_FIELDS.items()},
            )

    def geometry_for(self, event_id: Any) -> BaseGeometry:
        """First geometry in the collection whose ID equals event_id."""
        matches = self._gdf[self._gdf["ID"] == event_id]
        if matches.empty:
            raise MalformedEvent(event_id, f"ID not found in {self.name}")
        geom = matches.geometry.iloc[0]
        if geom is None or geom.is_empty:
            raise MalformedEvent(event_id, "geometry is missing or empty")
        return geom


# -----------------------------------------------------------------------------
# Loading
# -----------------------------------------------------------------------------

def load_event_collection(path: Path, layer: Optional[str] = None, name: Optional[str] = None) -> EventCollection:
    """Read an event collection from disk and normalize it to EPSG:4326."""
    if not path.exists():
        raise SystemExit(f"Event collection not found: {path}")

    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    if gdf.empty:
        raise SystemExit(f"Loaded {path} but it contains zero features. Wrong file?")

    if gdf.crs is None:
        gdf = gdf.set_crs(EVENT_CRS)
    elif gdf.crs.to_string() != EVENT_CRS:
        gdf = gdf.to_crs(EVENT_CRS)

    keep = [c for c in REQUIRED_EVENT_FIELDS if c in gdf.columns] + [gdf.geometry.name]
    return EventCollection(gdf[keep].copy(), name=name or path.stem)
