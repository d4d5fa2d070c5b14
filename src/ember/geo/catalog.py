#!/usr/bin/env python3
"""catalog.py

Raster catalogs and the snapshot locator.

A catalog is the materialized list of dated rasters for one source, in
catalog order (acquisition time, then path). It is built once per run and
shared read-only by every event. Locating a snapshot is a pure filter over
that list: the first snapshot acquired inside the window wins, and an empty
result is a normal outcome, not an error.

Time-indexed catalogs are discovered from a glob plus a filename date:

    path_glob: data/raw/era5_land/*.tif
    date_pattern: '(\\d{8}T\\d{2})'      # one capture group
    date_format: '%Y%m%dT%H'            # strptime format of that group
"""

from __future__ import annotations

import glob
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import pandas as pd

from ember.geo.window import TimeWindow
from ember.registry.sources import SourceDescriptor, SourceRegistry

logger = logging.getLogger("ember.geo.catalog")


@dataclass(frozen=True)
class Snapshot:
    """One raster; acquired is None for static sources."""

    path: str
    acquired: Optional[pd.Timestamp] = None


@dataclass(frozen=True)
class RasterCatalog:
    source: str
    snapshots: Tuple[Snapshot, ...]
    hours: Optional[Tuple[int, ...]] = None

    def __len__(self) -> int:
        return len(self.snapshots)


def _parse_acquired(path: str, pattern: re.Pattern, date_format: str) -> Optional[pd.Timestamp]:
    m = pattern.search(path.replace("\\", "/").rsplit("/", 1)[-1])
    if not m:
        return None
    token = m.group(1) if m.groups() else m.group(0)
    try:
        return pd.Timestamp(pd.to_datetime(token, format=date_format))
    except (ValueError, TypeError):
        return None


def build_catalog(source: SourceDescriptor) -> RasterCatalog:
    """Materialize the snapshot list for one source."""
    if source.is_static:
        return RasterCatalog(source=source.name, snapshots=(Snapshot(path=str(source.path)),))

    pattern = re.compile(str(source.date_pattern))
    snapshots = []
    for path in sorted(glob.glob(str(source.path_glob))):
        acquired = _parse_acquired(path, pattern, str(source.date_format))
        if acquired is None:
            logger.warning("[%s] skipping %s: no date matching %s", source.name, path, source.date_pattern)
            continue
        snapshots.append(Snapshot(path=path, acquired=acquired))

    snapshots.sort(key=lambda s: (s.acquired, s.path))
    logger.info("[%s] catalog has %d snapshot(s)", source.name, len(snapshots))
    return RasterCatalog(source=source.name, snapshots=tuple(snapshots), hours=source.hours)


def build_catalogs(registry: SourceRegistry) -> Dict[str, RasterCatalog]:
    return {s.name: build_catalog(s) for s in registry}


def locate(catalog: RasterCatalog, window: TimeWindow) -> Optional[Snapshot]:
    """First snapshot acquired inside the window (and hour filter), else None."""
    for snap in catalog.snapshots:
        if snap.acquired is None or not window.contains(snap.acquired):
            continue
        if catalog.hours is not None and snap.acquired.hour not in catalog.hours:
            continue
        return snap
    return None
