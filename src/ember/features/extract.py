#!/usr/bin/env python3
"""extract.py

Per-event covariate extraction.

For one event:
1. parse CONT_DATE and fetch the geometry by ID (MalformedEvent on failure)
2. for every source: resolve the window, locate a snapshot, aggregate it;
   a missing snapshot becomes sentinels for all of that source's columns
3. assemble the fixed 17-column record

Everything here is a plain function over immutable inputs, so an event can
be replayed on its own and events can run in any order or in parallel.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping

import pandas as pd
from shapely.geometry.base import BaseGeometry
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ember.config import ExtractionSettings
from ember.errors import SchemaMismatch, SourceUnavailable
from ember.events import Event, EventCollection, parse_timestamp
from ember.geo.aggregate import aggregate, sentinel_fields
from ember.geo.catalog import RasterCatalog, locate
from ember.geo.window import resolve_window
from ember.registry.sources import SourceDescriptor, SourceRegistry
from ember.schema import OUTPUT_COLUMNS

logger = logging.getLogger("ember.features.extract")

CREATION_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _retrying(settings: ExtractionSettings) -> Retrying:
    # Built per call: Retrying keeps per-run statistics.
    return Retrying(
        stop=stop_after_attempt(settings.retry_attempts),
        wait=wait_exponential(multiplier=settings.retry_wait_s, max=settings.retry_wait_max_s),
        retry=retry_if_exception_type(SourceUnavailable),
        reraise=True,
    )


# -----------------------------------------------------------------------------
# Null-safe per-source extraction
# -----------------------------------------------------------------------------

def extract_from_source(
    source: SourceDescriptor,
    catalog: RasterCatalog,
    timestamp: pd.Timestamp,
    geometry: BaseGeometry,
    settings: ExtractionSettings,
    event_id: Any = None,
) -> Dict[str, Any]:
    """All output columns of one source for one event.

    Never raises for missing coverage: no snapshot in the window, no valid
    pixel, or a catalog that stays unreachable after the retries all give
    the sentinel for every column of the source.
    """
    if source.is_static:
        snapshot = catalog.snapshots[0] if catalog.snapshots else None
    else:
        window = resolve_window(timestamp, source.window.lead, source.window.lag)
        snapshot = locate(catalog, window)

    if snapshot is None:
        logger.debug("[%s] event %s: no snapshot", source.name, event_id)
        return sentinel_fields(source.variables)

    try:
        return _retrying(settings)(
            aggregate,
            snapshot.path,
            geometry,
            source.variables,
            scale=settings.scale,
            gdal_env=settings.gdal_env(),
        )
    except SourceUnavailable as e:
        logger.warning(
            "[%s] event %s: unavailable after %d attempt(s), using sentinel: %s",
            source.name, event_id, settings.retry_attempts, e,
        )
        return sentinel_fields(source.variables)


# -----------------------------------------------------------------------------
# Record assembly
# -----------------------------------------------------------------------------

def assemble_record(
    event: Event,
    creation_date: pd.Timestamp,
    source_results: Iterable[Mapping[str, Any]],
    label: int,
) -> Mapping[str, Any]:
    """Merge event attributes, per-source results and the label.

    Returns a read-only mapping with exactly OUTPUT_COLUMNS, in order.
    """
    merged: Dict[str, Any] = {}
    for result in source_results:
        merged.update(result)

    merged["ID"] = event.id
    merged["creationDate"] = pd.Timestamp(creation_date).strftime(CREATION_DATE_FORMAT)
    merged.update(event.attributes)
    merged["fire"] = int(label)

    missing = [c for c in OUTPUT_COLUMNS if c not in merged]
    if missing:
        raise SchemaMismatch(f"record for event {event.id!r} lacks column(s) {missing}")
    return MappingProxyType({c: merged[c] for c in OUTPUT_COLUMNS})


def extract_event(
    event: Event,
    collection: EventCollection,
    registry: SourceRegistry,
    catalogs: Mapping[str, RasterCatalog],
    settings: ExtractionSettings,
    label: int,
) -> Mapping[str, Any]:
    """Full record for one event.

    Raises MalformedEvent when the timestamp cannot be parsed or the ID has
    no geometry in `collection`.
    """
    timestamp = parse_timestamp(event.timestamp, event.id)
    geometry = collection.geometry_for(event.id)

    results = [
        extract_from_source(source, catalogs[source.name], timestamp, geometry, settings, event_id=event.id)
        for source in registry
    ]
    return assemble_record(event, timestamp - settings.creation_lead, results, label)
