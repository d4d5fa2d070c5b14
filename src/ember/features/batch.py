#!/usr/bin/env python3
"""batch.py

Run the per-event extraction over a whole collection.

Events are independent: no shared mutable state, no ordering dependency.
They run on a thread pool (sequentially at workers <= 1) and every event's
failure is caught on its own, logged with the event id and reason, and
reported in BatchResult.failures. Records come back in input order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple

from ember.config import ExtractionSettings
from ember.errors import MalformedEvent
from ember.events import Event, EventCollection
from ember.features.extract import extract_event
from ember.geo.catalog import RasterCatalog
from ember.registry.sources import SourceRegistry

logger = logging.getLogger("ember.features.batch")


@dataclass(frozen=True)
class EventFailure:
    event_id: Any
    reason: str


@dataclass
class BatchResult:
    records: List[Mapping[str, Any]] = field(default_factory=list)
    failures: List[EventFailure] = field(default_factory=list)


def run_batch(
    collection: EventCollection,
    label: int,
    registry: SourceRegistry,
    catalogs: Mapping[str, RasterCatalog],
    settings: Optional[ExtractionSettings] = None,
    limit: Optional[int] = None,
) -> BatchResult:
    """Extract one record per event of `collection`, labelled `label`."""
    settings = settings or ExtractionSettings()
    events = list(collection.events(limit=limit))

    def _one(event: Event) -> Tuple[Optional[Mapping[str, Any]], Optional[EventFailure]]:
        try:
            return extract_event(event, collection, registry, catalogs, settings, label), None
        except MalformedEvent as e:
            logger.warning("[%s] skipping event %s: %s", collection.name, event.id, e.reason)
            return None, EventFailure(event.id, e.reason)
        except Exception as e:
            logger.exception("[%s] event %s failed", collection.name, event.id)
            return None, EventFailure(event.id, f"{type(e).__name__}: {e}")

    if settings.workers <= 1:
        outcomes = [_one(ev) for ev in events]
    else:
        with ThreadPoolExecutor(max_workers=settings.workers) as pool:
            outcomes = list(pool.map(_one, events))

    result = BatchResult()
    for record, failure in outcomes:
        if record is not None:
            result.records.append(record)
        if failure is not None:
            result.failures.append(failure)

    logger.info(
        "[%s] %d record(s), %d failure(s) out of %d event(s)",
        collection.name, len(result.records), len(result.failures), len(events),
    )
    return result
