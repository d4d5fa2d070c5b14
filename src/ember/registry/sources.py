#!/usr/bin/env python3
"""sources.py

The Source Registry: what each covariate source is, where its rasters live,
how to search it in time, and which output columns it produces.

The registry is built once per run from sources.yaml and passed explicitly
into the extraction routine. Nothing here touches rasters except
check_bands(), which is an opt-in configuration-time check.

A source block looks like:

    temperature:
      kind: time-indexed
      path_glob: data/raw/modis_lst/*.tif
      date_pattern: '(\\d{4}_\\d{2}_\\d{2})'
      date_format: '%Y_%m_%d'
      window: {lead: {days: 1}, lag: {days: 1}}
      variables:
        lst:
          bands: [LST_Day_1km]
          scale_factor: 0.02
          unit: kelvin_to_celsius
          outputs: {mean: temperatureMean, min: Min_Temperature, max: Max_Temperature}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import pandas as pd
import rasterio

from ember.config import parse_offset
from ember.errors import SchemaMismatch
from ember.schema import SOURCE_COLUMNS, STATISTICS


STATIC = "static"
TIME_INDEXED = "time-indexed"
KINDS = (STATIC, TIME_INDEXED)

# derive name -> allowed band count (min, max)
DERIVES: Dict[Optional[str], Tuple[int, int]] = {
    None: (1, 1),
    "magnitude": (2, 4),
    "slope": (1, 1),
}
UNITS = (None, "kelvin_to_celsius")


# -----------------------------------------------------------------------------
# Descriptors
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Variable:
    """One covariate read from a source snapshot."""

    name: str
    bands: Tuple[str, ...]
    outputs: Tuple[Tuple[str, str], ...]  # (statistic, output column)
    derive: Optional[str] = None
    scale_factor: float = 1.0
    add_offset: float = 0.0
    unit: Optional[str] = None

    @property
    def statistics(self) -> Tuple[str, ...]:
        return tuple(stat for stat, _ in self.outputs)

    @property
    def output_fields(self) -> Tuple[str, ...]:
        return tuple(col for _, col in self.outputs)


@dataclass(frozen=True)
class TemporalOffset:
    lead: pd.DateOffset
    lag: pd.DateOffset


@dataclass(frozen=True)
class SourceDescriptor:
    name: str
    kind: str
    variables: Tuple[Variable, ...]
    path: Optional[str] = None
    path_glob: Optional[str] = None
    date_pattern: Optional[str] = None
    date_format: Optional[str] = None
    hours: Optional[Tuple[int, ...]] = None
    window: Optional[TemporalOffset] = None

    @property
    def is_static(self) -> bool:
        return self.kind == STATIC

    @property
    def bands(self) -> Tuple[str, ...]:
        seen: List[str] = []
        for v in self.variables:
            for b in v.bands:
                if b not in seen:
                    seen.append(b)
        return tuple(seen)

    @property
    def output_fields(self) -> Tuple[str, ...]:
        return tuple(col for v in self.variables for col in v.output_fields)


@dataclass(frozen=True)
class SourceRegistry:
    sources: Tuple[SourceDescriptor, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[SourceDescriptor]:
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)

    def get(self, name: str) -> SourceDescriptor:
        for s in self.sources:
            if s.name == name:
                return s
        raise KeyError(name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.sources)

    @property
    def output_fields(self) -> Tuple[str, ...]:
        return tuple(col for s in self.sources for col in s.output_fields)


# -----------------------------------------------------------------------------
# Loading
# -----------------------------------------------------------------------------

def _parse_variable(source_name: str, name: str, cfg: Any) -> Variable:
    if not isinstance(cfg, dict):
        raise SchemaMismatch(f"{source_name}.{name}: variable block must be a mapping")

    bands = cfg.get("bands")
    if isinstance(bands, str):
        bands = [bands]
    if not isinstance(bands, list) or not bands:
        raise SchemaMismatch(f"{source_name}.{name}: 'bands' must list at least one band")

    outputs = cfg.get("outputs")
    if not isinstance(outputs, dict) or not outputs:
        raise SchemaMismatch(f"{source_name}.{name}: 'outputs' must map statistics to columns")

    return Variable(
        name=name,
        bands=tuple(str(b) for b in bands),
        outputs=tuple((str(stat), str(col)) for stat, col in outputs.items()),
        derive=cfg.get("derive"),
        scale_factor=float(cfg.get("scale_factor", 1.0)),
        add_offset=float(cfg.get("add_offset", 0.0)),
        unit=cfg.get("unit"),
    )


def _parse_source(name: str, cfg: Any) -> SourceDescriptor:
    if not isinstance(cfg, dict):
        raise SchemaMismatch(f"{name}: bad config block")

    variables = cfg.get("variables")
    if not isinstance(variables, dict) or not variables:
        raise SchemaMismatch(f"{name}: 'variables' must be a non-empty mapping")

    window = None
    if cfg.get("window") is not None:
        w = cfg["window"]
        if not isinstance(w, dict) or "lead" not in w or "lag" not in w:
            raise SchemaMismatch(f"{name}: 'window' needs both 'lead' and 'lag'")
        try:
            window = TemporalOffset(lead=parse_offset(w["lead"]), lag=parse_offset(w["lag"]))
        except ValueError as e:
            raise SchemaMismatch(f"{name}: bad window: {e}") from e

    hours = cfg.get("hours")
    if hours is not None:
        if isinstance(hours, int):
            hours = [hours]
        try:
            hours = tuple(int(h) for h in hours)
        except (TypeError, ValueError) as e:
            raise SchemaMismatch(f"{name}: bad hours {cfg['hours']!r}: {e}") from e

    return SourceDescriptor(
        name=name,
        kind=str(cfg.get("kind", "")),
        variables=tuple(_parse_variable(name, vname, vcfg) for vname, vcfg in variables.items()),
        path=cfg.get("path"),
        path_glob=cfg.get("path_glob"),
        date_pattern=cfg.get("date_pattern"),
        date_format=cfg.get("date_format"),
        hours=hours,
        window=window,
    )


def registry_from_mapping(sources: Mapping[str, Any]) -> SourceRegistry:
    """Build a registry from the `sources:` mapping of sources.yaml."""
    return SourceRegistry(tuple(_parse_source(str(name), cfg) for name, cfg in sources.items()))


def load_registry(sources_yaml: Dict[str, Any]) -> SourceRegistry:
    """Build and validate the registry from a parsed sources.yaml."""
    sources = sources_yaml.get("sources")
    if not isinstance(sources, dict):
        raise SchemaMismatch("sources.yaml must contain top-level 'sources:' mapping")
    registry = registry_from_mapping(sources)
    validate_registry(registry)
    return registry


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

def _validate_source(s: SourceDescriptor) -> None:
    if s.kind not in KINDS:
        raise SchemaMismatch(f"{s.name}: kind must be one of {list(KINDS)}, got {s.kind!r}")

    if s.is_static:
        if s.window is not None:
            raise SchemaMismatch(f"{s.name}: static sources take no window")
        if s.hours is not None:
            raise SchemaMismatch(f"{s.name}: static sources take no hours filter")
        if not s.path:
            raise SchemaMismatch(f"{s.name}: static sources need 'path'")
    else:
        if s.window is None:
            raise SchemaMismatch(f"{s.name}: time-indexed sources need a window")
        if not (s.path_glob and s.date_pattern and s.date_format):
            raise SchemaMismatch(f"{s.name}: time-indexed sources need path_glob, date_pattern and date_format")
        if s.hours is not None and any(h < 0 or h > 23 for h in s.hours):
            raise SchemaMismatch(f"{s.name}: hours must be within 0..23")

    for v in s.variables:
        where = f"{s.name}.{v.name}"
        if v.derive not in DERIVES:
            raise SchemaMismatch(f"{where}: unknown derive {v.derive!r}")
        lo, hi = DERIVES[v.derive]
        if not lo <= len(v.bands) <= hi:
            raise SchemaMismatch(f"{where}: derive {v.derive!r} takes {lo}..{hi} band(s), got {len(v.bands)}")
        if v.unit not in UNITS:
            raise SchemaMismatch(f"{where}: unknown unit {v.unit!r}")
        for stat in v.statistics:
            if stat not in STATISTICS:
                raise SchemaMismatch(f"{where}: unknown statistic {stat!r}; use {list(STATISTICS)}")


def validate_registry(registry: SourceRegistry) -> None:
    """Fail fast on any configuration that could not fill the output schema."""
    if not len(registry):
        raise SchemaMismatch("registry has no sources")

    names = registry.names
    if len(set(names)) != len(names):
        raise SchemaMismatch(f"duplicate source names: {names}")

    for s in registry:
        _validate_source(s)

    fields = registry.output_fields
    dupes = sorted({f for f in fields if fields.count(f) > 1})
    if dupes:
        raise SchemaMismatch(f"output columns produced by more than one variable: {dupes}")

    missing = [c for c in SOURCE_COLUMNS if c not in fields]
    if missing:
        raise SchemaMismatch(f"no source produces column(s): {missing}")
    extra = [f for f in fields if f not in SOURCE_COLUMNS]
    if extra:
        raise SchemaMismatch(f"column(s) not in the output schema: {extra}")


def band_indexes(descriptions: Tuple[Optional[str], ...], bands: Tuple[str, ...]) -> Tuple[int, ...]:
    """Map band names to 1-based raster band indexes.

    Names are matched against the band descriptions. A single-band raster
    without a description serves its one band under any name.
    """
    if len(descriptions) == 1 and not descriptions[0]:
        return tuple(1 for _ in bands)
    idx = []
    for b in bands:
        if b not in descriptions:
            available = [d for d in descriptions if d]
            raise SchemaMismatch(f"band {b!r} not found; available: {available}")
        idx.append(descriptions.index(b) + 1)
    return tuple(idx)


def check_bands(registry: SourceRegistry, catalogs: Mapping[str, Any]) -> List[str]:
    """Open one raster per source and check every configured band exists.

    Sources whose catalog is empty are skipped and returned, so the caller can
    report them. Raises SchemaMismatch on the first missing band.
    """
    skipped: List[str] = []
    for s in registry:
        catalog = catalogs.get(s.name)
        if catalog is None or not len(catalog):
            skipped.append(s.name)
            continue
        path = catalog.snapshots[0].path
        with rasterio.open(path) as src:
            try:
                band_indexes(tuple(src.descriptions), s.bands)
            except SchemaMismatch as e:
                raise SchemaMismatch(f"{s.name} ({path}): {e}") from e
    return skipped
