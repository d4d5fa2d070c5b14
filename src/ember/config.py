#!/usr/bin/env python3
"""ember.config

Shared configuration utilities for the EMBER CLI subsystems.

This module provides common helpers used across ember.registry, ember.features, etc.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Durations in YAML are calendar offsets like `{days: 1}` or `{years: 3}`.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
import yaml


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    Config errors should fail fast.
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def load_sources_yaml(path: Path) -> Dict[str, Any]:
    """Load a sources YAML file.

    Expects structure like:
        sources:
          temperature:
            kind: time-indexed
            ...
        extraction:
          scale: 1000

    Raises ValueError if the top-level 'sources:' mapping is missing.
    """
    data = load_yaml(path)
    if not isinstance(data.get("sources"), dict):
        raise ValueError(f"{path} must have a top-level 'sources:' mapping.")
    return data


# -----------------------------------------------------------------------------
# Durations
# -----------------------------------------------------------------------------

_OFFSET_UNITS = ("years", "months", "weeks", "days", "hours")


def parse_offset(x: Any) -> pd.DateOffset:
    """Turn a YAML duration mapping like {days: 1} into a calendar offset.

    Only the units in _OFFSET_UNITS are accepted; values must be integers.
    """
    if not isinstance(x, dict) or not x:
        raise ValueError(f"Expected a duration mapping like {{days: 1}}, got {x!r}")
    unknown = set(x) - set(_OFFSET_UNITS)
    if unknown:
        raise ValueError(f"Unknown duration unit(s) {sorted(unknown)}; use {list(_OFFSET_UNITS)}")
    kwargs = {}
    for unit, value in x.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Duration {unit} must be an integer, got {value!r}")
        kwargs[unit] = value
    return pd.DateOffset(**kwargs)


# -----------------------------------------------------------------------------
# Extraction settings
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionSettings:
    """Run-wide knobs for the per-event extraction.

    scale is the nominal ground distance (metres) per sample for every
    spatial reduction. creation_lead defines creationDate as T - lead.
    """

    scale: float = 1000.0
    workers: int = 4
    creation_lead: pd.DateOffset = field(default_factory=lambda: pd.DateOffset(days=1))
    retry_attempts: int = 3
    retry_wait_s: float = 0.5
    retry_wait_max_s: float = 8.0
    io_timeout_s: int = 30

    def gdal_env(self) -> Dict[str, str]:
        """GDAL options applied around every raster read."""
        return {
            "GDAL_HTTP_TIMEOUT": str(int(self.io_timeout_s)),
            "GDAL_DISABLE_READDIR_ON_OPEN": "EMPTY_DIR",
        }


def settings_from_yaml(sources_yaml: Dict[str, Any], workers: Optional[int] = None) -> ExtractionSettings:
    """Build ExtractionSettings from the optional `extraction:` block.

    `workers` overrides the YAML value when given (CLI flag).
    """
    cfg = sources_yaml.get("extraction") or {}
    if not isinstance(cfg, dict):
        raise ValueError("'extraction:' must be a mapping")
    retry = cfg.get("retry") or {}
    io = cfg.get("io") or {}

    defaults = ExtractionSettings()
    creation_lead = defaults.creation_lead
    if cfg.get("creation_lead") is not None:
        creation_lead = parse_offset(cfg["creation_lead"])

    settings = ExtractionSettings(
        scale=float(cfg.get("scale", defaults.scale)),
        workers=int(workers if workers is not None else cfg.get("workers", defaults.workers)),
        creation_lead=creation_lead,
        retry_attempts=int(retry.get("attempts", defaults.retry_attempts)),
        retry_wait_s=float(retry.get("wait_s", defaults.retry_wait_s)),
        retry_wait_max_s=float(retry.get("wait_max_s", defaults.retry_wait_max_s)),
        io_timeout_s=int(io.get("timeout_s", defaults.io_timeout_s)),
    )
    if settings.scale <= 0:
        raise ValueError(f"extraction.scale must be positive, got {settings.scale}")
    if settings.retry_attempts < 1:
        raise ValueError(f"extraction.retry.attempts must be >= 1, got {settings.retry_attempts}")
    return settings


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------
# Centralized so all CLIs use the same defaults.

DEFAULT_SOURCES_YAML = Path("config/sources.yaml")
DEFAULT_OUT_DIR = Path("data/processed/Fire")
