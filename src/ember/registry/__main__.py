#!/usr/bin/env python3
"""ember.registry

Source definition CLI for EMBER.

This is one of the EMBER subsystem CLIs:
- ember.registry → source definitions (this file)
- ember.features → per-event covariate extraction and export

ember.registry is the source of truth for what each covariate source is:
its kind (static or time-indexed), where its rasters live, the search
window around an event date, and which output columns it fills.

Responsibilities:
- List configured sources and their catalogs
- Validate sources.yaml against the fixed output schema before any batch runs
- Optionally open one raster per source to check band names

Examples:
  python -m ember.registry list
  python -m ember.registry validate --check-bands
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ember.config import (
    load_sources_yaml,
    DEFAULT_SOURCES_YAML,
)
from ember.errors import SchemaMismatch
from ember.utils.logging import configure_logging


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for ember.registry."""
    ap = argparse.ArgumentParser(
        prog="ember.registry",
        description="Source definitions for EMBER",
    )
    ap.add_argument(
        "--sources-yaml",
        type=Path,
        default=DEFAULT_SOURCES_YAML,
        help=f"Path to sources YAML (default: {DEFAULT_SOURCES_YAML})",
    )
    ap.add_argument("--log-level", default=None, help="Log level (default: $EMBER_LOG_LEVEL or info)")

    sub = ap.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list", help="List configured sources")
    ls.add_argument("--json", action="store_true", help="Emit JSON to stdout")

    val = sub.add_parser("validate", help="Validate sources.yaml against the output schema")
    val.add_argument(
        "--check-bands",
        action="store_true",
        help="Also open one raster per source and check the configured band names",
    )

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _describe(source) -> Dict[str, Any]:
    window = None
    if source.window is not None:
        window = {"lead": source.window.lead.kwds, "lag": source.window.lag.kwds}
    return {
        "source": source.name,
        "kind": source.kind,
        "location": source.path or source.path_glob,
        "window": window,
        "hours": list(source.hours) if source.hours else None,
        "bands": list(source.bands),
        "columns": list(source.output_fields),
    }


def _handle_list(args: argparse.Namespace) -> int:
    from ember.registry.sources import registry_from_mapping

    sources_yaml = load_sources_yaml(args.sources_yaml)
    registry = registry_from_mapping(sources_yaml["sources"])
    rows = [_describe(s) for s in registry]

    if args.json:
        print(json.dumps(rows, indent=2, default=str))
        return 0

    for r in rows:
        print(f"{r['source']} ({r['kind']})")
        print(f"  - location: {r['location']}")
        if r["window"]:
            print(f"  - window: -{r['window']['lead']} / +{r['window']['lag']}")
        if r["hours"]:
            print(f"  - hours: {r['hours']}")
        print(f"  - bands: {', '.join(r['bands'])}")
        print(f"  - columns: {', '.join(r['columns'])}")
    return 0


def _handle_validate(args: argparse.Namespace) -> int:
    from ember.registry.sources import check_bands, load_registry

    sources_yaml = load_sources_yaml(args.sources_yaml)
    try:
        registry = load_registry(sources_yaml)
    except SchemaMismatch as e:
        print(f"[INVALID] {e}")
        return 2
    print(f"[OK] {len(registry)} source(s) cover all {len(registry.output_fields)} source columns")

    if args.check_bands:
        from ember.geo.catalog import build_catalogs

        catalogs = build_catalogs(registry)
        try:
            skipped = check_bands(registry, catalogs)
        except SchemaMismatch as e:
            print(f"[INVALID] {e}")
            return 2
        for name in skipped:
            print(f"[MISSING] {name}: no rasters found, bands not checked")
        print(f"Bands: {'OK' if not skipped else 'PARTIAL'}")
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for ember.registry CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)
    configure_logging(args.log_level)

    handlers = {
        "list": _handle_list,
        "validate": _handle_validate,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
