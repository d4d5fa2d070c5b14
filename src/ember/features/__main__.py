#!/usr/bin/env python3
"""ember.features

Covariate extraction CLI for EMBER.

This is one of the EMBER subsystem CLIs:
- ember.registry → source definitions (list, validate)
- ember.features → per-event covariate extraction and export (this file)

Given the fire and non-fire event collections, this:
1. Loads and validates the source registry from sources.yaml
2. Builds every source's raster catalog once
3. Extracts one record per event (fire=1 / fire=0)
4. Writes one CSV per collection with the fixed column order

Events that cannot be processed (unknown ID, bad CONT_DATE) are skipped,
logged, and optionally written to a failures CSV. Missing source coverage
never drops a row; it leaves an empty cell.

Examples:
  python -m ember.features extract \
    --fire data/raw/events/FireNew.gpkg \
    --non-fire data/raw/events/Non_FireNew.gpkg \
    --out-dir data/processed/Fire

  # Only look at what would run
  python -m ember.features extract --fire data/raw/events/FireNew.gpkg --dry-run
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from ember.config import (
    load_sources_yaml,
    settings_from_yaml,
    DEFAULT_OUT_DIR,
    DEFAULT_SOURCES_YAML,
)
from ember.errors import SchemaMismatch
from ember.schema import FIRE, NON_FIRE
from ember.utils.logging import configure_logging


DEFAULT_FIRE_DESCRIPTION = "Fire_Data_Corrected"
DEFAULT_NON_FIRE_DESCRIPTION = "Non_Fire_Data_Corrected"


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for ember.features."""
    ap = argparse.ArgumentParser(
        prog="ember.features",
        description="Per-event environmental covariate extraction for EMBER",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # --- Global args ---
    ap.add_argument(
        "--sources-yaml",
        type=Path,
        default=DEFAULT_SOURCES_YAML,
        help=f"Path to sources YAML (default: {DEFAULT_SOURCES_YAML})",
    )
    ap.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: $EMBER_LOG_LEVEL or info)",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without extracting or writing files",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    # --- extract ---
    ex = sub.add_parser(
        "extract",
        help="Extract covariates for fire and/or non-fire collections",
    )
    ex.add_argument("--fire", type=Path, default=None, help="Fire event collection (labelled fire=1)")
    ex.add_argument("--non-fire", type=Path, default=None, help="Non-fire event collection (labelled fire=0)")
    ex.add_argument("--layer", default=None, help="Layer name inside the collections (multi-layer formats)")
    ex.add_argument(
        "--out-dir",
        type=Path,
        default=DEFAULT_OUT_DIR,
        help=f"Output folder (default: {DEFAULT_OUT_DIR})",
    )
    ex.add_argument("--fire-description", default=DEFAULT_FIRE_DESCRIPTION, help="Fire table file name (no extension)")
    ex.add_argument(
        "--non-fire-description",
        default=DEFAULT_NON_FIRE_DESCRIPTION,
        help="Non-fire table file name (no extension)",
    )
    ex.add_argument("--workers", type=int, default=None, help="Worker threads (default from sources.yaml)")
    ex.add_argument("--limit", type=int, default=None, help="Debug: only process first N events per collection")
    ex.add_argument(
        "--failures-csv-dir",
        type=Path,
        default=None,
        help="Optional folder for <description>_failures.csv QA tables",
    )
    ex.add_argument(
        "--skip-band-check",
        action="store_true",
        help="Don't open one raster per source to check band names before extracting",
    )

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_extract(args: argparse.Namespace) -> int:
    """Handle the extract subcommand."""
    jobs = []
    if args.fire is not None:
        jobs.append((args.fire, FIRE, args.fire_description))
    if args.non_fire is not None:
        jobs.append((args.non_fire, NON_FIRE, args.non_fire_description))
    if not jobs:
        raise SystemExit("Nothing to do: pass --fire and/or --non-fire")

    sources_yaml = load_sources_yaml(args.sources_yaml)
    settings = settings_from_yaml(sources_yaml, workers=args.workers)

    # Lazy imports keep --help fast and avoid loading rasterio until needed
    from ember.registry.sources import check_bands, load_registry
    from ember.geo.catalog import build_catalogs

    try:
        registry = load_registry(sources_yaml)
    except SchemaMismatch as e:
        raise SystemExit(f"Invalid source configuration: {e}") from e

    if args.dry_run:
        print("[dry-run] Would extract covariates:")
        print(f"  Sources: {', '.join(registry.names)}")
        print(f"  Scale: {settings.scale:g} m, workers: {settings.workers}")
        for path, label, description in jobs:
            print(f"  {path} (fire={label}) -> {args.out_dir / (description + '.csv')}")
        return 0

    catalogs = build_catalogs(registry)
    for name, catalog in catalogs.items():
        print(f"[CATALOG] {name}: {len(catalog)} snapshot(s)")

    if not args.skip_band_check:
        try:
            skipped = check_bands(registry, catalogs)
        except SchemaMismatch as e:
            raise SystemExit(f"Band check failed: {e}") from e
        for name in skipped:
            print(f"  - warning: {name} has no rasters; its columns will be empty")

    from ember.events import load_event_collection
    from ember.features.batch import run_batch
    from ember.features.export import export_table, write_failures

    n_failed = 0
    for path, label, description in jobs:
        collection = load_event_collection(path, layer=args.layer)
        print(f"[EXTRACT] {collection.name}: {len(collection)} event(s), fire={label}")

        result = run_batch(collection, label, registry, catalogs, settings, limit=args.limit)
        out_path = export_table(result.records, args.out_dir, description)
        print(f"Wrote {len(result.records)} record(s) -> {out_path}")

        if result.failures:
            n_failed += len(result.failures)
            print(f"  - {len(result.failures)} event(s) skipped")
            if args.failures_csv_dir is not None:
                qa_path = write_failures(result.failures, args.failures_csv_dir / f"{description}_failures.csv")
                print(f"  - failures -> {qa_path}")

    return 0 if n_failed == 0 else 2


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for ember.features CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)
    configure_logging(args.log_level)

    handlers = {
        "extract": _handle_extract,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
