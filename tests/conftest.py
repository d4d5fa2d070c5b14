"""Pytest configuration and shared fixtures for the EMBER test suite.

Rasters are small north-up GeoTIFFs written into tmp_path. The default grid
is 10 x 10 pixels of 0.01 degrees with its top-left corner at (-120, 40),
so pixel (row r, col c) is centered on (-119.995 + 0.01 c, 39.995 - 0.01 r).
"""

from __future__ import annotations

import sys
from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin
from shapely.geometry import box

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from ember.config import ExtractionSettings  # noqa: E402
from ember.geo.catalog import build_catalogs  # noqa: E402
from ember.registry.sources import registry_from_mapping, validate_registry  # noqa: E402

WEST, NORTH, RES = -120.0, 40.0, 0.01

# Pixels rows 3..6 x cols 3..6 (16 pixel centers)
POLYGON_P = box(-119.97, 39.93, -119.93, 39.97)


def write_raster(path, bands, *, west=WEST, north=NORTH, res=RES, crs="EPSG:4326", nodata=None):
    """Write a GeoTIFF with one described band per (name, 2-D array) item."""
    names = list(bands)
    arrays = [np.asarray(bands[n], dtype="float32") for n in names]
    height, width = arrays[0].shape
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=len(arrays),
        dtype="float32",
        crs=crs,
        transform=from_origin(west, north, res, res),
        nodata=nodata,
    ) as dst:
        for i, (name, arr) in enumerate(zip(names, arrays), start=1):
            dst.write(arr, i)
            dst.set_band_description(i, name)
    return path


def full(value, shape=(10, 10)):
    return np.full(shape, value, dtype="float32")


def column_ramp(step=1.0, shape=(10, 10)):
    """Value = step * column index."""
    return np.tile(np.arange(shape[1], dtype="float32") * step, (shape[0], 1))


@pytest.fixture
def raster_writer():
    return write_raster


def sources_mapping(root: Path):
    """Full six-source layout (mirrors config/sources.yaml) rooted in `root`.

    LST is stored in Kelvin already (scale_factor 1.0).
    """
    return {
        "temperature": {
            "kind": "time-indexed",
            "path_glob": str(root / "lst" / "LST_*.tif"),
            "date_pattern": r"(\d{4}_\d{2}_\d{2})",
            "date_format": "%Y_%m_%d",
            "window": {"lead": {"days": 1}, "lag": {"days": 1}},
            "variables": {
                "lst": {
                    "bands": ["LST_Day_1km"],
                    "unit": "kelvin_to_celsius",
                    "outputs": {"mean": "temperatureMean", "min": "Min_Temperature", "max": "Max_Temperature"},
                }
            },
        },
        "ndvi": {
            "kind": "time-indexed",
            "path_glob": str(root / "ndvi" / "NDVI_*.tif"),
            "date_pattern": r"(\d{4}_\d{2}_\d{2})",
            "date_format": "%Y_%m_%d",
            "window": {"lead": {"days": 1}, "lag": {"days": 1}},
            "variables": {"ndvi": {"bands": ["NDVI"], "outputs": {"mean": "ndviMean"}}},
        },
        "dem": {
            "kind": "static",
            "path": str(root / "dem" / "dem.tif"),
            "variables": {
                "elevation": {"bands": ["elevation"], "outputs": {"mean": "elevation"}},
                "slope": {"bands": ["elevation"], "derive": "slope", "outputs": {"mean": "slope"}},
            },
        },
        "population": {
            "kind": "time-indexed",
            "path_glob": str(root / "gpw" / "gpw_*.tif"),
            "date_pattern": r"(\d{4})",
            "date_format": "%Y",
            "window": {"lead": {"years": 3}, "lag": {"years": 3}},
            "variables": {
                "population_density": {"bands": ["population_density"], "outputs": {"mean": "population"}}
            },
        },
        "era5": {
            "kind": "time-indexed",
            "path_glob": str(root / "era5" / "ERA5_*.tif"),
            "date_pattern": r"(\d{8}T\d{2})",
            "date_format": "%Y%m%dT%H",
            "hours": [14],
            "window": {"lead": {"days": 1}, "lag": {"days": 1}},
            "variables": {
                "windspeed": {
                    "bands": ["u_component_of_wind_10m", "v_component_of_wind_10m"],
                    "derive": "magnitude",
                    "outputs": {"mean": "windspeed"},
                },
                "evaporation": {"bands": ["total_evaporation_hourly"], "outputs": {"mean": "evaporation"}},
                "precipitation": {"bands": ["total_precipitation_hourly"], "outputs": {"mean": "precipitation"}},
            },
        },
    }


class World:
    """Rasters, registry and settings for end-to-end extraction tests."""

    def __init__(self, root: Path):
        self.root = root
        write_raster(root / "lst" / "LST_2020_07_04.tif", {"LST_Day_1km": full(310.0)})
        write_raster(root / "ndvi" / "NDVI_2020_07_04.tif", {"NDVI": full(0.5)})
        write_raster(root / "dem" / "dem.tif", {"elevation": column_ramp(10.0) + 500.0})
        # 2015 is outside [2017-07-04, 2023-07-04)
        write_raster(root / "gpw" / "gpw_2015.tif", {"population_density": full(42.0)})
        era5 = {
            "u_component_of_wind_10m": full(3.0),
            "v_component_of_wind_10m": full(4.0),
            "total_evaporation_hourly": full(-0.001),
            "total_precipitation_hourly": full(0.002),
        }
        write_raster(root / "era5" / "ERA5_20200704T14.tif", era5)
        # Same day, wrong hour: must be ignored
        write_raster(root / "era5" / "ERA5_20200704T10.tif", {k: full(99.0) for k in era5})

        self.settings = ExtractionSettings(workers=1, retry_attempts=2, retry_wait_s=0.0, retry_wait_max_s=0.0)
        self.reload()

    def reload(self):
        self.registry = registry_from_mapping(sources_mapping(self.root))
        validate_registry(self.registry)
        self.catalogs = build_catalogs(self.registry)

    def add_population(self, year, value):
        write_raster(self.root / "gpw" / f"gpw_{year}.tif", {"population_density": full(value)})
        self.reload()


@pytest.fixture
def world(tmp_path):
    return World(tmp_path / "rasters")


def events_frame(rows):
    """GeoDataFrame of events from dicts with ID, CONT_DATE and geometry."""
    records = []
    for r in rows:
        rec = {"Lat": 39.95, "Long": -119.95, "D_Road": 120.0, "D_Water": 450.0}
        rec.update(r)
        records.append(rec)
    return gpd.GeoDataFrame(records, geometry="geometry", crs="EPSG:4326")


@pytest.fixture
def make_events():
    return events_frame
