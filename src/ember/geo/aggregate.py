#!/usr/bin/env python3
"""aggregate.py

Reduce one raster snapshot over an event geometry.

For every requested variable this reads the configured band(s) in a window
around the geometry at native resolution, evaluates the variable pixel-wise
(plain band, vector magnitude, or terrain slope), applies the linear rescale
and unit transform, and computes mean/min/max over the valid samples inside
the geometry.

Scale handling:
- Rasters whose native pixel is finer than `scale` are sampled on a coarser
  grid of square blocks of native pixels, aligned to the raster origin. A
  block's sample is the mean of its evaluated pixels, so derived expressions
  (slope, magnitude) always see native pixels.
- A block takes part when any of its native pixels is selected by the
  geometry.
- Geographic pixel sizes are converted at METRES_PER_DEGREE.

Pixel selection follows the usual zonal-stats convention: polygon pixels whose
centers fall inside, every touched pixel for points and lines.

When no valid pixel falls inside the geometry every statistic is the
sentinel, the same as when no snapshot exists.

Required deps: rasterio, numpy, shapely
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from rasterio.warp import transform_geom
from rasterio.windows import Window
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from ember.errors import SourceUnavailable
from ember.registry.sources import Variable, band_indexes
from ember.schema import SENTINEL

METRES_PER_DEGREE = 111_320.0
GEOMETRY_CRS = "EPSG:4326"
KELVIN_OFFSET = 273.15


# -----------------------------------------------------------------------------
# Pixel geometry helpers
# -----------------------------------------------------------------------------

def _pixel_size_m(src, transform: Affine, lat: float) -> Tuple[float, float]:
    """(x, y) pixel size in metres for the given transform."""
    xres, yres = abs(transform.a), abs(transform.e)
    if src.crs is not None and src.crs.is_geographic:
        return (
            xres * METRES_PER_DEGREE * math.cos(math.radians(lat)),
            yres * METRES_PER_DEGREE,
        )
    return xres, yres


def _block_size(src, scale: float) -> int:
    """Native pixels per block side so that one sample is about `scale` metres."""
    yres = abs(src.transform.e)
    if src.crs is not None and src.crs.is_geographic:
        yres *= METRES_PER_DEGREE
    if yres <= 0:
        return 1
    return max(1, int(round(scale / yres)))


def _window_for(src, bounds: Tuple[float, float, float, float], pad: int = 1, block: int = 1) -> Optional[Window]:
    """Pixel window covering bounds plus `pad` pixels, clipped to the raster.

    The window is widened to whole blocks of `block` pixels. Returns None
    when the bounds fall entirely outside the raster.
    """
    left, bottom, right, top = bounds
    inv = ~src.transform
    corners = [inv @ (x, y) for x, y in ((left, top), (right, top), (left, bottom), (right, bottom))]
    cols = [c for c, _ in corners]
    rows = [r for _, r in corners]

    col0 = max(int(math.floor(min(cols))) - pad, 0)
    row0 = max(int(math.floor(min(rows))) - pad, 0)
    col1 = min(int(math.ceil(max(cols))) + pad, src.width)
    row1 = min(int(math.ceil(max(rows))) + pad, src.height)
    if col1 <= col0 or row1 <= row0:
        return None

    col0, row0 = (col0 // block) * block, (row0 // block) * block
    col1 = min(-(-col1 // block) * block, src.width)
    row1 = min(-(-row1 // block) * block, src.height)
    return Window(col0, row0, col1 - col0, row1 - row0)


def _blocks(a: np.ndarray, block: int, fill: Any) -> np.ndarray:
    """View `a` as (block rows, block, block cols, block), padding with `fill`."""
    h, w = a.shape
    bh, bw = -(-h // block), -(-w // block)
    padded = np.full((bh * block, bw * block), fill, dtype=a.dtype)
    padded[:h, :w] = a
    return padded.reshape(bh, block, bw, block)


def block_samples(values: np.ndarray, inside: np.ndarray, block: int) -> np.ndarray:
    """Valid samples of `values` at the block grid, selected by `inside`.

    `values` and `inside` must start on a block boundary. With block == 1
    these are simply the finite pixels inside the geometry.
    """
    if block <= 1:
        return values[inside & np.isfinite(values)]

    finite = np.isfinite(values)
    sums = _blocks(np.where(finite, values, 0.0), block, 0.0).sum(axis=(1, 3))
    counts = _blocks(finite, block, False).sum(axis=(1, 3))
    means = np.full(sums.shape, np.nan)
    np.divide(sums, counts, out=means, where=counts > 0)

    selected = _blocks(inside, block, False).any(axis=(1, 3))
    return means[selected & (counts > 0)]


# -----------------------------------------------------------------------------
# Pixel-wise expressions
# -----------------------------------------------------------------------------

def _slope_degrees(z: np.ndarray, xsize: float, ysize: float) -> np.ndarray:
    """Terrain slope in degrees from an elevation grid (metres)."""
    if z.shape[0] < 2 or z.shape[1] < 2:
        return np.full(z.shape, np.nan)
    dz_dy, dz_dx = np.gradient(z, ysize, xsize)
    return np.degrees(np.arctan(np.hypot(dz_dx, dz_dy)))


def evaluate(variable: Variable, bands: Sequence[np.ndarray], pixel_size: Tuple[float, float]) -> np.ndarray:
    """Evaluate a variable pixel-wise from its band arrays (NaN = invalid)."""
    if variable.derive == "magnitude":
        values = np.sqrt(sum(b ** 2 for b in bands))
    elif variable.derive == "slope":
        values = _slope_degrees(bands[0], *pixel_size)
    else:
        values = bands[0]

    values = values * variable.scale_factor + variable.add_offset
    if variable.unit == "kelvin_to_celsius":
        values = values - KELVIN_OFFSET
    return values


def reduce_values(samples: np.ndarray, variable: Variable) -> Dict[str, Any]:
    """Apply the variable's statistics to its valid samples."""
    if samples.size == 0:
        return {col: SENTINEL for col in variable.output_fields}

    reducers = {"mean": np.mean, "min": np.min, "max": np.max}
    return {col: float(reducers[stat](samples)) for stat, col in variable.outputs}


def sentinel_fields(variables: Sequence[Variable]) -> Dict[str, Any]:
    return {col: SENTINEL for v in variables for col in v.output_fields}


# -----------------------------------------------------------------------------
# Core function
# -----------------------------------------------------------------------------

def _aggregate_open(src, geometry: BaseGeometry, variables: Sequence[Variable], scale: float) -> Dict[str, Any]:
    geom = mapping(geometry)
    if src.crs is not None and src.crs.to_string() != GEOMETRY_CRS:
        geom = transform_geom(GEOMETRY_CRS, src.crs, geom)
    geom_src = shape(geom)
    if geom_src.is_empty:
        return sentinel_fields(variables)

    block = _block_size(src, scale)
    win = _window_for(src, geom_src.bounds, block=block)
    if win is None:
        return sentinel_fields(variables)

    # Read every band any variable needs, once, at native resolution.
    names = []
    for v in variables:
        for b in v.bands:
            if b not in names:
                names.append(b)
    indexes = list(band_indexes(tuple(src.descriptions), tuple(names)))
    data = src.read(indexes, window=win, masked=True)
    arrays = {name: np.ma.filled(data[i].astype("float64"), np.nan) for i, name in enumerate(names)}

    transform = src.window_transform(win)
    all_touched = geometry.geom_type not in ("Polygon", "MultiPolygon")
    inside = geometry_mask(
        [geom],
        out_shape=(int(win.height), int(win.width)),
        transform=transform,
        all_touched=all_touched,
        invert=True,
    )
    pixel_size = _pixel_size_m(src, transform, geometry.centroid.y)

    out: Dict[str, Any] = {}
    for v in variables:
        values = evaluate(v, [arrays[b] for b in v.bands], pixel_size)
        out.update(reduce_values(block_samples(values, inside, block), v))
    return out


def aggregate(
    path: str,
    geometry: BaseGeometry,
    variables: Sequence[Variable],
    *,
    scale: float = 1000.0,
    gdal_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Reduce the raster at `path` over `geometry` for every variable.

    Parameters
    ----------
    path : str
        Raster to read (local path or anything GDAL opens, e.g. /vsicurl/).
    geometry : shapely geometry
        Event geometry in EPSG:4326.
    variables : list[Variable]
        Variables to evaluate; their outputs name the result keys.
    scale : float
        Nominal ground distance (metres) per sample.
    gdal_env : dict | None
        GDAL options (timeouts) applied around the read.

    Returns
    -------
    dict
        output column -> float, or the sentinel where no valid pixel exists.

    Raises
    ------
    SourceUnavailable
        When the raster cannot be opened or read.
    """
    try:
        with rasterio.Env(**dict(gdal_env or {})):
            with rasterio.open(path) as src:
                return _aggregate_open(src, geometry, variables, scale)
    except RasterioIOError as e:
        raise SourceUnavailable(f"{path}: {e}") from e
