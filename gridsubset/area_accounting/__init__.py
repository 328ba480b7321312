"""
Area accounting for subset-cell representation.

A target cell is "represented" when its standardized distance to its assigned
subset cell is within the match threshold (1.0, since criteria already scale
every variable to a threshold of 1). The solver maximizes the represented area,
not a sum of squared distances.

Per-cell areas come from the raster template:
- Projected CRS: every cell has the same area, res_x * res_y
- Geographic CRS: cell area shrinks with latitude (spherical band area)
"""

import logging
import numpy as np
import rasterio
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 1.0
EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class RasterTemplate:
    """Grid geometry shared by all target cells"""
    res: Tuple[float, float]                      # (res_x, res_y) in CRS units
    extent: Tuple[float, float, float, float]     # (xmin, ymin, xmax, ymax)
    crs: Optional[str] = None
    is_geographic: bool = False
    linear_unit_m: float = 1.0                    # metres per CRS unit (projected only)

    @classmethod
    def from_profile(cls, profile: Dict) -> "RasterTemplate":
        """
        Build a template from a rasterio profile.

        Args:
            profile: Dataset profile with 'transform', 'width', 'height', 'crs'

        Returns:
            RasterTemplate
        """
        transform = profile["transform"]
        width, height = profile["width"], profile["height"]
        res_x, res_y = abs(transform.a), abs(transform.e)

        xs = (transform.c, transform.c + transform.a * width)
        ys = (transform.f, transform.f + transform.e * height)

        crs = profile.get("crs")
        is_geographic = bool(crs.is_geographic) if crs is not None else False
        linear_unit_m = 1.0
        if crs is not None and not is_geographic:
            factor = crs.linear_units_factor[1] if crs.linear_units_factor else 1.0
            linear_unit_m = float(factor)

        return cls(
            res=(res_x, res_y),
            extent=(min(xs), min(ys), max(xs), max(ys)),
            crs=crs.to_string() if crs is not None else None,
            is_geographic=is_geographic,
            linear_unit_m=linear_unit_m,
        )

    @classmethod
    def from_raster(cls, filepath: Path) -> "RasterTemplate":
        """
        Read the template geometry from a raster file header.

        Args:
            filepath: Path to a GeoTIFF (or any rasterio-readable grid)

        Returns:
            RasterTemplate
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        with rasterio.open(filepath) as src:
            template = cls.from_profile(src.profile)

        logger.info(f"Raster template from {filepath.name}: res={template.res}, crs={template.crs}")
        return template


@dataclass(frozen=True)
class AreaSummary:
    """Represented vs total area of one subset configuration"""
    represented_area_km2: float
    total_area_km2: float

    @property
    def represented_fraction(self) -> float:
        if self.total_area_km2 <= 0:
            return 0.0
        return self.represented_area_km2 / self.total_area_km2

    @property
    def represented_pct(self) -> float:
        return 100 * self.represented_fraction


def cell_areas_km2(template: RasterTemplate, y: np.ndarray) -> np.ndarray:
    """
    Area of each target cell in km².

    Args:
        template: Raster template of the target grid
        y: Cell-centre y coordinate (latitude for geographic grids)

    Returns:
        Array of per-cell areas (km²), same length as y
    """
    y = np.asarray(y, dtype=float)
    res_x, res_y = template.res

    if not template.is_geographic:
        area = res_x * res_y * template.linear_unit_m ** 2 / 1e6
        return np.full(y.shape, area, dtype=float)

    # Latitude band between the top and bottom edge of each cell
    lat_top = np.radians(np.clip(y + res_y / 2, -90, 90))
    lat_bottom = np.radians(np.clip(y - res_y / 2, -90, 90))
    d_lon = np.radians(res_x)

    return EARTH_RADIUS_KM ** 2 * d_lon * np.abs(np.sin(lat_top) - np.sin(lat_bottom))


def summarize_coverage(
    distances: np.ndarray,
    cell_areas: np.ndarray,
    threshold: float = MATCH_THRESHOLD
) -> AreaSummary:
    """
    Total and represented area for one assignment.

    Args:
        distances: Standardized distance of each target to its subset cell
        cell_areas: Area of each target cell (km²)
        threshold: Maximum distance for a cell to count as represented

    Returns:
        AreaSummary with represented and total area (km²)
    """
    distances = np.asarray(distances, dtype=float)
    cell_areas = np.asarray(cell_areas, dtype=float)

    if distances.shape != cell_areas.shape:
        raise ValueError(
            f"distances {distances.shape} and cell_areas {cell_areas.shape} differ in shape"
        )

    total = float(cell_areas.sum())
    represented = float(cell_areas[distances <= threshold].sum())

    return AreaSummary(represented_area_km2=represented, total_area_km2=total)
