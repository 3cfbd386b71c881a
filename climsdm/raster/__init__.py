# This file makes climsdm/raster a Python package.
from .utils import GridSpec, check_grid_alignment, model_grid, reproject_to_grid

__all__ = [
    "GridSpec",
    "check_grid_alignment",
    "model_grid",
    "reproject_to_grid",
]
