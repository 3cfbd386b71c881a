"""
Data loading functionality for climsdm.
"""

from .climate import ClimateData, open_remote_raster
from .soil import SoilData

__all__ = [
    'ClimateData',
    'SoilData',
    'open_remote_raster',
]
