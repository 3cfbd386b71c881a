"""
Soil data loading functionality.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import xarray as xr

from climsdm.config import SoilConfig
from climsdm.data.loaders.climate import BBox, open_remote_raster

logger = logging.getLogger(__name__)


class SoilData:
    """SoilGrids topsoil (0-5 cm) sand fraction and organic carbon density."""

    def __init__(
        self,
        config: SoilConfig,
        bbox: Optional[BBox] = None,
        cache_folder: Union[str, Path] = "data/cache/soil",
    ):
        self.config = config
        self.bbox = bbox
        self.cache_folder = Path(cache_folder)
        self.cache_folder.mkdir(parents=True, exist_ok=True)

    def _layer(self, url: str, name: str) -> xr.DataArray:
        data = open_remote_raster(url, self.cache_folder / f"{name}.tif", self.bbox)
        logger.info(f"Loaded soil layer {name}")
        return data.isel(band=0, drop=True).rename(name)

    def sand(self) -> xr.DataArray:
        return self._layer(self.config.sand_url, "sand")

    def carbon(self) -> xr.DataArray:
        return self._layer(self.config.carbon_url, "carbon")
