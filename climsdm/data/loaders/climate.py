"""
Climate and elevation data loading functionality.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import rioxarray as rxr
import xarray as xr
from rasterio.errors import RasterioIOError

from climsdm.config import ClimateConfig
from climsdm.exceptions import DataFetchError

logger = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]


def open_remote_raster(
    url: str,
    cache_path: Union[str, Path],
    bbox: Optional[BBox] = None,
) -> xr.DataArray:
    """
    Open a raster from a URL or GDAL path, caching the (cropped) result locally.

    The crop is applied before caching so global layers are only stored for
    the study extent. Later calls read the cached copy.

    Raises:
        DataFetchError: If the source cannot be opened or read.
    """
    cache_path = Path(cache_path)
    if not cache_path.exists():
        logger.info(f"Downloading {url}")
        try:
            data = rxr.open_rasterio(url, masked=False)
            if not isinstance(data, xr.DataArray):
                raise DataFetchError(f"Expected DataArray from {url}, got {type(data)}")
            if bbox is not None:
                data = data.rio.clip_box(*bbox, crs="EPSG:4326")
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            data.rio.to_raster(cache_path)
        except (RasterioIOError, OSError) as e:
            raise DataFetchError(f"Could not fetch raster from {url}: {e}") from e

    data = rxr.open_rasterio(cache_path)
    if not isinstance(data, xr.DataArray):
        raise DataFetchError(f"Expected DataArray from {cache_path}, got {type(data)}")
    return data


def band_index(name: str) -> int:
    """'bio12' -> 12"""
    return int(name.removeprefix("bio"))


class ClimateData:
    """
    WorldClim 2.1 bioclimatic variables (historical and CMIP6 futures) and elevation.
    """

    def __init__(
        self,
        config: ClimateConfig,
        bbox: Optional[BBox] = None,
        cache_folder: Union[str, Path] = "data/cache/climate",
    ):
        self.config = config
        self.bbox = bbox
        self.cache_folder = Path(cache_folder)
        self.cache_folder.mkdir(parents=True, exist_ok=True)

    @property
    def bands(self) -> List[str]:
        return list(self.config.bands)

    def _historical_band(self, name: str) -> xr.DataArray:
        res = self.config.resolution
        url = self.config.historical_url.format(res=res, index=band_index(name))
        data = open_remote_raster(url, self.cache_folder / f"wc2.1_{res}_{name}.tif", self.bbox)
        return data.isel(band=0, drop=True)

    def historical(self) -> xr.DataArray:
        """Historical (1970-2000) bioclimatic bands, one band per configured variable."""
        layers = [self._historical_band(name) for name in self.bands]
        stacked = xr.concat(layers, dim="band")
        stacked = stacked.assign_coords(band=self.bands)
        logger.info(f"Loaded historical climate: {', '.join(self.bands)}")
        return stacked

    def future(self, period: str) -> xr.DataArray:
        """Projected bioclimatic bands for one period of the configured GCM and SSP."""
        res = self.config.resolution
        url = self.config.future_url.format(
            res=res, gcm=self.config.gcm, ssp=self.config.ssp, period=period
        )
        cache_path = (
            self.cache_folder
            / f"wc2.1_{res}_bioc_{self.config.gcm}_ssp{self.config.ssp}_{period}.tif"
        )
        data = open_remote_raster(url, cache_path, self.bbox)

        # Future files hold all 19 variables in order.
        positions = [band_index(name) - 1 for name in self.bands]
        if max(positions) >= data.sizes["band"]:
            raise DataFetchError(
                f"{url} has {data.sizes['band']} bands, cannot select {self.bands}"
            )
        selected = data.isel(band=positions).assign_coords(band=self.bands)
        logger.info(f"Loaded {period} climate ({self.config.gcm}, ssp{self.config.ssp})")
        return selected

    def elevation(self) -> xr.DataArray:
        res = self.config.resolution
        url = self.config.elevation_url.format(res=res)
        data = open_remote_raster(url, self.cache_folder / f"wc2.1_{res}_elev.tif", self.bbox)
        data = data.isel(band=0, drop=True)
        # Ocean cells have no elevation.
        nodata = data.rio.nodata
        if nodata is not None and not np.isnan(nodata):
            data = data.where(data != nodata).rio.write_nodata(np.nan)
        return data.rename("elevation")
