import logging
from pathlib import Path
from typing import Union

import geopandas as gpd

from climsdm.exceptions import DataFetchError

logger = logging.getLogger(__name__)


def load_country_boundary(
    country: str,
    url_template: str,
    cache_folder: Union[str, Path] = "data/cache/boundaries",
) -> gpd.GeoDataFrame:
    """
    Loads the national (level 0) boundary of a country, dissolved to one feature.

    The template receives the ISO3 code as ``{country}``. The boundary is
    cached as GeoJSON.
    """
    cache_path = Path(cache_folder) / f"{country}_boundary.geojson"
    if cache_path.exists():
        return gpd.read_file(cache_path)

    url = url_template.format(country=country)
    logger.info(f"Downloading {country} boundary from {url}")
    try:
        boundary = gpd.read_file(url)
    except Exception as e:
        raise DataFetchError(f"Could not load boundary for {country} from {url}: {e}") from e

    if boundary.empty:
        raise DataFetchError(f"Boundary file for {country} has no features: {url}")
    if boundary.crs is None:
        boundary = boundary.set_crs("EPSG:4326")

    boundary = boundary[[boundary.geometry.name]].dissolve().reset_index(drop=True)
    boundary["country"] = country

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    boundary.to_file(cache_path, driver="GeoJSON")
    return boundary
