"""
GBIF occurrence download.
"""

import logging
from typing import Any, Optional

import pandas as pd
import requests
from pygbif import occurrences
from tqdm import tqdm

from climsdm.exceptions import DataFetchError

logger = logging.getLogger(__name__)


def fetch_occurrences(
    genus: str,
    species: str,
    page_size: int = 300,
    max_records: Optional[int] = None,
    **filters: Any,
) -> pd.DataFrame:
    """
    Fetch all GBIF occurrence records for a species, following pagination.

    Args:
        genus: Genus name, e.g. "Protea".
        species: Specific epithet, e.g. "cynaroides".
        page_size: Records per request (GBIF caps this at 300).
        max_records: Stop after this many records. Fetches everything if None.
        **filters: Extra search parameters passed to ``pygbif.occurrences.search``.

    Returns:
        DataFrame with one row per raw record, columns as returned by GBIF.

    Raises:
        DataFetchError: If any request fails. There is no retry.
    """
    scientific_name = f"{genus} {species}"
    records = []
    offset = 0

    logger.info(f"Querying GBIF for {scientific_name}")
    with tqdm(desc=f"GBIF {scientific_name}", unit="records") as progress:
        while True:
            try:
                page = occurrences.search(
                    scientificName=scientific_name,
                    hasCoordinate=True,
                    limit=page_size,
                    offset=offset,
                    **filters,
                )
            except requests.exceptions.RequestException as e:
                raise DataFetchError(
                    f"GBIF query for {scientific_name} failed at offset {offset}: {e}"
                ) from e

            results = page.get("results", [])
            records.extend(results)
            progress.update(len(results))

            if max_records is not None and len(records) >= max_records:
                records = records[:max_records]
                break
            if not results or page.get("endOfRecords", True):
                break
            offset += len(results)

    logger.info(f"Fetched {len(records)} raw records for {scientific_name}")
    return pd.DataFrame.from_records(records)
