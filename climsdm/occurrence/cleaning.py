"""
Quality filtering and de-duplication of raw occurrence records.
"""

import logging
from enum import StrEnum
from typing import Iterable, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

OCCURRENCE_CRS = "EPSG:4326"
LONGITUDE = "decimalLongitude"
LATITUDE = "decimalLatitude"
DEDUPLICATION_KEY = ["eventDate", LONGITUDE, LATITUDE]


class BasisOfRecord(StrEnum):
    HUMAN_OBSERVATION = "HUMAN_OBSERVATION"
    MACHINE_OBSERVATION = "MACHINE_OBSERVATION"


def _column(records: pd.DataFrame, name: str) -> pd.Series:
    """Return a column, or an all-missing one if the records do not have it."""
    if name in records.columns:
        return records[name]
    return pd.Series(np.nan, index=records.index, dtype=object)


def occurrence_filter_mask(
    records: pd.DataFrame,
    basis_of_record: Iterable[str] = tuple(BasisOfRecord),
    max_uncertainty_m: float = 1000.0,
    year_range: Tuple[int, int] = (1970, 2000),
) -> pd.Series:
    """
    Boolean mask of the records that pass every quality filter.

    A record is kept when its basis of record is allowed, both coordinates are
    present, it is verified or has no verification status, no information is
    withheld, its coordinate uncertainty is missing or within
    ``max_uncertainty_m`` and its year lies inside ``year_range`` (inclusive).
    """
    basis_ok = _column(records, "basisOfRecord").isin([str(b) for b in basis_of_record])

    has_coordinates = _column(records, LONGITUDE).notna() & _column(records, LATITUDE).notna()

    status = _column(records, "identificationVerificationStatus")
    verified = status.isna() | (status.astype(str).str.strip().str.lower() == "verified")

    not_withheld = _column(records, "informationWithheld").isna()

    uncertainty = _column(records, "coordinateUncertaintyInMeters")
    precise = uncertainty.isna() | (
        pd.to_numeric(uncertainty, errors="coerce") <= max_uncertainty_m
    )

    year = pd.to_numeric(_column(records, "year"), errors="coerce")
    in_window = year.between(year_range[0], year_range[1])

    return basis_ok & has_coordinates & verified & not_withheld & precise & in_window


def clean_occurrences(
    records: pd.DataFrame,
    basis_of_record: Iterable[str] = tuple(BasisOfRecord),
    max_uncertainty_m: float = 1000.0,
    year_range: Tuple[int, int] = (1970, 2000),
) -> gpd.GeoDataFrame:
    """Filters raw occurrence records and drops duplicate events.

    Records that fail the quality filters are excluded silently (they are not
    errors). Duplicates share event date, longitude and latitude; the first one
    is kept. Source column names are preserved, so cleaning the output again
    returns the same records.

    Args:
        records: Raw records with GBIF column names. May be a GeoDataFrame.
        basis_of_record: Allowed ``basisOfRecord`` values.
        max_uncertainty_m: Largest coordinate uncertainty kept, in metres.
        year_range: Inclusive (first, last) observation years kept.

    Returns:
        GeoDataFrame of presence records with point geometry in EPSG:4326.
    """
    if isinstance(records, gpd.GeoDataFrame):
        records = pd.DataFrame(records.drop(columns=records.geometry.name))

    mask = occurrence_filter_mask(
        records,
        basis_of_record=basis_of_record,
        max_uncertainty_m=max_uncertainty_m,
        year_range=year_range,
    )
    kept = records.loc[mask.to_numpy()].copy()
    for column in DEDUPLICATION_KEY:
        if column not in kept.columns:
            kept[column] = None
    n_filtered = len(kept)

    kept = kept.drop_duplicates(subset=DEDUPLICATION_KEY, keep="first")

    logger.info(
        f"Kept {len(kept)}/{len(records)} occurrence records "
        f"({len(records) - n_filtered} failed filters, {n_filtered - len(kept)} duplicates)"
    )

    geometry = gpd.points_from_xy(
        kept[LONGITUDE].astype(float), kept[LATITUDE].astype(float)
    )
    return gpd.GeoDataFrame(kept, geometry=geometry, crs=OCCURRENCE_CRS).reset_index(drop=True)
