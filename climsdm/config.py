"""
Run configuration for the climsdm pipeline.

Everything a run depends on (sources, cache and output folders, study extent,
model grid, seeds) lives in one ``PipelineConfig`` that is passed to each
component. Configurations are usually loaded from YAML with ``load_config``.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"

BIOCLIM_PATTERN = re.compile(r"^bio([1-9]|1[0-9])$")


class OccurrenceConfig(BaseModel):
    genus: str
    species: str
    basis_of_record: List[str] = ["HUMAN_OBSERVATION", "MACHINE_OBSERVATION"]
    max_uncertainty_m: float = 1000.0
    year_range: Tuple[int, int] = (1970, 2000)
    page_size: int = Field(300, gt=0, le=300)

    @property
    def scientific_name(self) -> str:
        return f"{self.genus} {self.species}"

    @field_validator("year_range")
    @classmethod
    def _check_year_range(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        if value[0] > value[1]:
            raise ValueError(f"year_range start {value[0]} is after end {value[1]}")
        return value


class GridConfig(BaseModel):
    """Study extent (lon/lat) and the equal-area model grid."""

    bbox: Tuple[float, float, float, float]
    country: str
    crs: str = "EPSG:6933"
    resolution: float = Field(5000.0, gt=0)

    @field_validator("bbox")
    @classmethod
    def _check_bbox(cls, value: Tuple[float, float, float, float]):
        min_lon, min_lat, max_lon, max_lat = value
        if min_lon >= max_lon or min_lat >= max_lat:
            raise ValueError(f"bbox must be (min_lon, min_lat, max_lon, max_lat), got {value}")
        return value


class ClimateConfig(BaseModel):
    resolution: str = "2.5m"
    bands: List[str] = ["bio1", "bio2", "bio5", "bio6", "bio12", "bio14", "bio15"]
    gcm: str = "MPI-ESM1-2-HR"
    ssp: str = "585"
    periods: List[str] = ["2041-2060", "2061-2080"]
    historical_url: str = (
        "/vsizip//vsicurl/https://geodata.ucdavis.edu/climate/worldclim/2_1/base/"
        "wc2.1_{res}_bio.zip/wc2.1_{res}_bio_{index}.tif"
    )
    future_url: str = (
        "https://geodata.ucdavis.edu/cmip6/{res}/{gcm}/ssp{ssp}/"
        "wc2.1_{res}_bioc_{gcm}_ssp{ssp}_{period}.tif"
    )
    elevation_url: str = (
        "/vsizip//vsicurl/https://geodata.ucdavis.edu/climate/worldclim/2_1/base/"
        "wc2.1_{res}_elev.zip/wc2.1_{res}_elev.tif"
    )

    @field_validator("bands")
    @classmethod
    def _check_bands(cls, value: List[str]) -> List[str]:
        bad = [band for band in value if not BIOCLIM_PATTERN.match(band)]
        if bad:
            raise ValueError(f"Unknown bioclimatic bands: {bad}")
        if len(set(value)) != len(value):
            raise ValueError("Duplicate bioclimatic bands")
        return value


class SoilConfig(BaseModel):
    sand_url: str = "https://geodata.ucdavis.edu/geodata/soil/soilgrids/sand_0-5cm_mean_30s.tif"
    carbon_url: str = "https://geodata.ucdavis.edu/geodata/soil/soilgrids/ocd_0-5cm_mean_30s.tif"


class ModelConfig(BaseModel):
    n_folds: int = Field(5, ge=2)
    eval_fold: int = Field(1, ge=1)
    alpha: float = Field(0.05, gt=0, lt=1)
    deviance_tolerance: Optional[float] = Field(None, ge=0)
    n_absences: Optional[int] = Field(None, gt=0)
    seed: Optional[int] = 42

    @model_validator(mode="after")
    def _check_eval_fold(self) -> "ModelConfig":
        if self.eval_fold > self.n_folds:
            raise ValueError(f"eval_fold {self.eval_fold} exceeds n_folds {self.n_folds}")
        return self


class PipelineConfig(BaseModel):
    occurrence: OccurrenceConfig
    grid: GridConfig
    climate: ClimateConfig = Field(default_factory=ClimateConfig)
    soil: SoilConfig = Field(default_factory=SoilConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    boundary_url: str = "https://geodata.ucdavis.edu/gadm/gadm4.1/json/gadm41_{country}_0.json"
    cache_dir: Path = Path("data/cache")
    output_dir: Path = Path("outputs")


def load_config(
    config_path: Union[str, Path] = DEFAULT_CONFIG_PATH,
    overrides: Optional[Dict[str, Any]] = None,
) -> PipelineConfig:
    """Loads the YAML configuration file.

    Args:
        config_path: Path to a YAML file laid out like ``config/default.yaml``.
        overrides: Top-level sections to replace or merge after loading, e.g.
            ``{"model": {"seed": 7}}``.

    Returns:
        The validated configuration.
    """
    with open(config_path, "r") as f:
        raw = yaml.safe_load(f) or {}

    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(raw.get(section), dict):
            raw[section] = {**raw[section], **values}
        else:
            raw[section] = values

    return PipelineConfig.model_validate(raw)
