"""
End-to-end run: occurrences -> stacks -> absences -> features -> selection
-> evaluation -> projection.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional

import geopandas as gpd
import pandas as pd
import xarray as xr
from pydantic import BaseModel, ConfigDict

from climsdm.config import PipelineConfig
from climsdm.data.stack import EnvironmentalStacks, load_environmental_stacks
from climsdm.models.evaluation import EvaluationResult, evaluate_holdout
from climsdm.models.features import build_feature_table
from climsdm.models.projection import (
    HabitatChange,
    binarize,
    compare_periods,
    predict_surface,
)
from climsdm.models.selection import SelectionResult, score_candidates, select_model
from climsdm.occurrence.cleaning import clean_occurrences
from climsdm.occurrence.gbif import fetch_occurrences
from climsdm.occurrence.sampling import sample_pseudo_absences
from climsdm.utils.io import (
    save_csv,
    save_feature_table,
    save_geojson,
    save_json,
    save_raster,
)

logger = logging.getLogger(__name__)

HISTORICAL = "historical"


@contextmanager
def pipeline_stage(name: str):
    """Log a stage and tag any exception escaping it with the stage name."""
    logger.info(f"--- {name} ---")
    try:
        yield
    except Exception as e:
        logger.error(f"Stage '{name}' failed: {e}")
        e.add_note(f"climsdm pipeline stage: {name}")
        raise


class PipelineResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    presences: gpd.GeoDataFrame
    absences: gpd.GeoDataFrame
    features: gpd.GeoDataFrame
    selection: SelectionResult
    evaluation: EvaluationResult
    surfaces: Dict[str, xr.DataArray]
    binary: Dict[str, xr.DataArray]
    changes: Dict[str, HabitatChange]
    output_dir: Optional[Path] = None

    def change_table(self) -> pd.DataFrame:
        return pd.DataFrame([change.summary() for change in self.changes.values()])


def run_pipeline(
    config: PipelineConfig,
    records: Optional[pd.DataFrame] = None,
    stacks: Optional[EnvironmentalStacks] = None,
    write_outputs: bool = True,
) -> PipelineResult:
    """
    Run the full modelling workflow for one species.

    Args:
        config: Run configuration.
        records: Raw occurrence records. Fetched from GBIF if None.
        stacks: Environmental stacks. Built from the configured sources if None.
        write_outputs: Write tables, summaries and rasters to ``config.output_dir``.

    Returns:
        Every intermediate and final product of the run.
    """
    occ = config.occurrence
    model = config.model

    with pipeline_stage("occurrences"):
        if records is None:
            records = fetch_occurrences(occ.genus, occ.species, page_size=occ.page_size)
        presences = clean_occurrences(
            records,
            basis_of_record=occ.basis_of_record,
            max_uncertainty_m=occ.max_uncertainty_m,
            year_range=occ.year_range,
        )
        if presences.empty:
            raise ValueError(f"No usable occurrence records for {occ.scientific_name}")

    with pipeline_stage("environmental layers"):
        if stacks is None:
            stacks = load_environmental_stacks(config)
        historical = stacks.historical
        covariates = list(historical.data_vars)

    with pipeline_stage("pseudo-absences"):
        n_absences = model.n_absences or len(presences)
        absences = sample_pseudo_absences(historical, presences, n=n_absences, seed=model.seed)

    with pipeline_stage("features"):
        features = build_feature_table(
            historical, presences, absences, n_folds=model.n_folds, seed=model.seed
        )

    with pipeline_stage("model selection"):
        candidates = score_candidates(features, covariates, model.eval_fold, progress=True)
        selection = select_model(
            candidates, features, model.eval_fold, deviance_tolerance=model.deviance_tolerance
        )

    with pipeline_stage("evaluation"):
        evaluation = evaluate_holdout(selection.selected, features, model.eval_fold)

    with pipeline_stage("projection"):
        surfaces = {HISTORICAL: predict_surface(selection.selected, historical)}
        for period, stack in stacks.future.items():
            surfaces[period] = predict_surface(selection.selected, stack)
        binary = {name: binarize(s, evaluation.threshold) for name, s in surfaces.items()}
        changes = {
            period: compare_periods(binary[HISTORICAL], binary[period], period)
            for period in stacks.future
        }

    result = PipelineResult(
        presences=presences,
        absences=absences,
        features=features,
        selection=selection,
        evaluation=evaluation,
        surfaces=surfaces,
        binary=binary,
        changes=changes,
    )
    if write_outputs:
        with pipeline_stage("outputs"):
            result.output_dir = write_pipeline_outputs(result, config.output_dir, model.alpha)
    return result


def write_pipeline_outputs(result: PipelineResult, output_dir: Path, alpha: float = 0.05) -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    save_geojson(result.presences, output_dir / "occurrences_clean.geojson")
    save_feature_table(result.features, output_dir / "features.csv")
    save_selection_outputs(result.selection, output_dir, alpha)
    save_json(result.evaluation.summary(), output_dir / "evaluation.json")

    for name, surface in result.surfaces.items():
        save_raster(surface, output_dir / f"probability_{name}.tif")
        save_raster(result.binary[name], output_dir / f"presence_{name}.tif")
    save_csv(result.change_table(), output_dir / "habitat_change.csv")
    return output_dir


def save_selection_outputs(selection: SelectionResult, output_dir: Path, alpha: float = 0.05) -> None:
    candidates = selection.candidates.assign(
        covariates=selection.candidates["covariates"].map(" + ".join)
    )
    save_csv(candidates, output_dir / "candidates.csv")
    save_json(selection.summary(), output_dir / "selection.json")
    save_csv(
        selection.selected.coefficient_table(alpha).reset_index(),
        output_dir / "coefficients.csv",
    )
