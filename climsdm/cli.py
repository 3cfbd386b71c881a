from pathlib import Path
from typing import Optional

import pandas as pd
import typer
from typing_extensions import Annotated

from climsdm.config import DEFAULT_CONFIG_PATH, load_config
from climsdm.models.selection import score_candidates, select_model
from climsdm.occurrence.cleaning import clean_occurrences
from climsdm.pipeline import run_pipeline, save_selection_outputs
from climsdm.utils import setup_logging
from climsdm.utils.io import covariate_columns, load_feature_table, save_geojson

app = typer.Typer(
    name="climsdm",
    help="Species distribution modelling under historical and future climate",
    add_completion=False,
)


@app.command()
def run(
    config_path: Annotated[
        Path,
        typer.Option(
            "--config",
            help="Path to the run configuration (YAML).",
            exists=True, readable=True, resolve_path=True,
        )
    ] = DEFAULT_CONFIG_PATH,
    output_dir: Annotated[
        Optional[Path],
        typer.Option(help="Directory for outputs. Overrides the configuration.")
    ] = None,
    seed: Annotated[
        Optional[int],
        typer.Option(help="Random seed for absences and folds. Overrides the configuration.")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """
    Runs the full pipeline: fetch occurrences and layers, select and fit the
    model, evaluate it and project historical and future habitat.
    """
    setup_logging(verbose=verbose)
    overrides = {}
    if output_dir is not None:
        overrides["output_dir"] = output_dir
    if seed is not None:
        overrides["model"] = {"seed": seed}
    config = load_config(config_path, overrides=overrides)

    result = run_pipeline(config)

    typer.echo(f"Selected model: {result.selection.selected.formula}")
    typer.echo(f"AUC {result.evaluation.auc:.3f}, threshold {result.evaluation.threshold:.3f}")
    for period, change in result.changes.items():
        typer.echo(f"{period}: habitat ratio {change.ratio:.3f}")
    typer.echo(f"Outputs written to {result.output_dir}")


@app.command()
def clean(
    raw_csv: Annotated[
        Path,
        typer.Argument(help="Raw occurrence records (CSV with GBIF column names).", exists=True, readable=True)
    ],
    output: Annotated[Path, typer.Argument(help="Path for the cleaned GeoJSON.")],
    config_path: Annotated[
        Path,
        typer.Option("--config", help="Configuration holding the cleaning rules.", exists=True)
    ] = DEFAULT_CONFIG_PATH,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """Cleans raw occurrence records and writes them as GeoJSON."""
    setup_logging(verbose=verbose)
    occ = load_config(config_path).occurrence
    records = pd.read_csv(raw_csv, low_memory=False)
    cleaned = clean_occurrences(
        records,
        basis_of_record=occ.basis_of_record,
        max_uncertainty_m=occ.max_uncertainty_m,
        year_range=occ.year_range,
    )
    save_geojson(cleaned, output)
    typer.echo(f"Kept {len(cleaned)} of {len(records)} records")


@app.command()
def select(
    features_csv: Annotated[
        Path,
        typer.Argument(help="Feature table CSV with label, fold and covariate columns.", exists=True, readable=True)
    ],
    output_dir: Annotated[Path, typer.Argument(help="Directory for the selection outputs.")],
    eval_fold: Annotated[int, typer.Option(help="Fold held out from fitting.")] = 1,
    deviance_tolerance: Annotated[
        Optional[float],
        typer.Option(help="Prefer a smaller runner-up within this deviance of the best.")
    ] = None,
    alpha: Annotated[float, typer.Option(help="Significance level for the coefficient table.")] = 0.05,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """Scores every covariate subset of an existing feature table by AIC."""
    setup_logging(verbose=verbose)
    table = load_feature_table(features_csv)
    covariates = covariate_columns(table)
    candidates = score_candidates(table, covariates, eval_fold, progress=True)
    selection = select_model(candidates, table, eval_fold, deviance_tolerance=deviance_tolerance)
    save_selection_outputs(selection, Path(output_dir), alpha)
    typer.echo(f"Selected model: {selection.selected.formula} (AIC {selection.selected.aic:.2f})")


if __name__ == "__main__":
    app()
