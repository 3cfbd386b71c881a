"""
Logistic-regression fitting and all-subsets covariate selection by AIC.

Every candidate is a binomial GLM with logit link fitted with statsmodels on
the training folds. Candidates are compared on the same rows so their AIC
values are comparable; the chosen subset is then refitted on every training
row it can use.
"""

import logging
import warnings
from itertools import combinations
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
import xarray as xr
from pydantic import BaseModel, ConfigDict
from scipy.special import expit
from statsmodels.tools.sm_exceptions import PerfectSeparationWarning
from tqdm import tqdm

from climsdm.models.features import FOLD, LABEL

logger = logging.getLogger(__name__)

INTERCEPT = "const"


class ModelFit(BaseModel):
    """A fitted logistic regression and its statistics."""

    covariates: List[str]
    params: Dict[str, float]
    bse: Dict[str, float]
    pvalues: Dict[str, float]
    aic: float
    deviance: float
    llf: float
    n_obs: int
    eval_fold: Optional[int] = None

    @property
    def n_params(self) -> int:
        return len(self.params)

    @property
    def formula(self) -> str:
        return formula(self.covariates)

    def linear_predictor(self, data: Union[pd.DataFrame, xr.Dataset]):
        eta = self.params[INTERCEPT]
        for name in self.covariates:
            eta = eta + self.params[name] * data[name]
        return eta

    def predict(self, data: Union[pd.DataFrame, xr.Dataset]):
        """Probability of presence for each row (or cell) of ``data``.

        Missing covariate values give NaN.
        """
        return expit(self.linear_predictor(data))

    def coefficient_table(self, alpha: float = 0.05) -> pd.DataFrame:
        """Estimates with two-sided Wald tests.

        Insignificant terms are flagged but never dropped.
        """
        terms = [INTERCEPT] + list(self.covariates)
        table = pd.DataFrame(
            {
                "estimate": [self.params[t] for t in terms],
                "std_error": [self.bse[t] for t in terms],
                "p_value": [self.pvalues[t] for t in terms],
            },
            index=pd.Index(terms, name="term"),
        )
        table.insert(2, "z", table["estimate"] / table["std_error"])
        table["significant"] = table["p_value"] < alpha
        return table

    def summary(self) -> dict:
        return {
            "covariates": list(self.covariates),
            "formula": self.formula,
            "aic": self.aic,
            "deviance": self.deviance,
            "log_likelihood": self.llf,
            "n_obs": self.n_obs,
            "eval_fold": self.eval_fold,
            "coefficients": self.params,
            "std_errors": self.bse,
            "p_values": self.pvalues,
        }


def formula(covariates: Sequence[str]) -> str:
    return "label ~ " + (" + ".join(covariates) if covariates else "1")


def training_rows(
    table: pd.DataFrame, covariates: Sequence[str], eval_fold: Optional[int] = None
) -> pd.DataFrame:
    """Rows outside the evaluation fold with every covariate present."""
    rows = table
    if eval_fold is not None:
        rows = rows[rows[FOLD] != eval_fold]
    return rows.dropna(subset=list(covariates))


def _fit(rows: pd.DataFrame, covariates: Sequence[str]):
    endog = rows[LABEL].astype(float).to_numpy()
    exog = pd.DataFrame(
        {name: rows[name].astype(float).to_numpy() for name in covariates},
        index=rows.index,
    )
    exog.insert(0, INTERCEPT, 1.0)
    if np.linalg.matrix_rank(exog.to_numpy()) < exog.shape[1]:
        raise np.linalg.LinAlgError(
            f"Design matrix for {formula(covariates)} is rank deficient; "
            f"covariates {list(covariates)} are collinear"
        )

    model = sm.GLM(endog, exog, family=sm.families.Binomial())
    with warnings.catch_warnings():
        # Separated data do not converge; fail instead of returning huge coefficients.
        warnings.simplefilter("error", PerfectSeparationWarning)
        return model.fit(tol=1e-10, maxiter=100)


def fit_logistic(
    table: pd.DataFrame,
    covariates: Sequence[str],
    eval_fold: Optional[int] = None,
) -> ModelFit:
    """
    Fit ``label ~ covariates`` by maximum likelihood on the training folds.

    Args:
        table: Feature table with ``label``, ``fold`` and covariate columns.
        covariates: Covariate columns to use (may be empty).
        eval_fold: Fold held out for evaluation. Uses every fold if None.

    Returns:
        The fitted model. AIC is 2k - 2 ln L with k the number of coefficients.

    Raises:
        PerfectSeparationWarning: If the classes are perfectly separated.
        numpy.linalg.LinAlgError: If the design matrix is singular.
    """
    covariates = list(covariates)
    rows = training_rows(table, covariates, eval_fold)
    result = _fit(rows, covariates)

    llf = float(result.llf)
    n_params = len(covariates) + 1
    # Wald tests against the standard normal.
    pvalues = np.asarray(result.pvalues)
    terms = [INTERCEPT] + covariates

    return ModelFit(
        covariates=covariates,
        params={t: float(v) for t, v in zip(terms, np.asarray(result.params))},
        bse={t: float(v) for t, v in zip(terms, np.asarray(result.bse))},
        pvalues={t: float(v) for t, v in zip(terms, pvalues)},
        aic=2 * n_params - 2 * llf,
        deviance=float(result.deviance),
        llf=llf,
        n_obs=int(result.nobs),
        eval_fold=eval_fold,
    )


def candidate_subsets(
    covariates: Sequence[str], min_size: int = 0, max_size: Optional[int] = None
) -> Iterator[Tuple[str, ...]]:
    """Every subset of the covariates, from the empty one up, in covariate order."""
    max_size = len(covariates) if max_size is None else min(max_size, len(covariates))
    for size in range(min_size, max_size + 1):
        yield from combinations(covariates, size)


def score_candidates(
    table: pd.DataFrame,
    covariates: Sequence[str],
    eval_fold: Optional[int] = None,
    max_size: Optional[int] = None,
    progress: bool = False,
) -> pd.DataFrame:
    """Fits every covariate subset, intercept-only included, and ranks them by AIC.

    All candidates are fitted on the same rows, the training rows complete
    in every covariate. Ties on AIC are broken by subset size, then formula,
    so equal input always gives the same order.

    Returns:
        DataFrame with columns formula, covariates, n_terms, aic, delta_aic,
        deviance, llf and n_obs, best first.
    """
    covariates = list(covariates)
    rows = training_rows(table, covariates, eval_fold)
    subsets = list(candidate_subsets(covariates, max_size=max_size))
    logger.info(f"Scoring {len(subsets)} candidate models on {len(rows)} rows")

    records = []
    for subset in tqdm(subsets, desc="Candidate models", disable=not progress):
        fit = fit_logistic(rows, subset)
        records.append(
            {
                "formula": fit.formula,
                "covariates": list(subset),
                "n_terms": len(subset),
                "aic": fit.aic,
                "deviance": fit.deviance,
                "llf": fit.llf,
                "n_obs": fit.n_obs,
            }
        )

    candidates = pd.DataFrame.from_records(records)
    candidates = candidates.sort_values(
        ["aic", "n_terms", "formula"], kind="mergesort"
    ).reset_index(drop=True)
    candidates.insert(4, "delta_aic", candidates["aic"] - candidates["aic"].iloc[0])
    return candidates


class SelectionResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    selected: ModelFit
    best: ModelFit
    runner_up: Optional[ModelFit] = None
    candidates: pd.DataFrame
    parsimony_applied: bool = False

    def summary(self) -> dict:
        return {
            "selected": self.selected.summary(),
            "best": self.best.summary(),
            "runner_up": self.runner_up.summary() if self.runner_up else None,
            "parsimony_applied": self.parsimony_applied,
            "n_candidates": len(self.candidates),
        }


def select_model(
    candidates: pd.DataFrame,
    table: pd.DataFrame,
    eval_fold: Optional[int] = None,
    deviance_tolerance: Optional[float] = None,
) -> SelectionResult:
    """
    Choose the minimum-AIC candidate and refit it on the training folds.

    The runner-up is always refitted and returned alongside. When
    ``deviance_tolerance`` is set and the runner-up has fewer terms and a
    deviance within the tolerance of the best, the runner-up is selected.

    Args:
        candidates: Output of ``score_candidates``.
        table: The feature table the candidates were scored on.
        eval_fold: Fold held out for evaluation.
        deviance_tolerance: Largest deviance difference for preferring the
            smaller model. None disables the rule.
    """
    if candidates.empty:
        raise ValueError("No candidate models to select from")

    best_row = candidates.iloc[0]
    best = fit_logistic(table, best_row["covariates"], eval_fold)

    runner_up = None
    parsimony_applied = False
    if len(candidates) > 1:
        runner_row = candidates.iloc[1]
        runner_up = fit_logistic(table, runner_row["covariates"], eval_fold)
        if (
            deviance_tolerance is not None
            and runner_row["n_terms"] < best_row["n_terms"]
            and abs(runner_row["deviance"] - best_row["deviance"]) <= deviance_tolerance
        ):
            parsimony_applied = True

    selected = runner_up if parsimony_applied else best
    logger.info(
        f"Selected {selected.formula} (AIC {selected.aic:.2f})"
        + (" over the best model by parsimony" if parsimony_applied else "")
    )
    if runner_up is not None:
        logger.info(f"Runner-up {runner_up.formula} (AIC {runner_up.aic:.2f})")

    return SelectionResult(
        selected=selected,
        best=best,
        runner_up=runner_up,
        candidates=candidates,
        parsimony_applied=parsimony_applied,
    )
