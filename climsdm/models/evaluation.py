"""Hold-out evaluation and threshold choice for fitted models."""

import logging
from typing import Dict, Tuple

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict
from sklearn.metrics import confusion_matrix, roc_auc_score, roc_curve

from climsdm.exceptions import EmptyFoldError
from climsdm.models.features import FOLD, LABEL
from climsdm.models.selection import ModelFit

logger = logging.getLogger(__name__)


def candidate_thresholds(scores: np.ndarray) -> np.ndarray:
    """Cut-offs separating every pair of consecutive distinct scores.

    Includes one at the lowest score (everything predicted present) and one
    just above the highest (nothing predicted present), in ascending order.
    """
    unique = np.unique(scores)
    midpoints = (unique[:-1] + unique[1:]) / 2
    return np.concatenate([[unique[0]], midpoints, [np.nextafter(unique[-1], np.inf)]])


def sens_spec_threshold(
    presence_scores: np.ndarray, absence_scores: np.ndarray
) -> Tuple[float, float, float]:
    """
    Threshold maximising sensitivity + specificity.

    A point is predicted present when its score is >= the threshold. Ties
    between thresholds go to the lowest one.

    Returns:
        (threshold, sensitivity, specificity)
    """
    presence_scores = np.asarray(presence_scores, dtype=float)
    absence_scores = np.asarray(absence_scores, dtype=float)
    thresholds = candidate_thresholds(np.concatenate([presence_scores, absence_scores]))

    sensitivity = (presence_scores[None, :] >= thresholds[:, None]).mean(axis=1)
    specificity = (absence_scores[None, :] < thresholds[:, None]).mean(axis=1)
    best = int(np.argmax(sensitivity + specificity))
    return float(thresholds[best]), float(sensitivity[best]), float(specificity[best])


class EvaluationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    auc: float
    threshold: float
    sensitivity: float
    specificity: float
    n_presence: int
    n_absence: int
    confusion: Dict[str, int]
    roc: pd.DataFrame

    def summary(self) -> dict:
        return {
            "auc": self.auc,
            "threshold": self.threshold,
            "sensitivity": self.sensitivity,
            "specificity": self.specificity,
            "n_presence": self.n_presence,
            "n_absence": self.n_absence,
            "confusion": self.confusion,
            # sklearn starts the curve at an infinite threshold, which JSON cannot hold.
            "roc": self.roc.assign(threshold=self.roc["threshold"].clip(upper=1.0)).to_dict(
                orient="list"
            ),
        }


def evaluate_holdout(fit: ModelFit, table: pd.DataFrame, eval_fold: int) -> EvaluationResult:
    """Evaluate a fitted model on the held-out fold.

    Rows with a missing covariate of the model are skipped. The model itself
    is never changed.

    Args:
        fit: Model fitted without ``eval_fold``.
        table: Feature table with ``label``, ``fold`` and covariate columns.
        eval_fold: The held-out fold.

    Returns:
        AUC, the sensitivity + specificity threshold, the confusion counts at
        that threshold and the ROC curve points.

    Raises:
        EmptyFoldError: If the fold has no usable presences or no usable absences.
    """
    held_out = table[table[FOLD] == eval_fold].dropna(subset=list(fit.covariates))
    labels = held_out[LABEL].astype(int).to_numpy()
    n_presence = int((labels == 1).sum())
    n_absence = int((labels == 0).sum())
    if n_presence == 0 or n_absence == 0:
        raise EmptyFoldError(
            f"Fold {eval_fold} has {n_presence} presences and {n_absence} absences; "
            "both are needed for evaluation"
        )

    scores = np.asarray(fit.predict(held_out), dtype=float)
    auc = float(roc_auc_score(labels, scores))
    fpr, tpr, roc_thresholds = roc_curve(labels, scores)

    threshold, sensitivity, specificity = sens_spec_threshold(
        scores[labels == 1], scores[labels == 0]
    )
    predicted = (scores >= threshold).astype(int)
    tn, fp, fn, tp = confusion_matrix(labels, predicted, labels=[0, 1]).ravel()

    logger.info(
        f"Fold {eval_fold}: AUC {auc:.3f}, threshold {threshold:.3f} "
        f"(sensitivity {sensitivity:.2f}, specificity {specificity:.2f})"
    )
    return EvaluationResult(
        auc=auc,
        threshold=threshold,
        sensitivity=sensitivity,
        specificity=specificity,
        n_presence=n_presence,
        n_absence=n_absence,
        confusion={
            "true_positive": int(tp),
            "false_positive": int(fp),
            "true_negative": int(tn),
            "false_negative": int(fn),
        },
        roc=pd.DataFrame({"fpr": fpr, "tpr": tpr, "threshold": roc_thresholds}),
    )
