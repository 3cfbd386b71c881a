"""
Feature extraction, model selection, evaluation and projection.
"""

from .features import build_feature_table
from .selection import ModelFit, SelectionResult, fit_logistic, score_candidates, select_model
from .evaluation import EvaluationResult, evaluate_holdout
from .projection import HabitatChange, binarize, compare_periods, predict_surface

__all__ = [
    'build_feature_table',
    'ModelFit',
    'SelectionResult',
    'fit_logistic',
    'score_candidates',
    'select_model',
    'EvaluationResult',
    'evaluate_holdout',
    'HabitatChange',
    'binarize',
    'compare_periods',
    'predict_surface',
]
