import geopandas as gpd
import numpy as np
import pytest

from climsdm.models.features import (
    FOLD,
    LABEL,
    assign_folds,
    build_feature_table,
    extract_covariates,
)
from climsdm.occurrence.sampling import sample_pseudo_absences

from conftest import cell_points


@pytest.mark.parametrize("n,k", [(40, 5), (43, 5), (7, 7), (101, 3)])
def test_assign_folds_sizes(n, k):
    folds = assign_folds(n, k, seed=1)
    sizes = np.bincount(folds, minlength=k + 1)[1:]

    assert set(np.unique(folds)) == set(range(1, k + 1))
    assert sizes.sum() == n
    assert sizes.min() >= n // k
    assert sizes.max() <= -(-n // k)


def test_assign_folds_seeded():
    assert (assign_folds(50, seed=4) == assign_folds(50, seed=4)).all()
    assert not (assign_folds(50, seed=4) == assign_folds(50, seed=5)).all()


def test_assign_folds_too_few():
    with pytest.raises(ValueError):
        assign_folds(3, 5)


def test_extract_covariates(grid, stack):
    points = cell_points(grid, [2, 10], [0, 7])
    values = extract_covariates(stack, points)

    assert list(values.columns) == list(stack.data_vars)
    assert values["bio12"].iloc[1] == pytest.approx(float(stack["bio12"].values[10, 7]))
    # Column 0 is sea with no soil data.
    assert np.isnan(values["sand"].iloc[0])


def test_extract_covariates_outside_grid(grid, stack):
    points = gpd.GeoDataFrame(geometry=gpd.points_from_xy([-1e6], [0.0]), crs=grid.crs)
    values = extract_covariates(stack, points)
    assert values.isna().all(axis=None)


def test_build_feature_table(stack, presences):
    absences = sample_pseudo_absences(stack, presences, seed=0)
    table = build_feature_table(stack, presences, absences, n_folds=5, seed=2)

    assert isinstance(table, gpd.GeoDataFrame)
    assert list(table.columns) == [LABEL, FOLD, *stack.data_vars, "geometry"]
    assert table.crs == stack.rio.crs
    assert (table[LABEL] == 1).sum() == len(presences)
    assert (table[LABEL] == 0).sum() == len(absences)
    assert table[LABEL].notna().all() and table[FOLD].notna().all()

    # Each class is split into five folds of eight.
    for label in (0, 1):
        counts = table.loc[table[LABEL] == label, FOLD].value_counts()
        assert sorted(counts.index) == [1, 2, 3, 4, 5]
        assert (counts == 8).all()


def test_build_feature_table_seeded(stack, presences):
    absences = sample_pseudo_absences(stack, presences, seed=0)
    first = build_feature_table(stack, presences, absences, seed=9)
    second = build_feature_table(stack, presences, absences, seed=9)
    assert first[FOLD].tolist() == second[FOLD].tolist()
