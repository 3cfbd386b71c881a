import geopandas as gpd
import pytest

from climsdm.occurrence.sampling import (
    occupied_cell_mask,
    sample_pseudo_absences,
    valid_cell_mask,
)
from climsdm.raster.utils import points_to_cells


def test_valid_cell_mask(stack):
    valid = valid_cell_mask(stack)
    assert not valid[:, 0].any()
    assert valid[:, 1:].all()


def test_occupied_cell_mask(stack, presences, presence_cells):
    occupied = occupied_cell_mask(stack, presences)
    rows, cols = presence_cells
    assert occupied.sum() == len(presences)
    assert occupied[rows, cols].all()


def test_sample_pseudo_absences(stack, presences):
    absences = sample_pseudo_absences(stack, presences, seed=3)

    assert isinstance(absences, gpd.GeoDataFrame)
    assert len(absences) == len(presences)
    assert absences.crs == stack.rio.crs

    rows, cols, inside = points_to_cells(
        absences.geometry.x.values, absences.geometry.y.values, stack.rio.transform(), stack["elevation"].shape
    )
    assert inside.all()
    assert (rows.tolist(), cols.tolist()) == (absences["row"].tolist(), absences["col"].tolist())
    # On land, never on a presence cell and never twice on one cell.
    assert (stack["elevation"].values[rows, cols] > 0).all()
    assert not occupied_cell_mask(stack, presences)[rows, cols].any()
    assert len(set(zip(rows, cols))) == len(absences)


def test_sample_pseudo_absences_is_seeded(stack, presences):
    first = sample_pseudo_absences(stack, presences, n=25, seed=11)
    second = sample_pseudo_absences(stack, presences, n=25, seed=11)
    other = sample_pseudo_absences(stack, presences, n=25, seed=12)

    assert first[["row", "col"]].equals(second[["row", "col"]])
    assert not first[["row", "col"]].equals(other[["row", "col"]])


def test_sample_pseudo_absences_too_many(stack, presences):
    # 380 land cells, 40 of them occupied.
    assert len(sample_pseudo_absences(stack, presences, n=340, seed=0)) == 340
    with pytest.raises(ValueError, match="candidate cells"):
        sample_pseudo_absences(stack, presences, n=341, seed=0)
