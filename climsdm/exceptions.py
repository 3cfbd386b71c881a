"""Exceptions raised by the climsdm pipeline."""


class DataFetchError(RuntimeError):
    """An occurrence, raster or boundary source could not be read."""


class GridMismatchError(ValueError):
    """Raster layers that should share one grid do not."""


class EmptyFoldError(ValueError):
    """The evaluation fold has no presence or no absence points."""
