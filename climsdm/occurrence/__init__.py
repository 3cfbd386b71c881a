"""
Occurrence data retrieval, cleaning and pseudo-absence sampling.
"""

from .cleaning import clean_occurrences
from .gbif import fetch_occurrences
from .sampling import sample_pseudo_absences

__all__ = [
    'clean_occurrences',
    'fetch_occurrences',
    'sample_pseudo_absences',
]
