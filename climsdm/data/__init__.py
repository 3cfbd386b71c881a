"""
Environmental layer loading and stacking.
"""

from .loaders import ClimateData, SoilData
from .boundaries import load_country_boundary
from .stack import EnvironmentalStacks, assemble_stack, load_environmental_stacks

__all__ = [
    'ClimateData',
    'SoilData',
    'load_country_boundary',
    'EnvironmentalStacks',
    'assemble_stack',
    'load_environmental_stacks',
]
