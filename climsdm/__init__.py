"""
Species distribution modelling of climate-driven habitat change.
"""

__version__ = "0.1.0"
