"""
Robustness checks for fitted mediation models.
"""

from .trimming import trim_sensitivity_curve

__all__ = ["trim_sensitivity_curve"]
