"""
MedKit: causal mediation analysis for multi-category exposures.
"""

from medkit import data
from medkit import inference
from medkit import refutation
from medkit import eda

__version__ = "0.1.0"
__all__ = ["data", "inference", "refutation", "eda"]
