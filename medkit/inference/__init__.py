"""
Inference module for medkit.

Cross-fitted DML estimation of total, natural direct and natural indirect
effects of a multi-category exposure.
"""

from medkit.inference.crossfit import CrossFitPass, crossfit_passes
from medkit.inference.learners import DegenerateFoldError, OutcomeKind
from medkit.inference.mediation import MedDML, MediationEstimate, estimate, med_dml
from medkit.inference.multicategory import effect_table, mediation_by_category
from medkit.inference.scores import OverTrimmingError

__all__ = [
    "MedDML",
    "MediationEstimate",
    "estimate",
    "med_dml",
    "mediation_by_category",
    "effect_table",
    "crossfit_passes",
    "CrossFitPass",
    "OutcomeKind",
    "DegenerateFoldError",
    "OverTrimmingError",
]
