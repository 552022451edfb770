"""
Data containers and synthetic cohorts for mediation analysis.
"""

from medkit.data.generators import generate_mediation_data
from medkit.data.generators import MediationDatasetGenerator
from medkit.data.mediationdata import MediationData

__all__ = ["generate_mediation_data", "MediationData", "MediationDatasetGenerator"]
