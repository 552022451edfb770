"""
Overlap diagnostics and plots for mediation analysis.
"""

from .overlap import overlap_diagnostics, plot_effects, plot_propensity_overlap

__all__ = ["overlap_diagnostics", "plot_propensity_overlap", "plot_effects"]
