# src/sepstrat/__init__.py
"""
Sepsis response signature stratification.

Classifies whole-blood gene-expression samples into sepsis response signature
groups (SRS1/2/3) and predicts a quantitative score (SRSq), either by aligning
samples to a reference cohort with mutual nearest neighbours and applying
pre-trained random forests, or by lazy-learning projection for small cohorts.
"""

from sepstrat.data import ReferenceBundle, ReferenceRegistry, ReferenceSet, Signature, get_registry
from sepstrat.exceptions import (
    AlignmentFailure,
    ColumnMismatch,
    InvalidSampleMatrix,
    InvalidSignature,
    MissingColumns,
    StratificationError,
)
from sepstrat.stratification import (
    PredictionResult,
    project,
    run_sensitivity_analysis,
    stratify,
    stratify_patients,
)

__version__ = "0.1.0"

__all__ = [
    "AlignmentFailure",
    "ColumnMismatch",
    "InvalidSampleMatrix",
    "InvalidSignature",
    "MissingColumns",
    "PredictionResult",
    "ReferenceBundle",
    "ReferenceRegistry",
    "ReferenceSet",
    "Signature",
    "StratificationError",
    "get_registry",
    "project",
    "run_sensitivity_analysis",
    "stratify",
    "stratify_patients",
]
