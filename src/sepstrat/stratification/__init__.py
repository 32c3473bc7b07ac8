"""
Stratification of samples into sepsis response signature groups.

Components:
- stratify: mNN alignment + pre-trained SRS/SRSq models
- lazy: Similarity-weighted kNN projection for small cohorts
- sensitivity: Repeated stratification across k
- result: PredictionResult container
"""

from .lazy import (
    SimilarityVote,
    aggregate_votes,
    compute_similarity_votes,
    cosine_similarity_matrix,
    project,
    vote_weights,
)
from .result import PredictionResult
from .sensitivity import SensitivityResult, run_sensitivity_analysis
from .stratify import RECOMMENDED_MIN_SAMPLES, stratify, stratify_patients

__all__ = [
    "PredictionResult",
    # mNN stratification
    "RECOMMENDED_MIN_SAMPLES",
    "stratify",
    "stratify_patients",
    # Lazy learning
    "SimilarityVote",
    "aggregate_votes",
    "compute_similarity_votes",
    "cosine_similarity_matrix",
    "project",
    "vote_weights",
    # Sensitivity
    "SensitivityResult",
    "run_sensitivity_analysis",
]
