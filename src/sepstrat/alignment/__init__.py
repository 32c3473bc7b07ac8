"""
Batch alignment of new samples onto a reference cohort.

Components:
- mnn: Mutual nearest neighbours correction and outlier detection
"""

from .mnn import (
    INPUT_BATCH,
    REFERENCE_BATCH,
    AlignmentConfig,
    AlignmentResult,
    MergeStep,
    NeighbourPair,
    align_to_reference,
    cosine_normalize,
    effective_k,
    find_mutual_neighbours,
    mnn_correct,
    scale_extremes,
)

__all__ = [
    "INPUT_BATCH",
    "REFERENCE_BATCH",
    "AlignmentConfig",
    "AlignmentResult",
    "MergeStep",
    "NeighbourPair",
    "align_to_reference",
    "cosine_normalize",
    "effective_k",
    "find_mutual_neighbours",
    "mnn_correct",
    "scale_extremes",
]
