# src/sepstrat/models/base.py
"""
Abstract interface for the pre-trained SRS / SRSq model pair.

Models are opaque, read-only artifacts. Any trained representation can sit
behind this interface:
- predict_label(rows) -> (labels, probabilities over SRS1..SRS3)
- predict_score(rows) -> continuous SRSq per row
"""

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np
import pandas as pd

from sepstrat.data.signatures import SRS_GROUPS


class ModelPair(ABC):
    """Classifier/regressor pair consumed by the stratification service."""

    @abstractmethod
    def predict_label(self, rows: pd.DataFrame) -> Tuple[pd.Series, pd.DataFrame]:
        """Predict SRS group and class probabilities.

        Args:
            rows: Aligned predictors, samples x genes.

        Returns:
            Tuple of (labels, probabilities). Labels is a Series of SRS group
            names indexed like rows; probabilities has one column per SRS group
            and rows summing to 1.
        """

    @abstractmethod
    def predict_score(self, rows: pd.DataFrame) -> pd.Series:
        """Predict SRSq, indexed like rows. Values are not clamped."""


def normalize_probabilities(probs: pd.DataFrame) -> pd.DataFrame:
    """Reorder columns to SRS_GROUPS, clip negatives and renormalise rows.

    Rows with zero total mass become uniform.
    """
    probs = probs.reindex(columns=list(SRS_GROUPS), fill_value=0.0).astype(float)
    values = np.clip(probs.to_numpy(), 0.0, None)
    totals = values.sum(axis=1, keepdims=True)
    uniform = np.full_like(values, 1.0 / len(SRS_GROUPS))
    values = np.where(totals > 0, values / np.where(totals > 0, totals, 1.0), uniform)
    return pd.DataFrame(values, index=probs.index, columns=list(SRS_GROUPS))
