# src/sepstrat/stratification/result.py
"""Prediction result returned by stratify and project."""

from dataclasses import dataclass
from typing import Optional

import pandas as pd

from sepstrat.data.signatures import SRS_GROUPS, Signature


@dataclass(frozen=True)
class PredictionResult:
    """SRS and SRSq predictions for a set of samples.

    Every per-sample field is indexed by the input sample names, in input
    order.

    Attributes:
        srs: Predicted SRS group (categorical over SRS1..SRS3).
        srs_probs: Probability of each SRS group; rows sum to 1.
        srsq: Predicted SRSq. Close to 0 for healthy-like samples, close to 1
            for samples at high risk. Not clamped.
        outlier: mNN outliers (no mutual neighbour in the reference set) for
            stratify; weak projections for project.
        predictors_raw: Predictor columns as extracted from the input.
        predictors_transformed: Predictors after alignment to the reference
            (identical to predictors_raw for project).
        aligned_set: Input and reference rows aligned together (input rows
            first); None for project.
        gene_set: Signature used for prediction.
        method: "mnn" for stratify, "lazy" for project.
    """

    srs: pd.Series
    srs_probs: pd.DataFrame
    srsq: pd.Series
    outlier: pd.Series
    predictors_raw: pd.DataFrame
    predictors_transformed: pd.DataFrame
    aligned_set: Optional[pd.DataFrame]
    gene_set: Signature
    method: str = "mnn"

    @property
    def samples(self) -> pd.Index:
        return self.srs.index

    @property
    def n_samples(self) -> int:
        return len(self.srs)

    def to_frame(self) -> pd.DataFrame:
        """One row per sample: SRS, SRSq, outlier flag and group probabilities."""
        frame = pd.DataFrame({
            "SRS": self.srs.astype(str),
            "SRSq": self.srsq,
            "outlier": self.outlier,
        })
        probs = self.srs_probs.add_prefix("prob_")
        return pd.concat([frame, probs], axis=1)

    def summary(self) -> pd.Series:
        """Number of samples per SRS group."""
        return self.srs.value_counts().reindex(list(SRS_GROUPS), fill_value=0)

    def __repr__(self) -> str:
        counts = ", ".join(f"{g}={n}" for g, n in self.summary().items())
        label = "weak projections" if self.method == "lazy" else "mNN outliers"
        return (
            f"PredictionResult(gene_set={self.gene_set.value!r}, method={self.method!r}, "
            f"n_samples={self.n_samples}, {counts}, "
            f"{label}={int(self.outlier.sum())})"
        )


def as_srs_categorical(labels: pd.Series) -> pd.Series:
    """SRS labels as a categorical Series with all three levels."""
    return pd.Series(
        pd.Categorical(labels.astype(str), categories=list(SRS_GROUPS)),
        index=labels.index,
        name="SRS",
    )
