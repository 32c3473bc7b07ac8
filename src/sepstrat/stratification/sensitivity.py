# src/sepstrat/stratification/sensitivity.py
"""Sensitivity of predictions to the number of nearest neighbours.

Re-runs stratify() on the same data for a range of k and collects SRS, SRSq
and outlier calls per sample. Each run is an independent call; nothing is
shared between runs apart from the read-only reference registry.

Example:
    >>> res = run_sensitivity_analysis(data, gene_set="minimal", k_values=range(5, 31, 5))
    >>> res.srsq_spread().sort_values(ascending=False).head()
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union

import pandas as pd
from omegaconf import DictConfig

from sepstrat.data.reference import ReferenceRegistry
from sepstrat.data.signatures import Signature, validate_k
from sepstrat.stratification.result import PredictionResult
from sepstrat.stratification.stratify import stratify

logger = logging.getLogger(__name__)


@dataclass
class SensitivityResult:
    """Predictions for every k value.

    Attributes:
        results: PredictionResult per k.
        srsq: Samples x k table of SRSq.
        srs: Samples x k table of SRS labels.
        outlier: Samples x k table of outlier flags.
    """

    results: Dict[int, PredictionResult]
    srsq: pd.DataFrame
    srs: pd.DataFrame
    outlier: pd.DataFrame

    def srsq_spread(self) -> pd.Series:
        """max - min SRSq across k per sample."""
        return (self.srsq.max(axis=1) - self.srsq.min(axis=1)).rename("SRSq_spread")

    def label_stability(self) -> pd.Series:
        """Fraction of k values at which each sample gets its most frequent label."""
        return self.srs.apply(
            lambda row: row.value_counts().iloc[0] / len(row), axis=1
        ).rename("SRS_stability")

    def to_long(self) -> pd.DataFrame:
        """Long-format table: sample, k, SRS, SRSq, outlier."""
        frames = []
        for k, result in self.results.items():
            frame = result.to_frame().loc[:, ["SRS", "SRSq", "outlier"]]
            frame.insert(0, "k", k)
            frames.append(frame.rename_axis("sample").reset_index())
        return pd.concat(frames, ignore_index=True)


def run_sensitivity_analysis(
    samples: pd.DataFrame,
    gene_set: Union[str, Signature] = "minimal",
    k_values: Optional[Iterable[int]] = None,
    verbose: bool = False,
    *,
    registry: Optional[ReferenceRegistry] = None,
    config: Optional[DictConfig] = None,
) -> SensitivityResult:
    """Run stratify() once per k.

    Args:
        samples: Input matrix, as for stratify().
        gene_set: Gene signature.
        k_values: Neighbour counts to try. Defaults to 1..n_samples-1 in
            steps of max(1, n_samples // 10).
        verbose: Log one line per k.
        registry: Reference registry.
        config: Optional config with the `alignment` section.

    Returns:
        SensitivityResult with one column per k.
    """
    signature = Signature.from_name(gene_set)
    if k_values is None:
        n = samples.shape[0]
        k_values = range(1, max(n, 2), max(1, n // 10))
    k_values = sorted({validate_k(k) for k in k_values})
    if not k_values:
        raise ValueError("k_values must contain at least one value")

    results: Dict[int, PredictionResult] = {}
    for k in k_values:
        if verbose:
            logger.info(f"Stratifying with k={k}")
        results[k] = stratify(
            samples, gene_set=signature, k=k, registry=registry, config=config
        )

    def table(attr: str) -> pd.DataFrame:
        frame = pd.DataFrame({k: getattr(r, attr) for k, r in results.items()})
        frame.columns.name = "k"
        return frame

    srs = pd.DataFrame({k: r.srs.astype(str) for k, r in results.items()})
    srs.columns.name = "k"

    return SensitivityResult(
        results=results,
        srsq=table("srsq"),
        srs=srs,
        outlier=table("outlier"),
    )
