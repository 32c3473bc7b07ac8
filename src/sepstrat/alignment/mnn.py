# src/sepstrat/alignment/mnn.py
"""Mutual nearest neighbours (mNN) batch alignment.

Aligns batches of expression profiles onto an anchor batch by pairing samples
that are mutually among each other's k nearest neighbours across the batch
boundary and shifting each paired sample by a smoothed correction vector.

Algorithm per merge step (anchor = cumulative merged result, target = next
batch in merge order):
    1. Optional cosine normalisation of every profile (unit L2 norm).
    2. k-nearest-neighbour search target -> anchor and anchor -> target
       (Euclidean distance; on cosine-normalised profiles this ranks samples
       exactly like cosine distance).
    3. Mutual pairs: (t, a) with a in kNN(t) and t in kNN(a).
    4. Pair vectors anchor - target, averaged per paired target sample.
    5. Smoothing over the paired samples with a density-normalised Gaussian
       kernel, or the plain per-sample average.
    6. Optional variance adjustment: the shift along each correction direction
       is scaled up (never down) so that the sample lands on the same kernel
       weighted quantile in the anchor batch as it held in its own batch.
    7. Samples without any pair keep their profile and are flagged as
       outliers.

Cosine normalisation hides differences in scale, so before the search each
target sample is also checked on the original scale: a sample lying more than
`outlier_sd` anchor standard deviations outside the anchor range on every
gene takes no part in pairing and therefore ends up an outlier. When every
sample of a batch fails that check the offset is a batch effect, and the
check is skipped for that batch.

When k is greater than or equal to the size of the batch being searched, it
is capped at size - 1 (minimum 1), so k == size also drops to size - 1: a
neighbour list covering the whole batch would make every sample trivially
mutual.

References:
    - Haghverdi et al., "Batch effects in single-cell RNA-sequencing data are
      corrected by matching mutual nearest neighbors." Nat Biotechnol 2018.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from omegaconf import OmegaConf
from scipy.spatial.distance import cdist
from scipy.special import logsumexp

from sepstrat.exceptions import AlignmentFailure, ColumnMismatch
from sepstrat.utils.config import ConfigError, get_value

logger = logging.getLogger(__name__)

# Batch tags used when aligning user input onto a reference cohort
REFERENCE_BATCH = 1
INPUT_BATCH = 2

SMOOTHING_METHODS = ("gaussian", "mean")


def _outlier_sd_from_cfg(cfg, default: Optional[float]) -> Optional[float]:
    # An explicit null disables the check, a missing key keeps the default
    if cfg is None:
        return default
    section = OmegaConf.select(cfg, "alignment")
    if section is None or "outlier_sd" not in section:
        return default
    value = section.outlier_sd
    return None if value is None else float(value)


@dataclass
class AlignmentConfig:
    """Parameters of the mNN correction.

    Attributes:
        k: Neighbours per search direction. Recommended 20-30% of the number
            of input samples.
        sigma: Squared bandwidth of the Gaussian kernel (cosine-normalised
            profiles live on the unit sphere, so 0.1 is a local kernel).
        cos_norm_in: Cosine-normalise profiles before neighbour search and
            correction.
        cos_norm_out: Return cosine-normalised profiles. When False, corrections
            are rescaled to the original per-sample scale.
        var_adj: Apply the variance adjustment of step 6.
        smoothing: "gaussian" (kernel smoothing across all paired samples) or
            "mean" (each sample uses the average of its own pair vectors).
        outlier_sd: Target samples further than this many anchor standard
            deviations outside the anchor range on every gene (original
            scale) are kept out of pairing. None disables the check.
    """

    k: int = 20
    sigma: float = 0.1
    cos_norm_in: bool = True
    cos_norm_out: bool = True
    var_adj: bool = True
    smoothing: str = "gaussian"
    outlier_sd: Optional[float] = 5.0

    def __post_init__(self):
        if isinstance(self.k, bool) or not isinstance(self.k, (int, np.integer)) or self.k < 1:
            raise ValueError(f"k must be a positive integer, got {self.k!r}")
        self.k = int(self.k)
        if not self.sigma > 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")
        if self.smoothing not in SMOOTHING_METHODS:
            raise ValueError(
                f"smoothing must be one of {SMOOTHING_METHODS}, got {self.smoothing!r}"
            )
        if self.outlier_sd is not None and not self.outlier_sd > 0:
            raise ValueError(f"outlier_sd must be positive or None, got {self.outlier_sd}")

    @classmethod
    def from_cfg(cls, cfg, k: Optional[int] = None) -> "AlignmentConfig":
        """Build from the `alignment` section of a config.

        Args:
            cfg: DictConfig (or None for defaults).
            k: Neighbour count; falls back to cfg.stratify.k.

        Raises:
            ConfigError: If a value has the wrong type or is out of range.
        """
        defaults = cls()
        try:
            return cls(
                k=k if k is not None else get_value(cfg, "stratify.k", defaults.k),
                sigma=float(get_value(cfg, "alignment.sigma", defaults.sigma)),
                cos_norm_in=bool(get_value(cfg, "alignment.cos_norm_in", defaults.cos_norm_in)),
                cos_norm_out=bool(get_value(cfg, "alignment.cos_norm_out", defaults.cos_norm_out)),
                var_adj=bool(get_value(cfg, "alignment.var_adj", defaults.var_adj)),
                smoothing=str(get_value(cfg, "alignment.smoothing", defaults.smoothing)),
                outlier_sd=_outlier_sd_from_cfg(cfg, defaults.outlier_sd),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid alignment configuration: {e}") from e


@dataclass(frozen=True)
class NeighbourPair:
    """Mutual nearest-neighbour correspondence.

    Both indices are row positions in the merged matrix: `target` belongs to
    the batch being corrected, `anchor` to the cumulative merged result.
    """

    target: int
    anchor: int


@dataclass
class MergeStep:
    """Diagnostics of merging one batch onto the cumulative result."""

    batch: Hashable
    pairs: List[NeighbourPair]
    k_target: int
    k_anchor: int
    n_outliers: int


@dataclass
class AlignmentResult:
    """Output of mnn_correct.

    Attributes:
        aligned: Corrected profiles, same rows (merged order) and columns as
            the input matrix.
        batch: Batch tag per row.
        steps: One MergeStep per merged (non-anchor) batch, in merge order.
        outliers: True for rows of merged batches that found no mutual pair.
            Rows of the anchor batch are never outliers.
        corrections: Correction applied to each row (zero for anchor rows and
            outliers), in the output space.
    """

    aligned: pd.DataFrame
    batch: np.ndarray
    steps: List[MergeStep]
    outliers: np.ndarray
    corrections: pd.DataFrame

    @property
    def pairs(self) -> List[NeighbourPair]:
        return [pair for step in self.steps for pair in step.pairs]

    def pair_counts(self) -> np.ndarray:
        """Number of mutual pairs each row takes part in as a target."""
        counts = np.zeros(len(self.batch), dtype=int)
        for pair in self.pairs:
            counts[pair.target] += 1
        return counts

    def rows(self, batch: Hashable) -> pd.DataFrame:
        """Aligned rows of one batch, in merged order."""
        return self.aligned.iloc[np.flatnonzero(self.batch == batch)]


def _as_float_matrix(data: pd.DataFrame) -> np.ndarray:
    if data.shape[0] == 0:
        raise AlignmentFailure("Cannot align an empty matrix")
    if data.shape[1] == 0:
        raise AlignmentFailure("Cannot align a matrix without predictor columns")

    non_numeric = [c for c in data.columns if not pd.api.types.is_numeric_dtype(data[c])]
    if non_numeric:
        raise AlignmentFailure(f"Non-numeric values in columns: {non_numeric}")

    values = data.to_numpy(dtype=float)
    bad_rows = ~np.isfinite(values).all(axis=1)
    if bad_rows.any():
        raise AlignmentFailure(
            f"Missing or non-finite values in samples: {list(data.index[bad_rows])}"
        )
    return values


def cosine_normalize(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Scale each row to unit L2 norm.

    Returns:
        Tuple of (normalised rows, original norms).

    Raises:
        AlignmentFailure: If any row has zero norm.
    """
    norms = np.linalg.norm(values, axis=1)
    if np.any(norms == 0):
        raise AlignmentFailure(
            f"{int(np.sum(norms == 0))} sample(s) have an all-zero profile; "
            "cosine normalisation is undefined"
        )
    return values / norms[:, None], norms


def effective_k(k: int, available: int) -> int:
    """Neighbour count actually used when searching a batch of `available` rows.

    k is kept when k < available. Otherwise, including k == available, it
    drops to available - 1 (minimum 1) so that at least one candidate stays
    outside every neighbour list.
    """
    if k < available:
        return k
    return max(available - 1, 1)


def find_mutual_neighbours(
    target: np.ndarray,
    anchor: np.ndarray,
    k: int,
) -> Tuple[np.ndarray, np.ndarray, int, int]:
    """Find mutual nearest neighbours between two batches.

    Ties in distance are resolved towards the lower row index.

    Args:
        target: Profiles of the batch being corrected [n_target, n_genes].
        anchor: Profiles of the anchor batch [n_anchor, n_genes].
        k: Requested neighbours per direction.

    Returns:
        Tuple of (target_idx, anchor_idx, k_target, k_anchor). Index arrays are
        local row positions of each mutual pair, sorted by target then anchor.
        k_target/k_anchor are the effective neighbour counts used when
        searching the target/anchor batch.
    """
    k_anchor = effective_k(k, anchor.shape[0])
    k_target = effective_k(k, target.shape[0])

    dist = cdist(target, anchor, metric="sqeuclidean")

    # target -> anchor
    nn_anchor = np.argsort(dist, axis=1, kind="stable")[:, :k_anchor]
    t_to_a = np.zeros(dist.shape, dtype=bool)
    np.put_along_axis(t_to_a, nn_anchor, True, axis=1)

    # anchor -> target
    nn_target = np.argsort(dist.T, axis=1, kind="stable")[:, :k_target]
    a_to_t = np.zeros(dist.T.shape, dtype=bool)
    np.put_along_axis(a_to_t, nn_target, True, axis=1)

    target_idx, anchor_idx = np.nonzero(t_to_a & a_to_t.T)
    return target_idx, anchor_idx, k_target, k_anchor


def average_pair_vectors(
    target: np.ndarray,
    anchor: np.ndarray,
    target_idx: np.ndarray,
    anchor_idx: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Average anchor - target vectors per paired target sample.

    Returns:
        Tuple of (paired target rows, averaged vectors [n_paired, n_genes]).
    """
    vectors = anchor[anchor_idx] - target[target_idx]
    paired, inverse = np.unique(target_idx, return_inverse=True)
    sums = np.zeros((len(paired), target.shape[1]))
    np.add.at(sums, inverse, vectors)
    counts = np.bincount(inverse, minlength=len(paired))
    return paired, sums / counts[:, None]


def smooth_gaussian_kernel(
    averaged: np.ndarray,
    paired: np.ndarray,
    target: np.ndarray,
    sigma: float,
) -> np.ndarray:
    """Spread paired-sample vectors over the whole target batch.

    Each paired sample contributes with weight exp(-d²/sigma) divided by its
    own kernel density among the paired samples, so dense regions of pairs do
    not dominate. Accumulated in log space to survive underflow.

    Returns:
        Correction vector for every target row [n_target, n_genes].
    """
    paired_rows = target[paired]

    log_density = logsumexp(
        -cdist(paired_rows, paired_rows, metric="sqeuclidean") / sigma,
        axis=1,
    )
    log_weights = -cdist(target, paired_rows, metric="sqeuclidean") / sigma - log_density[None, :]
    log_weights -= logsumexp(log_weights, axis=1, keepdims=True)
    return np.exp(log_weights) @ averaged


def _kernel_weights(squared_dist: np.ndarray, sigma: float) -> np.ndarray:
    log_w = -np.clip(squared_dist, 0.0, None) / sigma
    return np.exp(log_w - log_w.max())


def adjust_shift_variance(
    anchor: np.ndarray,
    target: np.ndarray,
    correction: np.ndarray,
    sigma: float,
    rows: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Scaling factor (>= 1) for each target correction vector.

    For a target sample x with correction c (unit direction u), the kernel
    weighted (mid-rank) fraction of its own batch projecting onto u below x is
    matched to the same quantile of the anchor batch. The correction is
    stretched so x reaches that anchor quantile. Kernel weights use the
    squared distance to the line through x along u.

    Args:
        anchor: Anchor profiles [n_anchor, n_genes].
        target: Target profiles before correction [n_target, n_genes].
        correction: Correction vectors [n_target, n_genes].
        sigma: Squared kernel bandwidth.
        rows: Target rows to adjust; others get scale 1.

    Returns:
        Scale per target row [n_target].
    """
    scale = np.ones(target.shape[0])
    rows = np.arange(target.shape[0]) if rows is None else rows

    for i in rows:
        l2norm = np.linalg.norm(correction[i])
        if l2norm == 0:
            continue
        grad = correction[i] / l2norm
        cur = target[i]
        same_proj = target @ grad
        curproj = same_proj[i]

        same_dist = np.sum((target - cur) ** 2, axis=1) - (same_proj - curproj) ** 2
        same_w = _kernel_weights(same_dist, sigma)
        # Mid-rank: ties, including the sample itself, count half
        below = same_w[same_proj < curproj].sum() + 0.5 * same_w[same_proj == curproj].sum()
        prob = below / same_w.sum()

        other_proj = anchor @ grad
        other_dist = np.sum((anchor - cur) ** 2, axis=1) - (other_proj - curproj) ** 2
        other_w = _kernel_weights(other_dist, sigma)

        order = np.argsort(other_proj, kind="stable")
        cumulative = np.cumsum(other_w[order])
        above = np.flatnonzero(cumulative > prob * other_w.sum())
        ref_quan = other_proj[order][above[0]] if len(above) else other_proj[order][-1]

        scale[i] = max((ref_quan - curproj) / l2norm, 1.0)

    return scale


def scale_extremes(
    target_raw: np.ndarray,
    anchor_raw: np.ndarray,
    n_sd: float,
) -> np.ndarray:
    """Flag target rows far outside the anchor batch on every gene.

    A row is flagged when, for every gene, its distance to the nearest anchor
    value exceeds `n_sd` anchor standard deviations of that gene. Values are
    compared on the original scale.

    Args:
        target_raw: Target profiles before any normalisation [n_target, n_genes].
        anchor_raw: Anchor profiles before any normalisation [n_anchor, n_genes].
        n_sd: Number of standard deviations.

    Returns:
        Boolean mask over target rows.
    """
    lo = anchor_raw.min(axis=0)
    hi = anchor_raw.max(axis=0)
    if anchor_raw.shape[0] > 1:
        sd = anchor_raw.std(axis=0, ddof=1)
    else:
        sd = np.zeros(anchor_raw.shape[1])

    beyond = np.maximum(lo - target_raw, target_raw - hi)
    return (beyond > n_sd * sd).all(axis=1)


def _merge_one(
    anchor: np.ndarray,
    target: np.ndarray,
    config: AlignmentConfig,
    anchor_raw: Optional[np.ndarray] = None,
    target_raw: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, int, int]:
    """Correct one target batch onto the anchor (both in working space).

    Target rows flagged by scale_extremes on the original-scale profiles take
    no part in the search and keep a zero correction.

    Returns:
        Tuple of (correction [n_target, n_genes], target_idx, anchor_idx,
        k_target, k_anchor).
    """
    kept = np.arange(target.shape[0])
    if config.outlier_sd is not None and anchor_raw is not None and target_raw is not None:
        extreme = scale_extremes(target_raw, anchor_raw, config.outlier_sd)
        if extreme.all():
            logger.warning(
                f"All {len(extreme)} samples lie more than {config.outlier_sd} SD "
                "outside the anchor range; treating the offset as a batch effect"
            )
        elif extreme.any():
            logger.info(
                f"{int(extreme.sum())} sample(s) lie more than {config.outlier_sd} SD "
                "outside the anchor range on every gene and are left unpaired"
            )
            kept = np.flatnonzero(~extreme)

    candidates = target[kept]
    local_idx, anchor_idx, k_target, k_anchor = find_mutual_neighbours(candidates, anchor, config.k)
    if len(local_idx) == 0:
        raise AlignmentFailure(
            "No mutual nearest neighbours found between batches; "
            "the input cannot be aligned to the reference"
        )

    paired, averaged = average_pair_vectors(candidates, anchor, local_idx, anchor_idx)

    local = np.zeros_like(candidates)
    if config.smoothing == "gaussian":
        local = smooth_gaussian_kernel(averaged, paired, candidates, config.sigma)
    else:
        local[paired] = averaged

    if config.var_adj:
        scale = adjust_shift_variance(anchor, candidates, local, config.sigma, rows=paired)
        local = local * scale[:, None]

    # Samples without a mutual pair stay uncorrected
    unpaired = np.setdiff1d(np.arange(candidates.shape[0]), paired)
    local[unpaired] = 0.0

    correction = np.zeros_like(target)
    correction[kept] = local
    return correction, kept[local_idx], anchor_idx, k_target, k_anchor


def mnn_correct(
    data: pd.DataFrame,
    batch: Sequence[Hashable],
    merge_order: Optional[Sequence[Hashable]] = None,
    config: Optional[AlignmentConfig] = None,
) -> AlignmentResult:
    """Align tagged batches sequentially with mutual nearest neighbours.

    Args:
        data: Merged matrix, samples (rows) x genes (columns).
        batch: Batch tag per row.
        merge_order: Order in which batches are merged. The first batch is the
            anchor; each later batch is aligned onto the cumulative result of
            all batches before it. Defaults to order of first appearance.
        config: Correction parameters.

    Returns:
        AlignmentResult with rows in the same order as `data`.

    Raises:
        AlignmentFailure: On empty, non-numeric or non-finite input, all-zero
            profiles under cosine normalisation, or a merge step without any
            mutual pair.
        ValueError: If batch tags and merge order are inconsistent.
    """
    config = config or AlignmentConfig()
    batch = np.asarray(batch)
    if len(batch) != data.shape[0]:
        raise ValueError(f"Got {len(batch)} batch tags for {data.shape[0]} rows")

    raw = _as_float_matrix(data)

    if merge_order is None:
        merge_order = list(pd.unique(batch))
    merge_order = list(merge_order)
    tags = pd.unique(batch).tolist()
    if set(merge_order) != set(tags) or len(set(merge_order)) != len(merge_order):
        raise ValueError(
            f"merge_order {merge_order} must list every batch tag exactly once "
            f"(found {tags})"
        )
    if len(merge_order) < 2:
        raise ValueError("At least two batches are required for alignment")

    if config.cos_norm_in:
        working, norms = cosine_normalize(raw)
    else:
        working, norms = raw.copy(), np.ones(raw.shape[0])

    rows_of: Dict[Hashable, np.ndarray] = {b: np.flatnonzero(batch == b) for b in merge_order}

    corrected = working.copy()
    corrections = np.zeros_like(working)
    outliers = np.zeros(len(batch), dtype=bool)
    steps: List[MergeStep] = []

    merged_rows = rows_of[merge_order[0]]
    for b in merge_order[1:]:
        target_rows = rows_of[b]
        correction, target_idx, anchor_idx, k_target, k_anchor = _merge_one(
            corrected[merged_rows],
            working[target_rows],
            config,
            anchor_raw=raw[merged_rows],
            target_raw=raw[target_rows],
        )
        corrected[target_rows] = working[target_rows] + correction
        corrections[target_rows] = correction

        paired = np.unique(target_idx)
        unpaired = np.setdiff1d(np.arange(len(target_rows)), paired)
        outliers[target_rows[unpaired]] = True

        pairs = [
            NeighbourPair(target=int(target_rows[t]), anchor=int(merged_rows[a]))
            for t, a in zip(target_idx, anchor_idx)
        ]
        steps.append(MergeStep(
            batch=b,
            pairs=pairs,
            k_target=k_target,
            k_anchor=k_anchor,
            n_outliers=len(unpaired),
        ))
        logger.debug(
            f"Merged batch {b!r}: {len(pairs)} mutual pairs, "
            f"{len(unpaired)}/{len(target_rows)} unpaired (k={k_anchor}/{k_target})"
        )

        merged_rows = np.concatenate([merged_rows, target_rows])

    if config.cos_norm_out or not config.cos_norm_in:
        output = corrected
    else:
        # Back to the original scale of each sample
        corrections = corrections * norms[:, None]
        output = raw + corrections

    return AlignmentResult(
        aligned=pd.DataFrame(output, index=data.index, columns=data.columns),
        batch=batch,
        steps=steps,
        outliers=outliers,
        corrections=pd.DataFrame(corrections, index=data.index, columns=data.columns),
    )


def align_to_reference(
    samples: pd.DataFrame,
    reference: pd.DataFrame,
    config: Optional[AlignmentConfig] = None,
) -> AlignmentResult:
    """Align input samples onto a reference cohort.

    The merged matrix holds the input rows first, then the reference rows.
    Input rows are tagged INPUT_BATCH, reference rows REFERENCE_BATCH, and the
    reference is the anchor of the merge.

    Raises:
        ColumnMismatch: If the two matrices differ in columns or column order.
    """
    if list(samples.columns) != list(reference.columns):
        missing = [c for c in reference.columns if c not in samples.columns]
        extra = [c for c in samples.columns if c not in reference.columns]
        raise ColumnMismatch(
            "Input and reference columns differ"
            + (f"; missing: {missing}" if missing else "")
            + (f"; unexpected: {extra}" if extra else "")
            + ("; order differs" if not missing and not extra else "")
        )

    overlap = samples.index.intersection(reference.index)
    if len(overlap) > 0:
        logger.warning(f"{len(overlap)} input sample name(s) also occur in the reference set")

    merged = pd.concat([samples, reference], axis=0)
    batch = np.concatenate([
        np.full(samples.shape[0], INPUT_BATCH),
        np.full(reference.shape[0], REFERENCE_BATCH),
    ])
    return mnn_correct(
        merged,
        batch=batch,
        merge_order=[REFERENCE_BATCH, INPUT_BATCH],
        config=config,
    )
