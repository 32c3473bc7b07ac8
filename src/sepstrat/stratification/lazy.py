# src/sepstrat/stratification/lazy.py
"""Lazy-learning projection of SRS labels for small cohorts.

With few samples (fewer than ~25) mNN alignment has too little data to pair
batches reliably. Instead, each sample is compared directly with every
reference sample by cosine similarity, and the known SRS/SRSq of its k most
similar reference samples are aggregated with similarity-weighted voting.

No model is fitted and nothing is aligned. Inputs are compared on their own
scale, so qPCR data must be supplied as 2^(-Cq) rather than -Cq (see
sepstrat.data.units).

Every sample receives a label regardless of neighbour quality unless
`min_similarity` is set, in which case samples whose best neighbour is less
similar than that are flagged as weak projections.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np
import pandas as pd
from sklearn.metrics.pairwise import cosine_similarity

from sepstrat.data.reference import ReferenceRegistry, ReferenceSet, get_registry
from sepstrat.data.signatures import (
    SRS_GROUPS,
    Signature,
    validate_columns,
    validate_k,
    validate_samples,
)
from sepstrat.exceptions import InvalidSampleMatrix
from sepstrat.stratification.result import PredictionResult, as_srs_categorical
from sepstrat.utils.logging import ProgressCallback, make_progress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityVote:
    """Neighbour votes cast for one input sample.

    Attributes:
        sample: Input sample name.
        reference_ids: Names of the k chosen reference samples, most similar
            first.
        similarities: Cosine similarity to each chosen reference sample.
        weights: Vote weights; non-negative and summing to 1.
    """

    sample: str
    reference_ids: List[str]
    similarities: np.ndarray
    weights: np.ndarray

    @property
    def max_similarity(self) -> float:
        return float(self.similarities.max())


def cosine_similarity_matrix(samples: pd.DataFrame, reference: pd.DataFrame) -> pd.DataFrame:
    """Cosine similarity of every sample (rows) to every reference sample (columns).

    All-zero profiles have similarity 0 to everything.
    """
    values = cosine_similarity(
        samples.to_numpy(dtype=float),
        reference.to_numpy(dtype=float),
    )
    return pd.DataFrame(values, index=samples.index, columns=reference.index)


def vote_weights(similarities: np.ndarray) -> np.ndarray:
    """Normalise neighbour similarities into vote weights.

    Negative similarities carry no weight. If no neighbour has a positive
    similarity, all neighbours vote equally.
    """
    weights = np.clip(similarities, 0.0, None)
    total = weights.sum()
    if total <= 0:
        return np.full(len(similarities), 1.0 / len(similarities))
    return weights / total


def compute_similarity_votes(
    samples: pd.DataFrame,
    reference: pd.DataFrame,
    k: int,
) -> List[SimilarityVote]:
    """Select the k most similar reference samples for each input sample.

    Ties in similarity are resolved towards the earlier reference sample. k is
    capped at the size of the reference set.
    """
    k = min(validate_k(k), reference.shape[0])
    sim = cosine_similarity_matrix(samples, reference).to_numpy()
    order = np.argsort(-sim, axis=1, kind="stable")[:, :k]

    votes = []
    for i, sample in enumerate(samples.index):
        chosen = order[i]
        similarities = sim[i, chosen]
        votes.append(SimilarityVote(
            sample=sample,
            reference_ids=list(reference.index[chosen]),
            similarities=similarities,
            weights=vote_weights(similarities),
        ))
    return votes


def aggregate_votes(
    votes: List[SimilarityVote],
    reference: ReferenceSet,
) -> pd.DataFrame:
    """Similarity-weighted SRS probabilities and SRSq per input sample.

    Returns:
        DataFrame indexed by sample with one column per SRS group plus SRSq.
    """
    groups = list(SRS_GROUPS)
    rows = []
    for vote in votes:
        labels = reference.srs.loc[vote.reference_ids].to_numpy()
        probs = [float(vote.weights[labels == g].sum()) for g in groups]
        srsq = float(vote.weights @ reference.srsq.loc[vote.reference_ids].to_numpy())
        rows.append(probs + [srsq])
    return pd.DataFrame(rows, index=[v.sample for v in votes], columns=groups + ["SRSq"])


def project(
    samples: pd.DataFrame,
    gene_set: Union[str, Signature] = "minimal",
    k: int = 20,
    verbose: bool = False,
    *,
    min_similarity: Optional[float] = None,
    registry: Optional[ReferenceRegistry] = None,
    progress: Optional[ProgressCallback] = None,
) -> PredictionResult:
    """Project SRS labels and SRSq onto samples from their nearest references.

    Args:
        samples: Samples (rows) x genes (columns), unique sample names. qPCR
            data must be supplied as 2^(-Cq).
        gene_set: "minimal" (alias "davenport") or "extended".
        k: Number of most similar reference samples that vote.
        verbose: Narrate progress through `progress` (or the module logger).
        min_similarity: Optional. Samples whose most similar reference sample
            has a cosine similarity below this value are flagged in
            `outlier` as weak projections. Nothing is flagged when None.
        registry: Reference registry; defaults to the process-wide one.
        progress: Sink for narration messages.

    Returns:
        PredictionResult with method="lazy" and no aligned set.

    Raises:
        InvalidSignature: Unknown gene_set.
        InvalidSampleMatrix: Empty input, duplicated sample names, bad k or
            non-finite values.
        MissingColumns: Listing every missing predictor gene.
    """
    say = make_progress(verbose, progress, logger)

    signature = Signature.from_name(gene_set)
    k = validate_k(k)
    validate_samples(samples)
    say(f"Using the '{signature.value}' gene signature for projection...")

    reference = (registry or get_registry()).get(signature).reference

    say("Fetching predictor variables...")
    predictors = validate_columns(samples, signature)
    try:
        values = predictors.to_numpy(dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidSampleMatrix(f"Predictor values must be numeric: {e}") from e
    if not np.isfinite(values).all():
        raise InvalidSampleMatrix("Predictor values must be finite")
    predictors = predictors.astype(float)

    say(f"Finding the k={k} most similar reference samples...")
    votes = compute_similarity_votes(predictors, reference.expression, k)

    say("Projecting SRS groups and SRSq by similarity-weighted voting...")
    aggregated = aggregate_votes(votes, reference)
    probs = aggregated.loc[:, list(SRS_GROUPS)]
    # argmax keeps the first maximum, i.e. the lowest group index
    labels = pd.Series(
        [SRS_GROUPS[i] for i in np.argmax(probs.to_numpy(), axis=1)],
        index=predictors.index,
    )

    max_similarity = np.array([v.max_similarity for v in votes])
    if min_similarity is None:
        weak = np.zeros(len(votes), dtype=bool)
    else:
        weak = max_similarity < min_similarity
        if weak.any():
            logger.warning(
                f"{int(weak.sum())} sample(s) have no reference sample with "
                f"cosine similarity >= {min_similarity}"
            )

    say("... done!")
    return PredictionResult(
        srs=as_srs_categorical(labels),
        srs_probs=probs,
        srsq=aggregated["SRSq"].rename("SRSq"),
        outlier=pd.Series(weak, index=predictors.index, name="outlier"),
        predictors_raw=predictors,
        predictors_transformed=predictors.copy(),
        aligned_set=None,
        gene_set=signature,
        method="lazy",
    )
