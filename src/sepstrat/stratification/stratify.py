# src/sepstrat/stratification/stratify.py
"""Assign samples to sepsis response signature (SRS) groups.

Pipeline for one call:
    validate signature -> fetch reference + models -> validate predictor
    columns -> align to the reference with mNN -> flag outliers ->
    SRS classification -> SRSq regression -> PredictionResult

All intermediate state is local to the call. The reference sets and models
held by the registry are only read.
"""

import logging
from typing import Optional, Union

import pandas as pd
from omegaconf import DictConfig

from sepstrat.alignment.mnn import INPUT_BATCH, AlignmentConfig, align_to_reference
from sepstrat.data.reference import ReferenceRegistry, get_registry
from sepstrat.data.signatures import (
    Signature,
    validate_columns,
    validate_k,
    validate_samples,
)
from sepstrat.stratification.result import PredictionResult, as_srs_categorical
from sepstrat.utils.logging import ProgressCallback, make_progress

logger = logging.getLogger(__name__)

# Below this many samples, mNN alignment becomes unstable; project() is the
# recommended alternative.
RECOMMENDED_MIN_SAMPLES = 25


def stratify(
    samples: pd.DataFrame,
    gene_set: Union[str, Signature] = "minimal",
    k: int = 20,
    verbose: bool = False,
    *,
    registry: Optional[ReferenceRegistry] = None,
    config: Optional[DictConfig] = None,
    progress: Optional[ProgressCallback] = None,
) -> PredictionResult:
    """Classify samples into SRS groups and predict SRSq.

    Samples are first aligned to the reference cohort with mutual nearest
    neighbours, which brings the predictors to the scale the models were
    trained on. A random forest classifier then assigns SRS groups and a
    random forest regressor assigns SRSq.

    Args:
        samples: Samples (rows) x genes (columns), unique sample names. Must
            contain every gene of the chosen signature; extra columns are
            ignored. Expected units: log intensity (microarray), log CPM
            (RNA-seq) or negative Cq (qPCR).
        gene_set: "minimal" (7 genes, alias "davenport") or "extended"
            (19 genes).
        k: Number of nearest neighbours used for alignment. Higher values
            integrate more aggressively but may miss outliers; lower values
            keep more substructure but may flag too many outliers. A value
            between 20% and 30% of the number of input samples is
            recommended.
        verbose: Narrate progress through `progress` (or the module logger).
        registry: Reference registry; defaults to the process-wide one.
        config: Optional config providing the `alignment` section.
        progress: Sink for narration messages.

    Returns:
        PredictionResult indexed by the input sample names.

    Raises:
        InvalidSignature: Unknown gene_set. Raised before any reference data
            or model is touched.
        InvalidSampleMatrix: Empty input, duplicated sample names or bad k.
        MissingColumns: Listing every missing predictor gene.
        AlignmentFailure: Alignment could not be computed.

    Example:
        >>> result = stratify(test_data, gene_set="extended", k=15)
        >>> result.to_frame().head()
    """
    say = make_progress(verbose, progress, logger)

    signature = Signature.from_name(gene_set)
    k = validate_k(k)
    validate_samples(samples)
    say(f"Using the '{signature.value}' gene signature for prediction...")

    bundle = (registry or get_registry()).get(signature)
    reference = bundle.reference

    say("Fetching predictor variables...")
    predictors = validate_columns(samples, signature)

    n = predictors.shape[0]
    if n < RECOMMENDED_MIN_SAMPLES:
        logger.info(
            f"Only {n} samples supplied; mNN alignment is most reliable with "
            f">= {RECOMMENDED_MIN_SAMPLES} samples, consider project() instead"
        )

    say("Aligning data to the reference set...")
    say(f"Number of nearest neighbours set to k={k}")
    alignment = align_to_reference(
        predictors,
        reference.expression.loc[:, predictors.columns],
        config=AlignmentConfig.from_cfg(config, k=k),
    )

    aligned_set = alignment.aligned
    transformed = alignment.rows(INPUT_BATCH)
    transformed.index = predictors.index

    say("Identifying potential outlier samples...")
    outlier = pd.Series(
        alignment.outliers[alignment.batch == INPUT_BATCH],
        index=predictors.index,
        name="outlier",
    )

    say("Stratifying samples into sepsis response signature (SRS) groups...")
    labels, probs = bundle.models.predict_label(transformed)

    say("Assigning samples a quantitative sepsis response signature score (SRSq)...")
    scores = bundle.models.predict_score(transformed)

    say("Adding sample names to object...")
    result = PredictionResult(
        srs=as_srs_categorical(labels.set_axis(predictors.index)),
        srs_probs=probs.set_axis(predictors.index, axis=0),
        srsq=scores.set_axis(predictors.index).rename("SRSq"),
        outlier=outlier,
        predictors_raw=predictors,
        predictors_transformed=transformed,
        aligned_set=aligned_set,
        gene_set=signature,
        method="mnn",
    )
    say("... done!")

    logger.debug(
        f"Stratified {n} samples with k={k}: {int(outlier.sum())} potential outliers"
    )
    return result


def stratify_patients(
    samples: pd.DataFrame,
    gene_set: Union[str, Signature] = "davenport",
    k: int = 20,
    verbose: bool = True,
    **kwargs,
) -> PredictionResult:
    """stratify() with the historical defaults (davenport signature, verbose)."""
    return stratify(samples, gene_set=gene_set, k=k, verbose=verbose, **kwargs)
