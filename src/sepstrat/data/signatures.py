# src/sepstrat/data/signatures.py
"""Gene signatures and input validation.

Two predictor signatures are supported:
    - minimal: the 7-gene signature described by Davenport et al.
    - extended: the 19-gene signature (minimal + 12 additional genes)

Columns are stable Ensembl gene IDs. Inputs may carry any number of extra
columns; they are dropped, never errored.
"""

import logging
from enum import Enum
from typing import List, Tuple, Union

import numpy as np
import pandas as pd

from sepstrat.exceptions import InvalidSampleMatrix, InvalidSignature, MissingColumns

logger = logging.getLogger(__name__)

MINIMAL_GENES: Tuple[str, ...] = (
    "ENSG00000152219",
    "ENSG00000100814",
    "ENSG00000127334",
    "ENSG00000131355",
    "ENSG00000137337",
    "ENSG00000156414",
    "ENSG00000115085",
)

EXTENDED_GENES: Tuple[str, ...] = MINIMAL_GENES + (
    "ENSG00000144659",
    "ENSG00000103423",
    "ENSG00000135372",
    "ENSG00000079134",
    "ENSG00000135972",
    "ENSG00000087157",
    "ENSG00000165006",
    "ENSG00000111667",
    "ENSG00000182670",
    "ENSG00000097033",
    "ENSG00000165733",
    "ENSG00000103264",
)

# Group index is position + 1; ties are broken towards the lowest index
SRS_GROUPS: Tuple[str, ...] = ("SRS1", "SRS2", "SRS3")

# Historical name of the minimal signature
_ALIASES = {"davenport": "minimal"}


class Signature(str, Enum):
    """Predictor gene signature."""

    MINIMAL = "minimal"
    EXTENDED = "extended"

    @classmethod
    def from_name(cls, name: Union[str, "Signature"]) -> "Signature":
        """Resolve a user-facing gene set name.

        Args:
            name: "minimal", "extended" or the alias "davenport".

        Returns:
            Matching Signature member.

        Raises:
            InvalidSignature: If the name is not recognised.
        """
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            raise InvalidSignature(repr(name), [s.value for s in cls])

        key = name.strip().lower()
        key = _ALIASES.get(key, key)
        for member in cls:
            if member.value == key:
                return member
        raise InvalidSignature(name, [s.value for s in cls])

    @property
    def genes(self) -> Tuple[str, ...]:
        return genes_for(self)


def genes_for(signature: Union[str, Signature]) -> Tuple[str, ...]:
    """Canonical, ordered gene IDs for a signature."""
    signature = Signature.from_name(signature)
    if signature is Signature.MINIMAL:
        return MINIMAL_GENES
    return EXTENDED_GENES


def group_index(label: str) -> int:
    """1-based index of an SRS group label."""
    return SRS_GROUPS.index(label) + 1


def validate_samples(matrix: pd.DataFrame) -> None:
    """Check that a sample matrix is non-empty with unique sample names.

    Raises:
        InvalidSampleMatrix: On empty input or duplicated row labels.
    """
    if not isinstance(matrix, pd.DataFrame):
        raise InvalidSampleMatrix(
            f"Expected a pandas DataFrame, got {type(matrix).__name__}"
        )
    if matrix.shape[0] == 0:
        raise InvalidSampleMatrix("Input data set contains no samples")

    duplicated = matrix.index[matrix.index.duplicated()].unique()
    if len(duplicated) > 0:
        raise InvalidSampleMatrix(
            f"Sample identifiers must be unique, duplicated: {list(duplicated)}"
        )


def missing_genes(matrix: pd.DataFrame, signature: Union[str, Signature]) -> List[str]:
    """Required genes absent from the matrix, in canonical order."""
    present = set(matrix.columns)
    return [g for g in genes_for(signature) if g not in present]


def validate_columns(
    matrix: pd.DataFrame,
    signature: Union[str, Signature],
) -> pd.DataFrame:
    """Subset a sample matrix to the signature genes.

    Args:
        matrix: Samples (rows) x genes (columns).
        signature: Gene signature to validate against.

    Returns:
        Copy of the matrix restricted to the signature genes, in canonical
        column order.

    Raises:
        MissingColumns: Listing every missing gene.
    """
    missing = missing_genes(matrix, signature)
    if missing:
        raise MissingColumns(missing)

    genes = list(genes_for(signature))
    n_extra = matrix.shape[1] - len(genes)
    if n_extra > 0:
        logger.debug(f"Dropping {n_extra} non-predictor columns")
    return matrix.loc[:, genes].copy()


def validate_k(k: int) -> int:
    """Check a neighbour count.

    Raises:
        InvalidSampleMatrix: If k is not a positive integer.
    """
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise InvalidSampleMatrix(f"k must be a positive integer, got {k!r}")
    return int(k)
