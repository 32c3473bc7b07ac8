# src/sepstrat/exceptions.py
"""Error taxonomy for stratification and projection calls.

Every failure aborts the whole call; no partial results are returned.
"""

from typing import Iterable, List


class StratificationError(Exception):
    """Base class for all sepstrat errors."""

    pass


class InvalidSignature(StratificationError, ValueError):
    """Requested gene signature is not one of the recognised values."""

    def __init__(self, name: str, accepted: Iterable[str]):
        self.name = name
        self.accepted = list(accepted)
        super().__init__(
            f"Invalid 'gene_set' option: {name!r}. "
            f"Please select one of the following: {', '.join(self.accepted)}"
        )


class MissingColumns(StratificationError, ValueError):
    """One or more required gene columns are absent from the input."""

    def __init__(self, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        super().__init__(
            "The following variables are missing from the input data set: "
            + ", ".join(self.missing)
        )


class AlignmentFailure(StratificationError, RuntimeError):
    """Batch correction could not compute a valid correspondence."""

    pass


class ColumnMismatch(StratificationError, ValueError):
    """Batches handed to the aligner do not share the same columns."""

    pass


class InvalidSampleMatrix(StratificationError, ValueError):
    """Input matrix is malformed (empty, duplicated sample names, bad k)."""

    pass
