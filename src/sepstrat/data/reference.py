# src/sepstrat/data/reference.py
"""Reference cohorts and the process-wide reference registry.

A reference set holds expression profiles of healthy volunteers and sepsis
patients with known SRS group and SRSq. Each signature has its own reference
set and its own pre-trained model pair. Both are loaded once per process and
never mutated afterwards, so concurrent calls can share them without locks.

On-disk layout expected by ReferenceRegistry.load_directory:

    <directory>/
    ├── reference_minimal.csv        # sample ID index, gene columns, SRS, SRSq
    ├── srs_model_minimal.joblib
    ├── srsq_model_minimal.joblib
    ├── reference_extended.csv
    ├── srs_model_extended.joblib
    └── srsq_model_extended.joblib
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from sepstrat.data.signatures import (
    SRS_GROUPS,
    Signature,
    validate_columns,
    validate_samples,
)
from sepstrat.models.base import ModelPair
from sepstrat.models.sklearn_models import SklearnModelPair
from sepstrat.utils.config import get_value

logger = logging.getLogger(__name__)

SRS_COLUMN = "SRS"
SRSQ_COLUMN = "SRSq"


@dataclass(frozen=True)
class ReferenceSet:
    """Immutable reference cohort for one signature.

    Attributes:
        signature: Gene signature the expression columns belong to.
        expression: Samples x genes, canonical column order.
        srs: Known SRS group per reference sample.
        srsq: Known SRSq per reference sample.
    """

    signature: Signature
    expression: pd.DataFrame
    srs: pd.Series
    srsq: pd.Series

    def __post_init__(self):
        signature = Signature.from_name(self.signature)
        validate_samples(self.expression)
        expression = validate_columns(self.expression, signature).astype(float)

        if not expression.index.equals(self.srs.index) or not expression.index.equals(self.srsq.index):
            raise ValueError("Reference labels must be indexed like the expression matrix")

        unknown = sorted(set(self.srs.astype(str)) - set(SRS_GROUPS))
        if unknown:
            raise ValueError(f"Unknown SRS labels in reference set: {unknown}")

        object.__setattr__(self, "signature", signature)
        object.__setattr__(self, "expression", expression.copy())
        object.__setattr__(self, "srs", self.srs.astype(str).copy())
        object.__setattr__(self, "srsq", self.srsq.astype(float).copy())

    @property
    def n_samples(self) -> int:
        return self.expression.shape[0]

    @property
    def genes(self) -> List[str]:
        return list(self.expression.columns)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        signature: Union[str, Signature],
    ) -> "ReferenceSet":
        """Build from one table with gene columns plus SRS and SRSq columns."""
        for column in (SRS_COLUMN, SRSQ_COLUMN):
            if column not in frame.columns:
                raise ValueError(f"Reference table is missing the '{column}' column")
        return cls(
            signature=Signature.from_name(signature),
            expression=frame.drop(columns=[SRS_COLUMN, SRSQ_COLUMN]),
            srs=frame[SRS_COLUMN],
            srsq=frame[SRSQ_COLUMN],
        )

    def to_frame(self) -> pd.DataFrame:
        frame = self.expression.copy()
        frame[SRS_COLUMN] = self.srs
        frame[SRSQ_COLUMN] = self.srsq
        return frame


def read_reference_csv(path: Union[str, Path], signature: Union[str, Signature]) -> ReferenceSet:
    """Read a reference table written by ReferenceSet.to_frame().to_csv()."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Reference table not found: {path}")
    frame = pd.read_csv(path, index_col=0)
    frame.index = frame.index.astype(str)
    reference = ReferenceSet.from_frame(frame, signature)
    logger.info(f"Loaded {reference.n_samples} reference samples from {path.name}")
    return reference


@dataclass(frozen=True)
class ReferenceBundle:
    """Reference set and model pair for one signature."""

    reference: ReferenceSet
    models: ModelPair

    @property
    def signature(self) -> Signature:
        return self.reference.signature


class ReferenceRegistry:
    """Holds one ReferenceBundle per signature.

    Bundles are registered once; re-registering a signature is refused so
    that the data a running process predicts against never changes.
    """

    def __init__(self):
        self._bundles: Dict[Signature, ReferenceBundle] = {}
        self._lock = threading.Lock()

    def register(self, bundle: ReferenceBundle) -> None:
        with self._lock:
            if bundle.signature in self._bundles:
                raise ValueError(f"Reference for '{bundle.signature.value}' is already loaded")
            self._bundles[bundle.signature] = bundle
        logger.info(
            f"Registered '{bundle.signature.value}' reference "
            f"({bundle.reference.n_samples} samples)"
        )

    def is_loaded(self, signature: Union[str, Signature]) -> bool:
        return Signature.from_name(signature) in self._bundles

    def get(self, signature: Union[str, Signature]) -> ReferenceBundle:
        """Return the bundle for a signature.

        Raises:
            LookupError: If no bundle was registered for it.
        """
        signature = Signature.from_name(signature)
        try:
            return self._bundles[signature]
        except KeyError:
            raise LookupError(
                f"No reference data loaded for the '{signature.value}' signature"
            ) from None

    def load_directory(self, directory: Union[str, Path]) -> List[Signature]:
        """Load every signature whose artifacts exist in a directory.

        Returns:
            Signatures newly registered.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Reference directory not found: {directory}")

        loaded = []
        for signature in Signature:
            if self.is_loaded(signature):
                continue
            table = directory / f"reference_{signature.value}.csv"
            if not table.exists():
                logger.warning(f"No reference table for '{signature.value}' in {directory}")
                continue
            bundle = ReferenceBundle(
                reference=read_reference_csv(table, signature),
                models=SklearnModelPair.from_joblib(
                    directory / f"srs_model_{signature.value}.joblib",
                    directory / f"srsq_model_{signature.value}.joblib",
                ),
            )
            self.register(bundle)
            loaded.append(signature)
        return loaded


_default_registry: Optional[ReferenceRegistry] = None
_default_lock = threading.Lock()


def get_registry() -> ReferenceRegistry:
    """Process-wide registry, created on first use."""
    global _default_registry
    if _default_registry is None:
        with _default_lock:
            if _default_registry is None:
                _default_registry = ReferenceRegistry()
    return _default_registry


def configure_registry(cfg) -> ReferenceRegistry:
    """Load the default registry from cfg.reference.directory."""
    registry = get_registry()
    directory = get_value(cfg, "reference.directory")
    if directory:
        registry.load_directory(directory)
    return registry
