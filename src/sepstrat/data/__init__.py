"""
Signatures, units and reference cohorts.

Components:
- signatures: Gene sets, SRS groups, input validation
- units: Expected value units per data source
- reference: Reference sets and the process-wide registry
"""

from .reference import (
    ReferenceBundle,
    ReferenceRegistry,
    ReferenceSet,
    configure_registry,
    get_registry,
    read_reference_csv,
)
from .signatures import (
    EXTENDED_GENES,
    MINIMAL_GENES,
    SRS_GROUPS,
    Signature,
    genes_for,
    group_index,
    missing_genes,
    validate_columns,
    validate_k,
    validate_samples,
)
from .units import EXPECTED_UNITS, linear_from_cq, neg_cq

__all__ = [
    # Signatures
    "EXTENDED_GENES",
    "MINIMAL_GENES",
    "SRS_GROUPS",
    "Signature",
    "genes_for",
    "group_index",
    "missing_genes",
    "validate_columns",
    "validate_k",
    "validate_samples",
    # Units
    "EXPECTED_UNITS",
    "linear_from_cq",
    "neg_cq",
    # Reference
    "ReferenceBundle",
    "ReferenceRegistry",
    "ReferenceSet",
    "configure_registry",
    "get_registry",
    "read_reference_csv",
]
