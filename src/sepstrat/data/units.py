# src/sepstrat/data/units.py
"""Expected value units per data source.

Units are not validated programmatically. They affect accuracy, so inputs
should be converted before calling stratify/project:

    Source      | stratify                           | project
    ------------|------------------------------------|---------------------
    Microarray  | background-corrected, VSN, log     | same
    RNA-seq     | log(counts-per-million)            | same
    qPCR        | negative Cq                        | 2^(negative Cq)
"""

from typing import Dict

import numpy as np
import pandas as pd

EXPECTED_UNITS: Dict[str, Dict[str, str]] = {
    "microarray": {
        "stratify": "background-corrected, VSN-normalised log intensity",
        "project": "background-corrected, VSN-normalised log intensity",
    },
    "rnaseq": {
        "stratify": "log(counts-per-million)",
        "project": "log(counts-per-million)",
    },
    "qpcr": {
        "stratify": "negative Cq",
        "project": "2^(negative Cq)",
    },
}


def neg_cq(cq: pd.DataFrame) -> pd.DataFrame:
    """qPCR Cq values to the unit expected by stratify."""
    return -cq


def linear_from_cq(cq: pd.DataFrame) -> pd.DataFrame:
    """qPCR Cq values to the unit expected by project, 2^(-Cq)."""
    return pd.DataFrame(
        np.power(2.0, -cq.to_numpy(dtype=float)),
        index=cq.index,
        columns=cq.columns,
    )
