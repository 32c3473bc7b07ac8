"""Shared fixtures for sepstrat tests."""

import tempfile
from pathlib import Path
from typing import Dict, Generator, Sequence

import numpy as np
import pandas as pd
import pytest
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor

from sepstrat.alignment.mnn import cosine_normalize
from sepstrat.data.reference import ReferenceBundle, ReferenceRegistry, ReferenceSet
from sepstrat.data.signatures import Signature, genes_for
from sepstrat.models.sklearn_models import SklearnModelPair

# Sign patterns per SRS group. Groups differ in direction, not in scale.
GROUP_PATTERNS: Dict[str, Sequence[float]] = {
    "SRS3": [1, -1, 1, -1, 1, -1, -1],
    "SRS2": [1, -1, 1, -1, -1, 1, -1],
    "SRS1": [1, -1, -1, 1, 1, -1, -1],
}
GROUP_SRSQ = {"SRS3": 0.05, "SRS2": 0.5, "SRS1": 0.9}


def group_profile(group: str, n_genes: int) -> np.ndarray:
    return np.resize(np.asarray(GROUP_PATTERNS[group], dtype=float), n_genes)


def make_reference_frame(
    signature: Signature,
    counts: Dict[str, int],
    noise: float = 0.1,
    seed: int = 0,
) -> pd.DataFrame:
    """Reference table (genes + SRS + SRSq) with well separated groups."""
    rng = np.random.RandomState(seed)
    genes = list(genes_for(signature))
    rows, names, labels, scores = [], [], [], []
    for group, n in counts.items():
        for i in range(n):
            rows.append(group_profile(group, len(genes)) + rng.randn(len(genes)) * noise)
            names.append(f"ref_{group}_{i}")
            labels.append(group)
            scores.append(GROUP_SRSQ[group] + rng.randn() * 0.02)
    frame = pd.DataFrame(rows, index=names, columns=genes)
    frame["SRS"] = labels
    frame["SRSq"] = scores
    return frame


def train_models(reference: ReferenceSet) -> SklearnModelPair:
    """Random forests fitted on the cosine-normalised reference profiles."""
    normed, _ = cosine_normalize(reference.expression.to_numpy())
    features = pd.DataFrame(normed, index=reference.expression.index, columns=reference.genes)

    classifier = RandomForestClassifier(n_estimators=50, random_state=0)
    classifier.fit(features, reference.srs)
    regressor = RandomForestRegressor(n_estimators=50, random_state=0)
    regressor.fit(features, reference.srsq)
    return SklearnModelPair(classifier, regressor)


def make_bundle(
    signature: Signature,
    counts: Dict[str, int],
    seed: int = 0,
) -> ReferenceBundle:
    reference = ReferenceSet.from_frame(
        make_reference_frame(signature, counts, seed=seed), signature
    )
    return ReferenceBundle(reference=reference, models=train_models(reference))


def make_cohort(
    signature: Signature,
    n_per_group: int = 10,
    scale: float = 1.3,
    shift: float = 0.2,
    noise: float = 0.1,
    seed: int = 1,
) -> pd.DataFrame:
    """Input cohort drawn from the reference groups with a batch effect."""
    rng = np.random.RandomState(seed)
    genes = list(genes_for(signature))
    rows, names = [], []
    for group in GROUP_PATTERNS:
        for i in range(n_per_group):
            profile = group_profile(group, len(genes)) + rng.randn(len(genes)) * noise
            rows.append(profile * scale + shift)
            names.append(f"patient_{group}_{i}")
    return pd.DataFrame(rows, index=names, columns=genes)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="session")
def small_bundle() -> ReferenceBundle:
    """Minimal-signature reference with 10 samples (4 SRS3, 3 SRS2, 3 SRS1)."""
    return make_bundle(Signature.MINIMAL, {"SRS3": 4, "SRS2": 3, "SRS1": 3})


@pytest.fixture(scope="session")
def minimal_bundle() -> ReferenceBundle:
    """Minimal-signature reference with 15 samples per group."""
    return make_bundle(Signature.MINIMAL, {"SRS1": 15, "SRS2": 15, "SRS3": 15})


@pytest.fixture(scope="session")
def extended_bundle() -> ReferenceBundle:
    """Extended-signature reference with 15 samples per group."""
    return make_bundle(Signature.EXTENDED, {"SRS1": 15, "SRS2": 15, "SRS3": 15}, seed=3)


@pytest.fixture
def small_registry(small_bundle: ReferenceBundle) -> ReferenceRegistry:
    registry = ReferenceRegistry()
    registry.register(small_bundle)
    return registry


@pytest.fixture
def registry(minimal_bundle: ReferenceBundle, extended_bundle: ReferenceBundle) -> ReferenceRegistry:
    registry = ReferenceRegistry()
    registry.register(minimal_bundle)
    registry.register(extended_bundle)
    return registry


@pytest.fixture
def minimal_cohort() -> pd.DataFrame:
    """30 minimal-signature samples with a batch effect."""
    return make_cohort(Signature.MINIMAL)


@pytest.fixture
def extended_cohort() -> pd.DataFrame:
    """30 extended-signature samples with a batch effect."""
    return make_cohort(Signature.EXTENDED, seed=4)


@pytest.fixture
def reference_dir(temp_dir: Path, minimal_bundle: ReferenceBundle) -> Path:
    """Directory with the minimal reference table and joblib models."""
    directory = temp_dir / "reference"
    directory.mkdir()
    minimal_bundle.reference.to_frame().to_csv(directory / "reference_minimal.csv")
    minimal_bundle.models.save(
        directory / "srs_model_minimal.joblib",
        directory / "srsq_model_minimal.joblib",
    )
    return directory


@pytest.fixture
def reference_frame() -> pd.DataFrame:
    """Six-sample minimal reference table (two per group)."""
    return make_reference_frame(Signature.MINIMAL, {"SRS1": 2, "SRS2": 2, "SRS3": 2})
