# src/sepstrat/models/sklearn_models.py
"""scikit-learn backed SRS / SRSq models.

Wraps a fitted classifier (SRS) and a fitted regressor (SRSq), typically
random forests, persisted with joblib. Estimators are never refitted here.

Example:
    >>> models = SklearnModelPair.from_joblib("srs_model_minimal.joblib",
    ...                                       "srsq_model_minimal.joblib")
    >>> labels, probs = models.predict_label(aligned)
    >>> scores = models.predict_score(aligned)
"""

import logging
from pathlib import Path
from typing import Any, Tuple, Union

import joblib
import numpy as np
import pandas as pd

from sepstrat.data.signatures import SRS_GROUPS
from sepstrat.models.base import ModelPair, normalize_probabilities

logger = logging.getLogger(__name__)


class SklearnModelPair(ModelPair):
    """Fitted scikit-learn classifier and regressor.

    Args:
        classifier: Fitted estimator exposing predict_proba and classes_.
        regressor: Fitted estimator exposing predict.
    """

    def __init__(self, classifier: Any, regressor: Any):
        if not hasattr(classifier, "predict_proba") or not hasattr(classifier, "classes_"):
            raise TypeError("classifier must be a fitted estimator with predict_proba")
        if not hasattr(regressor, "predict"):
            raise TypeError("regressor must be a fitted estimator with predict")

        unknown = [c for c in classifier.classes_ if str(c) not in SRS_GROUPS]
        if unknown:
            raise ValueError(
                f"Classifier classes must be a subset of {SRS_GROUPS}, got {unknown}"
            )

        self.classifier = classifier
        self.regressor = regressor

    def _features(self, rows: pd.DataFrame) -> Union[pd.DataFrame, np.ndarray]:
        # Estimators fitted on DataFrames validate feature names
        if hasattr(self.classifier, "feature_names_in_"):
            return rows.loc[:, list(self.classifier.feature_names_in_)]
        return rows.to_numpy(dtype=float)

    def predict_label(self, rows: pd.DataFrame) -> Tuple[pd.Series, pd.DataFrame]:
        raw = self.classifier.predict_proba(self._features(rows))
        probs = pd.DataFrame(
            raw,
            index=rows.index,
            columns=[str(c) for c in self.classifier.classes_],
        )
        probs = normalize_probabilities(probs)

        # argmax picks the first maximum, i.e. the lowest group index
        labels = pd.Series(
            [SRS_GROUPS[i] for i in np.argmax(probs.to_numpy(), axis=1)],
            index=rows.index,
            name="SRS",
        )
        return labels, probs

    def predict_score(self, rows: pd.DataFrame) -> pd.Series:
        if hasattr(self.regressor, "feature_names_in_"):
            features = rows.loc[:, list(self.regressor.feature_names_in_)]
        else:
            features = rows.to_numpy(dtype=float)
        scores = np.asarray(self.regressor.predict(features), dtype=float).ravel()
        return pd.Series(scores, index=rows.index, name="SRSq")

    @classmethod
    def from_joblib(
        cls,
        srs_path: Union[str, Path],
        srsq_path: Union[str, Path],
    ) -> "SklearnModelPair":
        """Load a model pair from joblib artifacts.

        Raises:
            FileNotFoundError: If either artifact is missing.
        """
        srs_path, srsq_path = Path(srs_path), Path(srsq_path)
        for path in (srs_path, srsq_path):
            if not path.exists():
                raise FileNotFoundError(f"Model artifact not found: {path}")

        classifier = joblib.load(srs_path)
        regressor = joblib.load(srsq_path)
        logger.info(f"Loaded SRS model from {srs_path.name}, SRSq model from {srsq_path.name}")
        return cls(classifier, regressor)

    def save(self, srs_path: Union[str, Path], srsq_path: Union[str, Path]) -> None:
        """Persist both estimators with joblib."""
        for path, estimator in ((Path(srs_path), self.classifier), (Path(srsq_path), self.regressor)):
            path.parent.mkdir(parents=True, exist_ok=True)
            joblib.dump(estimator, path)
            logger.info(f"Saved model artifact to: {path}")
