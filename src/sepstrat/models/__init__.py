"""
Pre-trained SRS / SRSq models.

Components:
- base: ModelPair interface and probability normalisation
- sklearn_models: joblib-persisted scikit-learn estimators
"""

from .base import ModelPair, normalize_probabilities
from .sklearn_models import SklearnModelPair

__all__ = [
    "ModelPair",
    "SklearnModelPair",
    "normalize_probabilities",
]
