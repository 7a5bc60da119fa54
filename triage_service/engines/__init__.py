# Triage Engines Package
"""
Core engines for symptom triage.

triage_engine is imported directly (it depends on model_adapters,
which depends on feature_extraction here).
"""

from .dataset import Dataset, DatasetLoader, Disease
from .scoring import Prediction, Reliability

__all__ = [
    "Dataset",
    "DatasetLoader",
    "Disease",
    "Prediction",
    "Reliability"
]
