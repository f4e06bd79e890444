"""
Modèles de domaine avec validation Pydantic v2.
(Domain models with Pydantic v2 validation)
"""

from src.data.domain.models.sample import OnlineCountSample, Sample

__all__ = [
    "OnlineCountSample",
    "Sample",
]
