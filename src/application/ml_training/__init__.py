"""
ML Training Application Layer

Scheduling of model retraining and recommendation regeneration for the
rental recommendation core.
"""

from .recommendation_scheduler import RecommendationScheduler, GenerationStats

__all__ = [
    'RecommendationScheduler',
    'GenerationStats'
]
