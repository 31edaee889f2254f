"""
Error taxonomy for the recommendation core.

InsufficientDataError and PersistenceError are expected at runtime and are
handled inside the services; ModelNotTrainedError and DimensionMismatchError
signal caller errors on direct model calls.
"""


class RecommendationError(Exception):
    """Base class for recommendation core errors"""


class InsufficientDataError(RecommendationError):
    """Corpus or user history too small to train a model or build a profile"""


class ModelNotTrainedError(RecommendationError):
    """A fitted model is required for the requested operation"""

    def __init__(self, message: str = "Model not trained. Call fit() first."):
        super().__init__(message)


class DimensionMismatchError(RecommendationError):
    """Vectors produced under different vocabularies were compared"""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vectors must have the same length (got {left} and {right})")
        self.left = left
        self.right = right


class PersistenceError(RecommendationError):
    """Storage read or write failed after retries"""

    def __init__(self, operation: str, cause: Exception = None):
        message = f"Persistence operation '{operation}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause
