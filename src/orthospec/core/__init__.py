"""
Core infrastructure for orthospec.

Provides:
- Configuration management
- Error taxonomy
"""

from orthospec.core.config import (
    Config,
    SpecificityConfig,
    ResamplingConfig,
    ComparisonConfig,
)
from orthospec.core.errors import (
    SpecificityError,
    ShapeMismatchError,
    DegenerateInputError,
    GeneNotFoundError,
    MissingOrthologError,
    NonFiniteScoreError,
    IterationFailure,
    FailureRateExceededError,
)

__all__ = [
    "Config",
    "SpecificityConfig",
    "ResamplingConfig",
    "ComparisonConfig",
    "SpecificityError",
    "ShapeMismatchError",
    "DegenerateInputError",
    "GeneNotFoundError",
    "MissingOrthologError",
    "NonFiniteScoreError",
    "IterationFailure",
    "FailureRateExceededError",
]
