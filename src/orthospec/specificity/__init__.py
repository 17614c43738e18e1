"""
Specificity index computation.

Point estimates from all replicates, and seeded replicate resampling for
ranking stability.
"""

from orthospec.specificity.calculator import (
    SpecificityCalculator,
    SpecificityTable,
    as_expression_matrix,
    compute_specificity,
)
from orthospec.specificity.strategies import (
    ResamplingStrategy,
    BootstrapStrategy,
    LeaveOneOutStrategy,
    SubsampleStrategy,
    get_strategy,
)
from orthospec.specificity.resampling import (
    ResamplingEngine,
    ResamplingResult,
    compute_with_replicate_resampling,
)

__all__ = [
    # Scoring
    "SpecificityCalculator",
    "SpecificityTable",
    "as_expression_matrix",
    "compute_specificity",
    # Strategies
    "ResamplingStrategy",
    "BootstrapStrategy",
    "LeaveOneOutStrategy",
    "SubsampleStrategy",
    "get_strategy",
    # Resampling
    "ResamplingEngine",
    "ResamplingResult",
    "compute_with_replicate_resampling",
]
