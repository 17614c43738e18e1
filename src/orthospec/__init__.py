"""
orthospec - Specificity index analysis for cross-species expression comparison.

This package provides:
- Specificity index (SI) scoring of genes against cell types / tissues
- Seeded, parallel replicate resampling for ranking stability
- Top-N extraction and rank lookup within specificity tables
- Cross-species rank comparison on shared ortholog identifiers
- CSV / JSON export of results

Example:
    >>> from orthospec import ExpressionMatrix, compute_specificity, top_n
    >>>
    >>> matrix = ExpressionMatrix(expression, groups=labels, species="mouse")
    >>> table = compute_specificity(matrix, bottom_threshold=1.0)
    >>> top_n(table, "microglia", 20)
"""

__version__ = "0.1.0"

# Core infrastructure
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

# Analysis
from orthospec.expression.matrix import ExpressionMatrix
from orthospec.specificity.calculator import (
    SpecificityCalculator,
    SpecificityTable,
    compute_specificity,
)
from orthospec.specificity.resampling import (
    ResamplingEngine,
    ResamplingResult,
    compute_with_replicate_resampling,
)
from orthospec.ranking.extractor import RankExtractor, RankTable, rank_of, top_n
from orthospec.cross_species.comparator import (
    CrossSpeciesComparator,
    RankComparison,
    compare_across_species,
)

# Writers are imported as needed:
#   from orthospec.export import CSVWriter, JSONWriter

__all__ = [
    # Version
    "__version__",
    # Config
    "Config",
    "SpecificityConfig",
    "ResamplingConfig",
    "ComparisonConfig",
    # Errors
    "SpecificityError",
    "ShapeMismatchError",
    "DegenerateInputError",
    "GeneNotFoundError",
    "MissingOrthologError",
    "NonFiniteScoreError",
    "IterationFailure",
    "FailureRateExceededError",
    # Analysis
    "ExpressionMatrix",
    "SpecificityCalculator",
    "SpecificityTable",
    "compute_specificity",
    "ResamplingEngine",
    "ResamplingResult",
    "compute_with_replicate_resampling",
    "RankExtractor",
    "RankTable",
    "rank_of",
    "top_n",
    "CrossSpeciesComparator",
    "RankComparison",
    "compare_across_species",
]
