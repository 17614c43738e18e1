"""Pytest configuration and fixtures."""

import pytest
import numpy as np
import pandas as pd

from orthospec.expression import ExpressionMatrix
from orthospec.specificity import SpecificityTable


@pytest.fixture
def two_gene_matrix():
    """Genes A, B; group X = s1, s2; group Y = s3."""
    expression = pd.DataFrame(
        {"s1": [10.0, 1.0], "s2": [10.0, 1.0], "s3": [0.0, 9.0]},
        index=["A", "B"],
    )
    return ExpressionMatrix(expression, groups=["X", "X", "Y"], species="mouse")


@pytest.fixture
def sample_expression():
    """Create sample expression matrix (200 genes x 12 samples)."""
    np.random.seed(42)
    return pd.DataFrame(
        np.abs(np.random.randn(200, 12)) * 10,
        index=[f"gene_{i}" for i in range(200)],
        columns=[f"sample_{i}" for i in range(12)],
    )


@pytest.fixture
def sample_groups():
    """Four groups of three replicates each."""
    return [g for g in ["neuron", "astrocyte", "microglia", "oligo"] for _ in range(3)]


@pytest.fixture
def sample_metadata(sample_expression, sample_groups):
    """Create sample metadata."""
    return pd.DataFrame(
        {"cell_type": sample_groups, "batch": ["b1", "b2", "b3"] * 4},
        index=sample_expression.columns,
    )


@pytest.fixture
def expression_matrix(sample_expression, sample_groups):
    """ExpressionMatrix over the random sample expression."""
    return ExpressionMatrix(sample_expression, groups=sample_groups, species="mouse")


@pytest.fixture
def species_tables():
    """Hand-made specificity tables for two species sharing groups N and A."""
    mouse = pd.DataFrame(
        {"N": [0.9, 0.8, 0.7, 0.6, 0.5]},
        index=["g1", "g2", "g3", "g4", "g5"],
    )
    mouse["A"] = 1.0 - mouse["N"]

    human = pd.DataFrame(
        {"N": [0.5, 0.9, 0.7, 0.1, 0.95]},
        index=["g1", "g2", "g3", "g4", "g6"],
    )
    human["A"] = 1.0 - human["N"]

    return {
        "mouse": SpecificityTable.from_frame(mouse, species="mouse"),
        "human": SpecificityTable.from_frame(human, species="human"),
    }
