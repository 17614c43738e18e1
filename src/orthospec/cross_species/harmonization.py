"""
Group and gene harmonization across species.

Specificity is relative to the set of groups in the denominator, so
cross-species comparisons are only like-for-like when every species is
scored against the same groups.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from orthospec.core.errors import DegenerateInputError
from orthospec.expression.matrix import ExpressionMatrix
from orthospec.specificity.calculator import SpecificityTable

logger = logging.getLogger(__name__)


def shared_groups(matrices: Mapping[str, ExpressionMatrix]) -> list[str]:
    """Groups present in every species, in the first species' order."""
    if not matrices:
        return []
    species = list(matrices)
    common = set(matrices[species[0]].groups)
    for name in species[1:]:
        common &= set(matrices[name].groups)
    return [g for g in matrices[species[0]].groups if g in common]


def balance_groups(
    matrices: Mapping[str, ExpressionMatrix],
    exclude: Iterable[str] = (),
) -> dict[str, ExpressionMatrix]:
    """
    Restrict every species to the groups they all share.

    Args:
        matrices: Species name to expression matrix.
        exclude: Groups to drop everywhere, even if shared.

    Returns:
        New matrices with identical group sets (same order).
    """
    excluded = set(exclude)
    keep = [g for g in shared_groups(matrices) if g not in excluded]
    if len(keep) < 2:
        raise DegenerateInputError(
            f"Fewer than two groups shared across species: {keep}", groups=tuple(keep)
        )

    balanced = {}
    for name, matrix in matrices.items():
        drop = [g for g in matrix.groups if g not in keep]
        if drop:
            logger.info("%s: excluding groups %s", name, drop)
            matrix = matrix.exclude_groups(*drop)
        # Same column order in every species
        if matrix.groups != tuple(keep):
            matrix = ExpressionMatrix(
                matrix.to_frame(),
                groups=matrix.group_labels,
                species=matrix.species,
                group_order=keep,
            )
        balanced[name] = matrix
    return balanced


def shared_genes(tables: Mapping[str, SpecificityTable]) -> list[str]:
    """Genes (ortholog identifiers) present in every table, first table order."""
    if not tables:
        return []
    names = list(tables)
    common = set(tables[names[0]].genes)
    for name in names[1:]:
        common &= set(tables[name].genes)
    return [g for g in tables[names[0]].genes if g in common]
