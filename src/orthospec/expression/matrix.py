"""
Replicate-resolved expression matrix with resolved group assignment.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from orthospec.core.errors import GeneNotFoundError, ShapeMismatchError

logger = logging.getLogger(__name__)


def _is_empty_label(label) -> bool:
    if label is None:
        return True
    if pd.api.types.is_scalar(label) and pd.isna(label):
        return True
    return str(label).strip() == ""


class ExpressionMatrix:
    """
    Genes x samples matrix of normalized expression plus one group label
    per sample.

    Group labels are resolved once, at construction, into an ordered tuple
    of group identifiers and the sample positions of each group. Instances
    are immutable; ``exclude_groups`` and ``subset_genes`` return new
    matrices.

    Missing measurements may be given as NaN; they are skipped when group
    means are taken.

    Example:
        >>> matrix = ExpressionMatrix(
        ...     expression_df,
        ...     groups=["neuron", "neuron", "astrocyte"],
        ...     species="mouse",
        ... )
        >>> matrix.groups
        ('neuron', 'astrocyte')
    """

    def __init__(
        self,
        expression: pd.DataFrame,
        groups: Sequence[str],
        species: Optional[str] = None,
        group_order: Optional[Sequence[str]] = None,
    ):
        """
        Initialize expression matrix.

        Args:
            expression: Expression values (genes x samples), non-negative.
            groups: Group label for every sample, in column order.
            species: Optional species label.
            group_order: Explicit group order; must list exactly the groups
                present in ``groups``.
        """
        if not isinstance(expression, pd.DataFrame):
            raise TypeError(
                f"expression must be a pandas DataFrame, got {type(expression).__name__}"
            )

        labels = list(groups)
        if len(labels) != expression.shape[1]:
            raise ShapeMismatchError(
                f"Got {len(labels)} group labels for {expression.shape[1]} samples"
            )
        for sample, label in zip(expression.columns, labels):
            if _is_empty_label(label):
                raise ShapeMismatchError(f"Sample '{sample}' has an empty group label")
        labels = [str(label) for label in labels]

        if expression.index.has_duplicates:
            dupes = expression.index[expression.index.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate gene identifiers: {dupes[:10]}")
        if expression.columns.has_duplicates:
            dupes = expression.columns[expression.columns.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate sample identifiers: {dupes[:10]}")

        values = expression.to_numpy(dtype=np.float64, copy=True)
        if np.isinf(values).any():
            raise ValueError("Expression values must be finite (NaN marks a missing value)")
        if (values < 0).any():
            raise ValueError("Expression values must be non-negative")
        values.setflags(write=False)

        present = list(dict.fromkeys(labels))
        if group_order is None:
            resolved = tuple(present)
        else:
            resolved = tuple(str(g) for g in group_order)
            if len(set(resolved)) != len(resolved):
                raise ValueError(f"Duplicate groups in group_order: {list(resolved)}")
            present_set = set(present)
            for group in resolved:
                if group not in present_set:
                    raise ShapeMismatchError(
                        f"Group '{group}' has no samples", group=group
                    )
            unlisted = [g for g in present if g not in set(resolved)]
            if unlisted:
                raise ShapeMismatchError(
                    f"Groups missing from group_order: {unlisted}", group=unlisted[0]
                )

        label_array = np.asarray(labels, dtype=object)
        indices = {}
        for group in resolved:
            idx = np.flatnonzero(label_array == group)
            idx.setflags(write=False)
            indices[group] = idx

        self._values = values
        self._genes = pd.Index(expression.index.astype(str), name="gene")
        self._samples = pd.Index(expression.columns.astype(str), name="sample")
        self._labels = tuple(labels)
        self._groups = resolved
        self._group_indices = MappingProxyType(indices)
        self._has_missing = bool(np.isnan(values).any())
        self.species = species

    # ------------------------------------------------------------------
    # Alternate constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_frames(
        cls,
        expression: pd.DataFrame,
        metadata: pd.DataFrame,
        group_col: str = "cell_type",
        species: Optional[str] = None,
        group_order: Optional[Sequence[str]] = None,
    ) -> "ExpressionMatrix":
        """Build from an expression table and a sample metadata table.

        Samples are aligned on the metadata index; expression columns
        without metadata are dropped.
        """
        if group_col not in metadata.columns:
            raise ValueError(f"Group column '{group_col}' not in metadata")

        common = [s for s in expression.columns if s in metadata.index]
        if not common:
            raise ShapeMismatchError("No samples shared between expression and metadata")
        dropped = expression.shape[1] - len(common)
        if dropped:
            logger.warning(
                "Dropping %d samples without metadata (%d kept)", dropped, len(common)
            )

        return cls(
            expression[common],
            groups=metadata.loc[common, group_col].tolist(),
            species=species,
            group_order=group_order,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def genes(self) -> pd.Index:
        return self._genes

    @property
    def samples(self) -> pd.Index:
        return self._samples

    @property
    def groups(self) -> tuple[str, ...]:
        """Resolved group identifiers, in column order."""
        return self._groups

    @property
    def group_labels(self) -> tuple[str, ...]:
        """Group label of every sample, in sample order."""
        return self._labels

    @property
    def group_indices(self) -> Mapping[str, np.ndarray]:
        """Read-only mapping of group -> sample positions."""
        return self._group_indices

    @property
    def values(self) -> np.ndarray:
        """Read-only expression values (genes x samples)."""
        return self._values

    @property
    def n_genes(self) -> int:
        return self._values.shape[0]

    @property
    def n_samples(self) -> int:
        return self._values.shape[1]

    @property
    def n_groups(self) -> int:
        return len(self._groups)

    @property
    def has_missing(self) -> bool:
        return self._has_missing

    def replicate_counts(self) -> dict[str, int]:
        """Number of replicate samples per group."""
        return {g: len(idx) for g, idx in self._group_indices.items()}

    def to_frame(self) -> pd.DataFrame:
        """Expression values as a DataFrame (genes x samples)."""
        return pd.DataFrame(
            self._values.copy(), index=self._genes, columns=self._samples
        )

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def group_means(
        self,
        sample_indices: Optional[Mapping[str, np.ndarray]] = None,
    ) -> np.ndarray:
        """
        Mean expression per gene within each group.

        Args:
            sample_indices: Sample positions per group to average over
                (defaults to every replicate). Positions may repeat, as
                produced by bootstrap draws.

        Returns:
            Array (genes x groups) in ``groups`` order. A gene with no
            observed value in a group gets NaN.
        """
        indices = self._group_indices if sample_indices is None else sample_indices
        means = np.empty((self.n_genes, self.n_groups), dtype=np.float64)

        for j, group in enumerate(self._groups):
            if group not in indices:
                raise ShapeMismatchError(f"No samples given for group '{group}'", group=group)
            idx = np.asarray(indices[group], dtype=np.intp)
            if idx.size == 0:
                raise ShapeMismatchError(f"Group '{group}' has no samples", group=group)

            block = self._values[:, idx]
            if not self._has_missing:
                means[:, j] = block.mean(axis=1)
                continue

            observed = ~np.isnan(block)
            counts = observed.sum(axis=1)
            totals = np.where(observed, block, 0.0).sum(axis=1)
            means[:, j] = np.divide(
                totals, counts, out=np.full(self.n_genes, np.nan), where=counts > 0
            )

        return means

    # ------------------------------------------------------------------
    # Derived matrices
    # ------------------------------------------------------------------

    def exclude_groups(self, *groups: str) -> "ExpressionMatrix":
        """Return a new matrix without the samples of the given groups."""
        excluded = set(groups)
        unknown = [g for g in groups if g not in self._group_indices]
        if unknown:
            raise ShapeMismatchError(f"Group '{unknown[0]}' has no samples", group=unknown[0])

        keep = [i for i, label in enumerate(self._labels) if label not in excluded]
        frame = self.to_frame().iloc[:, keep]
        return ExpressionMatrix(
            frame,
            groups=[self._labels[i] for i in keep],
            species=self.species,
            group_order=[g for g in self._groups if g not in excluded],
        )

    def subset_genes(self, genes: Iterable[str]) -> "ExpressionMatrix":
        """Return a new matrix restricted to ``genes`` (in the given order)."""
        genes = list(genes)
        missing = [g for g in genes if g not in self._genes]
        if missing:
            raise GeneNotFoundError(missing, species=self.species)

        return ExpressionMatrix(
            self.to_frame().loc[genes],
            groups=self._labels,
            species=self.species,
            group_order=self._groups,
        )

    def __repr__(self) -> str:
        species = f", species={self.species!r}" if self.species else ""
        return (
            f"ExpressionMatrix({self.n_genes} genes x {self.n_samples} samples, "
            f"groups={list(self._groups)}{species})"
        )
