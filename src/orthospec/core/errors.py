"""
Error taxonomy for specificity computation.

Structural errors (shape mismatch, degenerate input) abort the call.
Per-iteration numerical failures are recorded by the resampling engine
as ``IterationFailure`` objects and only escalate through
``FailureRateExceededError``.
"""

from __future__ import annotations

from typing import Optional


class SpecificityError(Exception):
    """Base class for all orthospec errors."""


class ShapeMismatchError(SpecificityError, ValueError):
    """Group labels do not line up with samples, or a group has no samples."""

    def __init__(self, message: str, group: Optional[str] = None):
        super().__init__(message)
        self.group = group


class DegenerateInputError(SpecificityError, ValueError):
    """Fewer than two distinct groups; specificity is undefined."""

    def __init__(self, message: str, groups: tuple[str, ...] = ()):
        super().__init__(message)
        self.groups = groups


class GeneNotFoundError(SpecificityError, LookupError):
    """One or more requested genes are absent from a specificity table."""

    def __init__(
        self,
        genes: list[str],
        group: Optional[str] = None,
        species: Optional[str] = None,
    ):
        shown = ", ".join(genes[:10])
        if len(genes) > 10:
            shown += f", ... ({len(genes)} total)"
        where = f" (species={species})" if species else ""
        super().__init__(f"Genes not found in specificity table{where}: {shown}")
        self.genes = genes
        self.group = group
        self.species = species


class MissingOrthologError(SpecificityError, LookupError):
    """A reference gene has no same-identifier entry in a target species."""

    def __init__(self, gene: str, species: str, group: Optional[str] = None):
        super().__init__(
            f"Gene '{gene}' has no ortholog entry in species '{species}'"
            + (f" (group '{group}')" if group else "")
        )
        self.gene = gene
        self.species = species
        self.group = group


class NonFiniteScoreError(SpecificityError, ArithmeticError):
    """A group mean is not finite, so the score row cannot be formed."""

    def __init__(self, gene: str, group: str, value: float):
        super().__init__(
            f"Non-finite mean expression {value!r} for gene '{gene}' in group '{group}'"
        )
        self.gene = gene
        self.group = group
        self.value = value


class IterationFailure(SpecificityError):
    """Record of a single resampling iteration that could not be aggregated.

    Carries the seed and iteration index, which is enough to replay the
    exact draw with ``ResamplingEngine.replay``.
    """

    def __init__(
        self,
        iteration: int,
        seed: Optional[int],
        cause: BaseException,
        gene: Optional[str] = None,
        group: Optional[str] = None,
    ):
        super().__init__(
            f"Iteration {iteration} (seed={seed}) failed: {cause}"
        )
        self.iteration = iteration
        self.seed = seed
        self.cause = cause
        self.gene = gene if gene is not None else getattr(cause, "gene", None)
        self.group = group if group is not None else getattr(cause, "group", None)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "iteration": self.iteration,
            "seed": self.seed,
            "gene": self.gene,
            "group": self.group,
            "error": str(self.cause),
            "error_type": type(self.cause).__name__,
        }


class FailureRateExceededError(SpecificityError, RuntimeError):
    """Too many resampling iterations failed for the run to be trusted."""

    def __init__(
        self,
        n_failed: int,
        n_attempted: int,
        max_failure_rate: Optional[float],
        failures: Optional[list[IterationFailure]] = None,
    ):
        rate = n_failed / n_attempted if n_attempted else 1.0
        limit = "100%" if max_failure_rate is None else f"{max_failure_rate:.1%}"
        super().__init__(
            f"{n_failed}/{n_attempted} resampling iterations failed "
            f"({rate:.1%}, limit {limit})"
        )
        self.n_failed = n_failed
        self.n_attempted = n_attempted
        self.max_failure_rate = max_failure_rate
        self.failures = failures or []
