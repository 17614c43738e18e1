"""
Replicate resampling for specificity stability.

Re-computes the specificity table on many randomized replicate
compositions and summarizes, per gene and group, the mean and spread of
the score and of the within-group rank.

Iteration k draws from a generator seeded by (seed, k) only, and
iterations are processed in fixed-size blocks whose partial summaries are
merged in block order. The result therefore does not depend on the
number of workers or on completion order.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional, Sequence, Union

import numpy as np
import pandas as pd

from orthospec.core.config import ResamplingConfig
from orthospec.core.errors import (
    FailureRateExceededError,
    IterationFailure,
    SpecificityError,
)
from orthospec.expression.matrix import ExpressionMatrix
from orthospec.ranking.extractor import RANK_METHODS, rank_columns
from orthospec.specificity.calculator import (
    SpecificityCalculator,
    SpecificityTable,
    as_expression_matrix,
)
from orthospec.specificity.strategies import ResamplingStrategy, get_strategy

logger = logging.getLogger(__name__)


@dataclass
class _Partial:
    """Running summary over a set of iterations (Welford / Chan merge)."""

    count: int
    score_mean: np.ndarray
    score_m2: np.ndarray
    rank_mean: np.ndarray
    rank_m2: np.ndarray
    top_hits: Optional[np.ndarray] = None

    @classmethod
    def empty(cls, shape: tuple[int, int], track_top: bool) -> "_Partial":
        return cls(
            count=0,
            score_mean=np.zeros(shape),
            score_m2=np.zeros(shape),
            rank_mean=np.zeros(shape),
            rank_m2=np.zeros(shape),
            top_hits=np.zeros(shape, dtype=np.int64) if track_top else None,
        )

    def add(self, scores: np.ndarray, ranks: np.ndarray, top_n: Optional[int]) -> None:
        self.count += 1
        delta = scores - self.score_mean
        self.score_mean += delta / self.count
        self.score_m2 += delta * (scores - self.score_mean)

        delta = ranks - self.rank_mean
        self.rank_mean += delta / self.count
        self.rank_m2 += delta * (ranks - self.rank_mean)

        if self.top_hits is not None:
            self.top_hits += ranks <= top_n

    def merge(self, other: "_Partial") -> "_Partial":
        if other.count == 0:
            return self
        if self.count == 0:
            return other

        n = self.count + other.count
        weight = other.count / n
        cross = self.count * other.count / n

        d_score = other.score_mean - self.score_mean
        d_rank = other.rank_mean - self.rank_mean
        return _Partial(
            count=n,
            score_mean=self.score_mean + d_score * weight,
            score_m2=self.score_m2 + other.score_m2 + d_score**2 * cross,
            rank_mean=self.rank_mean + d_rank * weight,
            rank_m2=self.rank_m2 + other.rank_m2 + d_rank**2 * cross,
            top_hits=None if self.top_hits is None else self.top_hits + other.top_hits,
        )

    def std(self, m2: np.ndarray) -> np.ndarray:
        if self.count < 2:
            return np.full_like(m2, np.nan)
        return np.sqrt(m2 / (self.count - 1))


@dataclass
class _BlockResult:
    """Outcome of one block of iterations."""

    block_index: int
    partial: _Partial
    failures: list[IterationFailure]
    n_attempted: int


class _BlockMerger:
    """Folds block results into one partial, strictly in block order.

    Blocks that finish ahead of their predecessors wait in a buffer until
    the gap is filled, so at most the out-of-order blocks are held.
    """

    def __init__(self, shape: tuple[int, int], track_top: bool):
        self.total = _Partial.empty(shape, track_top)
        self.failures: list[IterationFailure] = []
        self.attempted = 0
        self.next_index = 0
        self.buffer: dict[int, _BlockResult] = {}
        self.peak_buffered = 0

    @property
    def buffered(self) -> int:
        return len(self.buffer)

    def push(self, result: _BlockResult) -> None:
        self.buffer[result.block_index] = result
        while self.next_index in self.buffer:
            ready = self.buffer.pop(self.next_index)
            self.total = self.total.merge(ready.partial)
            self.failures.extend(ready.failures)
            self.attempted += ready.n_attempted
            self.next_index += 1
        self.peak_buffered = max(self.peak_buffered, len(self.buffer))


@dataclass(eq=False)
class ResamplingResult:
    """Point estimate plus resampling-derived stability summary."""

    point_estimate: SpecificityTable
    """Specificity table computed from all replicates."""

    mean_scores: pd.DataFrame
    """Mean score per gene and group across completed iterations."""

    std_scores: pd.DataFrame
    """Score standard deviation (NaN with fewer than two iterations)."""

    mean_ranks: pd.DataFrame
    """Mean within-group rank (1 = most specific)."""

    std_ranks: pd.DataFrame
    """Rank standard deviation."""

    n_requested: int
    """Iterations requested."""

    n_completed: int
    """Iterations aggregated."""

    n_failed: int
    """Iterations excluded after a numerical failure."""

    n_cancelled: int
    """Iterations never run because of cancellation."""

    seed: Optional[int] = None
    """Ensemble seed."""

    strategy: str = "none"
    """Resampling strategy name."""

    top_n: Optional[int] = None
    """N used for top_n_frequency."""

    top_n_frequency: Optional[pd.DataFrame] = None
    """Fraction of iterations with rank <= top_n."""

    failures: list[IterationFailure] = field(default_factory=list)
    """Failed iterations, in iteration order."""

    time_seconds: float = 0.0
    """Wall time of the run."""

    @property
    def cancelled(self) -> bool:
        return self.n_cancelled > 0

    @property
    def resampled_table(self) -> SpecificityTable:
        """Mean resampled scores as a SpecificityTable."""
        if self.n_completed == 0:
            raise ValueError(
                f"No resampling iterations completed ({self.n_failed} failed, "
                f"{self.n_cancelled} cancelled); use the point estimate"
            )
        return SpecificityTable(
            scores=self.mean_scores,
            bottom_threshold=self.point_estimate.bottom_threshold,
            species=self.point_estimate.species,
        )

    def table(self, source: Literal["point", "resampled"] = "point") -> SpecificityTable:
        """Pick the reported table explicitly."""
        if source == "point":
            return self.point_estimate
        if source == "resampled":
            return self.resampled_table
        raise ValueError(f"Unknown table source: {source}")

    def summary(self) -> pd.DataFrame:
        """Long-format table: one row per (gene, group)."""
        columns = {
            "score": self.point_estimate.scores,
            "mean_score": self.mean_scores,
            "std_score": self.std_scores,
            "mean_rank": self.mean_ranks,
            "std_rank": self.std_ranks,
        }
        if self.top_n_frequency is not None:
            columns["top_n_frequency"] = self.top_n_frequency

        long = {name: df.stack() for name, df in columns.items()}
        out = pd.DataFrame(long)
        out.index.names = ["gene", "group"]
        return out.reset_index()

    def to_dict(self) -> dict:
        """Run accounting (without the matrices)."""
        return {
            "n_requested": self.n_requested,
            "n_completed": self.n_completed,
            "n_failed": self.n_failed,
            "n_cancelled": self.n_cancelled,
            "cancelled": self.cancelled,
            "seed": self.seed,
            "strategy": self.strategy,
            "top_n": self.top_n,
            "time_seconds": self.time_seconds,
            "failures": [f.to_dict() for f in self.failures],
        }


class ResamplingEngine:
    """
    Runs seeded replicate resampling of the specificity computation.

    Example:
        >>> config = ResamplingConfig(iterations=1000, seed=7,
        ...                           parallel=True, n_workers=4)
        >>> engine = ResamplingEngine(config)
        >>> result = engine.run(matrix)
        >>> result.mean_ranks["microglia"].nsmallest(20)
    """

    def __init__(
        self,
        config: Optional[ResamplingConfig] = None,
        strategy: Optional[ResamplingStrategy] = None,
    ):
        """
        Initialize resampling engine.

        Args:
            config: Resampling configuration.
            strategy: Strategy instance (overrides ``config.strategy``).
        """
        if config is None:
            config = ResamplingConfig()
        self._validate(config)
        self.config = config
        self.calculator = SpecificityCalculator(config.bottom_threshold)
        self.strategy = strategy or get_strategy(config.strategy, **config.strategy_options)
        self._cancel_event = threading.Event()

    @staticmethod
    def _validate(config: ResamplingConfig) -> None:
        if config.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {config.iterations}")
        if config.iterations > 1 and config.seed is None:
            raise ValueError("seed is required when iterations > 1")
        if config.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {config.n_workers}")
        if config.block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {config.block_size}")
        if config.top_n is not None and config.top_n < 1:
            raise ValueError(f"top_n must be >= 1, got {config.top_n}")
        rate = config.max_failure_rate
        if rate is not None and not 0.0 <= rate <= 1.0:
            raise ValueError(f"max_failure_rate must be within [0, 1], got {rate}")
        if config.ties not in RANK_METHODS:
            raise ValueError(f"Unknown ties method: {config.ties}")

    def cancel(self) -> None:
        """Stop scheduling new iterations; in-flight iterations finish."""
        self._cancel_event.set()

    def iteration_rng(self, iteration: int) -> np.random.Generator:
        """Generator for iteration ``iteration``; depends only on (seed, iteration)."""
        seq = np.random.SeedSequence(self.config.seed, spawn_key=(iteration,))
        return np.random.default_rng(seq)

    def _iteration_scores(self, matrix: ExpressionMatrix, iteration: int) -> np.ndarray:
        rng = self.iteration_rng(iteration)
        drawn = self.strategy.draw(matrix.group_indices, rng)
        scores, _ = self.calculator.compute_scores(matrix, drawn)
        return scores

    def replay(self, matrix: ExpressionMatrix, iteration: int) -> SpecificityTable:
        """Recompute a single iteration, raising whatever it raised in the run."""
        scores = self._iteration_scores(matrix, iteration)
        return SpecificityTable(
            scores=pd.DataFrame(scores, index=matrix.genes, columns=list(matrix.groups)),
            bottom_threshold=self.calculator.bottom_threshold,
            species=matrix.species,
        )

    def _run_block(
        self,
        matrix: ExpressionMatrix,
        block_index: int,
        iterations: range,
        should_stop: Callable[[], bool],
    ) -> _BlockResult:
        partial = _Partial.empty(
            (matrix.n_genes, matrix.n_groups), self.config.top_n is not None
        )
        failures = []
        attempted = 0

        for k in iterations:
            if should_stop():
                break
            attempted += 1
            try:
                scores = self._iteration_scores(matrix, k)
            except (SpecificityError, ArithmeticError, ValueError) as e:
                failure = IterationFailure(k, self.config.seed, e)
                logger.warning("Resampling iteration %d failed: %s", k, e)
                failures.append(failure)
                continue
            ranks = rank_columns(scores, self.config.ties)
            partial.add(scores, ranks, self.config.top_n)

        logger.debug(
            "Block %d: %d/%d iterations aggregated",
            block_index, partial.count, len(iterations),
        )
        return _BlockResult(block_index, partial, failures, attempted)

    def _merger(self, matrix: ExpressionMatrix) -> _BlockMerger:
        return _BlockMerger((matrix.n_genes, matrix.n_groups), self.config.top_n is not None)

    def _run_sequential(self, matrix, blocks, should_stop) -> _BlockMerger:
        merger = self._merger(matrix)
        for block_index, block in enumerate(blocks):
            if should_stop():
                break
            merger.push(self._run_block(matrix, block_index, block, should_stop))
        return merger

    def _run_parallel(self, matrix, blocks, should_stop) -> _BlockMerger:
        n_workers = self.config.n_workers
        max_in_flight = 2 * n_workers
        queue = iter(enumerate(blocks))
        merger = self._merger(matrix)
        pending = set()

        with concurrent.futures.ThreadPoolExecutor(max_workers=n_workers) as executor:

            def submit_next() -> bool:
                # Buffered out-of-order blocks count against the in-flight bound
                if len(pending) + merger.buffered >= max_in_flight or should_stop():
                    return False
                try:
                    block_index, block = next(queue)
                except StopIteration:
                    return False
                pending.add(executor.submit(
                    self._run_block, matrix, block_index, block, should_stop
                ))
                return True

            while submit_next():
                pass

            while pending:
                done, _ = concurrent.futures.wait(
                    pending, return_when=concurrent.futures.FIRST_COMPLETED
                )
                for future in done:
                    pending.discard(future)
                    merger.push(future.result())
                while submit_next():
                    pass

        return merger

    def run(
        self,
        matrix: ExpressionMatrix,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResamplingResult:
        """
        Compute the point estimate and the resampling stability summary.

        A ``cancel()`` issued before the run starts is honored; the flag is
        reset when the run returns.

        Args:
            matrix: Expression matrix.
            cancel_event: Optional external cancellation flag.

        Returns:
            ResamplingResult.

        Raises:
            ShapeMismatchError, DegenerateInputError: Invalid input.
            FailureRateExceededError: Too many iterations failed.
        """
        try:
            return self._run(matrix, cancel_event)
        finally:
            self._cancel_event.clear()

    def _run(
        self,
        matrix: ExpressionMatrix,
        cancel_event: Optional[threading.Event],
    ) -> ResamplingResult:
        start = time.perf_counter()
        config = self.config

        point = self.calculator.compute(matrix)

        if config.iterations == 1:
            return self._single_iteration_result(point, time.perf_counter() - start)

        def should_stop() -> bool:
            return self._cancel_event.is_set() or (
                cancel_event is not None and cancel_event.is_set()
            )

        blocks = [
            range(s, min(s + config.block_size, config.iterations))
            for s in range(0, config.iterations, config.block_size)
        ]
        parallel = config.parallel and config.n_workers > 1

        logger.info(
            "Resampling %d iterations (%s, seed=%s, %d blocks, workers=%d)",
            config.iterations, self.strategy.name, config.seed, len(blocks),
            config.n_workers if parallel else 1,
        )

        if parallel:
            merger = self._run_parallel(matrix, blocks, should_stop)
        else:
            merger = self._run_sequential(matrix, blocks, should_stop)

        total, failures, attempted = merger.total, merger.failures, merger.attempted
        n_failed = len(failures)
        n_cancelled = config.iterations - attempted
        if n_failed:
            rate = n_failed / attempted
            limit = config.max_failure_rate
            if (limit is None and total.count == 0) or (limit is not None and rate > limit):
                raise FailureRateExceededError(n_failed, attempted, limit, failures)

        elapsed = time.perf_counter() - start
        logger.info(
            "Resampling done: %d completed, %d failed, %d cancelled (%.2fs)",
            total.count, n_failed, n_cancelled, elapsed,
        )

        return self._build_result(
            point, total, failures, n_cancelled, elapsed
        )

    def _frame(self, values: np.ndarray, point: SpecificityTable) -> pd.DataFrame:
        return pd.DataFrame(values, index=point.scores.index, columns=point.scores.columns)

    def _build_result(
        self,
        point: SpecificityTable,
        total: _Partial,
        failures: list[IterationFailure],
        n_cancelled: int,
        elapsed: float,
    ) -> ResamplingResult:
        config = self.config
        if total.count == 0:
            nan = np.full(point.scores.shape, np.nan)
            score_mean = rank_mean = nan
        else:
            score_mean, rank_mean = total.score_mean, total.rank_mean

        top_frequency = None
        if config.top_n is not None:
            hits = total.top_hits.astype(np.float64)
            top_frequency = self._frame(
                np.divide(hits, total.count, out=np.full_like(hits, np.nan), where=total.count > 0),
                point,
            )

        return ResamplingResult(
            point_estimate=point,
            mean_scores=self._frame(score_mean, point),
            std_scores=self._frame(total.std(total.score_m2), point),
            mean_ranks=self._frame(rank_mean, point),
            std_ranks=self._frame(total.std(total.rank_m2), point),
            n_requested=config.iterations,
            n_completed=total.count,
            n_failed=len(failures),
            n_cancelled=n_cancelled,
            seed=config.seed,
            strategy=self.strategy.name,
            top_n=config.top_n,
            top_n_frequency=top_frequency,
            failures=sorted(failures, key=lambda f: f.iteration),
            time_seconds=elapsed,
        )

    def _single_iteration_result(
        self, point: SpecificityTable, elapsed: float
    ) -> ResamplingResult:
        """No resampling: the full-data table is the only iteration."""
        scores = point.scores.to_numpy()
        total = _Partial.empty(scores.shape, self.config.top_n is not None)
        total.add(scores, rank_columns(scores, self.config.ties), self.config.top_n)

        result = self._build_result(point, total, [], 0, elapsed)
        result.n_requested = 1
        result.strategy = "none"
        return result


def compute_with_replicate_resampling(
    matrix: Union[ExpressionMatrix, pd.DataFrame],
    group_labels: Optional[Sequence[str]] = None,
    bottom_threshold: float = 0.0,
    iterations: int = 1,
    parallel: bool = False,
    n_workers: int = 1,
    seed: Optional[int] = None,
    strategy: str = "bootstrap",
    max_failure_rate: Optional[float] = None,
    top_n: Optional[int] = None,
    block_size: int = 16,
    ties: Literal["min", "ordinal"] = "min",
    cancel_event: Optional[threading.Event] = None,
    **strategy_options,
) -> ResamplingResult:
    """
    Convenience function for resampled specificity scoring.

    Args:
        matrix: ExpressionMatrix, or a genes x samples DataFrame.
        group_labels: One group label per sample (required for DataFrames).
        bottom_threshold: Floor for group means.
        iterations: Number of resampling iterations (1 = no resampling).
        parallel: Distribute iteration blocks across worker threads.
        n_workers: Number of worker threads.
        seed: Ensemble seed (required when iterations > 1).
        strategy: Resampling strategy name.
        max_failure_rate: Tolerated fraction of failed iterations.
        top_n: Track how often each gene ranks within the top N.
        block_size: Iterations per work unit.
        ties: Rank assignment for tied scores.
        cancel_event: Optional cancellation flag.
        **strategy_options: Passed to the strategy (e.g. ``fraction``).

    Returns:
        ResamplingResult with point estimate and stability summary.
    """
    matrix = as_expression_matrix(matrix, group_labels)
    config = ResamplingConfig(
        iterations=iterations,
        seed=seed,
        strategy=strategy,
        strategy_options=strategy_options,
        parallel=parallel,
        n_workers=n_workers,
        block_size=block_size,
        max_failure_rate=max_failure_rate,
        top_n=top_n,
        bottom_threshold=bottom_threshold,
        ties=ties,
    )
    return ResamplingEngine(config).run(matrix, cancel_event=cancel_event)
