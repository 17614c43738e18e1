"""Tests for replicate resampling."""

import threading

import pytest
import numpy as np
import pandas as pd

from orthospec.core.config import ResamplingConfig
from orthospec.core.errors import (
    FailureRateExceededError,
    NonFiniteScoreError,
)
from orthospec.expression import ExpressionMatrix
from orthospec.specificity import (
    BootstrapStrategy,
    LeaveOneOutStrategy,
    ResamplingEngine,
    ResamplingStrategy,
    SubsampleStrategy,
    compute_specificity,
    compute_with_replicate_resampling,
    get_strategy,
)
from orthospec.specificity.resampling import _BlockMerger, _BlockResult, _Partial


@pytest.fixture
def gapped_matrix():
    """Gene G has only one observed replicate in group X."""
    expression = pd.DataFrame(
        {
            "s1": [10.0, np.nan],
            "s2": [11.0, np.nan],
            "s3": [12.0, 5.0],
            "s4": [1.0, 1.0],
        },
        index=["A", "G"],
    )
    return ExpressionMatrix(expression, groups=["X", "X", "X", "Y"])


class _EmptyDrawStrategy(ResamplingStrategy):
    name = "empty"

    def draw(self, group_indices, rng):
        return {group: np.array([], dtype=int) for group in group_indices}


class _CancellingStrategy(BootstrapStrategy):
    """Cancels its engine during the n-th draw."""

    name = "cancelling"

    def __init__(self, cancel_on: int):
        self.cancel_on = cancel_on
        self.engine = None
        self.draws = 0
        self._lock = threading.Lock()

    def draw(self, group_indices, rng):
        with self._lock:
            self.draws += 1
            cancel = self.draws == self.cancel_on
        if cancel:
            self.engine.cancel()
        return super().draw(group_indices, rng)


class TestStrategies:
    """Tests for replicate draw strategies."""

    @pytest.fixture
    def indices(self):
        return {"X": np.array([0, 1, 2, 3]), "Y": np.array([4])}

    def test_bootstrap_keeps_group_size(self, indices):
        drawn = BootstrapStrategy().draw(indices, np.random.default_rng(0))
        assert len(drawn["X"]) == 4
        assert set(drawn["X"]) <= {0, 1, 2, 3}
        np.testing.assert_array_equal(drawn["Y"], [4])

    def test_leave_one_out(self, indices):
        drawn = LeaveOneOutStrategy().draw(indices, np.random.default_rng(0))
        assert len(drawn["X"]) == 3
        assert len(set(drawn["X"])) == 3
        # Single replicate groups are kept whole
        np.testing.assert_array_equal(drawn["Y"], [4])

    def test_subsample(self, indices):
        drawn = SubsampleStrategy(fraction=0.5).draw(indices, np.random.default_rng(0))
        assert len(drawn["X"]) == 2
        assert len(set(drawn["X"])) == 2
        assert list(drawn["X"]) == sorted(drawn["X"])
        assert len(drawn["Y"]) == 1

    @pytest.mark.parametrize("fraction", [0.0, 1.5])
    def test_subsample_invalid_fraction(self, fraction):
        with pytest.raises(ValueError):
            SubsampleStrategy(fraction=fraction)

    def test_get_strategy(self):
        strategy = get_strategy("subsample", fraction=0.6)
        assert isinstance(strategy, SubsampleStrategy)
        assert strategy.fraction == 0.6

    def test_get_strategy_unknown(self):
        with pytest.raises(ValueError, match="Unknown resampling strategy"):
            get_strategy("jackknife")


class TestEngineConfig:
    """Tests for engine configuration checks."""

    def test_seed_required(self):
        with pytest.raises(ValueError, match="seed"):
            ResamplingEngine(ResamplingConfig(iterations=10))

    @pytest.mark.parametrize("kwargs", [
        {"iterations": 0},
        {"iterations": 10, "seed": 1, "n_workers": 0},
        {"iterations": 10, "seed": 1, "block_size": 0},
        {"iterations": 10, "seed": 1, "top_n": 0},
        {"iterations": 10, "seed": 1, "max_failure_rate": 1.5},
        {"iterations": 10, "seed": 1, "ties": "dense"},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            ResamplingEngine(ResamplingConfig(**kwargs))

    def test_iteration_rng_depends_on_seed_and_index(self):
        a = ResamplingEngine(ResamplingConfig(iterations=5, seed=11))
        b = ResamplingEngine(ResamplingConfig(iterations=500, seed=11))

        assert a.iteration_rng(3).random() == b.iteration_rng(3).random()
        assert a.iteration_rng(3).random() != a.iteration_rng(4).random()


class TestResamplingEngine:
    """Tests for ResamplingEngine runs."""

    def test_single_iteration_is_point_estimate(self, two_gene_matrix):
        result = compute_with_replicate_resampling(two_gene_matrix, bottom_threshold=1.0)

        point = compute_specificity(two_gene_matrix, bottom_threshold=1.0)
        pd.testing.assert_frame_equal(result.point_estimate.scores, point.scores)
        pd.testing.assert_frame_equal(result.mean_scores, point.scores, check_names=False)
        assert result.n_requested == 1
        assert result.n_completed == 1
        assert result.strategy == "none"
        assert result.std_scores.isna().all().all()
        assert result.mean_ranks.loc["A", "X"] == 1.0

    def test_worker_count_does_not_change_result(self, expression_matrix):
        kwargs = dict(iterations=50, seed=7, bottom_threshold=0.5, top_n=10, block_size=4)

        sequential = compute_with_replicate_resampling(expression_matrix, **kwargs)
        parallel = compute_with_replicate_resampling(
            expression_matrix, parallel=True, n_workers=4, **kwargs
        )

        for name in ["mean_scores", "std_scores", "mean_ranks", "std_ranks", "top_n_frequency"]:
            np.testing.assert_array_equal(
                getattr(sequential, name).to_numpy(),
                getattr(parallel, name).to_numpy(),
            )
        assert sequential.n_completed == parallel.n_completed == 50

    def test_same_seed_same_result(self, expression_matrix):
        first = compute_with_replicate_resampling(expression_matrix, iterations=20, seed=3)
        second = compute_with_replicate_resampling(expression_matrix, iterations=20, seed=3)
        other = compute_with_replicate_resampling(expression_matrix, iterations=20, seed=4)

        np.testing.assert_array_equal(first.mean_scores, second.mean_scores)
        assert not np.array_equal(first.mean_scores, other.mean_scores)

    def test_stable_genes_have_zero_spread(self, two_gene_matrix):
        # Group X replicates are identical, Y has one replicate
        result = compute_with_replicate_resampling(
            two_gene_matrix, bottom_threshold=1.0, iterations=30, seed=5, top_n=1
        )

        assert result.n_completed == 30
        np.testing.assert_array_equal(result.std_scores.to_numpy(), 0.0)
        assert result.top_n_frequency.loc["A", "X"] == 1.0
        assert result.top_n_frequency.loc["B", "Y"] == 1.0
        assert result.top_n_frequency.loc["A", "Y"] == 0.0

    def test_resampled_means_stay_normalized(self, expression_matrix):
        result = compute_with_replicate_resampling(
            expression_matrix, iterations=25, seed=1, strategy="leave_one_out"
        )
        np.testing.assert_allclose(result.mean_scores.sum(axis=1), 1.0)
        assert result.strategy == "leave_one_out"
        assert (result.std_ranks >= 0).all().all()

    def test_strategy_options_forwarded(self, expression_matrix):
        result = compute_with_replicate_resampling(
            expression_matrix, iterations=5, seed=1, strategy="subsample", fraction=0.5
        )
        assert result.strategy == "subsample"
        assert result.n_completed == 5

    def test_table_selection(self, expression_matrix):
        result = compute_with_replicate_resampling(expression_matrix, iterations=5, seed=1)
        assert result.table("point") is result.point_estimate
        pd.testing.assert_frame_equal(result.table("resampled").scores, result.mean_scores)
        with pytest.raises(ValueError):
            result.table("median")

    def test_summary(self, two_gene_matrix):
        result = compute_with_replicate_resampling(
            two_gene_matrix, iterations=4, seed=2, top_n=1
        )
        summary = result.summary()

        assert list(summary.columns) == [
            "gene", "group", "score", "mean_score", "std_score",
            "mean_rank", "std_rank", "top_n_frequency",
        ]
        assert len(summary) == 4

    def test_to_dict(self, two_gene_matrix):
        result = compute_with_replicate_resampling(two_gene_matrix, iterations=4, seed=2)
        info = result.to_dict()
        assert info["n_requested"] == 4
        assert info["seed"] == 2
        assert info["cancelled"] is False
        assert info["failures"] == []


class TestIterationFailures:
    """Tests for failure recording and escalation."""

    def test_failures_recorded(self, gapped_matrix):
        result = compute_with_replicate_resampling(
            gapped_matrix, bottom_threshold=1.0, iterations=40, seed=9
        )

        assert result.n_failed > 0
        assert result.n_completed + result.n_failed == 40
        assert len(result.failures) == result.n_failed

        failure = result.failures[0]
        assert failure.gene == "G"
        assert failure.group == "X"
        assert failure.seed == 9
        assert isinstance(failure.cause, NonFiniteScoreError)
        assert [f.iteration for f in result.failures] == sorted(
            f.iteration for f in result.failures
        )

    def test_failed_iteration_replays(self, gapped_matrix):
        config = ResamplingConfig(iterations=40, seed=9, bottom_threshold=1.0)
        engine = ResamplingEngine(config)
        result = engine.run(gapped_matrix)

        with pytest.raises(NonFiniteScoreError):
            engine.replay(gapped_matrix, result.failures[0].iteration)

    def test_failure_rate_limit(self, gapped_matrix):
        with pytest.raises(FailureRateExceededError) as exc_info:
            compute_with_replicate_resampling(
                gapped_matrix, bottom_threshold=1.0, iterations=40, seed=9,
                max_failure_rate=0.0,
            )
        error = exc_info.value
        assert error.n_attempted == 40
        assert error.n_failed == len(error.failures) > 0

    def test_all_iterations_failing(self, two_gene_matrix):
        engine = ResamplingEngine(
            ResamplingConfig(iterations=6, seed=1), strategy=_EmptyDrawStrategy()
        )
        with pytest.raises(FailureRateExceededError) as exc_info:
            engine.run(two_gene_matrix)
        assert exc_info.value.n_failed == 6


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_keeps_partial_results(self, two_gene_matrix):
        strategy = _CancellingStrategy(cancel_on=3)
        engine = ResamplingEngine(
            ResamplingConfig(iterations=20, seed=1, block_size=2), strategy=strategy
        )
        strategy.engine = engine

        result = engine.run(two_gene_matrix)

        assert result.cancelled
        assert result.n_completed == 3
        assert result.n_cancelled == 17
        assert result.mean_scores.notna().all().all()

    def test_preset_external_event(self, two_gene_matrix):
        event = threading.Event()
        event.set()

        result = compute_with_replicate_resampling(
            two_gene_matrix, iterations=10, seed=1, cancel_event=event
        )

        assert result.n_completed == 0
        assert result.n_cancelled == 10
        assert result.mean_scores.isna().all().all()
        # Point estimate is still available
        assert result.point_estimate.scores.notna().all().all()

    def test_cancel_before_run_is_honored_once(self, two_gene_matrix):
        engine = ResamplingEngine(ResamplingConfig(iterations=10, seed=1))
        engine.cancel()

        first = engine.run(two_gene_matrix)
        assert first.n_completed == 0
        assert first.n_cancelled == 10

        second = engine.run(two_gene_matrix)
        assert second.n_completed == 10
        assert not second.cancelled

    def test_fully_cancelled_run_has_no_resampled_table(self, two_gene_matrix):
        event = threading.Event()
        event.set()
        result = compute_with_replicate_resampling(
            two_gene_matrix, iterations=10, seed=1, cancel_event=event
        )

        with pytest.raises(ValueError, match="No resampling iterations completed"):
            result.table("resampled")

    def test_parallel_cancel_keeps_partial_results(self, expression_matrix):
        strategy = _CancellingStrategy(cancel_on=5)
        engine = ResamplingEngine(
            ResamplingConfig(iterations=200, seed=1, block_size=2, parallel=True, n_workers=2),
            strategy=strategy,
        )
        strategy.engine = engine

        result = engine.run(expression_matrix)

        assert result.cancelled
        assert result.n_completed >= 5
        assert result.n_completed + result.n_failed + result.n_cancelled == 200
        assert result.mean_scores.notna().all().all()


class TestParallelFailures:
    """Failures on the thread pool match the sequential run."""

    def test_same_failures_and_aggregates(self, gapped_matrix):
        kwargs = dict(bottom_threshold=1.0, iterations=60, seed=9, block_size=3)

        sequential = compute_with_replicate_resampling(gapped_matrix, **kwargs)
        parallel = compute_with_replicate_resampling(
            gapped_matrix, parallel=True, n_workers=3, **kwargs
        )

        assert sequential.n_failed > 0
        assert [f.iteration for f in parallel.failures] == [
            f.iteration for f in sequential.failures
        ]
        assert parallel.n_completed + parallel.n_failed == 60
        for name in ["mean_scores", "std_scores", "mean_ranks", "std_ranks"]:
            np.testing.assert_array_equal(
                getattr(sequential, name).to_numpy(),
                getattr(parallel, name).to_numpy(),
            )


class TestBlockMerging:
    """Tests for in-order incremental merging of block results."""

    @staticmethod
    def _block(index, value):
        partial = _Partial.empty((1, 2), track_top=False)
        partial.add(np.array([[value, 1 - value]]), np.array([[1, 2]]), None)
        return _BlockResult(index, partial, [], 1)

    def test_out_of_order_blocks_wait_for_gap(self):
        merger = _BlockMerger((1, 2), track_top=False)

        merger.push(self._block(2, 0.3))
        merger.push(self._block(1, 0.2))
        assert merger.buffered == 2
        assert merger.total.count == 0

        merger.push(self._block(0, 0.1))
        assert merger.buffered == 0
        assert merger.next_index == 3
        assert merger.total.count == 3
        assert merger.attempted == 3
        assert merger.total.score_mean[0, 0] == pytest.approx(0.2)
        assert merger.peak_buffered == 2

    def test_parallel_run_holds_bounded_partials(self, two_gene_matrix):
        n_workers = 2
        engine = ResamplingEngine(ResamplingConfig(
            iterations=64, seed=1, block_size=1, parallel=True, n_workers=n_workers
        ))
        blocks = [range(k, k + 1) for k in range(64)]

        merger = engine._run_parallel(two_gene_matrix, blocks, lambda: False)

        assert merger.total.count == 64
        assert merger.buffered == 0
        assert merger.peak_buffered < 2 * n_workers

    def test_sequential_run_merges_immediately(self, two_gene_matrix):
        engine = ResamplingEngine(ResamplingConfig(iterations=20, seed=1, block_size=2))
        blocks = [range(k, min(k + 2, 20)) for k in range(0, 20, 2)]

        merger = engine._run_sequential(two_gene_matrix, blocks, lambda: False)

        assert merger.total.count == 20
        assert merger.peak_buffered == 0
