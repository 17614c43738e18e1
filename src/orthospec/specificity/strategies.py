"""
Replicate resampling strategies.

A strategy decides which replicates feed each group's mean in one
resampling iteration. Draws come from the generator handed in by the
engine, which is seeded per iteration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping

import numpy as np


class ResamplingStrategy(ABC):
    """Abstract base class for replicate resampling schemes."""

    name: str = "base"

    @abstractmethod
    def draw(
        self,
        group_indices: Mapping[str, np.ndarray],
        rng: np.random.Generator,
    ) -> dict[str, np.ndarray]:
        """
        Draw replicate positions for every group.

        Args:
            group_indices: Sample positions of each group's replicates.
            rng: Generator private to the current iteration.

        Returns:
            Sample positions per group (may repeat positions).
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class BootstrapStrategy(ResamplingStrategy):
    """Draw each group's replicates with replacement, same group size."""

    name = "bootstrap"

    def draw(self, group_indices, rng):
        return {
            group: rng.choice(idx, size=len(idx), replace=True)
            for group, idx in group_indices.items()
        }


class LeaveOneOutStrategy(ResamplingStrategy):
    """Hold out one random replicate per group.

    Groups with a single replicate are kept whole.
    """

    name = "leave_one_out"

    def draw(self, group_indices, rng):
        drawn = {}
        for group, idx in group_indices.items():
            if len(idx) < 2:
                drawn[group] = np.asarray(idx)
                continue
            held_out = rng.integers(len(idx))
            drawn[group] = np.delete(idx, held_out)
        return drawn


class SubsampleStrategy(ResamplingStrategy):
    """Draw a fraction of each group's replicates without replacement."""

    name = "subsample"

    def __init__(self, fraction: float = 0.8):
        if not 0.0 < fraction <= 1.0:
            raise ValueError(f"fraction must be in (0, 1], got {fraction}")
        self.fraction = fraction

    def draw(self, group_indices, rng):
        drawn = {}
        for group, idx in group_indices.items():
            n_sample = max(1, int(len(idx) * self.fraction))
            drawn[group] = np.sort(rng.choice(idx, size=n_sample, replace=False))
        return drawn

    def __repr__(self) -> str:
        return f"SubsampleStrategy(fraction={self.fraction})"


STRATEGIES: dict[str, type[ResamplingStrategy]] = {
    BootstrapStrategy.name: BootstrapStrategy,
    LeaveOneOutStrategy.name: LeaveOneOutStrategy,
    SubsampleStrategy.name: SubsampleStrategy,
}


def get_strategy(name: str, **kwargs) -> ResamplingStrategy:
    """Instantiate a strategy by name."""
    if name not in STRATEGIES:
        raise ValueError(f"Unknown resampling strategy: {name}. Available: {list(STRATEGIES)}")
    return STRATEGIES[name](**kwargs)
