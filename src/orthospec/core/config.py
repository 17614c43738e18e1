"""
Analysis configuration management.

Provides dataclass-based configuration with validation and serialization.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Literal, Any
import json
import os


@dataclass
class SpecificityConfig:
    """Specificity index configuration."""

    bottom_threshold: float = 0.0
    """Floor applied to group means before the ratio is taken."""

    group_order: Optional[list[str]] = None
    """Explicit group column order (first appearance if None)."""

    ties: Literal["min", "ordinal"] = "min"
    """Rank assignment for tied scores."""


@dataclass
class ResamplingConfig:
    """Replicate resampling configuration."""

    iterations: int = 1
    """Number of resampling iterations (1 = no resampling)."""

    seed: Optional[int] = None
    """Random seed; required when iterations > 1."""

    strategy: Literal["bootstrap", "leave_one_out", "subsample"] = "bootstrap"
    """Replicate resampling scheme."""

    strategy_options: dict[str, Any] = field(default_factory=dict)
    """Extra keyword arguments for the strategy (e.g. fraction)."""

    parallel: bool = False
    """Run iteration blocks on a thread pool."""

    n_workers: int = 1
    """Worker threads when parallel is enabled."""

    block_size: int = 16
    """Iterations per work unit; fixed so results do not depend on n_workers."""

    max_failure_rate: Optional[float] = None
    """Tolerated fraction of failed iterations (None = anything below 100%)."""

    top_n: Optional[int] = None
    """Also report how often each gene lands in the top N of each group."""

    bottom_threshold: float = 0.0
    """Floor applied to group means in every iteration."""

    ties: Literal["min", "ordinal"] = "min"
    """Rank assignment for tied scores."""


@dataclass
class ComparisonConfig:
    """Cross-species rank comparison configuration."""

    top_n: int = 100
    """Number of reference genes to compare."""

    strict: bool = False
    """Raise on a missing ortholog instead of skipping it."""


@dataclass
class Config:
    """
    Main analysis configuration.

    Example:
        >>> config = Config(
        ...     bottom_threshold=1.0,
        ...     iterations=1000,
        ...     seed=7,
        ...     n_workers=4,
        ... )
        >>> config.validate()
    """

    # Convenience shortcuts (these override sub-config values)
    bottom_threshold: float = 0.0
    """Floor applied to group means."""

    iterations: int = 1
    """Number of resampling iterations."""

    seed: Optional[int] = None
    """Random seed for reproducibility."""

    n_workers: int = 1
    """Worker threads for resampling (>1 enables parallel execution)."""

    top_n: int = 100
    """Number of top genes per group for rank extraction."""

    # Sub-configurations
    specificity: SpecificityConfig = field(default_factory=SpecificityConfig)
    resampling: ResamplingConfig = field(default_factory=ResamplingConfig)
    comparison: ComparisonConfig = field(default_factory=ComparisonConfig)

    # Output settings
    output_dir: Optional[Path] = None
    """Base output directory."""

    # Logging
    verbose: bool = False
    """Enable verbose logging."""

    log_file: Optional[Path] = None
    """Log file path."""

    def __post_init__(self):
        """Synchronize shortcut values with sub-configs."""
        self.specificity.bottom_threshold = self.bottom_threshold

        self.resampling.iterations = self.iterations
        self.resampling.seed = self.seed
        self.resampling.n_workers = self.n_workers
        self.resampling.parallel = self.n_workers > 1
        self.resampling.bottom_threshold = self.bottom_threshold
        self.resampling.ties = self.specificity.ties

        self.comparison.top_n = self.top_n

        # Convert paths
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

    def validate(self) -> None:
        """Raise ValueError on out-of-range parameters."""
        errors = []
        if self.bottom_threshold < 0:
            errors.append(f"bottom_threshold must be >= 0, got {self.bottom_threshold}")
        if self.iterations < 1:
            errors.append(f"iterations must be >= 1, got {self.iterations}")
        if self.iterations > 1 and self.seed is None:
            errors.append("seed is required when iterations > 1")
        if self.n_workers < 1:
            errors.append(f"n_workers must be >= 1, got {self.n_workers}")
        if self.resampling.block_size < 1:
            errors.append(f"block_size must be >= 1, got {self.resampling.block_size}")
        if self.top_n < 1:
            errors.append(f"top_n must be >= 1, got {self.top_n}")
        rate = self.resampling.max_failure_rate
        if rate is not None and not 0.0 <= rate <= 1.0:
            errors.append(f"max_failure_rate must be within [0, 1], got {rate}")
        if self.specificity.ties not in ("min", "ordinal"):
            errors.append(f"Unknown ties method: {self.specificity.ties}")
        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        d = asdict(self)
        # Convert Path objects to strings
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d

    def to_json(self, path: Path | str) -> None:
        """Save configuration to JSON file."""
        path = Path(path)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Config":
        """Create from dictionary."""
        d = dict(d)
        # Handle nested configs
        if "specificity" in d and isinstance(d["specificity"], dict):
            d["specificity"] = SpecificityConfig(**d["specificity"])
        if "resampling" in d and isinstance(d["resampling"], dict):
            d["resampling"] = ResamplingConfig(**d["resampling"])
        if "comparison" in d and isinstance(d["comparison"], dict):
            d["comparison"] = ComparisonConfig(**d["comparison"])
        return cls(**d)

    @classmethod
    def from_json(cls, path: Path | str) -> "Config":
        """Load configuration from JSON file."""
        path = Path(path)
        with open(path) as f:
            d = json.load(f)
        return cls.from_dict(d)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        seed = os.getenv("ORTHOSPEC_SEED")
        return cls(
            bottom_threshold=float(os.getenv("ORTHOSPEC_BOTTOM_THRESHOLD", "0")),
            iterations=int(os.getenv("ORTHOSPEC_ITERATIONS", "1")),
            seed=int(seed) if seed else None,
            n_workers=int(os.getenv("ORTHOSPEC_WORKERS", "1")),
            top_n=int(os.getenv("ORTHOSPEC_TOP_N", "100")),
            verbose=os.getenv("ORTHOSPEC_VERBOSE", "").lower() in ("1", "true", "yes"),
        )
