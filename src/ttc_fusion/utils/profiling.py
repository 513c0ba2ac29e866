"""Profiling Utilities for the Fusion Pipelines.

The pairwise distance-ratio step of vision TTC is quadratic in the number of
matches and dominates the per-frame cost. These helpers time it and the rest
of the per-region work:
- Timing decorator and context managers
- Per-operation timing aggregation
- Benchmarking of a callable
"""

import functools
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class TimingResult:
    """Container for timing results."""

    name: str
    total_time: float
    call_count: int
    times: List[float] = field(default_factory=list)

    @property
    def avg_time(self) -> float:
        """Average time per call."""
        return self.total_time / self.call_count if self.call_count > 0 else 0

    @property
    def min_time(self) -> float:
        return min(self.times) if self.times else 0

    @property
    def max_time(self) -> float:
        return max(self.times) if self.times else 0

    @property
    def std_time(self) -> float:
        return float(np.std(self.times)) if len(self.times) > 1 else 0

    def to_dict(self) -> Dict[str, float]:
        return {
            "name": self.name,
            "total_time": self.total_time,
            "call_count": self.call_count,
            "avg_time": self.avg_time,
            "min_time": self.min_time,
            "max_time": self.max_time,
            "std_time": self.std_time,
        }


class Timer:
    """Wall-clock timer.

    Example:
        >>> with Timer() as timer:
        ...     estimator.estimate(kpts_prev, kpts_curr, matches)
        >>> print(f"Elapsed: {timer.elapsed:.4f}s")
    """

    def __init__(self):
        self._start_time: Optional[float] = None
        self._elapsed: float = 0

    def start(self) -> "Timer":
        self._start_time = time.perf_counter()
        return self

    def stop(self) -> float:
        """Stop the timer and return elapsed time."""
        if self._start_time is None:
            return 0
        self._elapsed = time.perf_counter() - self._start_time
        self._start_time = None
        return self._elapsed

    @property
    def elapsed(self) -> float:
        return self._elapsed

    def __enter__(self) -> "Timer":
        return self.start()

    def __exit__(self, *args):
        self.stop()


class Profiler:
    """Aggregates timings per named operation.

    Example:
        >>> profiler = Profiler()
        >>> with profiler.profile("ttc_lidar"):
        ...     lidar_estimator.estimate(points_prev, points_curr)
        >>> profiler.log_summary()
    """

    def __init__(self):
        self._timings: Dict[str, TimingResult] = {}

    @contextmanager
    def profile(self, name: str):
        """Context manager for profiling a code block.

        Args:
            name: Name of the operation being profiled.
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start_time

            if name not in self._timings:
                self._timings[name] = TimingResult(name=name, total_time=0, call_count=0)

            self._timings[name].total_time += elapsed
            self._timings[name].call_count += 1
            self._timings[name].times.append(elapsed)

    def get_timing(self, name: str) -> Optional[TimingResult]:
        return self._timings.get(name)

    def reset(self) -> None:
        self._timings.clear()

    def summary(self) -> Dict[str, Dict[str, float]]:
        return {name: result.to_dict() for name, result in self._timings.items()}

    def log_summary(self, log_level: int = logging.DEBUG) -> None:
        """Log one line per operation, slowest first."""
        for name, result in sorted(self._timings.items(), key=lambda x: -x[1].total_time):
            logger.log(
                log_level,
                f"{name}: {result.call_count} calls, total {result.total_time * 1000:.2f}ms, "
                f"avg {result.avg_time * 1000:.2f}ms, max {result.max_time * 1000:.2f}ms",
            )


def timed(name: Optional[str] = None, log_level: int = logging.DEBUG):
    """Decorator for timing function execution.

    Args:
        name: Optional name for the operation (defaults to function name).
        log_level: Logging level for timing output.

    Example:
        >>> @timed("distance_ratios")
        ... def my_function():
        ...     pass
    """

    def decorator(func: Callable) -> Callable:
        op_name = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed = time.perf_counter() - start_time
            logger.log(log_level, f"{op_name} took {elapsed * 1000:.2f}ms")
            return result

        return wrapper

    return decorator


@dataclass
class BenchmarkResult:
    """Container for benchmark results."""

    name: str
    iterations: int
    total_time: float
    throughput: float  # calls per second
    latency_mean: float  # seconds
    latency_std: float
    latency_min: float
    latency_max: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "iterations": self.iterations,
            "total_time": self.total_time,
            "throughput": self.throughput,
            "latency_mean_ms": self.latency_mean * 1000,
            "latency_std_ms": self.latency_std * 1000,
            "latency_min_ms": self.latency_min * 1000,
            "latency_max_ms": self.latency_max * 1000,
        }


def benchmark(
    func: Callable,
    args: Tuple = (),
    kwargs: Optional[Dict] = None,
    iterations: int = 100,
    warmup: int = 10,
    name: Optional[str] = None,
) -> BenchmarkResult:
    """Benchmark a function's performance.

    Args:
        func: Function to benchmark.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        iterations: Number of timed iterations.
        warmup: Number of untimed warmup iterations.
        name: Optional name for the benchmark.

    Returns:
        BenchmarkResult with timing statistics.

    Example:
        >>> result = benchmark(estimator.estimate, args=(kpts_prev, kpts_curr, matches))
        >>> print(f"Latency: {result.latency_mean * 1000:.1f}ms")
    """
    if iterations < 1:
        raise ValueError(f"iterations must be at least 1, got {iterations}")

    kwargs = kwargs or {}
    name = name or func.__name__

    for _ in range(warmup):
        func(*args, **kwargs)

    latencies = []
    start_total = time.perf_counter()
    for _ in range(iterations):
        start = time.perf_counter()
        func(*args, **kwargs)
        latencies.append(time.perf_counter() - start)
    total_time = time.perf_counter() - start_total

    return BenchmarkResult(
        name=name,
        iterations=iterations,
        total_time=total_time,
        throughput=iterations / total_time if total_time > 0 else float("inf"),
        latency_mean=float(np.mean(latencies)),
        latency_std=float(np.std(latencies)),
        latency_min=min(latencies),
        latency_max=max(latencies),
    )
