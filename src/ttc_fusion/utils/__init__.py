"""Utility modules for the Fusion Pipelines.

This package contains utility functions for:
- Sample statistics with explicit empty-input errors
- TTC evaluation metrics
- Profiling of the hot paths
- MLFlow experiment tracking
"""

from ttc_fusion.utils.metrics import TTCAccumulator, compute_ttc_statistics
from ttc_fusion.utils.mlflow_utils import (
    get_or_create_experiment,
    log_dict_as_artifact,
    log_metrics_safe,
    log_params_safe,
    mlflow_run,
)
from ttc_fusion.utils.profiling import Profiler, Timer, TimingResult, benchmark, timed
from ttc_fusion.utils.stats import mean, mean_std, median

__all__ = [
    # Statistics
    "mean",
    "mean_std",
    "median",
    # Metrics
    "compute_ttc_statistics",
    "TTCAccumulator",
    # Profiling
    "Timer",
    "TimingResult",
    "Profiler",
    "timed",
    "benchmark",
    # MLFlow
    "get_or_create_experiment",
    "mlflow_run",
    "log_params_safe",
    "log_metrics_safe",
    "log_dict_as_artifact",
]
