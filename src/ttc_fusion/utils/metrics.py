"""TTC Evaluation Metrics.

Summaries over sequences of per-region TTC estimates:
- Coverage: how often each modality produced a known estimate
- Central tendency of the known estimates
- Agreement between range-based and vision-based estimates

Unknown estimates are passed in as None. Statistics that have no samples are
reported as NaN; ``log_metrics_safe`` skips such values.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def _known(values: Sequence[Optional[float]]) -> np.ndarray:
    return np.array([v for v in values if v is not None], dtype=np.float64)


def _safe_stat(values: np.ndarray, func) -> float:
    return float(func(values)) if values.size else float("nan")


def compute_ttc_statistics(
    lidar_ttc: Sequence[Optional[float]],
    camera_ttc: Sequence[Optional[float]],
) -> Dict[str, float]:
    """Compute coverage and agreement statistics.

    Args:
        lidar_ttc: Range-based TTC per region, None when unknown
        camera_ttc: Vision-based TTC per region (same order), None when unknown

    Returns:
        Dictionary with:
            - num_regions: Number of region pairs
            - lidar_known / camera_known / both_known: Known estimate counts
            - lidar_mean / lidar_median / camera_mean / camera_median
            - mean_abs_difference: Mean |lidar - camera| where both are known
            - mean_rel_difference: Mean |lidar - camera| / lidar where both are known
    """
    if len(lidar_ttc) != len(camera_ttc):
        raise ValueError(
            f"Length mismatch: {len(lidar_ttc)} lidar vs {len(camera_ttc)} camera estimates"
        )

    lidar = _known(lidar_ttc)
    camera = _known(camera_ttc)
    both = np.array(
        [(l, c) for l, c in zip(lidar_ttc, camera_ttc) if l is not None and c is not None],
        dtype=np.float64,
    ).reshape(-1, 2)

    abs_diff = np.abs(both[:, 0] - both[:, 1])
    rel_diff = abs_diff / both[:, 0] if both.size else abs_diff

    return {
        "num_regions": len(lidar_ttc),
        "lidar_known": int(lidar.size),
        "camera_known": int(camera.size),
        "both_known": int(both.shape[0]),
        "lidar_mean": _safe_stat(lidar, np.mean),
        "lidar_median": _safe_stat(lidar, np.median),
        "camera_mean": _safe_stat(camera, np.mean),
        "camera_median": _safe_stat(camera, np.median),
        "mean_abs_difference": _safe_stat(abs_diff, np.mean),
        "mean_rel_difference": _safe_stat(rel_diff, np.mean),
    }


class TTCAccumulator:
    """Accumulates per-frame TTC estimates for one tracked object or a sequence.

    Example:
        accumulator = TTCAccumulator()

        for records in per_frame_records:
            for record in records:
                accumulator.update(record.lidar.ttc, record.camera.ttc)

        metrics = accumulator.compute()
    """

    def __init__(self):
        self.lidar_ttc: List[Optional[float]] = []
        self.camera_ttc: List[Optional[float]] = []

    def reset(self) -> None:
        self.lidar_ttc.clear()
        self.camera_ttc.clear()

    def update(self, lidar_ttc: Optional[float], camera_ttc: Optional[float]) -> None:
        self.lidar_ttc.append(lidar_ttc)
        self.camera_ttc.append(camera_ttc)

    def __len__(self) -> int:
        return len(self.lidar_ttc)

    def compute(self) -> Dict[str, float]:
        return compute_ttc_statistics(self.lidar_ttc, self.camera_ttc)


__all__ = [
    "compute_ttc_statistics",
    "TTCAccumulator",
]
