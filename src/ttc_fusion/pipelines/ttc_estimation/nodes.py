"""TTC Estimation Pipeline Nodes.

Two independent time-to-collision estimates per tracked region, assuming a
constant relative velocity between frames (dt = 1 / frame_rate).

Range-based TTC:
    1. Per frame, keep points with |x - mean(x)| <= tolerance
    2. d0 = min inlier x (previous), d1 = min inlier x (current)
    3. TTC = d1 * dt / (d0 - d1)

    The closest inlier gives a conservative distance; the mean band removes
    stray returns from the road surface or a different depth plane.

Vision-based TTC:
    1. For every unordered pair of matches, h0 = distance between the two
       previous keypoints, h1 = distance between the two current keypoints
    2. Keep ratios h1 / h0 where h0 is above the noise floor and h1 is at
       least ``min_separation`` pixels
    3. TTC = -dt / (1 - median(h1 / h0))

    Under a pinhole model the projected size of the object scales with
    1 / distance, so the ratio of keypoint distances measures d0 / d1.

Either estimate is unknown (``TTCEstimate.ttc is None``) when its samples are
empty or when the model yields a non-positive or non-finite time.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist

from ttc_fusion.config import TTCConfig
from ttc_fusion.datatypes import (
    Correspondence,
    Frame,
    Keypoint,
    Point3D,
    RegionMapping,
    TTCEstimate,
    keypoints_to_array,
    points_to_array,
    validate_match_indices,
)
from ttc_fusion.exceptions import EmptyInputError
from ttc_fusion.utils.metrics import compute_ttc_statistics
from ttc_fusion.utils.mlflow_utils import (
    log_dict_as_artifact,
    log_metrics_safe,
    log_params_safe,
    mlflow_run,
)
from ttc_fusion.utils.profiling import Profiler, timed
from ttc_fusion.utils.stats import mean, median

logger = logging.getLogger(__name__)

SENSOR_LIDAR = "lidar"
SENSOR_CAMERA = "camera"


def _finalize(sensor: str, ttc: float, num_samples: int, details: Dict[str, float]) -> TTCEstimate:
    if not np.isfinite(ttc) or ttc <= 0:
        return TTCEstimate.unknown(
            sensor,
            "non-positive time to collision",
            num_samples=num_samples,
            details=details,
        )
    return TTCEstimate(sensor=sensor, ttc=float(ttc), num_samples=num_samples, details=details)


# =============================================================================
# Range-Based TTC
# =============================================================================


class RangeTTCEstimator:
    """TTC from the closest inlier range point in two frames.

    Example:
        estimator = RangeTTCEstimator(TTCConfig(frame_rate=10.0))
        estimate = estimator.estimate(prev_region.lidar_points, curr_region.lidar_points)
        if estimate.is_known:
            print(f"TTC lidar: {estimate.ttc:.2f}s")
    """

    def __init__(self, config: Optional[TTCConfig] = None):
        self.config = config or TTCConfig()

    def inliers(self, distances: np.ndarray) -> np.ndarray:
        """Forward distances within ``distance_tolerance`` of their mean.

        Raises:
            EmptyInputError: If ``distances`` is empty.
        """
        center = mean(distances)
        return distances[np.abs(distances - center) <= self.config.distance_tolerance]

    def estimate(
        self,
        points_prev: Sequence[Point3D],
        points_curr: Sequence[Point3D],
    ) -> TTCEstimate:
        x_prev = points_to_array(points_prev)[:, 0]
        x_curr = points_to_array(points_curr)[:, 0]

        try:
            inliers_prev = self.inliers(x_prev)
            inliers_curr = self.inliers(x_curr)
        except EmptyInputError:
            return TTCEstimate.unknown(SENSOR_LIDAR, "empty point set")

        num_samples = int(min(inliers_prev.size, inliers_curr.size))
        if num_samples == 0:
            return TTCEstimate.unknown(SENSOR_LIDAR, "no inlier points")

        min_prev = float(inliers_prev.min())
        min_curr = float(inliers_curr.min())
        details = {"min_x_prev": min_prev, "min_x_curr": min_curr}

        closing = min_prev - min_curr
        if closing == 0:
            return TTCEstimate.unknown(
                SENSOR_LIDAR, "no change in distance", num_samples=num_samples, details=details
            )

        ttc = min_curr * self.config.dt / closing
        return _finalize(SENSOR_LIDAR, ttc, num_samples, details)


# =============================================================================
# Vision-Based TTC
# =============================================================================


class VisionTTCEstimator:
    """TTC from the median scale change between matched keypoints.

    Example:
        estimator = VisionTTCEstimator(TTCConfig(frame_rate=10.0))
        estimate = estimator.estimate(prev_frame.keypoints, curr_frame.keypoints,
                                      curr_region.kpt_matches)
    """

    def __init__(self, config: Optional[TTCConfig] = None):
        self.config = config or TTCConfig()

    def _subsample(self, matches: Sequence[Correspondence]) -> Sequence[Correspondence]:
        limit = self.config.max_matches
        if limit is None or len(matches) <= limit:
            return matches
        # Seeded per call; a draw never depends on earlier regions
        rng = np.random.default_rng(self.config.random_seed)
        chosen = np.sort(rng.choice(len(matches), size=limit, replace=False))
        logger.debug(f"Subsampled {len(matches)} matches to {limit} for distance ratios")
        return [matches[i] for i in chosen.tolist()]

    @timed("distance_ratios")
    def distance_ratios(
        self,
        kpts_prev: Sequence[Keypoint],
        kpts_curr: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> np.ndarray:
        """Valid current/previous distance ratios over all unordered match pairs."""
        validate_match_indices(matches, len(kpts_prev), len(kpts_curr))
        if len(matches) < 2:
            return np.zeros(0)

        matches = self._subsample(matches)
        prev = keypoints_to_array(kpts_prev)[[m.query_idx for m in matches]]
        curr = keypoints_to_array(kpts_curr)[[m.train_idx for m in matches]]

        # Condensed pair order is identical for both frames
        dist_prev = pdist(prev)
        dist_curr = pdist(curr)

        valid = (dist_prev > self.config.min_prev_distance) & (
            dist_curr >= self.config.min_separation
        )
        return dist_curr[valid] / dist_prev[valid]

    def from_ratios(self, ratios: Sequence[float]) -> TTCEstimate:
        """TTC from precomputed distance ratios."""
        ratios = np.asarray(ratios, dtype=np.float64)
        try:
            median_ratio = median(ratios)
        except EmptyInputError:
            return TTCEstimate.unknown(SENSOR_CAMERA, "no valid distance ratios")

        details = {"median_ratio": median_ratio}
        if median_ratio == 1.0:
            return TTCEstimate.unknown(
                SENSOR_CAMERA, "no scale change", num_samples=int(ratios.size), details=details
            )

        ttc = -self.config.dt / (1.0 - median_ratio)
        return _finalize(SENSOR_CAMERA, ttc, int(ratios.size), details)

    def estimate(
        self,
        kpts_prev: Sequence[Keypoint],
        kpts_curr: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> TTCEstimate:
        if len(matches) < 2:
            return TTCEstimate.unknown(SENSOR_CAMERA, "fewer than two matches")
        return self.from_ratios(self.distance_ratios(kpts_prev, kpts_curr, matches))


# =============================================================================
# Per-Region Results
# =============================================================================


@dataclass
class RegionTTC:
    """Both TTC estimates for one tracked region.

    Attributes:
        frame_id: Current frame identifier
        current_box_id: Region ID in the current frame
        previous_box_id: Region ID in the previous frame
        lidar: Range-based estimate
        camera: Vision-based estimate
    """

    frame_id: int
    current_box_id: int
    previous_box_id: int
    lidar: TTCEstimate
    camera: TTCEstimate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_id": self.frame_id,
            "current_box_id": self.current_box_id,
            "previous_box_id": self.previous_box_id,
            "ttc_lidar": self.lidar.ttc,
            "ttc_camera": self.camera.ttc,
            "lidar_reason": self.lidar.reason,
            "camera_reason": self.camera.reason,
            "lidar_samples": self.lidar.num_samples,
            "camera_samples": self.camera.num_samples,
        }


# =============================================================================
# Node Functions
# =============================================================================


def compute_ttc_lidar(
    points_prev: List[Point3D],
    points_curr: List[Point3D],
    params: Dict[str, Any],
) -> TTCEstimate:
    """Range-based TTC for one region pair."""
    return RangeTTCEstimator(TTCConfig.from_params(params)).estimate(points_prev, points_curr)


def compute_ttc_camera(
    kpts_prev: List[Keypoint],
    kpts_curr: List[Keypoint],
    matches: List[Correspondence],
    params: Dict[str, Any],
) -> TTCEstimate:
    """Vision-based TTC for one region's matches."""
    return VisionTTCEstimator(TTCConfig.from_params(params)).estimate(
        kpts_prev, kpts_curr, matches
    )


def estimate_region_ttc(
    previous_frame: Frame,
    current_frame: Frame,
    mapping: RegionMapping,
    params: Dict[str, Any],
) -> List[RegionTTC]:
    """Estimate TTC for every tracked region.

    Args:
        previous_frame: Previous frame with lidar-populated regions
        current_frame: Current frame with lidar- and keypoint-populated regions
        mapping: Current box ID -> previous box ID
        params: TTC parameters
            - frame_rate: Sensor frame rate (Hz)
            - distance_tolerance: Range inlier band (meters)
            - min_separation: Minimum keypoint distance (pixels)

    Returns:
        One RegionTTC per mapped region pair
    """
    start_time = time.time()
    config = TTCConfig.from_params(params)
    lidar_estimator = RangeTTCEstimator(config)
    camera_estimator = VisionTTCEstimator(config)
    profiler = Profiler()

    records = []
    for current_box_id, previous_box_id in mapping.items():
        curr_region = current_frame.region_by_id(current_box_id)
        prev_region = previous_frame.region_by_id(previous_box_id)
        if curr_region is None or prev_region is None:
            logger.warning(
                f"Skipping pairing {previous_box_id} -> {current_box_id}: region not found"
            )
            continue

        with profiler.profile("ttc_lidar"):
            lidar = lidar_estimator.estimate(prev_region.lidar_points, curr_region.lidar_points)
        with profiler.profile("ttc_camera"):
            camera = camera_estimator.estimate(
                previous_frame.keypoints, current_frame.keypoints, curr_region.kpt_matches
            )

        logger.debug(
            f"Region {current_box_id}: TTC lidar={lidar.ttc} ({lidar.reason}), "
            f"camera={camera.ttc} ({camera.reason})"
        )
        records.append(
            RegionTTC(
                frame_id=current_frame.frame_id,
                current_box_id=current_box_id,
                previous_box_id=previous_box_id,
                lidar=lidar,
                camera=camera,
            )
        )

    profiler.log_summary()
    elapsed = time.time() - start_time
    num_known = sum(r.lidar.is_known and r.camera.is_known for r in records)
    logger.info(
        f"Frame {current_frame.frame_id}: TTC for {len(records)} tracked regions "
        f"({num_known} with both estimates), {elapsed * 1000:.1f}ms"
    )
    return records


def summarize_ttc(records: List[RegionTTC]) -> pd.DataFrame:
    """Tabulate per-region estimates; unknown TTCs become NaN cells."""
    df = pd.DataFrame([record.to_dict() for record in records])
    if not df.empty:
        df[["ttc_lidar", "ttc_camera"]] = df[["ttc_lidar", "ttc_camera"]].astype(float)
        df = df.sort_values(["frame_id", "current_box_id"]).reset_index(drop=True)
    return df


def compute_ttc_metrics(records: List[RegionTTC]) -> Dict[str, float]:
    """Aggregate statistics over the per-region estimates."""
    metrics = compute_ttc_statistics(
        [r.lidar.ttc for r in records],
        [r.camera.ttc for r in records],
    )
    logger.info(
        f"TTC metrics: {metrics['num_regions']} regions, "
        f"lidar known={metrics['lidar_known']}, camera known={metrics['camera_known']}"
    )
    return metrics


def _log_ttc(metrics: Dict[str, float], params: Dict[str, Any]) -> None:
    logged_keys = ("frame_rate", "distance_tolerance", "min_separation", "max_matches")
    log_params_safe({key: params[key] for key in logged_keys if key in params}, prefix="ttc_")
    log_metrics_safe(metrics, prefix="ttc_")
    log_dict_as_artifact(metrics, "ttc_metrics.json")


def log_ttc_to_mlflow(
    metrics: Dict[str, float],
    params: Dict[str, Any],
) -> None:
    """Log TTC metrics to MLFlow when ``log_to_mlflow`` is enabled.

    With ``mlflow_experiment`` set, the metrics go to a new run in that
    experiment (created if missing). Otherwise they go to the active run.

    Args:
        metrics: Output of ``compute_ttc_metrics``
        params: TTC parameters
    """
    config = TTCConfig.from_params(params)
    if not config.log_to_mlflow:
        return

    if config.mlflow_experiment:
        with mlflow_run(config.mlflow_experiment, run_name="ttc_estimation"):
            _log_ttc(metrics, params)
    else:
        _log_ttc(metrics, params)
    logger.info("TTC metrics logged to MLFlow")
