"""Configuration for the fusion pipelines.

Every component takes an explicit configuration object. Kedro hands node
functions plain ``params:`` dictionaries, so each config offers
``from_params`` that reads the known keys and falls back to the defaults
below for anything missing.

Example parameters.yml:
    lidar_clustering:
        shrink_factor: 0.1
        crop:
            min_x: 2.0
            max_x: 20.0
    ttc_estimation:
        frame_rate: 10.0
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)


def _from_params(cls, params: Optional[Dict[str, Any]]):
    params = params or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(params) - known)
    if unknown:
        logger.debug(f"{cls.__name__} ignoring unknown parameters: {unknown}")
    return cls(**{key: value for key, value in params.items() if key in known})


def _check_shrink_factor(value: float) -> None:
    if not 0.0 <= value < 1.0:
        raise ValueError(f"shrink_factor must be in [0, 1), got {value}")


@dataclass
class LidarCropConfig:
    """Corridor of range points kept before clustering.

    Defaults keep every point.
    """

    min_x: float = -np.inf
    max_x: float = np.inf
    max_y: float = np.inf
    min_z: float = -np.inf
    max_z: float = np.inf
    min_reflectivity: float = 0.0

    def __post_init__(self):
        if self.min_x > self.max_x:
            raise ValueError(f"min_x ({self.min_x}) exceeds max_x ({self.max_x})")
        if self.min_z > self.max_z:
            raise ValueError(f"min_z ({self.min_z}) exceeds max_z ({self.max_z})")
        if self.max_y < 0:
            raise ValueError(f"max_y must be non-negative, got {self.max_y}")

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]] = None) -> "LidarCropConfig":
        return _from_params(cls, params)


@dataclass
class LidarClusteringConfig:
    """Range point to region assignment.

    Attributes:
        shrink_factor: Fraction by which each region is inset before testing
        min_depth: Camera depth at or below which a projection is discarded
        crop: Corridor applied by ``crop_lidar_points``
    """

    shrink_factor: float = 0.1
    min_depth: float = 1e-6
    crop: LidarCropConfig = field(default_factory=LidarCropConfig)

    def __post_init__(self):
        _check_shrink_factor(self.shrink_factor)
        if self.min_depth < 0:
            raise ValueError(f"min_depth must be non-negative, got {self.min_depth}")
        if isinstance(self.crop, dict):
            self.crop = LidarCropConfig.from_params(self.crop)

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]] = None) -> "LidarClusteringConfig":
        return _from_params(cls, params)


@dataclass
class KeypointClusteringConfig:
    """Keypoint correspondence to region assignment.

    Attributes:
        shrink_factor: Inset used when ``shrink_roi`` is enabled
        shrink_roi: Test containment against the shrunk rectangle instead
            of the detector rectangle
        outlier_std_multiplier: Matches are kept while
            ``|d - mean| < multiplier * std``
    """

    shrink_factor: float = 0.1
    shrink_roi: bool = False
    outlier_std_multiplier: float = 1.0

    def __post_init__(self):
        _check_shrink_factor(self.shrink_factor)
        if self.outlier_std_multiplier <= 0:
            raise ValueError(
                f"outlier_std_multiplier must be positive, got {self.outlier_std_multiplier}"
            )

    @property
    def effective_shrink(self) -> float:
        return self.shrink_factor if self.shrink_roi else 0.0

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]] = None) -> "KeypointClusteringConfig":
        return _from_params(cls, params)


@dataclass
class RegionMatchingConfig:
    """Cross-frame region association.

    Attributes:
        min_votes: Minimum supporting correspondences for a pairing to be
            recorded. 0 records a pairing for every previous region.
        one_to_one: Resolve collisions into an injective mapping
    """

    min_votes: int = 1
    one_to_one: bool = False

    def __post_init__(self):
        if self.min_votes < 0:
            raise ValueError(f"min_votes must be non-negative, got {self.min_votes}")

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]] = None) -> "RegionMatchingConfig":
        return _from_params(cls, params)


@dataclass
class TTCConfig:
    """Time-to-collision estimation.

    Attributes:
        frame_rate: Frames per second; dt = 1 / frame_rate
        distance_tolerance: Max |x - mean(x)| for a range point inlier (meters)
        min_separation: Minimum current-frame keypoint distance for a
            distance ratio (pixels)
        min_prev_distance: Previous-frame keypoint distance floor
        max_matches: Optional cap on matches fed to the pairwise ratio
            computation (uniform random subsample)
        random_seed: Seed for the subsample
        log_to_mlflow: Log summary statistics to MLflow
        mlflow_experiment: Experiment for a dedicated run; None logs to the
            active run
    """

    frame_rate: float = 10.0
    distance_tolerance: float = 0.1
    min_separation: float = 100.0
    min_prev_distance: float = float(np.finfo(np.float64).eps)
    max_matches: Optional[int] = None
    random_seed: int = 0
    log_to_mlflow: bool = False
    mlflow_experiment: Optional[str] = None

    def __post_init__(self):
        if self.frame_rate <= 0:
            raise ValueError(f"frame_rate must be positive, got {self.frame_rate}")
        if self.distance_tolerance < 0:
            raise ValueError(
                f"distance_tolerance must be non-negative, got {self.distance_tolerance}"
            )
        if self.min_separation < 0:
            raise ValueError(f"min_separation must be non-negative, got {self.min_separation}")
        if self.max_matches is not None and self.max_matches < 2:
            raise ValueError(f"max_matches must be at least 2, got {self.max_matches}")

    @property
    def dt(self) -> float:
        return 1.0 / self.frame_rate

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]] = None) -> "TTCConfig":
        return _from_params(cls, params)
