"""Lidar Clustering Pipeline Nodes.

Groups range points by the detected region their projection falls into.

Clustering Overview:

    Range points (x, y, z, r)         Regions (x, y, w, h)
           ↓                                  ↓
    ┌──────────────────────┐      ┌──────────────────────┐
    │   Corridor crop      │      │   Shrink about       │
    │   (optional)         │      │   region center      │
    └──────────────────────┘      └──────────────────────┘
           ↓                                  ↓
    ┌──────────────────────────────────────────────────────┐
    │  Project P_rect · R_rect · RT · X, divide by depth   │
    │  Keep points enclosed by exactly one shrunk region   │
    └──────────────────────────────────────────────────────┘
                              ↓
                 Regions populated with range points

Points enclosed by no region or by several overlapping regions are dropped.
Boundary and occlusion returns would otherwise contaminate the object
clouds used for range-based TTC.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ttc_fusion.config import LidarClusteringConfig, LidarCropConfig
from ttc_fusion.datatypes import (
    CameraCalibration,
    Frame,
    Point3D,
    Region,
    points_to_array,
)

logger = logging.getLogger(__name__)


class RangeToRegionAssigner:
    """Assigns each range point to at most one region.

    Example:
        assigner = RangeToRegionAssigner(LidarClusteringConfig(shrink_factor=0.1))
        assigner.assign(frame.regions, frame.lidar_points, calibration)
    """

    def __init__(self, config: Optional[LidarClusteringConfig] = None):
        self.config = config or LidarClusteringConfig()

    def enclosure_mask(
        self,
        regions: Sequence[Region],
        points: Sequence[Point3D],
        calibration: CameraCalibration,
    ) -> np.ndarray:
        """Containment of every projected point in every shrunk region.

        Returns:
            Boolean matrix [num_points, num_regions]. Points with a degenerate
            projection have an all-False row.
        """
        xyz = points_to_array(points)[:, :3]
        uv, valid = calibration.project(xyz, min_depth=self.config.min_depth)

        mask = np.zeros((len(points), len(regions)), dtype=bool)
        for j, region in enumerate(regions):
            shrunk = region.roi.shrink(self.config.shrink_factor)
            mask[:, j] = shrunk.contains_points(uv) & valid

        num_degenerate = int(np.count_nonzero(~valid))
        if num_degenerate:
            logger.debug(f"{num_degenerate} points skipped: behind or on the image plane")
        return mask

    def assign(
        self,
        regions: Sequence[Region],
        points: Sequence[Point3D],
        calibration: CameraCalibration,
    ) -> None:
        """Append each uniquely enclosed point to its region's point list."""
        if len(points) == 0 or len(regions) == 0:
            return

        mask = self.enclosure_mask(regions, points, calibration)
        enclosing = mask.sum(axis=1)
        unique = np.flatnonzero(enclosing == 1)
        owners = np.argmax(mask[unique], axis=1)

        for point_idx, region_idx in zip(unique.tolist(), owners.tolist()):
            regions[region_idx].lidar_points.append(points[point_idx])

        logger.debug(
            f"Assigned {len(unique)}/{len(points)} points "
            f"({int(np.count_nonzero(enclosing > 1))} ambiguous)"
        )


def crop_points(points: Sequence[Point3D], config: LidarCropConfig) -> List[Point3D]:
    """Keep points inside the configured corridor."""
    if len(points) == 0:
        return []

    arr = points_to_array(points)
    x, y, z, r = arr[:, 0], arr[:, 1], arr[:, 2], arr[:, 3]
    keep = (
        (x >= config.min_x)
        & (x <= config.max_x)
        & (np.abs(y) <= config.max_y)
        & (z >= config.min_z)
        & (z <= config.max_z)
        & (r >= config.min_reflectivity)
    )
    return [points[i] for i in np.flatnonzero(keep).tolist()]


# =============================================================================
# Node Functions
# =============================================================================


def crop_lidar_points(
    points: List[Point3D],
    params: Dict[str, Any],
) -> List[Point3D]:
    """Crop range points to the region of interest.

    Args:
        points: Raw range points
        params: Lidar clustering parameters; the corridor lives under "crop"

    Returns:
        Points inside the corridor
    """
    config = LidarClusteringConfig.from_params(params)
    cropped = crop_points(points, config.crop)
    logger.info(f"Cropped lidar points: {len(points)} -> {len(cropped)}")
    return cropped


def cluster_lidar_with_regions(
    frame: Frame,
    points: List[Point3D],
    calibration: CameraCalibration,
    params: Dict[str, Any],
) -> Frame:
    """Attach range points to the frame's regions.

    Region point lists are reset first, so running the node twice on the same
    inputs yields the same assignment.

    Args:
        frame: Frame whose regions are populated
        points: Range points captured with the frame
        calibration: Sensor-to-image transforms
        params: Lidar clustering parameters

    Returns:
        The same frame, with ``lidar_points`` set and regions populated
    """
    config = LidarClusteringConfig.from_params(params)
    assigner = RangeToRegionAssigner(config)

    frame.lidar_points = list(points)
    for region in frame.regions:
        region.lidar_points = []
    assigner.assign(frame.regions, frame.lidar_points, calibration)

    num_assigned = sum(len(region.lidar_points) for region in frame.regions)
    logger.info(
        f"Frame {frame.frame_id}: clustered {num_assigned}/{len(points)} lidar points "
        f"into {len(frame.regions)} regions"
    )
    return frame
