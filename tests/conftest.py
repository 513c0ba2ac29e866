"""Pytest configuration and fixtures for the fusion pipeline tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

FOCAL = 100.0
CX = 320.0
CY = 240.0


def point_at_pixel(u: float, v: float, depth: float = 10.0, r: float = 0.5):
    """Velodyne point that projects to (u, v) with the ``calibration`` fixture."""
    from ttc_fusion.datatypes import Point3D

    return Point3D(x=depth, y=-(u - CX) * depth / FOCAL, z=-(v - CY) * depth / FOCAL, r=r)


@pytest.fixture
def calibration():
    """Pinhole camera looking along the velodyne x axis.

    u = FOCAL * -y / x + CX, v = FOCAL * -z / x + CY
    """
    from ttc_fusion.datatypes import CameraCalibration

    p_rect = np.array(
        [
            [FOCAL, 0.0, CX, 0.0],
            [0.0, FOCAL, CY, 0.0],
            [0.0, 0.0, 1.0, 0.0],
        ]
    )
    velo_to_cam = np.array(
        [
            [0.0, -1.0, 0.0],
            [0.0, 0.0, -1.0],
            [1.0, 0.0, 0.0],
        ]
    )
    return CameraCalibration.from_kitti(
        p_rect=p_rect,
        r_rect=np.eye(3),
        rotation=velo_to_cam,
        translation=np.zeros(3),
    )


@pytest.fixture
def identity_calibration():
    """Calibration whose projection is (x / z, y / z)."""
    from ttc_fusion.datatypes import CameraCalibration

    return CameraCalibration(p_rect=np.eye(3, 4), r_rect=np.eye(4), rt=np.eye(4))


@pytest.fixture
def sample_regions():
    """Two separated regions and one overlapping the first."""
    from ttc_fusion.datatypes import Region

    return [
        Region.from_xywh(0, 300, 220, 40, 40),
        Region.from_xywh(1, 400, 220, 40, 40),
        Region.from_xywh(2, 310, 220, 40, 40),
    ]


@pytest.fixture
def tracked_frame_pair():
    """Previous/current frames with one object approaching and one static background box.

    The object (previous box 5, current box 2) is seen through five keypoints
    that spread out by 10% and ten range points at 10.0m and 8.0m.
    """
    from ttc_fusion.datatypes import Correspondence, Frame, Keypoint, Point3D, Region

    prev_kpts = [Keypoint(u, v) for u, v in [(0, 0), (200, 0), (0, 200), (200, 200), (100, 100)]]
    prev_kpts = [Keypoint(kp.u + 400, kp.v + 100) for kp in prev_kpts]
    center = (500.0, 200.0)
    curr_kpts = [
        Keypoint(center[0] + 1.1 * (kp.u - center[0]), center[1] + 1.1 * (kp.v - center[1]))
        for kp in prev_kpts
    ]
    matches = [Correspondence(query_idx=i, train_idx=i) for i in range(len(prev_kpts))]

    previous = Frame(
        frame_id=0,
        keypoints=prev_kpts,
        regions=[
            Region.from_xywh(4, 0, 0, 100, 100),
            Region.from_xywh(5, 390, 90, 230, 230),
        ],
    )
    current = Frame(
        frame_id=1,
        keypoints=curr_kpts,
        regions=[
            Region.from_xywh(1, 0, 0, 100, 100),
            Region.from_xywh(2, 370, 70, 260, 260),
        ],
    )

    previous.regions[1].lidar_points = [Point3D(10.0 + 0.01 * i, 0.0, 0.0) for i in range(10)]
    current.regions[1].lidar_points = [Point3D(8.0 + 0.01 * i, 0.0, 0.0) for i in range(10)]

    return previous, current, matches
