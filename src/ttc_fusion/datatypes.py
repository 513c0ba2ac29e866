"""Data Structures for Camera/Lidar Fusion.

Passive containers shared by every fusion pipeline:

    Point3D          range-sensor return in sensor coordinates
    Keypoint         2D feature position plus detector metadata
    Correspondence   matched keypoint pair (previous -> current frame)
    Rect / Region    detected object rectangle and the data attributed to it
    Frame            one timestep (keypoints, regions, range points, image)
    CameraCalibration
                     rectification, projection and extrinsic transforms
    RegionMapping    current-frame box ID -> previous-frame box ID
    TTCEstimate      time-to-collision or an explicit "unknown"

Coordinate System (range sensor):
    - x: forward distance (meters)
    - y: lateral, left positive (meters)
    - z: height (meters)

Image coordinates are (u, v) pixels with the origin at the top-left corner.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from scipy.optimize import linear_sum_assignment

logger = logging.getLogger(__name__)

# Vote value for a keypoint that falls in zero or several regions
NO_REGION = -1


# =============================================================================
# Sensor Data
# =============================================================================


@dataclass(frozen=True)
class Point3D:
    """Single range-sensor return.

    Attributes:
        x: Forward distance (meters)
        y: Lateral offset (meters)
        z: Height (meters)
        r: Reflectivity / intensity
    """

    x: float
    y: float
    z: float
    r: float = 0.0

    def to_homogeneous(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z, 1.0])


def points_to_array(points: Sequence[Point3D]) -> np.ndarray:
    """Stack points into an [N, 4] array of (x, y, z, r)."""
    if len(points) == 0:
        return np.zeros((0, 4))
    return np.array([[p.x, p.y, p.z, p.r] for p in points], dtype=np.float64)


def points_from_array(array: np.ndarray) -> List[Point3D]:
    """Build points from an [N, 3] or [N, 4] array."""
    array = np.asarray(array, dtype=np.float64)
    if array.ndim != 2 or array.shape[1] not in (3, 4):
        raise ValueError(f"Expected an [N, 3] or [N, 4] array, got shape {array.shape}")

    if array.shape[1] == 3:
        return [Point3D(x=row[0], y=row[1], z=row[2]) for row in array.tolist()]
    return [Point3D(x=row[0], y=row[1], z=row[2], r=row[3]) for row in array.tolist()]


@dataclass(frozen=True)
class Keypoint:
    """2D image feature.

    Mirrors the fields of ``cv2.KeyPoint`` so detector output converts
    without loss.
    """

    u: float
    v: float
    size: float = 1.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0

    @property
    def pt(self) -> Tuple[float, float]:
        return (self.u, self.v)

    @classmethod
    def from_cv2(cls, keypoint: cv2.KeyPoint) -> "Keypoint":
        """Create from an OpenCV keypoint."""
        return cls(
            u=float(keypoint.pt[0]),
            v=float(keypoint.pt[1]),
            size=float(keypoint.size),
            angle=float(keypoint.angle),
            response=float(keypoint.response),
            octave=int(keypoint.octave),
        )

    def to_cv2(self) -> cv2.KeyPoint:
        return cv2.KeyPoint(self.u, self.v, self.size, self.angle, self.response, self.octave)


def keypoints_to_array(keypoints: Sequence[Keypoint]) -> np.ndarray:
    """Stack keypoint positions into an [N, 2] array of (u, v)."""
    if len(keypoints) == 0:
        return np.zeros((0, 2))
    return np.array([[kp.u, kp.v] for kp in keypoints], dtype=np.float64)


def validate_match_indices(
    matches: Sequence["Correspondence"],
    num_prev: int,
    num_curr: int,
) -> None:
    """Raise ValueError when a correspondence points outside either keypoint list."""
    for match in matches:
        if not 0 <= match.query_idx < num_prev:
            raise ValueError(
                f"query_idx {match.query_idx} out of range for {num_prev} previous keypoints"
            )
        if not 0 <= match.train_idx < num_curr:
            raise ValueError(
                f"train_idx {match.train_idx} out of range for {num_curr} current keypoints"
            )


@dataclass(frozen=True)
class Correspondence:
    """Matched keypoint pair.

    Attributes:
        query_idx: Index into the previous frame's keypoints
        train_idx: Index into the current frame's keypoints
        distance: Descriptor distance reported by the matcher
    """

    query_idx: int
    train_idx: int
    distance: float = 0.0

    @classmethod
    def from_dmatch(cls, match: cv2.DMatch) -> "Correspondence":
        """Create from an OpenCV descriptor match."""
        return cls(
            query_idx=int(match.queryIdx),
            train_idx=int(match.trainIdx),
            distance=float(match.distance),
        )


# =============================================================================
# Regions and Frames
# =============================================================================


@dataclass(frozen=True)
class Rect:
    """Axis-aligned image rectangle.

    Containment is half-open: ``x <= u < x + width`` and
    ``y <= v < y + height``.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, u: float, v: float) -> bool:
        return self.x <= u < self.right and self.y <= v < self.bottom

    def contains_points(self, uv: np.ndarray) -> np.ndarray:
        """Vectorized containment test.

        Args:
            uv: Pixel coordinates [N, 2]. Non-finite rows are never contained.

        Returns:
            Boolean mask [N]
        """
        uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
        u, v = uv[:, 0], uv[:, 1]
        with np.errstate(invalid="ignore"):
            return (u >= self.x) & (u < self.right) & (v >= self.y) & (v < self.bottom)

    def shrink(self, factor: float) -> "Rect":
        """Inset the rectangle symmetrically about its center.

        The origin moves by ``factor * size / 2`` and the size scales by
        ``1 - factor``; ``factor=0`` returns an identical rectangle.
        """
        if not 0.0 <= factor < 1.0:
            raise ValueError(f"Shrink factor must be in [0, 1), got {factor}")
        return Rect(
            x=self.x + factor * self.width / 2.0,
            y=self.y + factor * self.height / 2.0,
            width=self.width * (1.0 - factor),
            height=self.height * (1.0 - factor),
        )


@dataclass
class Region:
    """Detected object in one frame.

    Attributes:
        box_id: Identifier, stable within the frame
        roi: Rectangle in pixel coordinates
        class_id: Detector class ID (-1 when unknown)
        confidence: Detector confidence
        lidar_points: Range points attributed to this region
        kpt_matches: Keypoint correspondences attributed to this region
    """

    box_id: int
    roi: Rect
    class_id: int = -1
    confidence: float = 0.0
    lidar_points: List[Point3D] = field(default_factory=list)
    kpt_matches: List[Correspondence] = field(default_factory=list)

    @classmethod
    def from_xywh(
        cls,
        box_id: int,
        x: float,
        y: float,
        width: float,
        height: float,
        **kwargs: Any,
    ) -> "Region":
        return cls(box_id=box_id, roi=Rect(x, y, width, height), **kwargs)

    def reset(self) -> None:
        """Drop all attributed range points and matches."""
        self.lidar_points = []
        self.kpt_matches = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "box_id": self.box_id,
            "roi": [self.roi.x, self.roi.y, self.roi.width, self.roi.height],
            "class_id": self.class_id,
            "confidence": self.confidence,
            "num_lidar_points": len(self.lidar_points),
            "num_kpt_matches": len(self.kpt_matches),
        }


@dataclass
class Frame:
    """Sensor data for one timestep.

    Attributes:
        frame_id: Sequential frame index
        image: Camera image (opaque to the fusion core)
        keypoints: Detected keypoints
        regions: Detected object regions
        lidar_points: Range points captured with this image
        kpt_matches: Correspondences from the previous frame to this one
    """

    frame_id: int = 0
    image: Optional[np.ndarray] = None
    keypoints: List[Keypoint] = field(default_factory=list)
    regions: List[Region] = field(default_factory=list)
    lidar_points: List[Point3D] = field(default_factory=list)
    kpt_matches: List[Correspondence] = field(default_factory=list)

    def region_by_id(self, box_id: int) -> Optional[Region]:
        for region in self.regions:
            if region.box_id == box_id:
                return region
        return None

    def keypoint_array(self) -> np.ndarray:
        return keypoints_to_array(self.keypoints)

    def reset_regions(self) -> None:
        for region in self.regions:
            region.reset()


# =============================================================================
# Calibration
# =============================================================================


@dataclass
class CameraCalibration:
    """Range-sensor to image transform.

    A homogeneous point X is projected with ``P_rect @ R_rect @ RT @ X``
    followed by a perspective divide on the third component.

    Attributes:
        p_rect: Rectified projection matrix [3, 4]
        r_rect: Rectifying rotation [4, 4]
        rt: Sensor-to-camera rotation and translation [4, 4]
    """

    p_rect: np.ndarray
    r_rect: np.ndarray
    rt: np.ndarray

    def __post_init__(self):
        self.p_rect = np.asarray(self.p_rect, dtype=np.float64)
        self.r_rect = np.asarray(self.r_rect, dtype=np.float64)
        self.rt = np.asarray(self.rt, dtype=np.float64)

        for name, matrix, shape in (
            ("p_rect", self.p_rect, (3, 4)),
            ("r_rect", self.r_rect, (4, 4)),
            ("rt", self.rt, (4, 4)),
        ):
            if matrix.shape != shape:
                raise ValueError(f"{name} must have shape {shape}, got {matrix.shape}")
            if not np.all(np.isfinite(matrix)):
                raise ValueError(f"{name} contains non-finite values")

    @classmethod
    def from_kitti(
        cls,
        p_rect: np.ndarray,
        r_rect: np.ndarray,
        rotation: np.ndarray,
        translation: np.ndarray,
    ) -> "CameraCalibration":
        """Build from KITTI calibration blocks.

        Args:
            p_rect: P_rect_xx [3, 4]
            r_rect: R_rect_00 [3, 3]
            rotation: Velodyne-to-camera rotation R [3, 3]
            translation: Velodyne-to-camera translation T [3]
        """
        r_rect_h = np.eye(4)
        r_rect_h[:3, :3] = np.asarray(r_rect, dtype=np.float64).reshape(3, 3)

        rt = np.eye(4)
        rt[:3, :3] = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
        rt[:3, 3] = np.asarray(translation, dtype=np.float64).reshape(3)

        return cls(p_rect=np.asarray(p_rect).reshape(3, 4), r_rect=r_rect_h, rt=rt)

    @property
    def projection_matrix(self) -> np.ndarray:
        """Composed [3, 4] transform."""
        return self.p_rect @ self.r_rect @ self.rt

    def project(self, xyz: np.ndarray, min_depth: float = 1e-6) -> Tuple[np.ndarray, np.ndarray]:
        """Project 3D points into pixel coordinates.

        Args:
            xyz: Points [N, 3] (extra columns are ignored)
            min_depth: Depth at or below which a point is unprojectable; points
                behind the image plane are never projected

        Returns:
            - uv: Pixel coordinates [N, 2]; NaN rows for unprojectable points
            - valid: Boolean mask [N]
        """
        xyz = np.asarray(xyz, dtype=np.float64)
        if xyz.size == 0:
            return np.zeros((0, 2)), np.zeros(0, dtype=bool)

        homogeneous = np.hstack([xyz[:, :3], np.ones((xyz.shape[0], 1))])
        projected = homogeneous @ self.projection_matrix.T

        depth = projected[:, 2]
        valid = depth > min_depth

        uv = np.full((xyz.shape[0], 2), np.nan)
        uv[valid] = projected[valid, :2] / depth[valid, None]
        return uv, valid


# =============================================================================
# Cross-Frame Association
# =============================================================================


@dataclass(frozen=True)
class RegionMatch:
    """One previous/current region pairing and the votes supporting it."""

    previous_box_id: int
    current_box_id: int
    votes: int = 0


@dataclass
class RegionMapping:
    """Mapping from current-frame box IDs to previous-frame box IDs.

    The mapping is not guaranteed to be injective: several previous regions
    may elect the same current region. All pairings are kept in ``matches``;
    lookups by current box ID return the pairing with the most votes (first
    recorded on ties). Use ``conflicts`` to inspect collisions and
    ``resolve_one_to_one`` to obtain an injective mapping.
    """

    matches: List[RegionMatch] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self._best())

    def __contains__(self, current_box_id: int) -> bool:
        return current_box_id in self._best()

    def __getitem__(self, current_box_id: int) -> int:
        return self._best()[current_box_id].previous_box_id

    def __iter__(self) -> Iterator[int]:
        return iter(self._best())

    def get(self, current_box_id: int, default: Optional[int] = None) -> Optional[int]:
        best = self._best().get(current_box_id)
        return best.previous_box_id if best is not None else default

    def items(self) -> List[Tuple[int, int]]:
        return [(curr, match.previous_box_id) for curr, match in self._best().items()]

    def to_dict(self) -> Dict[int, int]:
        return dict(self.items())

    def candidates(self, current_box_id: int) -> List[RegionMatch]:
        """All pairings that elected ``current_box_id``."""
        return [m for m in self.matches if m.current_box_id == current_box_id]

    def conflicts(self) -> Dict[int, List[RegionMatch]]:
        """Current box IDs claimed by more than one previous region."""
        grouped: Dict[int, List[RegionMatch]] = OrderedDict()
        for match in self.matches:
            grouped.setdefault(match.current_box_id, []).append(match)
        return {curr: group for curr, group in grouped.items() if len(group) > 1}

    @property
    def is_injective(self) -> bool:
        return not self.conflicts()

    def resolve_one_to_one(self) -> "RegionMapping":
        """Keep the injective subset of pairings that maximizes total votes."""
        if self.is_injective:
            return RegionMapping(matches=list(self.matches))

        prev_ids = list(OrderedDict.fromkeys(m.previous_box_id for m in self.matches))
        curr_ids = list(OrderedDict.fromkeys(m.current_box_id for m in self.matches))
        prev_index = {box_id: i for i, box_id in enumerate(prev_ids)}
        curr_index = {box_id: j for j, box_id in enumerate(curr_ids)}

        # Cells without a recorded pairing can never be selected
        votes = np.full((len(prev_ids), len(curr_ids)), -1.0)
        for match in self.matches:
            votes[prev_index[match.previous_box_id], curr_index[match.current_box_id]] = match.votes

        rows, cols = linear_sum_assignment(votes, maximize=True)
        chosen = {(prev_ids[r], curr_ids[c]) for r, c in zip(rows, cols) if votes[r, c] >= 0}

        resolved = [
            m for m in self.matches if (m.previous_box_id, m.current_box_id) in chosen
        ]
        logger.debug(f"Resolved {len(self.matches)} region pairings to {len(resolved)}")
        return RegionMapping(matches=resolved)

    def _best(self) -> "OrderedDict[int, RegionMatch]":
        best: "OrderedDict[int, RegionMatch]" = OrderedDict()
        for match in self.matches:
            current = best.get(match.current_box_id)
            if current is None or match.votes > current.votes:
                best[match.current_box_id] = match
        return best


# =============================================================================
# Time-to-Collision
# =============================================================================


@dataclass
class TTCEstimate:
    """Time-to-collision from one sensing modality.

    ``ttc`` is None when the estimate is unknown; ``reason`` then says why.
    Callers must check ``is_known`` before using the value.

    Attributes:
        sensor: "lidar" or "camera"
        ttc: Time to collision (seconds) or None
        reason: Why the estimate is unknown
        num_samples: Inlier points (lidar) or valid distance ratios (camera)
        details: Intermediate quantities (closest distances, median ratio)
    """

    sensor: str
    ttc: Optional[float] = None
    reason: Optional[str] = None
    num_samples: int = 0
    details: Dict[str, float] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.ttc is not None

    @classmethod
    def unknown(cls, sensor: str, reason: str, **kwargs: Any) -> "TTCEstimate":
        return cls(sensor=sensor, ttc=None, reason=reason, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sensor": self.sensor,
            "ttc": self.ttc,
            "reason": self.reason,
            "num_samples": self.num_samples,
            **self.details,
        }
