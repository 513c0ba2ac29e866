"""Custom Kedro Datasets for the Fusion Pipelines.

This module provides dataset implementations for the KITTI raw recordings:
- Velodyne scans stored as float32 binaries (KittiVelodyneDataset)
- Camera/velodyne calibration text files (KittiCalibrationDataset)
- Rectified camera images (KittiImageDataset)
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
from kedro.io import AbstractDataset
from kedro.io.core import get_filepath_str

from ttc_fusion.datatypes import (
    CameraCalibration,
    Point3D,
    points_from_array,
    points_to_array,
)

logger = logging.getLogger(__name__)

CAM_TO_CAM_FILE = "calib_cam_to_cam.txt"
VELO_TO_CAM_FILE = "calib_velo_to_cam.txt"


class KittiVelodyneDataset(AbstractDataset[List[Point3D], List[Point3D]]):
    """Dataset for KITTI velodyne scans.

    Each scan is a flat float32 binary of (x, y, z, reflectivity) records.

    Example catalog.yml entry:
        current_lidar_points:
            type: ttc_fusion.datasets.KittiVelodyneDataset
            filepath: data/01_raw/velodyne_points/data/0000000001.bin
            load_args:
                max_points: 150000
    """

    def __init__(
        self,
        filepath: str,
        load_args: Optional[Dict[str, Any]] = None,
        save_args: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Initialize KittiVelodyneDataset.

        Args:
            filepath: Path to the .bin scan.
            load_args: Arguments for loading:
                - max_points: Keep only the first N points
            save_args: Not used.
            metadata: Optional metadata dictionary.
        """
        self._filepath = Path(filepath)
        self._load_args = load_args or {}
        self._save_args = save_args or {}
        self._metadata = metadata or {}

    def _load(self) -> List[Point3D]:
        filepath = get_filepath_str(self._filepath, "file")

        raw = np.fromfile(filepath, dtype=np.float32)
        if raw.size % 4 != 0:
            raise ValueError(
                f"Corrupt velodyne scan {filepath}: {raw.size} floats is not a multiple of 4"
            )
        scan = raw.reshape(-1, 4)

        max_points = self._load_args.get("max_points")
        if max_points is not None:
            scan = scan[:max_points]

        logger.info(f"Loaded {len(scan)} lidar points from {filepath}")

        return points_from_array(scan)

    def _save(self, data: List[Point3D]) -> None:
        filepath = get_filepath_str(self._filepath, "file")
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)

        points_to_array(data).astype(np.float32).tofile(filepath)

        logger.info(f"Saved {len(data)} lidar points to {filepath}")

    def _describe(self) -> Dict[str, Any]:
        return {
            "filepath": str(self._filepath),
            "load_args": self._load_args,
        }

    def _exists(self) -> bool:
        return self._filepath.exists()


def _read_calibration_file(filepath: Path) -> Dict[str, np.ndarray]:
    """Parse a KITTI ``key: v1 v2 ...`` calibration file.

    Entries with non-numeric values (e.g. ``calib_time``) are skipped.
    """
    entries = {}
    with open(filepath) as f:
        for line in f:
            key, sep, value = line.partition(":")
            if not sep:
                continue
            try:
                entries[key.strip()] = np.array(value.split(), dtype=np.float64)
            except ValueError:
                logger.debug(f"Skipping non-numeric calibration entry {key.strip()!r}")
    return entries


def _format_row(values: np.ndarray) -> str:
    return " ".join(f"{v:.12e}" for v in np.asarray(values).ravel())


class KittiCalibrationDataset(AbstractDataset[CameraCalibration, CameraCalibration]):
    """Dataset for a KITTI calibration directory.

    Reads the rectified projection and rectifying rotation of one camera from
    ``calib_cam_to_cam.txt`` and the velodyne extrinsics from
    ``calib_velo_to_cam.txt``.

    Example catalog.yml entry:
        camera_calibration:
            type: ttc_fusion.datasets.KittiCalibrationDataset
            filepath: data/01_raw/calibration
            load_args:
                camera: "02"
    """

    def __init__(
        self,
        filepath: str,
        load_args: Optional[Dict[str, Any]] = None,
        save_args: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Initialize KittiCalibrationDataset.

        Args:
            filepath: Directory holding the two calibration files.
            load_args: Arguments for loading:
                - camera: Camera index of the projection matrix (default: "02")
            save_args: Not used.
            metadata: Optional metadata dictionary.
        """
        self._filepath = Path(filepath)
        self._load_args = load_args or {}
        self._save_args = save_args or {}
        self._metadata = metadata or {}

    @property
    def _camera(self) -> str:
        return str(self._load_args.get("camera", "02"))

    def _load(self) -> CameraCalibration:
        directory = Path(get_filepath_str(self._filepath, "file"))

        cam_to_cam = _read_calibration_file(directory / CAM_TO_CAM_FILE)
        velo_to_cam = _read_calibration_file(directory / VELO_TO_CAM_FILE)

        p_key = f"P_rect_{self._camera}"
        required = [
            (cam_to_cam, p_key),
            (cam_to_cam, "R_rect_00"),
            (velo_to_cam, "R"),
            (velo_to_cam, "T"),
        ]
        missing = [key for entries, key in required if key not in entries]
        if missing:
            raise KeyError(f"Missing calibration entries in {directory}: {missing}")

        calibration = CameraCalibration.from_kitti(
            p_rect=cam_to_cam[p_key],
            r_rect=cam_to_cam["R_rect_00"],
            rotation=velo_to_cam["R"],
            translation=velo_to_cam["T"],
        )

        logger.info(f"Loaded calibration for camera {self._camera} from {directory}")

        return calibration

    def _save(self, data: CameraCalibration) -> None:
        directory = Path(get_filepath_str(self._filepath, "file"))
        directory.mkdir(parents=True, exist_ok=True)

        with open(directory / CAM_TO_CAM_FILE, "w") as f:
            f.write(f"P_rect_{self._camera}: {_format_row(data.p_rect)}\n")
            f.write(f"R_rect_00: {_format_row(data.r_rect[:3, :3])}\n")

        with open(directory / VELO_TO_CAM_FILE, "w") as f:
            f.write(f"R: {_format_row(data.rt[:3, :3])}\n")
            f.write(f"T: {_format_row(data.rt[:3, 3])}\n")

        logger.info(f"Saved calibration for camera {self._camera} to {directory}")

    def _describe(self) -> Dict[str, Any]:
        return {
            "filepath": str(self._filepath),
            "load_args": self._load_args,
        }

    def _exists(self) -> bool:
        return (self._filepath / CAM_TO_CAM_FILE).exists() and (
            self._filepath / VELO_TO_CAM_FILE
        ).exists()


class KittiImageDataset(AbstractDataset[np.ndarray, np.ndarray]):
    """Dataset for a single camera image, read with OpenCV.

    Example catalog.yml entry:
        current_image:
            type: ttc_fusion.datasets.KittiImageDataset
            filepath: data/01_raw/image_02/data/0000000001.png
            load_args:
                grayscale: true
    """

    def __init__(
        self,
        filepath: str,
        load_args: Optional[Dict[str, Any]] = None,
        save_args: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self._filepath = Path(filepath)
        self._load_args = load_args or {}
        self._save_args = save_args or {}
        self._metadata = metadata or {}

    def _load(self) -> np.ndarray:
        filepath = get_filepath_str(self._filepath, "file")

        flags = cv2.IMREAD_GRAYSCALE if self._load_args.get("grayscale", False) else cv2.IMREAD_COLOR
        image = cv2.imread(filepath, flags)
        if image is None:
            raise FileNotFoundError(f"Cannot read image file: {filepath}")

        logger.info(f"Loaded image {filepath} with shape {image.shape}")

        return image

    def _save(self, data: np.ndarray) -> None:
        filepath = get_filepath_str(self._filepath, "file")
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)

        if not cv2.imwrite(filepath, data):
            raise RuntimeError(f"Cannot write image file: {filepath}")

    def _describe(self) -> Dict[str, Any]:
        return {
            "filepath": str(self._filepath),
            "load_args": self._load_args,
        }

    def _exists(self) -> bool:
        return self._filepath.exists()


# Export all dataset classes
__all__ = [
    "KittiVelodyneDataset",
    "KittiCalibrationDataset",
    "KittiImageDataset",
]
