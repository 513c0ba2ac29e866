"""Unit tests for the lidar clustering pipeline."""

import numpy as np
import pytest

from conftest import point_at_pixel


class TestRangeToRegionAssigner:
    """Tests for range point to region assignment."""

    def test_unique_assignment(self, calibration, sample_regions):
        """Test that a point inside exactly one region is attributed to it."""
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        point = point_at_pixel(420.0, 240.0)

        RangeToRegionAssigner().assign(sample_regions, [point], calibration)

        assert sample_regions[1].lidar_points == [point]
        assert sample_regions[0].lidar_points == []
        assert sample_regions[2].lidar_points == []

    def test_ambiguous_point_dropped(self, calibration, sample_regions):
        """Test that a point inside two regions is attributed to neither."""
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        point = point_at_pixel(320.0, 240.0)

        RangeToRegionAssigner().assign(sample_regions, [point], calibration)

        assert all(region.lidar_points == [] for region in sample_regions)

    def test_shrunk_boundary_excluded(self, calibration, sample_regions):
        """Test that a point in the outer margin of a region is dropped."""
        from ttc_fusion.config import LidarClusteringConfig
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        # Inside region 1 (400..440) but outside its 10% inset (402..438)
        point = point_at_pixel(439.0, 240.0)

        RangeToRegionAssigner().assign(sample_regions, [point], calibration)
        assert sample_regions[1].lidar_points == []

        RangeToRegionAssigner(LidarClusteringConfig(shrink_factor=0.0)).assign(
            sample_regions, [point], calibration
        )
        assert sample_regions[1].lidar_points == [point]

    def test_degenerate_depth_skipped(self, calibration, sample_regions):
        """Test that a point with zero projected depth is skipped without error."""
        from ttc_fusion.datatypes import Point3D
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        good = point_at_pixel(420.0, 240.0)

        RangeToRegionAssigner().assign(sample_regions, [Point3D(0.0, 0.0, 0.0), good], calibration)

        assert sample_regions[1].lidar_points == [good]

    def test_point_behind_sensor_not_assigned(self, calibration, sample_regions):
        """Test that a point behind the sensor is dropped without any crop."""
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        # Both divide out to pixel (420, 240)
        behind = point_at_pixel(420.0, 240.0, depth=-10.0)
        ahead = point_at_pixel(420.0, 240.0)

        RangeToRegionAssigner().assign(sample_regions, [behind, ahead], calibration)

        assert sample_regions[1].lidar_points == [ahead]

    def test_order_preserved(self, calibration, sample_regions):
        """Test that assigned points keep their input order."""
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        points = [point_at_pixel(410.0 + i, 240.0, depth=10.0 + i) for i in range(5)]

        RangeToRegionAssigner().assign(sample_regions, points, calibration)

        assert sample_regions[1].lidar_points == points

    def test_empty_inputs(self, calibration, sample_regions):
        """Test that no points or no regions is a no-op."""
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        assigner = RangeToRegionAssigner()
        assigner.assign(sample_regions, [], calibration)
        assigner.assign([], [point_at_pixel(420.0, 240.0)], calibration)

        assert all(region.lidar_points == [] for region in sample_regions)

    def test_enclosure_mask_shape(self, calibration, sample_regions):
        """Test the point/region containment matrix."""
        from ttc_fusion.pipelines.lidar_clustering import RangeToRegionAssigner

        points = [point_at_pixel(320.0, 240.0), point_at_pixel(420.0, 240.0)]

        mask = RangeToRegionAssigner().enclosure_mask(sample_regions, points, calibration)

        assert mask.shape == (2, 3)
        np.testing.assert_array_equal(mask[0], [True, False, True])
        np.testing.assert_array_equal(mask[1], [False, True, False])


class TestCropPoints:
    """Tests for the range point corridor."""

    def test_default_keeps_everything(self):
        """Test that the default corridor keeps all points."""
        from ttc_fusion.config import LidarCropConfig
        from ttc_fusion.datatypes import Point3D
        from ttc_fusion.pipelines.lidar_clustering import crop_points

        points = [Point3D(-5.0, 30.0, 4.0), Point3D(100.0, 0.0, -3.0)]

        assert crop_points(points, LidarCropConfig()) == points

    def test_corridor(self):
        """Test each bound of the ego-lane corridor."""
        from ttc_fusion.config import LidarCropConfig
        from ttc_fusion.datatypes import Point3D
        from ttc_fusion.pipelines.lidar_clustering import crop_points

        config = LidarCropConfig(
            min_x=2.0, max_x=20.0, max_y=2.0, min_z=-1.5, max_z=-0.9, min_reflectivity=0.1
        )
        inside = Point3D(8.0, -1.0, -1.0, r=0.5)
        points = [
            inside,
            Point3D(1.0, 0.0, -1.0, r=0.5),  # too close
            Point3D(25.0, 0.0, -1.0, r=0.5),  # too far
            Point3D(8.0, 2.5, -1.0, r=0.5),  # beside the lane
            Point3D(8.0, 0.0, -2.0, r=0.5),  # road surface
            Point3D(8.0, 0.0, -1.0, r=0.05),  # weak return
        ]

        assert crop_points(points, config) == [inside]


class TestNodeFunctions:
    """Tests for the lidar clustering node functions."""

    def test_crop_lidar_points(self):
        """Test the crop node with nested parameters."""
        from ttc_fusion.datatypes import Point3D
        from ttc_fusion.pipelines.lidar_clustering import crop_lidar_points

        points = [Point3D(5.0, 0.0, 0.0), Point3D(50.0, 0.0, 0.0)]

        cropped = crop_lidar_points(points, {"crop": {"max_x": 20.0}})

        assert cropped == [points[0]]

    def test_cluster_is_idempotent(self, calibration, sample_regions):
        """Test that running the node twice does not duplicate points."""
        from ttc_fusion.datatypes import Frame
        from ttc_fusion.pipelines.lidar_clustering import cluster_lidar_with_regions

        frame = Frame(frame_id=3, regions=sample_regions)
        points = [point_at_pixel(420.0, 240.0), point_at_pixel(425.0, 245.0)]

        cluster_lidar_with_regions(frame, points, calibration, {})
        result = cluster_lidar_with_regions(frame, points, calibration, {})

        assert result is frame
        assert frame.lidar_points == points
        assert len(frame.regions[1].lidar_points) == 2

    def test_invalid_shrink_rejected(self, calibration):
        """Test that an invalid shrink factor fails before any assignment."""
        from ttc_fusion.datatypes import Frame
        from ttc_fusion.pipelines.lidar_clustering import cluster_lidar_with_regions

        with pytest.raises(ValueError):
            cluster_lidar_with_regions(Frame(), [], calibration, {"shrink_factor": 1.2})
