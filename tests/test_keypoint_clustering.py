"""Unit tests for the keypoint clustering pipeline."""

import numpy as np
import pytest


def _shifted_pairs(displacements, origin=(10.0, 50.0), spacing=10.0):
    """Keypoints moving right by the given displacements, plus one match each."""
    from ttc_fusion.datatypes import Correspondence, Keypoint

    prev = [Keypoint(origin[0] + i * spacing, origin[1]) for i in range(len(displacements))]
    curr = [Keypoint(kp.u + d, kp.v) for kp, d in zip(prev, displacements)]
    matches = [Correspondence(query_idx=i, train_idx=i) for i in range(len(displacements))]
    return prev, curr, matches


class TestMatchDisplacements:
    """Tests for per-match displacement."""

    def test_displacements(self):
        """Test Euclidean displacement of each correspondence."""
        from ttc_fusion.datatypes import Correspondence, Keypoint
        from ttc_fusion.pipelines.keypoint_clustering import match_displacements

        prev = [Keypoint(0.0, 0.0), Keypoint(10.0, 10.0)]
        curr = [Keypoint(3.0, 4.0), Keypoint(10.0, 10.0)]
        matches = [Correspondence(0, 0), Correspondence(1, 1)]

        np.testing.assert_allclose(match_displacements(matches, prev, curr), [5.0, 0.0])

    def test_empty(self):
        """Test that no matches gives an empty array."""
        from ttc_fusion.pipelines.keypoint_clustering import match_displacements

        assert match_displacements([], [], []).shape == (0,)


class TestKeypointMatchAssigner:
    """Tests for assigning correspondences to one region."""

    def test_outlier_rejected(self):
        """Test the one-standard-deviation band around the mean displacement."""
        from ttc_fusion.datatypes import Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        # mean = 2.8, std = 3.6: the 10px match deviates by 7.2
        prev, curr, matches = _shifted_pairs([1.0, 1.0, 1.0, 1.0, 10.0])
        region = Region.from_xywh(0, 0, 0, 100, 100)

        KeypointMatchAssigner().assign(region, prev, curr, matches)

        assert region.kpt_matches == matches[:4]

    def test_matches_outside_region_ignored(self):
        """Test that only matches whose current keypoint is in the region are candidates."""
        from ttc_fusion.datatypes import Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, matches = _shifted_pairs([2.0, 1.0, 3.0, 2.0])
        # Keypoints sit at u = 12, 21, 33, 42; the region ends at u = 30
        region = Region.from_xywh(0, 0, 0, 30, 100)

        candidates = KeypointMatchAssigner().candidates(region, curr, matches)

        assert candidates == matches[:2]

    def test_single_match_rejected(self):
        """Test that a lone match has zero spread and is rejected by the strict band."""
        from ttc_fusion.datatypes import Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, matches = _shifted_pairs([4.0])
        region = Region.from_xywh(0, 0, 0, 100, 100)

        KeypointMatchAssigner().assign(region, prev, curr, matches)

        assert region.kpt_matches == []

    def test_no_candidates_gives_empty_list(self):
        """Test that a region without matches ends up empty instead of failing."""
        from ttc_fusion.datatypes import Correspondence, Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, matches = _shifted_pairs([1.0, 2.0])
        region = Region.from_xywh(0, 500, 500, 10, 10)
        region.kpt_matches = [Correspondence(9, 9)]

        KeypointMatchAssigner().assign(region, prev, curr, matches)

        assert region.kpt_matches == []

    def test_filter_outliers_raises_on_empty(self):
        """Test that filtering an empty candidate set raises EmptyInputError."""
        from ttc_fusion.exceptions import EmptyInputError
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        with pytest.raises(EmptyInputError):
            KeypointMatchAssigner().filter_outliers([], [], [])

    def test_out_of_range_index(self):
        """Test that a correspondence outside the keypoint list raises ValueError."""
        from ttc_fusion.datatypes import Correspondence, Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, _ = _shifted_pairs([1.0, 2.0])
        region = Region.from_xywh(0, 0, 0, 100, 100)

        with pytest.raises(ValueError):
            KeypointMatchAssigner().assign(region, prev, curr, [Correspondence(0, 5)])

    def test_reassign_does_not_duplicate(self):
        """Test that assigning twice leaves each inlier once."""
        from ttc_fusion.datatypes import Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, matches = _shifted_pairs([1.0, 1.0, 1.0, 1.0, 10.0])
        region = Region.from_xywh(0, 0, 0, 100, 100)
        assigner = KeypointMatchAssigner()

        assigner.assign(region, prev, curr, matches)
        assigner.assign(region, prev, curr, matches)

        assert region.kpt_matches == matches[:4]

    def test_existing_matches_replaced(self):
        """Test that matches from an earlier pass are dropped, even with legacy parameters."""
        from ttc_fusion.config import KeypointClusteringConfig
        from ttc_fusion.datatypes import Correspondence, Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, matches = _shifted_pairs([1.0, 1.0, 1.0, 1.0, 10.0])
        region = Region.from_xywh(0, 0, 0, 100, 100)
        region.kpt_matches = [Correspondence(7, 7)]
        config = KeypointClusteringConfig.from_params({"clear_existing": False})

        KeypointMatchAssigner(config).assign(region, prev, curr, matches)

        assert region.kpt_matches == matches[:4]

    def test_shrink_roi(self):
        """Test that enabling shrink_roi excludes keypoints near the border."""
        from ttc_fusion.config import KeypointClusteringConfig
        from ttc_fusion.datatypes import Region
        from ttc_fusion.pipelines.keypoint_clustering import KeypointMatchAssigner

        prev, curr, matches = _shifted_pairs([1.0, 1.0])
        # Current keypoints at u = 11 and 21; the 30% inset starts at u = 15
        region = Region.from_xywh(0, 0, 0, 100, 100)

        unshrunk = KeypointMatchAssigner().candidates(region, curr, matches)
        shrunk = KeypointMatchAssigner(
            KeypointClusteringConfig(shrink_factor=0.3, shrink_roi=True)
        ).candidates(region, curr, matches)

        assert unshrunk == matches
        assert shrunk == matches[1:]


class TestClusterKeypointMatches:
    """Tests for the keypoint clustering node."""

    def test_only_mapped_regions(self, tracked_frame_pair):
        """Test that unmapped regions are left untouched."""
        from ttc_fusion.datatypes import RegionMapping, RegionMatch
        from ttc_fusion.pipelines.keypoint_clustering import cluster_keypoint_matches

        previous, current, matches = tracked_frame_pair
        mapping = RegionMapping(matches=[RegionMatch(previous_box_id=5, current_box_id=2, votes=5)])

        result = cluster_keypoint_matches(previous, current, matches, mapping, {})

        assert result is current
        assert current.kpt_matches == matches
        # Corners move by 14.1px, the center keypoint does not move
        assert current.regions[1].kpt_matches == matches[:4]
        assert current.regions[0].kpt_matches == []

    def test_all_regions_without_mapping(self, tracked_frame_pair):
        """Test that every region is processed when no mapping is given."""
        from ttc_fusion.pipelines.keypoint_clustering import cluster_keypoint_matches

        previous, current, matches = tracked_frame_pair

        cluster_keypoint_matches(previous, current, matches, None, {})

        assert len(current.regions[1].kpt_matches) == 4
