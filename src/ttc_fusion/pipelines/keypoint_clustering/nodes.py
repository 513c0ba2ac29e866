"""Keypoint Clustering Pipeline Nodes.

Attributes keypoint correspondences to a region, then drops the ones whose
apparent motion disagrees with the rest of the region.

A correspondence is a candidate when its current-frame keypoint lies inside
the region rectangle. For every candidate the displacement

    d = || kpt_curr - kpt_prev ||

is computed, and only candidates with ``|d - mean(d)| < k * std(d)`` are
kept (population standard deviation, k = 1 by default). Mismatches and
background features bleeding into the box move inconsistently with the
rigid object and fall outside the band.

Candidates are materialized once, statistics are computed over them, and the
filtered list is written to the region in a single assignment.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ttc_fusion.config import KeypointClusteringConfig
from ttc_fusion.datatypes import (
    Correspondence,
    Frame,
    Keypoint,
    Region,
    RegionMapping,
    keypoints_to_array,
    validate_match_indices,
)
from ttc_fusion.exceptions import EmptyInputError
from ttc_fusion.utils.stats import mean_std

logger = logging.getLogger(__name__)


def match_displacements(
    matches: Sequence[Correspondence],
    kpts_prev: Sequence[Keypoint],
    kpts_curr: Sequence[Keypoint],
) -> np.ndarray:
    """Euclidean distance between the two keypoints of each correspondence."""
    if len(matches) == 0:
        return np.zeros(0)

    prev = keypoints_to_array(kpts_prev)[[m.query_idx for m in matches]]
    curr = keypoints_to_array(kpts_curr)[[m.train_idx for m in matches]]
    return np.linalg.norm(curr - prev, axis=1)


class KeypointMatchAssigner:
    """Assigns keypoint correspondences to a single region.

    Example:
        assigner = KeypointMatchAssigner()
        assigner.assign(region, prev_frame.keypoints, curr_frame.keypoints, matches)
    """

    def __init__(self, config: Optional[KeypointClusteringConfig] = None):
        self.config = config or KeypointClusteringConfig()

    def candidates(
        self,
        region: Region,
        kpts_curr: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> List[Correspondence]:
        """Correspondences whose current keypoint lies inside the region."""
        if len(matches) == 0:
            return []

        rect = region.roi.shrink(self.config.effective_shrink)
        curr = keypoints_to_array(kpts_curr)[[m.train_idx for m in matches]]
        inside = rect.contains_points(curr)
        return [matches[i] for i in np.flatnonzero(inside).tolist()]

    def filter_outliers(
        self,
        candidates: Sequence[Correspondence],
        kpts_prev: Sequence[Keypoint],
        kpts_curr: Sequence[Keypoint],
    ) -> List[Correspondence]:
        """Keep candidates whose displacement lies within the std band.

        Raises:
            EmptyInputError: If there are no candidates.
        """
        distances = match_displacements(candidates, kpts_prev, kpts_curr)
        mu, sigma = mean_std(distances)

        keep = np.abs(distances - mu) < self.config.outlier_std_multiplier * sigma
        logger.debug(
            f"Displacement mean={mu:.2f}px std={sigma:.2f}px, "
            f"kept {int(np.count_nonzero(keep))}/{len(candidates)}"
        )
        return [candidates[i] for i in np.flatnonzero(keep).tolist()]

    def assign(
        self,
        region: Region,
        kpts_prev: Sequence[Keypoint],
        kpts_curr: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> None:
        """Replace ``region.kpt_matches`` with the inlier matches.

        A region without candidate matches ends up with an empty match list.
        """
        validate_match_indices(matches, len(kpts_prev), len(kpts_curr))

        candidates = self.candidates(region, kpts_curr, matches)
        try:
            inliers = self.filter_outliers(candidates, kpts_prev, kpts_curr)
        except EmptyInputError:
            logger.debug(f"Region {region.box_id}: no keypoint matches inside the region")
            inliers = []

        region.kpt_matches = inliers


# =============================================================================
# Node Functions
# =============================================================================


def cluster_keypoint_matches(
    previous_frame: Frame,
    current_frame: Frame,
    matches: List[Correspondence],
    mapping: Optional[RegionMapping],
    params: Dict[str, Any],
) -> Frame:
    """Attach keypoint correspondences to the current frame's regions.

    Only regions present in ``mapping`` are processed; every region is
    processed when no mapping is given.

    Args:
        previous_frame: Frame holding the query keypoints
        current_frame: Frame holding the train keypoints and the regions
        matches: Correspondences from previous to current frame
        mapping: Tracked regions (current box ID -> previous box ID)
        params: Keypoint clustering parameters

    Returns:
        The current frame with ``kpt_matches`` set and regions populated
    """
    config = KeypointClusteringConfig.from_params(params)
    assigner = KeypointMatchAssigner(config)

    current_frame.kpt_matches = list(matches)

    num_regions = 0
    for region in current_frame.regions:
        if mapping is not None and region.box_id not in mapping:
            continue
        assigner.assign(region, previous_frame.keypoints, current_frame.keypoints, matches)
        num_regions += 1

    num_assigned = sum(len(region.kpt_matches) for region in current_frame.regions)
    logger.info(
        f"Frame {current_frame.frame_id}: clustered {num_assigned}/{len(matches)} "
        f"keypoint matches into {num_regions} regions"
    )
    return current_frame
