"""Region Matching Pipeline Nodes.

Associates the previous frame's regions with the current frame's regions by
letting every keypoint correspondence vote.

Voting Overview:

    Correspondence (prev kpt, curr kpt)
           ↓
    ┌──────────────────────────────────────────┐
    │ Locate prev kpt in previous regions      │
    │ Locate curr kpt in current regions       │
    │ (-1 when zero or several regions match)  │
    └──────────────────────────────────────────┘
           ↓
    Vote matrix [num_prev_regions, num_curr_regions]
           ↓
    ┌──────────────────────────────────────────┐
    │ For each previous region, elect the      │
    │ current region with the most votes       │
    │ (lowest current index wins ties)         │
    └──────────────────────────────────────────┘
           ↓
    RegionMapping: current box ID -> previous box ID

Votes with an unresolved side are recorded but do not count toward any
pairing. A previous region whose best pairing has fewer than ``min_votes``
votes is left out of the mapping. Two previous regions may elect the same
current region; the mapping keeps both pairings and reports them through
``RegionMapping.conflicts``.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ttc_fusion.config import RegionMatchingConfig
from ttc_fusion.datatypes import (
    NO_REGION,
    Correspondence,
    Frame,
    Region,
    RegionMapping,
    RegionMatch,
    validate_match_indices,
)

logger = logging.getLogger(__name__)


def locate_keypoints(regions: Sequence[Region], uv: np.ndarray) -> np.ndarray:
    """Index of the unique region containing each keypoint.

    Args:
        regions: Candidate regions
        uv: Keypoint positions [N, 2]

    Returns:
        Region indices [N]; NO_REGION where zero or several regions contain
        the keypoint
    """
    uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
    if len(regions) == 0:
        return np.full(uv.shape[0], NO_REGION, dtype=int)

    mask = np.stack([region.roi.contains_points(uv) for region in regions], axis=1)
    located = np.where(mask.sum(axis=1) == 1, np.argmax(mask, axis=1), NO_REGION)
    return located.astype(int)


class RegionTracker:
    """Matches regions across two frames by correspondence voting.

    Example:
        tracker = RegionTracker(RegionMatchingConfig(min_votes=1))
        mapping = tracker.match(matches, prev_frame, curr_frame)
        prev_box_id = mapping[curr_box_id]
    """

    def __init__(self, config: Optional[RegionMatchingConfig] = None):
        self.config = config or RegionMatchingConfig()

    def cast_votes(
        self,
        matches: Sequence[Correspondence],
        previous_frame: Frame,
        current_frame: Frame,
    ) -> List[Tuple[int, int]]:
        """One (current region index, previous region index) vote per correspondence."""
        validate_match_indices(matches, len(previous_frame.keypoints), len(current_frame.keypoints))
        if len(matches) == 0:
            return []

        prev_uv = previous_frame.keypoint_array()[[m.query_idx for m in matches]]
        curr_uv = current_frame.keypoint_array()[[m.train_idx for m in matches]]

        prev_idx = locate_keypoints(previous_frame.regions, prev_uv)
        curr_idx = locate_keypoints(current_frame.regions, curr_uv)
        return list(zip(curr_idx.tolist(), prev_idx.tolist()))

    @staticmethod
    def tally(
        votes: Sequence[Tuple[int, int]],
        num_prev: int,
        num_curr: int,
    ) -> np.ndarray:
        """Vote counts [num_prev, num_curr]; votes with a NO_REGION side are skipped."""
        counts = np.zeros((num_prev, num_curr), dtype=int)
        for curr_idx, prev_idx in votes:
            if curr_idx == NO_REGION or prev_idx == NO_REGION:
                continue
            counts[prev_idx, curr_idx] += 1
        return counts

    def match(
        self,
        matches: Sequence[Correspondence],
        previous_frame: Frame,
        current_frame: Frame,
    ) -> RegionMapping:
        """Build the current -> previous region mapping."""
        prev_regions = previous_frame.regions
        curr_regions = current_frame.regions

        votes = self.cast_votes(matches, previous_frame, current_frame)
        counts = self.tally(votes, len(prev_regions), len(curr_regions))

        pairings = []
        if len(curr_regions) > 0:
            for i, prev_region in enumerate(prev_regions):
                best = int(np.argmax(counts[i]))
                num_votes = int(counts[i, best])
                if num_votes < self.config.min_votes:
                    logger.debug(
                        f"Previous region {prev_region.box_id}: best pairing has "
                        f"{num_votes} votes, below {self.config.min_votes}"
                    )
                    continue
                pairings.append(
                    RegionMatch(
                        previous_box_id=prev_region.box_id,
                        current_box_id=curr_regions[best].box_id,
                        votes=num_votes,
                    )
                )

        mapping = RegionMapping(matches=pairings)
        conflicts = mapping.conflicts()
        if conflicts:
            logger.debug(f"Current regions claimed more than once: {sorted(conflicts)}")
            if self.config.one_to_one:
                mapping = mapping.resolve_one_to_one()
        return mapping


# =============================================================================
# Node Functions
# =============================================================================


def match_regions(
    matches: List[Correspondence],
    previous_frame: Frame,
    current_frame: Frame,
    params: Dict[str, Any],
) -> RegionMapping:
    """Associate regions between two frames.

    Args:
        matches: Correspondences from previous to current frame
        previous_frame: Earlier frame with keypoints and regions
        current_frame: Later frame with keypoints and regions
        params: Region matching parameters
            - min_votes: Minimum votes for a pairing (default 1)
            - one_to_one: Resolve collisions into an injective mapping

    Returns:
        RegionMapping from current box ID to previous box ID
    """
    config = RegionMatchingConfig.from_params(params)
    mapping = RegionTracker(config).match(matches, previous_frame, current_frame)

    logger.info(
        f"Matched {len(mapping)}/{len(current_frame.regions)} current regions "
        f"to {len(previous_frame.regions)} previous regions "
        f"({len(mapping.conflicts())} conflicts)"
    )
    return mapping
