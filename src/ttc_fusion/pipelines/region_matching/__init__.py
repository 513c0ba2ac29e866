"""Region Matching Pipeline.

Tracks detected regions from the previous frame to the current frame by
majority vote over keypoint correspondences.
"""

from kedro.pipeline import Pipeline, node, pipeline

from .nodes import (
    RegionTracker,
    locate_keypoints,
    match_regions,
)

__all__ = [
    "RegionTracker",
    "locate_keypoints",
    "match_regions",
    "create_pipeline",
]


def create_pipeline(**kwargs) -> Pipeline:
    """Create the region matching pipeline.

    Returns:
        A Kedro Pipeline object for region matching.
    """
    return pipeline(
        [
            node(
                func=match_regions,
                inputs=[
                    "keypoint_matches",
                    "previous_frame",
                    "current_frame",
                    "params:region_matching",
                ],
                outputs="region_mapping",
                name="match_regions",
                tags=["tracking", "association"],
            ),
        ],
        tags=["region_matching"],
    )
