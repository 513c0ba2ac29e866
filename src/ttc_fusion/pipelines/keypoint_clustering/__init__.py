"""Keypoint Clustering Pipeline.

Attributes keypoint correspondences to tracked regions and rejects matches
whose displacement is inconsistent with the region's motion.
"""

from kedro.pipeline import Pipeline, node, pipeline

from .nodes import (
    KeypointMatchAssigner,
    cluster_keypoint_matches,
    match_displacements,
)

__all__ = [
    "KeypointMatchAssigner",
    "match_displacements",
    "cluster_keypoint_matches",
    "create_pipeline",
]


def create_pipeline(**kwargs) -> Pipeline:
    """Create the keypoint clustering pipeline.

    Returns:
        A Kedro Pipeline object for keypoint clustering.
    """
    return pipeline(
        [
            node(
                func=cluster_keypoint_matches,
                inputs=[
                    "previous_frame",
                    "lidar_clustered_frame",
                    "keypoint_matches",
                    "region_mapping",
                    "params:keypoint_clustering",
                ],
                outputs="fused_frame",
                name="cluster_keypoint_matches",
                tags=["keypoints", "clustering"],
            ),
        ],
        tags=["keypoint_clustering"],
    )
