"""Lidar Clustering Pipeline.

Crops raw range points to the ego corridor and attributes each remaining
point to the single detected region its image projection falls into.
"""

from kedro.pipeline import Pipeline, node, pipeline

from .nodes import (
    RangeToRegionAssigner,
    cluster_lidar_with_regions,
    crop_lidar_points,
    crop_points,
)

__all__ = [
    "RangeToRegionAssigner",
    "crop_points",
    "crop_lidar_points",
    "cluster_lidar_with_regions",
    "create_pipeline",
]


def create_pipeline(**kwargs) -> Pipeline:
    """Create the lidar clustering pipeline.

    Returns:
        A Kedro Pipeline object for lidar clustering.
    """
    return pipeline(
        [
            node(
                func=crop_lidar_points,
                inputs=["current_lidar_points", "params:lidar_clustering"],
                outputs="cropped_lidar_points",
                name="crop_lidar_points",
                tags=["lidar", "preprocessing"],
            ),
            node(
                func=cluster_lidar_with_regions,
                inputs=[
                    "current_frame",
                    "cropped_lidar_points",
                    "camera_calibration",
                    "params:lidar_clustering",
                ],
                outputs="lidar_clustered_frame",
                name="cluster_lidar_with_regions",
                tags=["lidar", "clustering"],
            ),
        ],
        tags=["lidar_clustering"],
    )
