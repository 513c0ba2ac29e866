"""Kedro Pipeline Registry.

This module provides the central registry for all pipelines in the fusion project.

Frame-pair flow:

    current_frame + current_lidar_points ──> lidar_clustering ──┐
    previous_frame + current_frame ──> region_matching ─────────┤
                                                                ↓
                                            keypoint_clustering ──> ttc_estimation
"""

from typing import Dict

from kedro.pipeline import Pipeline

from ttc_fusion.pipelines.keypoint_clustering import create_pipeline as create_keypoint_pipeline
from ttc_fusion.pipelines.lidar_clustering import create_pipeline as create_lidar_pipeline
from ttc_fusion.pipelines.region_matching import create_pipeline as create_matching_pipeline
from ttc_fusion.pipelines.ttc_estimation import create_pipeline as create_ttc_pipeline


def register_pipelines() -> Dict[str, Pipeline]:
    """Register all project pipelines.

    Returns:
        A dictionary mapping pipeline names to Pipeline objects.
    """
    # Individual pipelines
    lidar_clustering_pipeline = create_lidar_pipeline()
    region_matching_pipeline = create_matching_pipeline()
    keypoint_clustering_pipeline = create_keypoint_pipeline()
    ttc_estimation_pipeline = create_ttc_pipeline()

    # Combined pipelines
    clustering_pipeline = (
        lidar_clustering_pipeline
        + region_matching_pipeline
        + keypoint_clustering_pipeline
    )

    full_fusion_pipeline = clustering_pipeline + ttc_estimation_pipeline

    return {
        # Individual pipelines
        "lidar_clustering": lidar_clustering_pipeline,
        "region_matching": region_matching_pipeline,
        "keypoint_clustering": keypoint_clustering_pipeline,
        "ttc_estimation": ttc_estimation_pipeline,
        # Combined pipelines
        "clustering": clustering_pipeline,
        "full_fusion": full_fusion_pipeline,
        # Default pipeline
        "__default__": full_fusion_pipeline,
    }
