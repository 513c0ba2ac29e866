"""TTC Estimation Pipeline.

Computes, for every tracked region, a range-based and a vision-based
time-to-collision estimate. The two estimates are reported side by side;
combining them is left to the consumer.

Example Usage:
    from ttc_fusion.pipelines.ttc_estimation import (
        RangeTTCEstimator,
        VisionTTCEstimator,
    )
    from ttc_fusion.config import TTCConfig

    config = TTCConfig(frame_rate=10.0)
    lidar = RangeTTCEstimator(config).estimate(prev_points, curr_points)
    if lidar.is_known:
        print(f"TTC lidar: {lidar.ttc:.2f}s")
"""

from kedro.pipeline import Pipeline, node, pipeline

from .nodes import (
    RangeTTCEstimator,
    RegionTTC,
    VisionTTCEstimator,
    compute_ttc_camera,
    compute_ttc_lidar,
    compute_ttc_metrics,
    estimate_region_ttc,
    log_ttc_to_mlflow,
    summarize_ttc,
)

__all__ = [
    # Estimators
    "RangeTTCEstimator",
    "VisionTTCEstimator",
    "RegionTTC",
    # Node functions
    "compute_ttc_lidar",
    "compute_ttc_camera",
    "estimate_region_ttc",
    "summarize_ttc",
    "compute_ttc_metrics",
    "log_ttc_to_mlflow",
    "create_pipeline",
]


def create_pipeline(**kwargs) -> Pipeline:
    """Create the TTC estimation pipeline.

    Returns:
        A Kedro Pipeline object for TTC estimation.
    """
    return pipeline(
        [
            node(
                func=estimate_region_ttc,
                inputs=["previous_frame", "fused_frame", "region_mapping", "params:ttc_estimation"],
                outputs="region_ttc",
                name="estimate_region_ttc",
                tags=["ttc", "inference"],
            ),
            node(
                func=summarize_ttc,
                inputs="region_ttc",
                outputs="ttc_summary",
                name="summarize_ttc",
                tags=["ttc", "reporting"],
            ),
            node(
                func=compute_ttc_metrics,
                inputs="region_ttc",
                outputs="ttc_metrics",
                name="compute_ttc_metrics",
                tags=["ttc", "metrics"],
            ),
            node(
                func=log_ttc_to_mlflow,
                inputs=["ttc_metrics", "params:ttc_estimation"],
                outputs=None,
                name="log_ttc_to_mlflow",
                tags=["ttc", "mlflow"],
            ),
        ],
        tags=["ttc_estimation"],
    )
