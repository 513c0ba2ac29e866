"""Unit tests for pipeline registry."""

from kedro.pipeline import Pipeline


class TestPipelineRegistry:
    """Tests for pipeline registry."""

    def test_all_pipelines_are_pipeline_objects(self):
        """Test that all registered pipelines are Pipeline objects."""
        from ttc_fusion.pipeline_registry import register_pipelines

        pipelines = register_pipelines()

        for name, pipeline in pipelines.items():
            assert isinstance(pipeline, Pipeline), f"{name} is not a Pipeline"

    def test_required_pipelines_exist(self):
        """Test that all required pipelines are registered."""
        from ttc_fusion.pipeline_registry import register_pipelines

        pipelines = register_pipelines()

        required = [
            "lidar_clustering",
            "region_matching",
            "keypoint_clustering",
            "ttc_estimation",
            "full_fusion",
            "__default__",
        ]

        for name in required:
            assert name in pipelines, f"Missing required pipeline: {name}"

    def test_default_is_full_fusion(self):
        """Test that the default pipeline runs the complete fusion."""
        from ttc_fusion.pipeline_registry import register_pipelines

        pipelines = register_pipelines()

        default_nodes = {node.name for node in pipelines["__default__"].nodes}
        full_nodes = {node.name for node in pipelines["full_fusion"].nodes}
        assert default_nodes == full_nodes

    def test_full_fusion_nodes(self):
        """Test the node set of the full pipeline."""
        from ttc_fusion.pipeline_registry import register_pipelines

        node_names = {node.name for node in register_pipelines()["full_fusion"].nodes}

        assert node_names == {
            "crop_lidar_points",
            "cluster_lidar_with_regions",
            "match_regions",
            "cluster_keypoint_matches",
            "estimate_region_ttc",
            "summarize_ttc",
            "compute_ttc_metrics",
            "log_ttc_to_mlflow",
        }

    def test_full_fusion_free_inputs(self):
        """Test that the pipeline only needs raw frame data, calibration and parameters."""
        from ttc_fusion.pipeline_registry import register_pipelines

        inputs = register_pipelines()["full_fusion"].inputs()

        assert inputs == {
            "previous_frame",
            "current_frame",
            "current_lidar_points",
            "keypoint_matches",
            "camera_calibration",
            "params:lidar_clustering",
            "params:region_matching",
            "params:keypoint_clustering",
            "params:ttc_estimation",
        }

    def test_full_fusion_outputs(self):
        """Test that the tabular summary is the only unconsumed output."""
        from ttc_fusion.pipeline_registry import register_pipelines

        outputs = register_pipelines()["full_fusion"].outputs()

        assert outputs == {"ttc_summary"}


class TestPipelineTags:
    """Tests for pipeline tags."""

    def test_pipelines_tagged_by_name(self):
        """Test that every node of a component pipeline carries its name as a tag."""
        from ttc_fusion.pipeline_registry import register_pipelines

        pipelines = register_pipelines()

        for name in ["lidar_clustering", "region_matching", "keypoint_clustering", "ttc_estimation"]:
            for node in pipelines[name].nodes:
                assert name in node.tags, f"{node.name} is missing tag {name}"
