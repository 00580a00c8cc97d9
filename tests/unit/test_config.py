"""Unit tests for settings and environment presets."""

import pytest

from calcgraph.config import Settings, get_dev_settings, get_prod_settings, get_test_settings


class TestSettings:
    """Tests for defaults and overrides."""

    def test_defaults(self) -> None:
        s = Settings(_env_file=None)
        assert s.render_raster_threshold == 500
        assert s.lod_node_threshold == 10_000
        assert s.lod_min_cluster_size == 5
        assert s.lod_cluster_radius == 50.0
        assert s.update_batch_window_ms == 50.0
        assert s.update_settle_ms == 500.0
        assert s.update_history_depth == 10
        assert s.layout_link_distance == 80.0
        assert s.layout_large_graph_max_iterations < s.layout_max_iterations
        assert s.layout_approximate_above == 1_000

    def test_alpha_decay_reaches_minimum_in_about_300_ticks(self) -> None:
        s = Settings(_env_file=None)
        alpha = (1 - s.layout_alpha_decay) ** 300
        assert alpha == pytest.approx(s.layout_alpha_min)

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RENDER_RASTER_THRESHOLD", "250")
        monkeypatch.setenv("graph_api_base_url", "http://pricing.internal/api")

        s = Settings(_env_file=None)

        assert s.render_raster_threshold == 250
        assert s.graph_api_base_url == "http://pricing.internal/api"


class TestPresets:
    """Tests for environment presets."""

    def test_dev(self) -> None:
        s = get_dev_settings()
        assert s.api_debug is True
        assert s.log_level == "DEBUG"

    def test_prod_clusters_earlier(self) -> None:
        assert get_prod_settings().lod_node_threshold < Settings(_env_file=None).lod_node_threshold

    def test_test(self) -> None:
        s = get_test_settings()
        assert s.layout_max_iterations == 50
        assert s.graph_fetch_timeout == 1.0
