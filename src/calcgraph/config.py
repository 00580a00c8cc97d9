"""Configuration management using Pydantic Settings."""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment presets."""

    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Remote graph source
    graph_api_base_url: str = "http://localhost:8080/api"
    graph_fetch_timeout: float = 10.0

    # Rendering mode selection
    render_raster_threshold: int = Field(
        default=500,
        description="Bitmap backend is used when node count exceeds this value"
    )

    # Force-directed layout
    layout_width: float = 800.0
    layout_height: float = 600.0
    layout_link_distance: float = 80.0
    layout_charge_strength: float = -300.0
    layout_collision_radius_vector: float = 30.0
    layout_collision_radius_raster: float = 15.0
    layout_alpha_min: float = 0.001
    layout_alpha_decay: float = Field(
        default=1 - 0.001 ** (1 / 300),
        description="Cooling rate; reaches alpha_min in ~300 ticks"
    )
    layout_velocity_decay: float = 0.4
    layout_drag_alpha_target: float = Field(
        default=0.3,
        description="Simulation is kept warm at this alpha while a node is dragged"
    )
    layout_max_iterations: int = 300
    layout_large_graph_max_iterations: int = Field(
        default=60,
        description="Tick cap for graphs above the LOD threshold; clustering hides the detail"
    )
    layout_approximate_above: int = Field(
        default=1_000,
        description="Above this node count charge uses cell aggregates for distant nodes"
    )
    layout_seed: int = 42

    # Level of detail clustering
    lod_node_threshold: int = 10_000
    lod_min_cluster_size: int = 5
    lod_cluster_radius: float = Field(
        default=50.0,
        description="Grid cell size used to bucket nodes into spatial clusters"
    )
    lod_auto_enable: bool = True

    # Differential update pipeline
    update_batch_window_ms: float = Field(
        default=50.0,
        description="Updates arriving within this window are coalesced into one batch"
    )
    update_settle_ms: float = Field(
        default=500.0,
        description="Visual settle time after a batch; new batches wait for it"
    )
    update_history_depth: int = 10

    # Viewport
    zoom_min: float = 0.1
    zoom_max: float = 4.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    log_level: str = "INFO"


def get_dev_settings() -> Settings:
    """Get development environment settings."""
    return Settings(
        graph_api_base_url="http://localhost:8080/api",
        api_debug=True,
        log_level="DEBUG",
    )


def get_prod_settings() -> Settings:
    """Get production environment settings.

    Large aggregate graphs are clustered earlier so the bitmap backend
    stays responsive on modest hardware.
    """
    return Settings(
        graph_fetch_timeout=30.0,
        lod_node_threshold=5_000,
        log_level="WARNING",
    )


def get_test_settings() -> Settings:
    """Get test environment settings."""
    return Settings(
        graph_api_base_url="http://testserver/api",
        graph_fetch_timeout=1.0,
        layout_max_iterations=50,
        log_level="DEBUG",
    )


# Global settings instance
settings = Settings()
