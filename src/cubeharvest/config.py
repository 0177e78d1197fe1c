"""Runtime configuration for the CubeHarvest orchestrator."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from the environment or a ``.env`` file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    kube_namespace: str = Field(default="default", description="Namespace game pods live in")
    kube_context: str | None = Field(
        default=None, description="kubeconfig context to use outside a cluster"
    )
    unit_image: str = Field(
        default="busybox:1.36", description="Container image backing every astro unit"
    )
    tick_interval_seconds: float = Field(
        default=1.0,
        description="Real-time seconds between economy ticks",
        gt=0.0,
    )
    starting_credits: int = Field(default=100, ge=0)
    miner_cost: int = Field(default=50, ge=0)
    processor_cost: int = Field(default=50, ge=0)
    cost_escalation_per_unit: int = Field(
        default=10,
        ge=0,
        description="Extra cost added for every live unit of the same kind",
    )
    credit_rate_per_link: int = Field(default=1, ge=0)
    max_links_per_processor: int | None = Field(
        default=None,
        ge=1,
        description="How many miners a single processor pays out for (unlimited when unset)",
    )
    upkeep_per_unit: int = Field(default=0, ge=0)
    upkeep_interval_ticks: int = Field(default=3, ge=1)
    deploy_timeout_seconds: float = Field(default=30.0, gt=0.0)
    gone_retention: int = Field(
        default=50, ge=0, description="How many gone units are kept for display"
    )
    chaos_enabled: bool = True
    chaos_min_interval_seconds: float = Field(default=20.0, gt=0.0)
    chaos_max_interval_seconds: float = Field(default=60.0, gt=0.0)
    chaos_seed: int | None = Field(
        default=None, ge=0, description="Seed for chaos scheduling; random when unset"
    )
    retry_attempts: int = Field(default=5, ge=1)
    backoff_initial_seconds: float = Field(default=0.2, gt=0.0)
    backoff_max_seconds: float = Field(default=4.0, gt=0.0)
    watch_timeout_seconds: int = Field(default=300, ge=1)
    watch_read_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Socket read timeout on watch streams; quiet streams are reopened",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"],
        description="Origins allowed to call the HTTP API",
    )

    @model_validator(mode="after")
    def _check_chaos_bounds(self) -> Settings:
        if self.chaos_min_interval_seconds > self.chaos_max_interval_seconds:
            raise ValueError("chaos_min_interval_seconds must not exceed chaos_max_interval_seconds")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
