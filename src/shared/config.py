"""Process settings loaded from the environment using pydantic-settings."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class SharedConfig(BaseSettings):
    """Base configuration shared across all processes."""
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    workspace_root: str = Field(default=".", validation_alias="WORKSPACE_ROOT")
    package_namespace: str = Field(
        default="@bernierllc/", validation_alias="PACKAGE_NAMESPACE"
    )

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }


class RegistrySettings(SharedConfig):
    """Connection settings for the package metadata registry."""
    registry_url: str = Field(
        default="http://localhost:3355/api/mcp",
        validation_alias="REGISTRY_URL",
    )
    registry_api_key: str = Field(default="", validation_alias="REGISTRY_API_KEY")
    registry_timeout: float = Field(default=30.0, validation_alias="REGISTRY_TIMEOUT")


class PlanServiceSettings(RegistrySettings):
    """Configuration for the Plan Coordination Service process."""
    plan_service_url: str = Field(
        default="http://localhost:8010",
        validation_alias="PLAN_SERVICE_URL",
    )
    discovery_limit: int = Field(default=10, validation_alias="PLAN_DISCOVERY_LIMIT")
    idle_interval: float = Field(default=30.0, validation_alias="PLAN_IDLE_INTERVAL")
    generator_command: str = Field(
        default="", validation_alias="PLAN_GENERATOR_COMMAND"
    )
    generator_timeout: int = Field(
        default=1800, validation_alias="PLAN_GENERATOR_TIMEOUT"
    )
