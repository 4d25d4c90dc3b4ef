from typing import Any, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_server_notebook.observability import get_logger

logger = get_logger(__name__)

# (default, minimum, maximum)
_NUMERIC_BOUNDS = {
    "MAX_OUTPUT_SIZE": (2000, 100, 50000),
    "TIMEOUT_SECONDS": (30, 5, 300),
    "REQUEST_TIMEOUT_SECONDS": (600, 30, 3600),
    "MAX_REQUEST_SIZE_MB": (10.0, 1, 100),
}


def clamp_setting(key: str, value: Any, default, minimum, maximum):
    """
    Coerce a numeric setting into its allowed range.

    Non-numeric values fall back to the default; out-of-range values are
    clamped to the nearest bound. Both cases log a warning instead of failing
    startup.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("config_invalid_numeric", key=key, value=value, default=default)
        return default
    if number != number:  # NaN
        logger.warning("config_invalid_numeric", key=key, value=value, default=default)
        return default

    if number < minimum:
        logger.warning("config_below_minimum", key=key, value=value, min=minimum)
        number = minimum
    elif number > maximum:
        logger.warning("config_above_maximum", key=key, value=value, max=maximum)
        number = maximum

    return type(default)(number)


class GatewaySettings(BaseSettings):
    """Runtime configuration for the notebook tool gateway (env prefix MCP_NOTEBOOK_)."""

    # Server settings
    HOST: str = Field("127.0.0.1", frozen=True)
    PORT: int = Field(default=0, ge=0, le=65535)
    LOG_LEVEL: Literal["debug", "info", "warning", "error"] = Field(default="info")

    # Notebook tool limits
    MAX_OUTPUT_SIZE: int = 2000
    TIMEOUT_SECONDS: int = 30

    # HTTP limits
    REQUEST_TIMEOUT_SECONDS: int = 600
    MAX_REQUEST_SIZE_MB: float = 10

    # Jupyter provider
    WORKSPACE_ROOT: Optional[str] = None
    KERNEL_NAME: str = "python3"

    model_config = SettingsConfigDict(
        env_prefix="MCP_NOTEBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator(
        "MAX_OUTPUT_SIZE",
        "TIMEOUT_SECONDS",
        "REQUEST_TIMEOUT_SECONDS",
        "MAX_REQUEST_SIZE_MB",
        mode="before",
    )
    @classmethod
    def _clamp_numeric(cls, v, info):
        default, minimum, maximum = _NUMERIC_BOUNDS[info.field_name]
        return clamp_setting(info.field_name, v, default, minimum, maximum)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_level(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v == "warn":
                return "warning"
        return v

    @property
    def max_request_bytes(self) -> int:
        return int(self.MAX_REQUEST_SIZE_MB * 1024 * 1024)


def load_settings(**overrides) -> GatewaySettings:
    """Build settings from the environment, applying explicit overrides on top."""
    settings = GatewaySettings(**overrides)
    logger.debug(
        "settings_loaded",
        max_output_size=settings.MAX_OUTPUT_SIZE,
        timeout_seconds=settings.TIMEOUT_SECONDS,
        request_timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
        max_request_size_mb=settings.MAX_REQUEST_SIZE_MB,
    )
    return settings
