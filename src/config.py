"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting `KUYO_*` environment variables into strongly-typed Pydantic models.
- Validating required fields and providing actionable error messages.
"""

import os
from typing import Literal, TypeVar

import dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_T = TypeVar("_T", int, float)

KuyoEnvironment = Literal["development", "production"]
KuyoPlugin = Literal["performance", "breadcrumbs"]
Platform = Literal["server", "browser"]

DEFAULT_ENDPOINT = "http://localhost:8000/api"


def _get_required_env(name: str) -> str:
    """Read a required env var or raise a helpful error."""
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"{name} is required. Please set it in your .env file.")
    if value.startswith("your_") and value.endswith("_here"):
        raise ValueError(f"{name} is required. Please replace the placeholder value in your .env file.")
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def _get_env_list(name: str, default: list[str]) -> list[str]:
    """Read a comma-separated env var into a list of non-empty items."""
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class DeploymentConfig(BaseModel):
    """Optional deployment metadata attached to adapter context."""

    model_config = ConfigDict(frozen=True)

    env: str | None = None
    public_url: str | None = None
    production_url: str | None = None
    git_provider: str | None = None
    commit_ref: str | None = None
    commit_sha: str | None = None
    commit_message: str | None = None
    commit_author: str | None = None


class KuyoConfig(BaseModel):
    """Configuration for the Kuyo telemetry client."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(..., description="Kuyo collector API key")
    environment: KuyoEnvironment = Field(default="production", description="Reported environment")
    debug: bool = Field(default=False, description="Verbose delivery logging")
    endpoint: str = Field(default=DEFAULT_ENDPOINT, description="Collector base URL")
    adapter: str = Field(default="python", description="Runtime adapter tag (resolved by the client)")
    platform: Platform = Field(default="server", description="Platform tag used for metric buffering")
    plugins: list[KuyoPlugin] = Field(default_factory=list, description="Enabled plugins")

    # Buffering / delivery tuning
    batch_size: int = Field(default=50, ge=1, description="Records per key that trigger an immediate flush")
    batch_timeout_s: float = Field(default=30.0, gt=0, description="Idle flush timeout per key (seconds)")
    sweep_interval_s: float = Field(default=300.0, gt=0, description="Full-store sweep interval (seconds)")
    sampling_interval_s: float = Field(default=30.0, gt=0, description="Producer sampling interval (seconds)")
    max_buffered_metrics: int = Field(default=1000, ge=1, description="Per-key cap; oldest dropped on overflow")
    request_timeout_s: float = Field(default=10.0, gt=0, description="HTTP timeout per request (seconds)")
    shutdown_grace_s: float = Field(default=5.0, ge=0, description="Max wait for draining on close (seconds)")

    session_db_path: str | None = Field(default=None, description="DuckDB file persisting the session")
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)

    @field_validator("api_key")
    def validate_api_key(cls, v: str) -> str:
        """Validate api key is set (not empty/placeholder)."""
        if not v or not v.strip() or v == "your_kuyo_api_key_here":
            raise ValueError("KUYO_API_KEY is required. Please set it in your .env file.")
        return v.strip()

    @field_validator("endpoint")
    def validate_endpoint(cls, v: str) -> str:
        """Require an http(s) URL and strip the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"KUYO_ENDPOINT must be an http(s) URL. Got: {v!r}")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_buffer_bounds(self) -> "KuyoConfig":
        """The per-key cap must hold at least one full batch."""
        if self.max_buffered_metrics < self.batch_size:
            raise ValueError(
                "KUYO_MAX_BUFFERED_METRICS must be >= KUYO_BATCH_SIZE. "
                f"Got: {self.max_buffered_metrics} < {self.batch_size}"
            )
        return self

    @property
    def performance_enabled(self) -> bool:
        """Whether the performance plugin is enabled."""
        return "performance" in self.plugins


def load_config() -> KuyoConfig:
    """Load the client configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages when required configuration is
      missing or still contains placeholder values.
    """
    dotenv.load_dotenv()

    deployment = DeploymentConfig(
        env=os.getenv("KUYO_DEPLOYMENT_ENV") or None,
        public_url=os.getenv("KUYO_DEPLOYMENT_URL") or None,
        production_url=os.getenv("KUYO_PRODUCTION_URL") or None,
        git_provider=os.getenv("KUYO_GIT_PROVIDER") or None,
        commit_ref=os.getenv("KUYO_COMMIT_REF") or None,
        commit_sha=os.getenv("KUYO_COMMIT_SHA") or None,
        commit_message=os.getenv("KUYO_COMMIT_MESSAGE") or None,
        commit_author=os.getenv("KUYO_COMMIT_AUTHOR") or None,
    )

    return KuyoConfig(
        api_key=_get_required_env("KUYO_API_KEY"),
        environment=os.getenv("KUYO_ENVIRONMENT", "production").strip().lower(),  # type: ignore[arg-type]
        debug=_get_env_bool("KUYO_DEBUG", False),
        endpoint=os.getenv("KUYO_ENDPOINT", DEFAULT_ENDPOINT).strip(),
        adapter=os.getenv("KUYO_ADAPTER", "python").strip().lower(),
        platform=os.getenv("KUYO_PLATFORM", "server").strip().lower(),  # type: ignore[arg-type]
        plugins=_get_env_list("KUYO_PLUGINS", ["performance"]),  # type: ignore[arg-type]
        batch_size=_get_env_number("KUYO_BATCH_SIZE", 50, int),
        batch_timeout_s=_get_env_number("KUYO_BATCH_TIMEOUT", 30.0, float),
        sweep_interval_s=_get_env_number("KUYO_SWEEP_INTERVAL", 300.0, float),
        sampling_interval_s=_get_env_number("KUYO_SAMPLING_INTERVAL", 30.0, float),
        max_buffered_metrics=_get_env_number("KUYO_MAX_BUFFERED_METRICS", 1000, int),
        request_timeout_s=_get_env_number("KUYO_REQUEST_TIMEOUT", 10.0, float),
        shutdown_grace_s=_get_env_number("KUYO_SHUTDOWN_GRACE", 5.0, float),
        session_db_path=os.getenv("KUYO_SESSION_DB_PATH") or None,
        deployment=deployment,
    )
