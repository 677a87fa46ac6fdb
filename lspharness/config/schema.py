"""Configuration schema using Pydantic.

Single data model and defaults, persisted to ~/.lspharness/config.json.
"""

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings


class SessionConfig(BaseModel):
    """RPC session timeouts (seconds)."""
    default_timeout: float = 15.0
    # The handshake typically needs far longer than steady-state calls.
    method_timeouts: dict[str, float] = Field(default_factory=lambda: {"initialize": 45.0})


class ServerConfig(BaseModel):
    """How to launch the stdio peer."""
    command: list[str] = Field(default_factory=list)  # argv, e.g. ["grain", "src/cli/lsp/lsp.gr"]
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    fatal_markers: list[str] = Field(default_factory=lambda: ["RuntimeError:", "memory access out of bounds"])
    shutdown_grace_seconds: float = 2.0
    echo_stderr: bool = False  # Print peer stderr to the console as it arrives


class SettleConfig(BaseModel):
    """Settle detection for notification bursts."""
    notification_method: str = "textDocument/publishDiagnostics"
    quiet_period_ms: int = 400
    hard_deadline_ms: int = 15000
    first_event_timeout_ms: int | None = 1200  # None waits for the hard deadline


class PoolConfig(BaseModel):
    """Parallel test runner."""
    jobs: int = 8
    command: list[str] = Field(default_factory=lambda: ["grain"])
    test_suffixes: list[str] = Field(default_factory=lambda: ["_test.gr", ".test.gr"])
    paths: list[str] = Field(default_factory=lambda: ["./tests"])
    unit_timeout_seconds: float | None = None


class Config(BaseSettings):
    """Root configuration for lspharness."""
    session: SessionConfig = Field(default_factory=SessionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    settle: SettleConfig = Field(default_factory=SettleConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)

    model_config = ConfigDict(
        env_prefix="LSPHARNESS_",
        env_nested_delimiter="__"
    )
