"""
Centralized configuration for aibox.

Uses Pydantic BaseSettings for environment variable integration
and validation. Every knob the provisioning stages use is defined here.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (AIBOX_*)
3. .env file
4. Default values

Example:
    from aibox.config import get_config

    config = get_config()
    print(config.ollama_model)  # From AIBOX_OLLAMA_MODEL or default

    # Override at runtime
    config = get_config(colima_memory=16)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AiboxConfig(BaseSettings):
    """
    Central configuration for aibox.

    All settings can be overridden via environment variables
    prefixed with AIBOX_.

    Example:
        export AIBOX_OLLAMA_MODEL=mistral
        export AIBOX_FATAL_STEPS='["homebrew", "docker-ready"]'
    """

    model_config = SettingsConfigDict(
        env_prefix="AIBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Homebrew
    brew_prefix: str = Field(
        default="/opt/homebrew",
        description="Homebrew installation prefix (Apple Silicon default)",
    )
    brew_install_url: str = Field(
        default="https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh",
        description="URL of the official Homebrew install script",
    )
    shell_profile: str = Field(
        default="~/.zprofile",
        description="Login shell profile that receives the brew shellenv line",
    )

    # Colima
    colima_cpu: int = Field(default=4, ge=1, description="vCPUs for the Colima VM")
    colima_memory: int = Field(default=8, ge=1, description="Memory (GiB) for the Colima VM")
    colima_disk: int = Field(default=60, ge=10, description="Disk (GiB) for the Colima VM")
    autostart_label: str = Field(
        default="com.colima.autostart",
        description="launchd label of the Colima autostart agent",
    )
    launch_agents_dir: str = Field(
        default="~/Library/LaunchAgents",
        description="Directory holding per-user launchd agents",
    )
    autostart_delay_seconds: int = Field(
        default=10,
        ge=0,
        description="Delay before the agent starts Colima after login",
    )

    # Ollama
    ollama_host: str = Field(
        default="0.0.0.0",
        description="Bind address exported as OLLAMA_HOST for network access",
    )
    ollama_port: int = Field(default=11434, description="Ollama API port")
    ollama_model: str = Field(default="llama3.2", description="Model pulled on first run")

    # Open WebUI
    webui_container: str = Field(default="open-webui", description="Container name")
    webui_image: str = Field(
        default="ghcr.io/open-webui/open-webui:main",
        description="Open WebUI container image",
    )
    webui_port: int = Field(default=3000, description="Host port published for Open WebUI")
    webui_data_dir: str = Field(
        default="~/docker/open-webui",
        description="Host directory mounted as the Open WebUI data volume",
    )

    # Workspace
    workspace_dirs: List[str] = Field(
        default_factory=lambda: [
            "~/dev",
            "~/docker",
            "~/models/gguf",
            "~/models/embeddings",
            "~/agents/scheduled",
            "~/agents/workflows",
            "~/data/inbox",
            "~/data/archive",
        ],
        description="Recommended directory layout",
    )
    utilities: List[str] = Field(
        default_factory=lambda: ["git", "htop", "tmux", "jq", "wget"],
        description="CLI utilities installed with Homebrew when missing",
    )

    # Network
    network_interface: str = Field(
        default="en0",
        description="Interface whose address is shown for LAN access",
    )

    # Timeouts and readiness
    command_timeout_seconds: Optional[float] = Field(
        default=3600.0,
        description="Timeout for install commands (None disables)",
    )
    probe_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for read-only probe queries",
    )
    http_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for HTTP readiness checks",
    )
    ready_attempts: int = Field(
        default=10,
        ge=1,
        description="Readiness poll attempts after starting a service",
    )
    ready_interval_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Seconds between readiness poll attempts",
    )
    xcode_wait_attempts: int = Field(
        default=360,
        ge=1,
        description="Polls (5s apart) waiting for the Xcode tools installer dialog",
    )

    # Pipeline behaviour
    fatal_steps: List[str] = Field(
        default_factory=lambda: ["docker-ready"],
        description="Steps whose failure aborts the whole run",
    )
    dry_run_probes: bool = Field(
        default=False,
        description="Execute read-only probe queries during a dry run",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        description="Logging level for diagnostics and step events",
    )
    log_format: Literal["auto", "json", "text"] = Field(
        default="auto",
        description="Step event format (json for log shippers, text for console, auto picks text on a terminal)",
    )
    event_log: Optional[str] = Field(
        default=None,
        description="File receiving step events (stderr if not set)",
    )

    @field_validator(
        "shell_profile", "launch_agents_dir", "webui_data_dir", "event_log"
    )
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("workspace_dirs")
    @classmethod
    def expand_paths(cls, v: List[str]) -> List[str]:
        """Expand ~ and environment variables in every directory."""
        return [os.path.expanduser(os.path.expandvars(p)) for p in v]

    @field_validator("brew_prefix")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/") or "/"

    @property
    def brew_bin(self) -> Path:
        """Directory holding the brew executable and formula binaries."""
        return Path(self.brew_prefix) / "bin"

    @property
    def ollama_url(self) -> str:
        return f"http://localhost:{self.ollama_port}"

    @property
    def webui_url(self) -> str:
        return f"http://localhost:{self.webui_port}"

    def autostart_plist_path(self) -> Path:
        """Path of the Colima autostart launch agent."""
        return Path(self.launch_agents_dir) / f"{self.autostart_label}.plist"


# Global singleton
_config: Optional[AiboxConfig] = None


def get_config(**overrides) -> AiboxConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        AiboxConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = AiboxConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
