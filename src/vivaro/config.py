"""Configuration loading from environment variables and vivaro.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".vivaro" / "data"
_CONFIG_FILENAME = "vivaro.toml"


@dataclass
class ServerConfig:
    """Local HTTP server configuration."""

    host: str = "localhost"
    port: int = 3001
    max_upload_mb: int = 50


@dataclass
class DesktopConfig:
    """How the desktop shell supervises the server process."""

    ready_attempts: int = 40
    ready_interval: float = 0.5
    stop_timeout: float = 5.0
    open_browser: bool = True


@dataclass
class VivaroConfig:
    """Top-level Vivaro configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    desktop: DesktopConfig = field(default_factory=DesktopConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    pid_file: Path = Path.home() / ".vivaro" / "vivaro.pid"
    log_level: str = "INFO"

    @property
    def base_url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"


def _env(*names: str) -> str | None:
    """First non-empty value among several environment variable names."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def load_config(config_path: Path | None = None) -> VivaroConfig:
    """Load configuration from environment variables and optional vivaro.toml.

    Priority: environment variables > vivaro.toml > defaults.
    ``PORT`` and ``DATA_DIR`` are honoured for compatibility with older shells.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.vivaro/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".vivaro" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    server_data = file_data.get("server", {})
    desktop_data = file_data.get("desktop", {})

    config = VivaroConfig(
        server=ServerConfig(
            host=os.getenv("VIVARO_HOST", server_data.get("host", "localhost")),
            port=int(_env("VIVARO_PORT", "PORT") or server_data.get("port", 3001)),
            max_upload_mb=int(
                os.getenv("VIVARO_MAX_UPLOAD_MB", server_data.get("max_upload_mb", 50))
            ),
        ),
        desktop=DesktopConfig(
            ready_attempts=int(
                os.getenv("VIVARO_READY_ATTEMPTS", desktop_data.get("ready_attempts", 40))
            ),
            ready_interval=float(desktop_data.get("ready_interval", 0.5)),
            stop_timeout=float(desktop_data.get("stop_timeout", 5.0)),
            open_browser=bool(desktop_data.get("open_browser", True)),
        ),
        data_dir=Path(
            _env("VIVARO_DATA_DIR", "DATA_DIR") or file_data.get("data_dir", str(_DEFAULT_DATA_DIR))
        ).expanduser(),
        log_level=os.getenv("VIVARO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    if "pid_file" in file_data:
        config.pid_file = Path(file_data["pid_file"]).expanduser()
    return config
