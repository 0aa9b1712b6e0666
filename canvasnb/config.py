"""Configuration management for canvasnb."""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3001
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"])


class ExecutionConfig(BaseModel):
    backend: Literal["local", "http"] = "local"
    url: str = "http://localhost:3001"
    timeout_seconds: int = 30
    python_executable: str = ""


class CanvasDefaults(BaseModel):
    page_size: str = "A4"
    orientation: Literal["portrait", "landscape"] = "landscape"
    page_margin: int = 50
    grid_size: int = 20
    snap_to_grid: bool = True


class LayoutConfig(BaseModel):
    cell_spacing: int = 20
    max_pages: int = Field(default=10, ge=1)


class CanvasnbConfig(BaseModel):
    server: ServerConfig = ServerConfig()
    execution: ExecutionConfig = ExecutionConfig()
    canvas: CanvasDefaults = CanvasDefaults()
    layout: LayoutConfig = LayoutConfig()


def _config_dir() -> Path:
    return Path.home() / ".canvasnb"


def _config_path() -> Path:
    return _config_dir() / "config.json"


def recent_files_path() -> Path:
    """Return the path of the persisted recent-files list."""
    return _config_dir() / "recent_files.json"


def ensure_dirs() -> None:
    """Create required canvasnb directories."""
    _config_dir().mkdir(exist_ok=True)


def load_config() -> CanvasnbConfig:
    """Load config from ~/.canvasnb/config.json, returning defaults if missing."""
    path = _config_path()
    if not path.exists():
        return CanvasnbConfig()
    text = path.read_text()
    return CanvasnbConfig.model_validate_json(text)


def save_config(config: CanvasnbConfig) -> None:
    """Save config to ~/.canvasnb/config.json."""
    ensure_dirs()
    path = _config_path()
    path.write_text(json.dumps(config.model_dump(), indent=2) + "\n")
