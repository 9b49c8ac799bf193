"""Configuration management for cellbook."""

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


DEFAULT_EXECUTION_TIMEOUT_MS = 300_000


class ExecutionConfig(BaseModel):
    clear_output_before_run: bool = False
    interrupt_on_error: bool = True
    timeout_ms: int = Field(default=DEFAULT_EXECUTION_TIMEOUT_MS, ge=0)


class KernelConfig(BaseModel):
    auto_kernel_picker: bool = False
    # kernel language -> notebook language
    language_mappings: dict[str, str] = Field(default_factory=dict)
    start_dir: Optional[str] = None


class UndoConfig(BaseModel):
    max_stack_size: int = Field(default=100, ge=1)


class CellbookConfig(BaseModel):
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    kernel: KernelConfig = Field(default_factory=KernelConfig)
    undo: UndoConfig = Field(default_factory=UndoConfig)


def config_dir() -> Path:
    return Path.home() / ".cellbook"


def config_path() -> Path:
    return config_dir() / "config.json"


def load_config(path: Optional[Path] = None) -> CellbookConfig:
    """Load config from ~/.cellbook/config.json, returning defaults if missing."""
    path = Path(path) if path is not None else config_path()
    if not path.exists():
        return CellbookConfig()
    return CellbookConfig.model_validate_json(path.read_text())


def save_config(config: CellbookConfig, path: Optional[Path] = None) -> Path:
    """Save config as JSON, creating the parent directory."""
    path = Path(path) if path is not None else config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.model_dump(), indent=2) + "\n")
    return path
