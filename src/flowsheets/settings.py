from __future__ import annotations
from pathlib import Path
from typing import Optional
import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

DEFAULT_CONFIG = Path("flowsheets.yaml")


class Settings(BaseModel):
    data_root: Path = Path(".flowsheets")
    project: str = "default"
    health_interval: float = Field(5.0, gt=0)
    health_timeout: float = Field(2.0, gt=0)
    poll_interval: float = Field(1.0, gt=0)
    legacy_floor: int = Field(9999, ge=0)


def load_settings(path: Optional[Path] = None, **overrides) -> Settings:
    """Read settings from YAML (defaults when the file is absent); keyword overrides win."""
    path = Path(path) if path is not None else DEFAULT_CONFIG
    data = {}
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
