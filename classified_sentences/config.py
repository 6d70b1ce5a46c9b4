"""Configuration loading for the classified sentence store."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .schemas import UNKNOWN_INTENT


def _resolve_path(raw_path: str, base_dir: Path) -> str:
    if raw_path == ":memory:":
        return raw_path
    path = Path(raw_path).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return str(path)


@dataclass
class PathsConfig:
    """Filesystem locations used by the store and the dump tools."""

    sqlite_path: str = "data/sentences.db"
    dump_dir: str = "data/dumps"


@dataclass
class StoreConfig:
    """Sentence store behaviour."""

    unknown_intent_id: str = UNKNOWN_INTENT
    sub_entity_levels: int = 1
    export_page_size: int = 500


@dataclass
class AppConfig:
    """Top-level app configuration."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "AppConfig":
        """Build config from a dictionary."""
        base = Path.cwd() if base_dir is None else base_dir

        paths_data = data.get("paths", {})
        paths = PathsConfig(
            sqlite_path=_resolve_path(paths_data.get("sqlite_path", "data/sentences.db"), base),
            dump_dir=_resolve_path(paths_data.get("dump_dir", "data/dumps"), base),
        )
        store = StoreConfig(**data.get("store", {}))

        return cls(
            paths=paths,
            store=store,
            log_level=str(data.get("log_level", "INFO")).upper(),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "AppConfig":
        """Load config from YAML."""
        config_path = Path(path).resolve()
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        return cls.from_dict(data, base_dir=config_path.parent)
