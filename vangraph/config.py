# Vangraph: configuration
# Override via config.yaml, VANGRAPH_* environment variables or CLI args.

import os
import logging
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Runtime configuration for the board server and services."""

    # Storage
    backend: str = "sqlite"            # "sqlite" | "memory"
    db_path: str = "~/.local/share/vangraph/vangraph.db"

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    # Board ordering
    position_step: float = 1000.0
    position_baseline: float = 1000.0

    # Dev defaults (no auth)
    default_workspace_id: str = "ws-1"
    default_project_key: str = "VAN"

    def apply_env(self):
        """Environment wins over the YAML file."""
        if os.environ.get("VANGRAPH_DB"):
            self.db_path = os.environ["VANGRAPH_DB"]
        if os.environ.get("VANGRAPH_BACKEND"):
            self.backend = os.environ["VANGRAPH_BACKEND"].strip().lower()

    def resolve_paths(self):
        """Expand ~ in the database path."""
        if self.backend == "sqlite":
            self.db_path = str(Path(self.db_path).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("VANGRAPH_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                known = {fld.name for fld in fields(cls)}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except Exception as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env()
        cfg.resolve_paths()
        return cfg
