"""
protonrt Configuration

Loads configuration from a YAML file, then applies environment variable
overrides. Only the CLI reads this; the annotation pipeline takes its
inputs as arguments.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


# Default configuration file locations (checked in order)
CONFIG_SEARCH_PATHS = [
    Path("protonrt.yaml"),
    Path.home() / ".protonrt" / "config.yaml",
]


DEFAULT_CONFIG = {
    # Extra references for symbol resolution (YAML manifests, .cs files, directories)
    "reference_paths": [],

    # Preprocessor symbols defined when evaluating #if regions
    "defined_symbols": [],

    # Glob patterns used when a directory is given on the command line
    "include": ["**/*.cs"],

    # Worker processes for batch annotation
    "jobs": 1,
}


class ProtonrtConfig:
    """Configuration for the protonrt command line."""

    def __init__(self, config_path: Optional[Path] = None):
        self._config: Dict[str, Any] = dict(DEFAULT_CONFIG)
        self._config_path: Optional[Path] = None

        # Load from file if found
        self._load_config(config_path)

        # Override with environment variables
        self._apply_env_overrides()

    def _load_config(self, explicit_path: Optional[Path] = None) -> None:
        """Load configuration from YAML file."""
        search_paths = [Path(explicit_path)] if explicit_path else CONFIG_SEARCH_PATHS
        if explicit_path and not Path(explicit_path).exists():
            logger.warning(f"Config file {explicit_path} not found, using defaults")

        for config_path in search_paths:
            if config_path and config_path.exists():
                try:
                    with open(config_path, 'r', encoding='utf-8') as f:
                        user_config = yaml.safe_load(f) or {}
                    if not isinstance(user_config, dict):
                        raise ValueError("top level must be a mapping")
                    self._config.update(user_config)
                    self._config_path = config_path
                    return
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.warning(f"Failed to load config from {config_path}: {e}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if "PROTONRT_REFERENCES" in os.environ:
            self._config["reference_paths"] = [
                p for p in os.environ["PROTONRT_REFERENCES"].split(os.pathsep) if p
            ]
        if "PROTONRT_DEFINES" in os.environ:
            self._config["defined_symbols"] = [
                s.strip() for s in os.environ["PROTONRT_DEFINES"].split(",") if s.strip()
            ]

    @staticmethod
    def _as_list(value) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]

    @property
    def config_path(self) -> Optional[Path]:
        """Path to loaded config file, or None if using defaults."""
        return self._config_path

    @property
    def reference_paths(self) -> List[Path]:
        """Extra reference paths, relative ones resolved against the config file."""
        base = self._config_path.parent if self._config_path else Path(".")
        paths = []
        for raw in self._as_list(self._config.get("reference_paths")):
            path = Path(raw).expanduser()
            paths.append(path if path.is_absolute() else base / path)
        return paths

    @property
    def defined_symbols(self) -> List[str]:
        return self._as_list(self._config.get("defined_symbols"))

    @property
    def include(self) -> List[str]:
        """Glob patterns for directory expansion."""
        return self._as_list(self._config.get("include")) or list(DEFAULT_CONFIG["include"])

    @property
    def jobs(self) -> int:
        """Number of worker processes."""
        try:
            return max(1, int(self._config.get("jobs", 1)))
        except (TypeError, ValueError):
            return 1

    def to_dict(self) -> Dict[str, Any]:
        """Export current configuration as dict."""
        return {
            "reference_paths": [str(p) for p in self.reference_paths],
            "defined_symbols": self.defined_symbols,
            "include": self.include,
            "jobs": self.jobs,
            "config_file": str(self._config_path) if self._config_path else None,
        }


# Global config instance (lazy-loaded)
_config: Optional[ProtonrtConfig] = None


def get_config(config_path: Optional[Path] = None) -> ProtonrtConfig:
    """Get the global config instance, loading if needed."""
    global _config
    if _config is None or config_path is not None:
        _config = ProtonrtConfig(config_path)
    return _config
