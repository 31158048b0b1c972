"""Layered settings store: defaults < env/.env < config file < pushed overrides."""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


def read_config_file(path: Optional[Path]) -> dict[str, Any]:
    """Load a YAML or JSON mapping. Missing or unreadable files yield {}."""
    if path is None or not path.exists():
        return {}
    try:
        raw = path.read_text()
    except OSError as e:
        logger.warning("Could not read config file %s: %s", path, e)
        return {}

    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        elif suffix == ".json":
            data = json.loads(raw)
        else:
            logger.warning("Unsupported config file type (want .yaml/.yml/.json): %s", path)
            return {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        logger.warning("Could not parse config file %s: %s", path, e)
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s must hold a mapping, got %s", path, type(data).__name__)
        return {}
    return data


class ConfigStore:
    """
    Builds a Settings instance from several sources and keeps the current one.

    The config file wins over the environment so a deployed file can pin
    gateway and ledger endpoints; pushed overrides win over both (used by
    tests and by operators adjusting poll/cache timings at runtime).
    """

    def __init__(self, settings_cls: type, config_file_path: Optional[str] = None):
        self._settings_cls = settings_cls
        self._file_path = Path(config_file_path).expanduser().resolve() if config_file_path else None
        self._overrides: dict[str, Any] = {}
        self._current: Optional[Any] = None
        self._lock = threading.RLock()

    def _build(self, overrides: dict[str, Any]) -> Any:
        env_values = self._settings_cls().model_dump()
        file_values = read_config_file(self._file_path)
        return self._settings_cls(**{**env_values, **file_values, **overrides})

    def load_initial(self) -> None:
        with self._lock:
            self._current = self._build(self._overrides)
            if self._file_path and self._file_path.exists():
                logger.info("Loaded config file (master over env): %s", self._file_path)

    def get_settings(self) -> Any:
        with self._lock:
            if self._current is None:
                self.load_initial()
            return self._current

    def update(self, overrides: dict[str, Any]) -> None:
        """Apply overrides. An invalid value leaves the previous settings in place."""
        with self._lock:
            candidate = {**self._overrides, **overrides}
            try:
                self._current = self._build(candidate)
            except Exception as e:
                logger.warning("Rejected config update, keeping previous settings: %s", e)
                return
            self._overrides = candidate

    def reload_from_file(self) -> None:
        with self._lock:
            try:
                self._current = self._build(self._overrides)
            except Exception as e:
                logger.warning("Config reload failed, keeping previous settings: %s", e)

    def clear_overrides(self) -> None:
        with self._lock:
            self._overrides = {}
            self._current = self._build({})
