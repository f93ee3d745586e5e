"""YAML configuration loading with include directive support."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from platformdirs import user_config_dir
from pydantic_settings import BaseSettings, YamlConfigSettingsSource

from vaultreplay.core.errors import ConfigError
from vaultreplay.core.log import logger

CONFIG_FILENAME = "vaultreplay.yaml"
DEFAULTS_FILE = Path(__file__).parent.parent / "defaults" / "default.yaml"


class YamlWithIncludesSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with include: directive and --include
    CLI support.

    Deep merges, lowest priority first:
        package defaults < user config < project config < --include
    Each file may name further files under a top-level include: key.
    """

    def __init__(
        self, settings_cls: type[BaseSettings], yaml_file=None
    ):
        """Initialize with --include files taken from sys.argv.

        Args:
            settings_cls: The Settings class being initialized
            yaml_file: Optional extra config file(s) to load last
        """
        includes = []
        i = 1
        while i < len(sys.argv):
            if sys.argv[i] == "--include" and i + 1 < len(sys.argv):
                includes.append(sys.argv[i + 1])
                i += 1
            i += 1

        base = yaml_file or settings_cls.model_config.get("yaml_file")
        if base and includes:
            yaml_file = (
                [base] if isinstance(base, (str, os.PathLike)) else list(base)
            ) + includes
        elif includes:
            yaml_file = includes
        else:
            yaml_file = base

        super().__init__(settings_cls, yaml_file)

    def _read_files(self, files):
        """Load defaults, user config, project config and includes.

        Args:
            files: Extra file path(s) to load after the standard
                locations

        Returns:
            Deep-merged dictionary of all loaded data
        """
        result = {}

        files_to_load = [
            DEFAULTS_FILE,
            Path(user_config_dir("vaultreplay", appauthor=False))
            / CONFIG_FILENAME,
            Path(CONFIG_FILENAME),
        ]
        if files:
            if isinstance(files, (str, os.PathLike)):
                files = [files]
            files_to_load.extend(Path(f).expanduser() for f in files)

        seen = set()
        for file_path in files_to_load:
            key = file_path.resolve()
            if key in seen:
                continue
            seen.add(key)
            if file_path.is_file():
                logger.debug("Loading configuration", file=str(file_path))
                data = self._load_file_recursive(file_path, set())
                result = self._deep_merge(result, data)
            else:
                logger.spew(
                    "Configuration file not found (skipping)",
                    file=str(file_path),
                )

        return result

    def _load_file_recursive(
        self, filepath: Path, visited: set[Path]
    ) -> dict:
        """Load a file and resolve its include: directives.

        Raises:
            ConfigError: On a missing or circular include or a
                non-mapping document
        """
        filepath = filepath.resolve()
        if filepath in visited:
            raise ConfigError(f"Circular include: {filepath}")
        if not filepath.is_file():
            raise ConfigError(f"Included file not found: {filepath}")
        visited.add(filepath)

        with open(filepath, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Configuration file must contain a mapping: {filepath}"
            )

        if "include" in data:
            includes = data.pop("include")
            if isinstance(includes, str):
                includes = [includes]

            for inc in includes:
                inc_path = self._resolve_path(inc, filepath)
                logger.debug(
                    f"Including {inc_path.name}",
                    included_from=str(filepath),
                )
                inc_data = self._load_file_recursive(
                    inc_path, visited.copy()
                )
                # The including file wins over what it includes
                data = self._deep_merge(inc_data, data)

        return data

    def _resolve_path(
        self, include_path: str, relative_to: Path
    ) -> Path:
        path = Path(include_path).expanduser()
        if path.is_absolute():
            return path
        return (relative_to.parent / path).resolve()

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge override into base (override wins)."""
        result = base.copy()
        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
