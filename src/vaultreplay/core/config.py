"""Application state and configuration."""

from __future__ import annotations

import os
import re
from datetime import date
from pathlib import Path
from typing import Any

import platformdirs
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from vaultreplay.core.base import BaseConfig, BaseState
from vaultreplay.core.log import Logger
from vaultreplay.core.yaml_settings import YamlWithIncludesSettingsSource

# ============================================================
# TEMPLATE SUBSTITUTION NAMESPACE
# ============================================================

# Usage in YAML: {platformdirs.user_state_dir}, {os.getcwd}, {Path.cwd}
TEMPLATE_NAMESPACE = {
    'os': os,
    'platformdirs': platformdirs,
    'Path': Path,
}

# ============================================================
# CONFIG MODELS (loaded from YAML/env/CLI)
# ============================================================

class VaultConfig(BaseConfig):
    """Source repository connection settings."""

    server: str = Field(
        description="Vault server host (e.g., 'vault.example.com')"
    )
    repository: str = Field(
        description="Vault repository name"
    )
    user: str = Field(default="", description="Vault login")
    password: str = Field(
        default="",
        description=(
            "Vault password. Prefer VAULTREPLAY_CONFIG__VAULT__PASSWORD "
            "or a .env file over YAML"
        ),
    )
    command: str = Field(
        default="vault",
        description="Path to the Vault command-line client",
    )
    history_start: date = Field(
        default=date(2000, 1, 1),
        description="First day of the history window (inclusive)",
    )
    history_end: date = Field(
        default=date(2020, 1, 1),
        description="Last day of the history window (exclusive)",
    )
    label_root: str = Field(
        default="$",
        description="Repository folder searched recursively for labels",
    )
    timeout: int | None = Field(
        default=None,
        description="Timeout for each Vault command in seconds",
    )

    @property
    def url(self) -> str:
        return f"http://{self.server}/VaultService"


class GitConfig(BaseConfig):
    """Destination repository settings."""

    workdir: Path = Field(
        description=(
            "Working folder: the destination git repository, which is "
            "also bound as the Vault working folder"
        )
    )
    command: str = Field(default="git", description="Path to git")
    domain_name: str = Field(
        default="localhost",
        description="Domain used to build author e-mails (login@domain)",
    )
    gc_interval: int = Field(
        default=200,
        ge=1,
        description="Run 'git gc --auto' after this many revisions",
    )
    skip_empty_commits: bool = Field(
        default=False,
        description="Skip revisions that leave the work tree unchanged",
    )
    checkout_retries: int = Field(
        default=5,
        ge=0,
        description="Extra checkout attempts before giving up",
    )
    timeout: int | None = Field(
        default=None,
        description="Timeout for each git command in seconds",
    )


class Config(BaseConfig):
    """Application configuration loaded from YAML/env/CLI."""

    logger: Logger | None = Field(
        default=None,
        description="Logger configuration and runtime instance"
    )
    vault: VaultConfig = Field(description="Source repository settings")
    git: GitConfig = Field(description="Destination repository settings")
    branches: dict[str, str] = Field(
        description=(
            "Destination branch name -> Vault folder, e.g. "
            "{main: '$/proj/trunk'}"
        )
    )

    log_level: str = Field(
        default="info",
        alias="log-level",
        description=(
            "Console log level: 'spew', 'trace', 'debug', 'info', "
            "'warn', 'error', 'fatal'"
        ),
    )
    log_root: Path = Field(
        default_factory=(
            lambda: Path(platformdirs.user_state_dir()) / "vaultreplay"
        ),
        description=(
            "Root directory for log files "
            "(supports {platformdirs.*} templates)"
        ),
    )
    commands: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="Command templates by tool (git, vault)",
    )

    model_config = {"populate_by_name": True}

    @field_validator("branches")
    @classmethod
    def _check_branches(cls, value: dict[str, str]) -> dict[str, str]:
        """Require at least one mapping and unique Vault folders."""
        if not value:
            raise ValueError("at least one branch mapping is required")
        seen: dict[str, str] = {}
        for branch, path in value.items():
            key = path.rstrip("/").lower()
            if key in seen:
                raise ValueError(
                    f"Vault folder {path} is mapped to both "
                    f"'{seen[key]}' and '{branch}'"
                )
            seen[key] = branch
        return value

    @model_validator(mode='after')
    def _setup_logger(self) -> 'Config':
        """Initialize the global logger once config has loaded."""
        from vaultreplay.core.log import setup_logger

        if self.logger is None:
            self.logger = Logger(level=self.log_level)
        elif "log_level" in self.model_fields_set:
            self.logger.console.level = self.log_level

        setup_logger(
            log_root=self.log_root,
            run_name=self.vault.repository or "vaultreplay",
            level=self.logger.level,
            console=self.logger.console,
            otlp=self.logger.otlp,
            file=self.logger.file,
            logfire=self.logger.logfire,
        )
        return self

    def close(self):
        """Close the global logger as well as child sections."""
        from vaultreplay.core.log import logger
        logger.close()
        super().close()


# ============================================================
# RUNTIME STATE MODELS (mutable during a run)
# ============================================================

class PullState(BaseState):
    """Replay run state."""

    status: str = Field(
        default="pending",
        description="pending, running, stopped, complete, failed",
    )
    stopped: bool = Field(
        default=False,
        description="Whether the run was cancelled cooperatively",
    )
    commit_map: dict[int, str] = Field(
        default_factory=dict,
        description="Vault transaction id -> git commit id",
    )


class TagsState(BaseState):
    """Label projection state."""

    status: str = Field(default="pending")
    commit_map: dict[int, str] = Field(
        default_factory=dict,
        description="Transaction id -> git commit id rebuilt from history",
    )
    tags_created: list[str] = Field(default_factory=list)


class Runtime(BaseModel):
    """All runtime state organized by command."""

    pull: PullState = Field(default_factory=PullState)
    tags: TagsState = Field(default_factory=TagsState)


# ============================================================
# STATE (config + runtime combined)
# ============================================================

class State(BaseSettings):
    """Complete application state: configuration and runtime.

    - config: loaded from YAML/env/CLI, read-only during a run
    - runtime: mutated by the commands
    """

    config: Config = Field(
        description="Application configuration (from YAML/env/CLI)"
    )
    runtime: Runtime = Field(
        default_factory=Runtime,
        description="Runtime state (mutates during a run)",
    )
    include: list[str] | None = Field(
        default=None,
        description=(
            "Additional YAML files to include and merge. "
            "Use --include on CLI or include: in YAML files."
        ),
    )

    model_config = SettingsConfigDict(
        yaml_file="vaultreplay.yaml",
        env_file=".env",
        env_prefix="VAULTREPLAY_",
        env_nested_delimiter="__",
        cli_parse_args=True,
        cli_implicit_flags=True,
        cli_use_class_docs_for_groups=True,
        arbitrary_types_allowed=True,
        extra='ignore'
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority, highest first: init arguments, YAML files,
        .env, environment, file secrets."""
        return (
            init_settings,
            YamlWithIncludesSettingsSource(settings_cls),
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def substitute_templates(self) -> "State":
        """Replace {config.*} and {platformdirs.*} style templates
        in every string and Path of the state."""
        self._substitute_recursive(self)
        return self

    def _substitute_recursive(self, obj: Any) -> None:
        if isinstance(obj, BaseModel):
            for field_name in obj.__class__.model_fields:
                value = getattr(obj, field_name)
                new_value = self._substitute_value(value)
                if new_value is not value:
                    setattr(obj, field_name, new_value)
        elif isinstance(obj, dict):
            for key in obj:
                obj[key] = self._substitute_value(obj[key])
        elif isinstance(obj, list):
            for i in range(len(obj)):
                obj[i] = self._substitute_value(obj[i])

    def _substitute_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._substitute_string(value)
        elif isinstance(value, Path):
            return Path(self._substitute_string(str(value)))
        elif isinstance(value, (BaseModel, dict, list)):
            self._substitute_recursive(value)
            return value
        return value

    def _substitute_string(self, value: str) -> str:
        """Replace {field.path} templates with actual field values.

        Unknown references are left untouched, which is what keeps
        command placeholders such as {branch} intact.

        Examples:
            "{config.git.workdir}/.git" -> "/srv/repo/.git"
            "{platformdirs.user_log_dir}" -> "~/.local/state/vaultreplay/log"
        """
        def replace_template(match):
            parts = match.group(1).split(".")

            if parts[0] in TEMPLATE_NAMESPACE:
                obj = TEMPLATE_NAMESPACE[parts[0]]
                parts = parts[1:]
            elif parts[0] in ("config", "runtime"):
                obj = self
            else:
                return match.group(0)

            try:
                for part in parts:
                    obj = getattr(obj, part)
                if callable(obj):
                    if parts and parts[0].startswith("user_"):
                        obj = obj('vaultreplay', appauthor=False)
                    else:
                        obj = obj()
                return str(obj)
            except (AttributeError, TypeError):
                return match.group(0)

        return re.sub(r'\{([A-Za-z._]+)\}', replace_template, value)


__all__ = [
    "State",
    "Config",
    "VaultConfig",
    "GitConfig",
    "Runtime",
    "PullState",
    "TagsState",
]
