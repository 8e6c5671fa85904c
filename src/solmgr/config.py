"""Run options for solmgr."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from solmgr.exceptions import ConfigError
from solmgr.policy import LoadPolicy

PACK_ROOT_ENV = "CMSIS_PACK_ROOT"
COMPILER_ROOT_ENV = "CMSIS_COMPILER_ROOT"

# Name of the optional per-solution options file
OPTIONS_FILE_NAME = "solmgr.yaml"


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name, "")
    return Path(value) if value else None


class RunOptions(BaseModel):
    """Every toggle of a run, threaded through the pipeline entry point.

    Attributes:
        solution: Path to the <name>.csolution.yml file.
        contexts: Context selection patterns ([project][.build][+target]).
        context_set: Read/write the persisted selection-set file.
        load_policy: Pack loading policy.
        toolchain: Explicitly requested toolchain (name[@version]).
        output_dir: Directory for the index file (defaults to solution dir).
        export_suffix: Suffix for the unlocked legacy project export.
        check_schema: Validate descriptors strictly.
        update_rte: Synchronize generated configuration files.
        frozen_packs: Fail if the pack snapshot would change.
        dry_run: Resolve but write nothing.
        yml_order: Keep declaration order in listings.
        verbose: Enable verbose messages.
        debug: Enable debug messages.
        pack_root: Pack repository root.
        compiler_root: Directory searched for defaults and toolchain configs.

    Example:
        >>> options = RunOptions(solution=Path("demo.csolution.yml"), load_policy="latest")
        >>> options.load_policy
        <LoadPolicy.LATEST: 'latest'>
    """

    model_config = ConfigDict(frozen=True)

    solution: Path | None = None
    contexts: list[str] = Field(default_factory=list)
    context_set: bool = False
    load_policy: LoadPolicy = LoadPolicy.DEFAULT
    toolchain: str = ""
    output_dir: Path | None = None
    export_suffix: str = ""
    check_schema: bool = True
    update_rte: bool = True
    frozen_packs: bool = False
    dry_run: bool = False
    yml_order: bool = False
    verbose: bool = False
    debug: bool = False
    pack_root: Path | None = Field(default_factory=lambda: _env_path(PACK_ROOT_ENV))
    compiler_root: Path | None = Field(
        default_factory=lambda: _env_path(COMPILER_ROOT_ENV)
    )

    @field_validator("load_policy", mode="before")
    @classmethod
    def validate_load_policy(cls, v: Any) -> LoadPolicy:
        """Map the user token onto a policy."""
        return LoadPolicy.from_token(v)

    @field_validator("contexts")
    @classmethod
    def validate_unique_contexts(cls, v: list[str]) -> list[str]:
        """Ensure context patterns are not repeated."""
        if len(v) != len(set(v)):
            msg = "Context patterns must be unique"
            raise ValueError(msg)
        return v

    @property
    def uses_selection(self) -> bool:
        """Whether the user restricted the run to specific contexts."""
        return self.context_set or bool(self.contexts)

    def merged(self, **overrides: Any) -> RunOptions:
        """Return a copy with explicitly given values replaced.

        None values are ignored so that unset CLI flags keep file defaults.
        """
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return build_options(data)

    def to_yaml(self) -> str:
        """Serialize the options to YAML."""
        data = self.model_dump(mode="json", exclude={"solution"})
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    def save(self, path: Path) -> None:
        """Save the options to a YAML file."""
        path.write_text(self.to_yaml())

    @classmethod
    def from_yaml(cls, yaml_content: str, path: Path | None = None) -> RunOptions:
        """Parse options from YAML content.

        Raises:
            ConfigError: If the YAML is invalid.
        """
        try:
            data = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            msg = f"Invalid YAML: {e}"
            raise ConfigError(msg, config_path=path) from e

        if not isinstance(data, dict):
            msg = "Options YAML must be a mapping"
            raise ConfigError(msg, config_path=path)

        return build_options(data, path=path)

    @classmethod
    def load(cls, path: Path) -> RunOptions:
        """Load options from a YAML file.

        Raises:
            ConfigError: If the file doesn't exist or is invalid.
        """
        if not path.exists():
            msg = f"Options file not found: {path}"
            raise ConfigError(msg, config_path=path)
        return cls.from_yaml(path.read_text(), path=path)


def build_options(data: dict[str, Any], path: Path | None = None) -> RunOptions:
    """Validate raw option values, reporting problems as ConfigError."""
    # ConfigError raised by a validator propagates unchanged
    try:
        return RunOptions.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        field = ".".join(str(p) for p in errors[0]["loc"]) if errors else ""
        msg = f"Invalid options: {errors[0]['msg']}" if errors else str(e)
        raise ConfigError(msg, config_path=path, field=field) from e
