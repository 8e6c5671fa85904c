"""Descriptor schema and run-time context state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from solmgr.packs import PackRef, ResolvedPack

PROJECT_SUFFIXES = (".cproject.yml", ".cproject.yaml")


def project_name(project_file: str | Path) -> str:
    """Derive the project name from a project file path.

    Example:
        >>> project_name("app/Blinky.cproject.yml")
        'Blinky'
    """
    base = Path(project_file).name
    for suffix in PROJECT_SUFFIXES:
        if base.endswith(suffix):
            return base[: -len(suffix)]
    return Path(base).stem


def context_name(project: str, build_type: str = "", target_type: str = "") -> str:
    """Build a context name from its parts.

    Example:
        >>> context_name("App", "Debug", "Board")
        'App.Debug+Board'
        >>> context_name("App", target_type="Board")
        'App+Board'
    """
    name = project
    if build_type:
        name += f".{build_type}"
    if target_type:
        name += f"+{target_type}"
    return name


class TargetType(BaseModel):
    """A target-type entry of the solution."""

    model_config = ConfigDict(frozen=True)

    type: str
    device: str = ""
    board: str = ""
    compiler: str = ""
    variables: dict[str, str] = Field(default_factory=dict)


class BuildType(BaseModel):
    """A build-type entry of the solution."""

    model_config = ConfigDict(frozen=True)

    type: str
    compiler: str = ""
    debug: str = ""
    optimize: str = ""
    variables: dict[str, str] = Field(default_factory=dict)


class OutputDirs(BaseModel):
    """Output directory overrides; values may contain $variables$."""

    model_config = ConfigDict(frozen=True)

    cprjdir: str = ""
    intdir: str = ""
    outdir: str = ""


class ContextDescriptor(BaseModel):
    """One desired project + build-type + target-type combination.

    Attributes:
        project_file: Project file path as written in the solution.
        build_type: Build type, may be empty.
        target_type: Target type, may be empty.
    """

    model_config = ConfigDict(frozen=True)

    project_file: str
    build_type: str = ""
    target_type: str = ""

    @property
    def project_name(self) -> str:
        """Name of the referenced project."""
        return project_name(self.project_file)

    @property
    def name(self) -> str:
        """Derived context name."""
        return context_name(self.project_name, self.build_type, self.target_type)


class SolutionDescriptor(BaseModel):
    """Root of the parsed input data.

    Attributes:
        path: Canonical path of the solution file.
        directory: Directory containing the solution file.
        name: Solution name (file name without .csolution.yml).
        projects: Project file references in declaration order.
        contexts: Expanded context descriptors in declaration order.
        build_types: Declared build types.
        target_types: Declared target types.
        packs: Solution level pack requirements.
        compiler: Solution level toolchain.
        enable_defaults: Whether a cdefault.yml file is honored.
        frozen_packs: Whether the pack snapshot is frozen.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    directory: Path
    name: str
    projects: list[str] = Field(default_factory=list)
    contexts: list[ContextDescriptor] = Field(default_factory=list)
    build_types: list[BuildType] = Field(default_factory=list)
    target_types: list[TargetType] = Field(default_factory=list)
    packs: list[PackRef] = Field(default_factory=list)
    compiler: str = ""
    output_dirs: OutputDirs = Field(default_factory=OutputDirs)
    enable_defaults: bool = False
    frozen_packs: bool = False

    def target_type(self, name: str) -> TargetType | None:
        """Look up a target type by name."""
        return next((t for t in self.target_types if t.type == name), None)

    def build_type(self, name: str) -> BuildType | None:
        """Look up a build type by name."""
        return next((b for b in self.build_types if b.type == name), None)

    @property
    def pack_snapshot_path(self) -> Path:
        """Path of the <name>.cbuild-pack.yml file."""
        return self.directory / f"{self.name}.cbuild-pack.yml"

    @property
    def context_set_path(self) -> Path:
        """Path of the <name>.cbuild-set.yml file."""
        return self.directory / f"{self.name}.cbuild-set.yml"


class ProjectDescriptor(BaseModel):
    """A parsed <name>.cproject.yml file."""

    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    device: str = ""
    board: str = ""
    compiler: str = ""
    packs: list[PackRef] = Field(default_factory=list)
    components: list[str] = Field(default_factory=list)
    layers: list[str] = Field(default_factory=list)
    output_dirs: OutputDirs = Field(default_factory=OutputDirs)

    @property
    def directory(self) -> Path:
        """Directory containing the project file."""
        return self.path.parent


class DefaultsDescriptor(BaseModel):
    """A parsed cdefault.yml file."""

    model_config = ConfigDict(frozen=True)

    path: Path
    compiler: str = ""


class ProcessOutcome(str, Enum):
    """Processing outcome of a context."""

    PENDING = "pending"
    SKIPPED = "skipped"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class ToolchainSelection:
    """A toolchain name with an optional version.

    Example:
        >>> ToolchainSelection.parse("GCC@12.2.0")
        ToolchainSelection(name='GCC', version='12.2.0')
    """

    name: str
    version: str = ""

    @classmethod
    def parse(cls, text: str) -> ToolchainSelection | None:
        """Parse name[@version]; empty text gives None."""
        text = text.strip()
        if not text:
            return None
        name, _, version = text.partition("@")
        return cls(name=name, version=version.lstrip(">="))

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


@dataclass(frozen=True)
class ContextDirectories:
    """Resolved output layout of a context."""

    cprj: Path
    intdir: Path
    outdir: Path


@runtime_checkable
class ActiveProject(Protocol):
    """Handle used to synchronize a context's generated configuration files."""

    def sync_config_files(self, *, dry_run: bool = False) -> list[Path]:
        """Create or update generated configuration files.

        Returns:
            Paths written (or that would be written in dry-run mode).
        """
        ...


@dataclass
class Context:
    """Materialized, mutable state of one context.

    Owned by the ContextRegistry; other components refer to contexts by name.

    Attributes:
        descriptor: The descriptor this context was created from.
        project: Parsed project description.
        project_file: Canonical path of the project file.
        directories: Resolved output layout.
        toolchain: Resolved toolchain.
        packs: Resolved packs.
        components: Resolved component identifiers.
        layers: Resolved layer files.
        config_files: Configuration files per component.
        active_project: Handle for configuration file synchronization.
        outcome: Processing outcome.
        errors: Diagnostics collected while processing.
        undefined_variables: $variables$ referenced but not defined.
        missing_packs: Pack requirements with no installed match.
    """

    descriptor: ContextDescriptor
    project: ProjectDescriptor
    project_file: Path
    directories: ContextDirectories | None = None
    toolchain: ToolchainSelection | None = None
    packs: list[ResolvedPack] = field(default_factory=list)
    components: list[str] = field(default_factory=list)
    layers: list[Path] = field(default_factory=list)
    config_files: dict[str, list[Path]] = field(default_factory=dict)
    active_project: ActiveProject | None = None
    outcome: ProcessOutcome = ProcessOutcome.PENDING
    errors: list[str] = field(default_factory=list)
    undefined_variables: list[str] = field(default_factory=list)
    missing_packs: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        """Context name."""
        return self.descriptor.name

    @property
    def project_name(self) -> str:
        """Project name."""
        return self.descriptor.project_name

    @property
    def build_type(self) -> str:
        """Build type, may be empty."""
        return self.descriptor.build_type

    @property
    def target_type(self) -> str:
        """Target type, may be empty."""
        return self.descriptor.target_type

    @property
    def failed(self) -> bool:
        """Whether processing failed."""
        return self.outcome == ProcessOutcome.FAILED
