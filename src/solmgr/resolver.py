"""Resolution engine: packs, components, layers, toolchain and output layout."""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from solmgr.config import RunOptions
from solmgr.exceptions import EmissionError, ResolutionError
from solmgr.models import (
    Context,
    ContextDirectories,
    DefaultsDescriptor,
    OutputDirs,
    ProcessOutcome,
    SolutionDescriptor,
    ToolchainSelection,
)
from solmgr.packs import PackRef, PackRepository, ResolvedPack, split_component, version_key
from solmgr.policy import LoadPolicy
from solmgr.writers import PackSnapshot

logger = structlog.get_logger()

VARIABLE_PATTERN = re.compile(r"\$([A-Za-z_][\w\-]*)(?:\(\))?\$")

RTE_DIR = "RTE"


@runtime_checkable
class Resolver(Protocol):
    """Protocol for the engine that resolves one context at a time."""

    @property
    def has_undefined_variables(self) -> bool:
        """Whether any processed context referenced an undefined variable."""
        ...

    def process_context(self, context: Context, policy: LoadPolicy) -> bool:
        """Resolve a context in place.

        Returns:
            True if the context resolved.

        Raises:
            ResolutionError: If the context cannot be resolved.
        """
        ...

    def resolve_toolchain(self, attempted: list[Context]) -> ToolchainSelection | None:
        """Compute the run-wide toolchain from the processed contexts."""
        ...

    def list_config_files(self, contexts: list[Context]) -> list[str]:
        """Describe the configuration files of each component."""
        ...


def expand_variables(text: str, variables: dict[str, str]) -> tuple[str, list[str]]:
    """Replace $name$ references.

    Returns:
        The expanded text and the names that were not defined.

    Example:
        >>> expand_variables("$Board-Layer$/b.clayer.yml", {"Board-Layer": "layers"})
        ('layers/b.clayer.yml', [])
    """
    undefined: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables:
            return variables[name]
        if name not in undefined:
            undefined.append(name)
        return match.group(0)

    return VARIABLE_PATTERN.sub(_replace, text), undefined


def component_define(component_id: str) -> str:
    """RTE_Components.h macro for a component.

    Example:
        >>> component_define("ARM::CMSIS:CORE")
        'RTE_CMSIS_CORE'
    """
    attributes = split_component(component_id)
    parts = [attributes.get(k, "") for k in ("Cclass", "Cgroup", "Csub")]
    raw = "_".join(p for p in parts if p)
    return "RTE_" + re.sub(r"\W", "_", raw).upper()


@dataclass
class RteProject:
    """Active project handle that synchronizes a context's RTE directory.

    Config files are copied from their pack only when missing, so user
    edits survive; RTE_Components.h is regenerated on every sync.

    Attributes:
        context_name: Context the files belong to.
        project_dir: Directory of the project file.
        config_files: (source in pack, destination in RTE dir) pairs.
        components: Resolved component identifiers.
    """

    context_name: str
    project_dir: Path
    build_type: str = ""
    target_type: str = ""
    config_files: list[tuple[Path, Path]] = field(default_factory=list)
    components: list[str] = field(default_factory=list)

    @property
    def components_header(self) -> Path:
        """Path of the generated RTE_Components.h."""
        tag = f"_{self.build_type}_{self.target_type}".rstrip("_") or "_"
        return self.project_dir / RTE_DIR / tag / "RTE_Components.h"

    def render_components_header(self) -> str:
        """Content of RTE_Components.h."""
        lines = [
            "/*",
            " * Auto generated Run-Time-Environment Configuration File",
            " *      *** Do not modify ! ***",
            " *",
            f" * Context: '{self.context_name}'",
            " */",
            "",
            "#ifndef RTE_COMPONENTS_H",
            "#define RTE_COMPONENTS_H",
            "",
        ]
        lines += [f"#define {component_define(c)}  /* {c} */" for c in self.components]
        lines += ["", "#endif /* RTE_COMPONENTS_H */", ""]
        return "\n".join(lines)

    def sync_config_files(self, *, dry_run: bool = False) -> list[Path]:
        """Create missing config files and regenerate RTE_Components.h."""
        log = logger.bind(context=self.context_name)
        written: list[Path] = []
        for source, destination in self.config_files:
            if destination.exists():
                continue
            written.append(destination)
            if dry_run:
                log.info("Dry run - skipping config file copy", path=str(destination))
                continue
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, destination)
            except OSError as e:
                msg = f"config file cannot be copied: {e}"
                raise EmissionError(msg, path=destination, step="config_sync") from e
            log.debug("Copied config file", source=str(source), path=str(destination))

        header = self.components_header
        written.append(header)
        if dry_run:
            log.info("Dry run - skipping RTE header", path=str(header))
        else:
            try:
                header.parent.mkdir(parents=True, exist_ok=True)
                header.write_text(self.render_components_header())
            except OSError as e:
                msg = f"file cannot be written: {e}"
                raise EmissionError(msg, path=header, step="config_sync") from e
        return written


class PackResolver:
    """Resolves contexts against a local pack repository.

    Example:
        >>> resolver = PackResolver(solution, options, PackRepository(pack_root))
        >>> resolver.process_context(registry.get("App.Debug+Board"), LoadPolicy.DEFAULT)
        True
    """

    def __init__(
        self,
        solution: SolutionDescriptor,
        options: RunOptions,
        repository: PackRepository,
        snapshot: PackSnapshot | None = None,
        defaults: DefaultsDescriptor | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            solution: Parsed solution.
            options: Run options.
            repository: Installed packs.
            snapshot: Previously committed pack snapshot, if any.
            defaults: Parsed cdefault.yml, if any.
        """
        self.solution = solution
        self.options = options
        self.repository = repository
        self.snapshot = snapshot or PackSnapshot()
        self.defaults = defaults
        self._undefined_variables = False

    @property
    def has_undefined_variables(self) -> bool:
        """Whether any processed context referenced an undefined variable."""
        return self._undefined_variables

    def process_context(self, context: Context, policy: LoadPolicy) -> bool:
        """Resolve toolchain, packs, components, layers and directories.

        Raises:
            ResolutionError: If anything required by the context is missing.
        """
        log = logger.bind(context=context.name, policy=policy.value)
        log.debug("Processing context")

        errors: list[str] = []
        missing: list[str] = []
        variables = self._variables(context)

        context.toolchain = self._toolchain(context)
        if context.toolchain is None:
            errors.append(
                "compiler undefined, use '--toolchain' option or add 'compiler: <value>' to yml input"
            )
        else:
            variables["Compiler"] = context.toolchain.name

        context.packs = self._resolve_packs(context, policy, missing)
        context.missing_packs = list(missing)
        if missing:
            errors.append(f"required pack(s) not installed: {', '.join(missing)}")

        self._resolve_components(context, errors)
        self._resolve_layers(context, variables, errors)
        context.directories = self._directories(context, variables)

        if context.undefined_variables:
            self._undefined_variables = True
            names = ", ".join(f"${v}$" for v in context.undefined_variables)
            errors.append(f"variable(s) not defined: {names}")

        context.errors = errors
        if errors:
            context.outcome = ProcessOutcome.FAILED
            raise ResolutionError("; ".join(errors), context=context.name, missing=missing)

        context.active_project = RteProject(
            context_name=context.name,
            project_dir=context.project.directory,
            build_type=context.build_type,
            target_type=context.target_type,
            config_files=[
                (source, destination)
                for component in context.components
                for source, destination in self._config_sources(context, component)
            ],
            components=list(context.components),
        )
        context.outcome = ProcessOutcome.RESOLVED
        log.debug("Context resolved", packs=len(context.packs), components=len(context.components))
        return True

    def resolve_toolchain(self, attempted: list[Context]) -> ToolchainSelection | None:
        """Explicit --toolchain, else the toolchain shared by every attempted context."""
        explicit = ToolchainSelection.parse(self.options.toolchain)
        if explicit is not None:
            return explicit
        toolchains = {c.toolchain for c in attempted if c.toolchain is not None}
        if len(toolchains) == 1:
            return toolchains.pop()
        return None

    def list_config_files(self, contexts: list[Context]) -> list[str]:
        """One entry per component with configuration files."""
        entries = []
        for context in contexts:
            for component, files in context.config_files.items():
                if not files:
                    continue
                listing = "".join(f"\n    - {f.as_posix()}" for f in files)
                entries.append(f"{context.name} {component}:{listing}")
        return entries

    def _variables(self, context: Context) -> dict[str, str]:
        variables = {
            "Solution": self.solution.name,
            "SolutionDir": self.solution.directory.as_posix(),
            "Project": context.project_name,
            "ProjectDir": context.project.directory.as_posix(),
            "BuildType": context.build_type,
            "TargetType": context.target_type,
            "Dname": context.project.device,
            "Bname": context.project.board,
        }
        target = self.solution.target_type(context.target_type)
        build = self.solution.build_type(context.build_type)
        if target is not None:
            variables["Dname"] = variables["Dname"] or target.device
            variables["Bname"] = variables["Bname"] or target.board
            variables.update(target.variables)
        if build is not None:
            variables.update(build.variables)
        return variables

    def _toolchain(self, context: Context) -> ToolchainSelection | None:
        target = self.solution.target_type(context.target_type)
        build = self.solution.build_type(context.build_type)
        candidates = [
            self.options.toolchain,
            context.project.compiler,
            build.compiler if build else "",
            target.compiler if target else "",
            self.solution.compiler,
            self.defaults.compiler if self.defaults else "",
        ]
        return next(
            (t for t in (ToolchainSelection.parse(c) for c in candidates) if t is not None),
            None,
        )

    def _resolve_packs(
        self, context: Context, policy: LoadPolicy, missing: list[str]
    ) -> list[ResolvedPack]:
        requirements: dict[str, list[PackRef]] = {}
        for ref in [*self.solution.packs, *context.project.packs]:
            requirements.setdefault(ref.key, []).append(ref)

        pinned = self.snapshot.pinned
        resolved = []
        for key, refs in requirements.items():
            vendor, name = refs[0].vendor, refs[0].name
            candidates = [
                v
                for v in self.repository.installed_versions(vendor, name)
                if all(ref.matches(v) for ref in refs)
            ]
            if not candidates:
                missing.extend(str(ref) for ref in refs if str(ref) not in missing)
                continue

            version = self._pick_version(candidates, pinned.get(key), policy)
            resolved.append(
                ResolvedPack(
                    vendor=vendor,
                    name=name,
                    version=version,
                    path=self.repository.pack_path(vendor, name, version),
                    selected_by=sorted({str(ref) for ref in refs}),
                )
            )
        return resolved

    @staticmethod
    def _pick_version(candidates: list[str], pinned: str | None, policy: LoadPolicy) -> str:
        """Choose among installed versions satisfying every requirement (lowest first)."""
        if policy is LoadPolicy.LATEST:
            return candidates[-1]
        if pinned and any(version_key(v) == version_key(pinned) for v in candidates):
            return next(v for v in candidates if version_key(v) == version_key(pinned))
        if policy is LoadPolicy.REQUIRED:
            return candidates[0]
        return candidates[-1]

    def _resolve_components(self, context: Context, errors: list[str]) -> None:
        available: dict[str, tuple[ResolvedPack, list[str]]] = {}
        for pack in context.packs:
            for component_id, files in self.repository.components(pack).items():
                available.setdefault(component_id, (pack, files))

        context.components = []
        context.config_files = {}
        for wanted in context.project.components:
            match = next((c for c in available if _component_matches(wanted, c)), None)
            if match is None:
                errors.append(f"no component was found with identifier '{wanted}'")
                continue
            pack, files = available[match]
            context.components.append(match)
            cclass = split_component(match).get("Cclass", "")
            context.config_files[match] = [
                context.project.directory / RTE_DIR / re.sub(r"\W", "_", cclass) / Path(f).name
                for f in files
            ]

    def _config_sources(self, context: Context, component: str) -> list[tuple[Path, Path]]:
        pack = next(
            (p for p in context.packs if component in self.repository.components(p)), None
        )
        if pack is None or pack.path is None:
            return []
        sources = self.repository.components(pack)[component]
        return [
            (pack.path / source, destination)
            for source, destination in zip(sources, context.config_files.get(component, []), strict=False)
        ]

    def _resolve_layers(
        self, context: Context, variables: dict[str, str], errors: list[str]
    ) -> None:
        context.layers = []
        for layer in context.project.layers:
            expanded, undefined = expand_variables(layer, variables)
            if undefined:
                _add_unique(context.undefined_variables, undefined)
                continue
            path = Path(expanded)
            if not path.is_absolute():
                path = (context.project.directory / path).resolve()
            if not path.is_file():
                errors.append(f"clayer file was not found: {expanded}")
                continue
            context.layers.append(path)

    def _directories(self, context: Context, variables: dict[str, str]) -> ContextDirectories:
        parts = [context.project_name, context.target_type, context.build_type]
        relative = Path(*[p for p in parts if p])
        root = self.solution.directory
        defaults = {
            "cprjdir": self.options.output_dir or context.project.directory,
            "outdir": root / "out" / relative,
            "intdir": root / "tmp" / relative,
        }

        resolved: dict[str, Path] = {}
        for key, default in defaults.items():
            resolved[key] = (
                self._override(context.project.output_dirs, key, context.project.directory, variables, context)
                or self._override(self.solution.output_dirs, key, root, variables, context)
                or default
            )
        return ContextDirectories(
            cprj=resolved["cprjdir"], intdir=resolved["intdir"], outdir=resolved["outdir"]
        )

    @staticmethod
    def _override(
        output_dirs: OutputDirs,
        key: str,
        base: Path,
        variables: dict[str, str],
        context: Context,
    ) -> Path | None:
        value = getattr(output_dirs, key)
        if not value:
            return None
        expanded, undefined = expand_variables(value, variables)
        if undefined:
            _add_unique(context.undefined_variables, undefined)
            return None
        path = Path(expanded)
        return path if path.is_absolute() else (base / path).resolve()


def _component_matches(wanted: str, available: str) -> bool:
    """Match a requested component against a pack component id.

    The vendor prefix is optional in the request.
    """
    if wanted == available:
        return True
    return "::" not in wanted and available.split("::", 1)[-1] == wanted


def _add_unique(target: list[str], values: list[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)
