"""Project manager: the configure, update-rte and convert operations."""

from __future__ import annotations

import os
import re
from collections import Counter
from pathlib import Path

import structlog

from solmgr.config import COMPILER_ROOT_ENV, PACK_ROOT_ENV, RunOptions
from solmgr.emitter import ArtifactEmitter, EmitResult
from solmgr.exceptions import ConfigError, SolmgrError, StructureError
from solmgr.models import DefaultsDescriptor, SolutionDescriptor
from solmgr.packs import PackRepository
from solmgr.parser import SOLUTION_FILE_PATTERN, DescriptorParser
from solmgr.policy import LoadPolicy
from solmgr.processor import ContextProcessor, RunState
from solmgr.registry import ContextRegistry
from solmgr.resolver import PackResolver, Resolver
from solmgr.writers import ArtifactWriter, read_pack_snapshot

logger = structlog.get_logger()

DEFAULTS_FILE_NAMES = ("cdefault.yml", "cdefault.yaml")

# <NAME>_TOOLCHAIN_<major>_<minor>_<patch>=<path>
TOOLCHAIN_ENV_PATTERN = re.compile(r"^(\w+?)_TOOLCHAIN_(\d+)_(\d+)_(\d+)$")

# Error attributes logged alongside a fatal error
REPORTED_ATTRIBUTES = (
    "path",
    "config_path",
    "field",
    "patterns",
    "phase",
    "step",
    "context",
    "added",
    "removed",
    "changed",
)


class ProjectManager:
    """Wires parsing, selection, processing and emission together.

    Every operation returns a boolean; errors are logged with the file or
    context they concern instead of being raised to the caller.

    Example:
        >>> manager = ProjectManager(RunOptions(solution=Path("demo.csolution.yml")))
        >>> manager.convert()
        True
    """

    def __init__(
        self,
        options: RunOptions,
        *,
        resolver: Resolver | None = None,
        writer: ArtifactWriter | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            options: Run options.
            resolver: Resolution engine; defaults to a PackResolver built
                once the solution is parsed.
            writer: Artifact writer; defaults to one honoring options.dry_run.
        """
        self.options = options
        self.parser = DescriptorParser()
        self.registry = ContextRegistry()
        self.resolver = resolver
        self.writer = writer or ArtifactWriter(dry_run=options.dry_run)
        self.solution: SolutionDescriptor | None = None
        self.defaults: DefaultsDescriptor | None = None
        self.state: RunState | None = None
        self.emit_result: EmitResult | None = None

    @property
    def had_undefined_variables(self) -> bool:
        """Whether any processed context referenced an undefined variable."""
        return self.resolver is not None and self.resolver.has_undefined_variables

    @property
    def repository(self) -> PackRepository:
        """Installed packs under the configured pack root."""
        return PackRepository(self.options.pack_root)

    def populate(self) -> None:
        """Parse every input file and materialize the contexts.

        Raises:
            ConfigError: If no valid solution file was given.
            DescriptorError: If an input file is missing or malformed.
            StructureError: If project file names collide.
        """
        path = self.options.solution
        if path is None:
            msg = "input yml files were not specified"
            raise ConfigError(msg, field="solution")
        if not SOLUTION_FILE_PATTERN.match(path.name):
            msg = f"input file '{path}' is not a *.csolution.yml file"
            raise ConfigError(msg, field="solution")

        solution = self.parser.parse_solution(
            path, self.options.check_schema, self.options.frozen_packs
        )
        self.solution = solution

        if solution.enable_defaults:
            defaults_file = self.find_defaults(solution)
            if defaults_file is not None:
                self.defaults = self.parser.parse_defaults(defaults_file, self.options.check_schema)

        self.check_project_files(solution)
        self.registry.materialize(
            solution,
            lambda p: self.parser.parse_project(p, self.options.check_schema),
        )

        if self.resolver is None:
            snapshot_path = solution.pack_snapshot_path
            self.resolver = PackResolver(
                solution,
                self.options,
                self.repository,
                snapshot=read_pack_snapshot(snapshot_path) if snapshot_path.exists() else None,
                defaults=self.defaults,
            )

    def find_defaults(self, solution: SolutionDescriptor) -> Path | None:
        """Locate cdefault.yml in the solution directory or the compiler root.

        Raises:
            StructureError: If more than one defaults file is found.
        """
        search = [solution.directory]
        if self.options.compiler_root is not None:
            search.append(self.options.compiler_root)
        for directory in search:
            found = [directory / n for n in DEFAULTS_FILE_NAMES if (directory / n).is_file()]
            if len(found) > 1:
                msg = "multiple cdefault files were found"
                raise StructureError(msg, path=directory)
            if found:
                logger.debug("Using defaults file", path=str(found[0]))
                return found[0]
        return None

    def check_project_files(self, solution: SolutionDescriptor) -> None:
        """Reject duplicate project file names, warn about shared directories.

        Raises:
            StructureError: If two project files share a base name.
        """
        names = Counter(Path(p).name for p in solution.projects)
        duplicates = sorted(n for n, count in names.items() if count > 1)
        if duplicates:
            msg = f"cproject.yml filenames must be unique: {', '.join(duplicates)}"
            raise StructureError(msg, path=solution.path)

        directories = Counter(Path(p).parent.as_posix() for p in solution.projects)
        for directory, count in directories.items():
            if count > 1:
                logger.warning(
                    "cproject.yml files should be placed in separate sub-directories",
                    directory=directory,
                )

    def configure(self) -> bool:
        """Resolve and validate every selected context.

        Config files are synchronized afterwards when update_rte is set.

        Returns:
            False if the input cannot be used, any context failed or the
            config files cannot be written.
        """
        ok = self.process()
        if self.state is None:
            return False
        if self.options.update_rte:
            return self._sync_config_files() and ok
        return ok

    def process(self) -> bool:
        """Populate, select and process the contexts without writing anything.

        Returns:
            False if the input cannot be used or any context failed.
        """
        log = logger.bind(solution=str(self.options.solution))
        try:
            self.populate()
            self.registry.select(
                self.options.contexts,
                use_context_set=self.options.context_set and not self.options.contexts,
                context_set_file=self.solution.context_set_path if self.solution else None,
            )
        except SolmgrError as e:
            self._report(e)
            return False

        if self.options.context_set and not self.registry.selected_names and not self.options.contexts:
            log.warning("No contexts selected, context set file is missing or empty")

        processor = ContextProcessor(self.resolver, self.options)
        self.state = processor.run(
            self.registry.ordered_names(preserve_declaration_order=True),
            self.registry,
            self.options.load_policy,
        )
        return self.state.ok

    def update_rte(self) -> bool:
        """Process, then synchronize config files regardless of update_rte."""
        ok = self.process()
        if self.state is None:
            return False
        return self._sync_config_files() and ok

    def convert(self) -> bool:
        """Process, then emit every artifact including legacy project files."""
        ok = self.process()
        if self.state is None or self.solution is None:
            return False
        try:
            self.emit_result = ArtifactEmitter(self.options, self.writer).emit(
                self.solution, self.state, export_legacy=True
            )
        except SolmgrError as e:
            self._report(e)
            return False
        return ok

    def _sync_config_files(self) -> bool:
        try:
            ArtifactEmitter(self.options, self.writer).sync_config_files(self.state)
        except SolmgrError as e:
            self._report(e)
            return False
        return True

    def list_contexts(self, name_filter: str = "") -> list[str]:
        """Context names, filtered by selection patterns and a substring.

        Raises:
            SolmgrError: If the input cannot be used.
        """
        self.populate()
        self.registry.select(self.options.contexts)
        names = self.registry.ordered_names(preserve_declaration_order=self.options.yml_order)
        names = [n for n in names if self.registry.is_selected(n) and name_filter in n]
        if self.options.verbose:
            return [
                f"{n} ({self.registry.get(n).project_file.as_posix()})" for n in names
            ]
        return names

    def list_packs(self, missing: bool = False, name_filter: str = "") -> list[str]:
        """Resolved (or missing) packs of the solution, else every installed pack.

        Raises:
            SolmgrError: If the input cannot be used.
        """
        if self.options.solution is None:
            packs = [p.id for p in self.repository.installed_packs()]
            return [p for p in packs if name_filter in p]

        self.populate()
        self.registry.select(self.options.contexts)
        state = ContextProcessor(self.resolver, self.options).run(
            self.registry.ordered_names(), self.registry, self.options.load_policy
        )

        entries: set[str] = set()
        for context in state.attempted:
            if missing:
                entries.update(context.missing_packs)
            elif self.options.load_policy is LoadPolicy.ALL:
                for pack in context.packs:
                    entries.update(
                        f"{pack.key}@{v}"
                        for v in self.repository.installed_versions(pack.vendor, pack.name)
                    )
            else:
                entries.update(pack.id for pack in context.packs)
        return sorted(e for e in entries if name_filter in e)

    def list_toolchains(self) -> list[str]:
        """Toolchains registered in the environment or used by the solution."""
        toolchains: set[str] = set()
        for key in os.environ:
            match = TOOLCHAIN_ENV_PATTERN.match(key)
            if match:
                name, major, minor, patch = match.groups()
                toolchains.add(f"{name}@{major}.{minor}.{patch}")

        if self.options.solution is not None:
            self.process()
        if self.state is not None:
            toolchains.update(
                str(c.toolchain) for c in self.state.attempted if c.toolchain is not None
            )
        return sorted(toolchains)

    def list_environment(self) -> list[str]:
        """Environment settings relevant to resolution."""
        return [
            f"{PACK_ROOT_ENV}={self.options.pack_root.as_posix() if self.options.pack_root else '<undefined>'}",
            f"{COMPILER_ROOT_ENV}={self.options.compiler_root.as_posix() if self.options.compiler_root else '<undefined>'}",
        ]

    @staticmethod
    def _report(error: SolmgrError) -> None:
        """Log a fatal error with whatever identifies its origin."""
        details = {
            key: str(value)
            for key in REPORTED_ATTRIBUTES
            if (value := getattr(error, key, None))
        }
        logger.error(str(error), error_type=type(error).__name__, **details)
