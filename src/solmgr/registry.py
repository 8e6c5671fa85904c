"""Context registry: owns every materialized context of a run."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from types import MappingProxyType

import structlog

from solmgr.exceptions import DescriptorError, SelectionError, StateError, StructureError
from solmgr.models import Context, ProjectDescriptor, SolutionDescriptor
from solmgr.writers import read_context_set

logger = structlog.get_logger()


class RegistryPhase(str, Enum):
    """Lifecycle phase of the registry."""

    MATERIALIZING = "materializing"
    SEALED = "sealed"


@dataclass(frozen=True)
class ContextTypes:
    """Distinct build and target types present in the registry."""

    build_types: list[str] = field(default_factory=list)
    target_types: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ContextFilter:
    """A parsed [project][.build-type][+target-type] selection pattern.

    Empty parts match anything; each part may contain shell wildcards.

    Example:
        >>> f = ContextFilter.parse("App.Deb*")
        >>> f.matches("App", "Debug", "Board")
        True
    """

    pattern: str
    project: str = ""
    build_type: str = ""
    target_type: str = ""

    @classmethod
    def parse(cls, pattern: str) -> ContextFilter:
        """Parse a selection pattern.

        Raises:
            SelectionError: If the pattern is malformed.
        """
        text = pattern.strip()
        if not text:
            msg = "empty context name"
            raise SelectionError(msg, patterns=[pattern])

        head, plus, target = text.partition("+")
        project, dot, build = head.partition(".")
        malformed = (
            "+" in target
            or "." in target
            or "." in build
            or (plus and not target)
            or (dot and not build)
        )
        if malformed:
            msg = f"invalid context name '{pattern}', expected [project][.build-type][+target-type]"
            raise SelectionError(msg, patterns=[pattern])
        return cls(pattern=pattern, project=project, build_type=build, target_type=target)

    def matches(self, project: str, build_type: str, target_type: str) -> bool:
        """Check whether a context's parts match this filter."""
        return all(
            not wanted or fnmatchcase(actual, wanted)
            for wanted, actual in (
                (self.project, project),
                (self.build_type, build_type),
                (self.target_type, target_type),
            )
        )


class ContextRegistry:
    """Owns the name -> Context mapping for the lifetime of a run.

    The registry is append-only while materializing and its identity is
    read-only once sealed; ordered enumeration and selection are only
    available after sealing.

    Example:
        >>> registry = ContextRegistry()
        >>> registry.materialize(solution, parser.parse_project)
        >>> registry.select(["App.Debug"])
        >>> registry.ordered_names()
        ['App.Debug+Board', 'App.Release+Board']
    """

    def __init__(self) -> None:
        self._contexts: dict[str, Context] = {}
        self._declared: list[str] = []
        self._phase = RegistryPhase.MATERIALIZING
        self._selected: set[str] = set()
        self._missing_filters: list[str] = []
        self._types = ContextTypes()

    @property
    def phase(self) -> RegistryPhase:
        """Current lifecycle phase."""
        return self._phase

    @property
    def contexts(self) -> Mapping[str, Context]:
        """Read-only view of all contexts."""
        return MappingProxyType(self._contexts)

    @property
    def missing_filters(self) -> list[str]:
        """Selection patterns that matched no context."""
        return list(self._missing_filters)

    @property
    def selected_names(self) -> list[str]:
        """Selected context names in declaration order."""
        return [name for name in self._declared if name in self._selected]

    @property
    def context_types(self) -> ContextTypes:
        """Types computed by retrieve_context_types()."""
        return self._types

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, name: object) -> bool:
        return name in self._contexts

    def add(self, context: Context) -> None:
        """Add a materialized context.

        Raises:
            StateError: If the registry is sealed.
            StructureError: If a context with the same name exists.
        """
        if self._phase is not RegistryPhase.MATERIALIZING:
            msg = f"cannot add context '{context.name}' to a sealed registry"
            raise StateError(msg, phase=self._phase.value)
        if context.name in self._contexts:
            msg = f"context '{context.name}' is declared more than once"
            raise StructureError(msg, path=context.project_file)
        self._contexts[context.name] = context
        self._declared.append(context.name)

    def seal(self) -> None:
        """End materialization."""
        self._phase = RegistryPhase.SEALED
        logger.debug("Context registry sealed", contexts=len(self._contexts))

    def get(self, name: str) -> Context:
        """Look up a context by name.

        Raises:
            KeyError: If no such context exists.
        """
        return self._contexts[name]

    def materialize(
        self,
        solution: SolutionDescriptor,
        parse_project: Callable[[Path], ProjectDescriptor],
    ) -> None:
        """Create one context per descriptor of the solution, then seal.

        Args:
            solution: Parsed solution.
            parse_project: Callback returning the descriptor of a project file.

        Raises:
            DescriptorError: If a referenced project file cannot be located.
        """
        log = logger.bind(solution=solution.name)
        for descriptor in solution.contexts:
            project_file = Path(descriptor.project_file)
            if not project_file.is_absolute():
                project_file = (solution.directory / project_file).resolve()
            if not project_file.is_file():
                msg = "cproject file was not found"
                raise DescriptorError(msg, path=descriptor.project_file)

            project = parse_project(project_file)
            self.add(Context(descriptor=descriptor, project=project, project_file=project_file))
            log.debug("Materialized context", context=descriptor.name)

        self.seal()
        self.retrieve_context_types()

    def retrieve_context_types(self) -> ContextTypes:
        """Collect the distinct build and target types in declaration order."""
        builds: list[str] = []
        targets: list[str] = []
        for name in self._declared:
            context = self._contexts[name]
            if context.build_type and context.build_type not in builds:
                builds.append(context.build_type)
            if context.target_type and context.target_type not in targets:
                targets.append(context.target_type)
        self._types = ContextTypes(build_types=builds, target_types=targets)
        return self._types

    def select(
        self,
        patterns: list[str],
        use_context_set: bool = False,
        context_set_file: Path | None = None,
    ) -> None:
        """Compute the selected subset.

        Args:
            patterns: Selection patterns; empty means all contexts.
            use_context_set: Fall back to the persisted selection set when
                no patterns are given.
            context_set_file: Path of the persisted selection-set file.

        Raises:
            StateError: If the registry is not sealed yet.
            SelectionError: If a pattern is malformed or the persisted set
                names an unknown context.
        """
        self._require_sealed("select contexts")
        self._missing_filters = []

        if not patterns and use_context_set:
            if context_set_file is None or not context_set_file.exists():
                self._selected = set()
                return
            names = read_context_set(context_set_file).contexts
            unknown = [n for n in names if n not in self._contexts]
            if unknown:
                msg = f"unknown selected context(s): {', '.join(unknown)}"
                raise SelectionError(msg, patterns=unknown)
            self._selected = set(names)
            logger.debug("Selection loaded from context set", path=str(context_set_file))
            return

        if not patterns:
            self._selected = set(self._contexts)
            return

        filters = [ContextFilter.parse(p) for p in patterns]
        selected: set[str] = set()
        for context_filter in filters:
            if not self._known_types(context_filter):
                self._missing_filters.append(context_filter.pattern)
                continue
            matched = [
                name
                for name in self._declared
                if context_filter.matches(
                    self._contexts[name].project_name,
                    self._contexts[name].build_type,
                    self._contexts[name].target_type,
                )
            ]
            if not matched:
                self._missing_filters.append(context_filter.pattern)
            selected.update(matched)
        self._selected = selected

    def ordered_names(self, preserve_declaration_order: bool = True) -> list[str]:
        """Context names in declaration order or canonical (sorted) order.

        Raises:
            StateError: If the registry is not sealed yet.
        """
        self._require_sealed("enumerate contexts")
        if preserve_declaration_order:
            return list(self._declared)
        return sorted(self._declared)

    def is_selected(self, name: str) -> bool:
        """Whether a context is part of the selection."""
        return name in self._selected

    def _known_types(self, context_filter: ContextFilter) -> bool:
        """Check the filter's build and target parts against the known types."""
        for kind, wanted, known in (
            ("build-type", context_filter.build_type, self._types.build_types),
            ("target-type", context_filter.target_type, self._types.target_types),
        ):
            if wanted and not any(fnmatchcase(t, wanted) for t in known):
                logger.warning(
                    f"Unknown {kind} in context selection",
                    filter=context_filter.pattern,
                    known=known,
                )
                return False
        return True

    def _require_sealed(self, action: str) -> None:
        if self._phase is not RegistryPhase.SEALED:
            msg = f"cannot {action} before materialization is complete"
            raise StateError(msg, phase=self._phase.value)
