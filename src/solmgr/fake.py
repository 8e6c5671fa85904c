"""Fake resolver for testing."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from solmgr.exceptions import ResolutionError
from solmgr.models import (
    Context,
    ContextDirectories,
    ProcessOutcome,
    ToolchainSelection,
)
from solmgr.packs import ResolvedPack
from solmgr.policy import LoadPolicy

logger = structlog.get_logger()


@dataclass
class FakeActiveProject:
    """Active project handle that records sync calls instead of writing."""

    context_name: str
    files: list[Path] = field(default_factory=list)
    synced: int = 0
    dry_runs: int = 0

    def sync_config_files(self, *, dry_run: bool = False) -> list[Path]:
        """Record the call and return the configured files."""
        if dry_run:
            self.dry_runs += 1
        else:
            self.synced += 1
        return list(self.files)


class FakeResolver:
    """A fake resolver for testing.

    Resolves every context deterministically without touching a pack
    repository. Contexts listed in ``failing`` raise ResolutionError,
    contexts listed in ``returning_false`` report failure by return value.

    Example:
        >>> resolver = FakeResolver(failing={"App.Release+Board"})
        >>> resolver.process_context(registry.get("App.Debug+Board"), LoadPolicy.DEFAULT)
        True
    """

    def __init__(
        self,
        *,
        failing: set[str] | None = None,
        returning_false: set[str] | None = None,
        undefined_variables: set[str] | None = None,
        packs: list[ResolvedPack] | None = None,
        toolchain: ToolchainSelection | None = None,
        output_root: Path | None = None,
    ) -> None:
        """Initialize the fake resolver.

        Args:
            failing: Context names that raise ResolutionError.
            returning_false: Context names for which process_context returns False.
            undefined_variables: Context names that reference an undefined variable.
            packs: Packs assigned to every resolved context.
            toolchain: Toolchain assigned to every context.
            output_root: Root for output directories; defaults to the project directory.
        """
        self.failing = failing or set()
        self.returning_false = returning_false or set()
        self.undefined_variables = undefined_variables or set()
        self.packs = packs or []
        self.toolchain = toolchain or ToolchainSelection(name="AC6", version="6.20.0")
        self.output_root = output_root
        self.calls: list[tuple[str, LoadPolicy]] = []
        self._undefined = False

    @property
    def has_undefined_variables(self) -> bool:
        """Whether any processed context referenced an undefined variable."""
        return self._undefined

    def process_context(self, context: Context, policy: LoadPolicy) -> bool:
        """Resolve a context according to the configured scenario.

        Raises:
            ResolutionError: If the context is configured to fail.
        """
        self.calls.append((context.name, policy))
        logger.debug("Fake resolving context", context=context.name)

        root = self.output_root or context.project.directory
        context.directories = ContextDirectories(
            cprj=root,
            intdir=root / "tmp" / context.name,
            outdir=root / "out" / context.name,
        )
        context.toolchain = self.toolchain

        if context.name in self.undefined_variables:
            self._undefined = True
            context.undefined_variables = ["Undefined"]

        if context.name in self.failing or context.name in self.undefined_variables:
            context.outcome = ProcessOutcome.FAILED
            context.errors = ["fake resolution failure"]
            msg = "fake resolution failure"
            raise ResolutionError(msg, context=context.name)
        if context.name in self.returning_false:
            context.outcome = ProcessOutcome.FAILED
            context.errors = ["fake resolution failure"]
            return False

        context.packs = [
            ResolvedPack(
                vendor=p.vendor,
                name=p.name,
                version=p.version,
                path=p.path,
                selected_by=list(p.selected_by),
            )
            for p in self.packs
        ]
        context.active_project = FakeActiveProject(context_name=context.name)
        context.outcome = ProcessOutcome.RESOLVED
        return True

    def resolve_toolchain(self, attempted: list[Context]) -> ToolchainSelection | None:
        """The configured toolchain when anything was attempted."""
        return self.toolchain if attempted else None

    def list_config_files(self, contexts: list[Context]) -> list[str]:
        """One entry per context."""
        return [f"{c.name}: no config files" for c in contexts]
