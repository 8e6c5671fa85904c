"""Context processing loop with per-context failure isolation."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from solmgr.config import RunOptions
from solmgr.exceptions import ResolutionError, StateError
from solmgr.models import Context, ProcessOutcome, ToolchainSelection
from solmgr.policy import LoadPolicy
from solmgr.registry import ContextRegistry
from solmgr.resolver import Resolver

logger = structlog.get_logger()


@dataclass
class ProcessResult:
    """Partial-failure accumulator for one processing pass."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether no attempted context failed."""
        return not self.failed

    def __bool__(self) -> bool:
        """Return success status."""
        return self.ok


@dataclass
class RunState:
    """Aggregate state of a processing pass.

    Attributes:
        all_contexts: Every materialized context, in the processed order.
        attempted: Selected contexts the resolver was invoked on.
        failed: Names of attempted contexts that failed.
        toolchain: Run-wide toolchain, if one could be determined.
        result: Succeeded/failed/skipped buckets.
    """

    all_contexts: list[Context] = field(default_factory=list)
    attempted: list[Context] = field(default_factory=list)
    failed: set[str] = field(default_factory=set)
    toolchain: ToolchainSelection | None = None
    result: ProcessResult = field(default_factory=ProcessResult)

    @property
    def ok(self) -> bool:
        """Whether every attempted context resolved."""
        return not self.failed

    def check_invariants(self) -> None:
        """Verify attempted is a subset of all, and failed of attempted.

        Raises:
            StateError: If an invariant does not hold.
        """
        all_names = {c.name for c in self.all_contexts}
        attempted_names = {c.name for c in self.attempted}
        if not attempted_names <= all_names:
            msg = f"attempted contexts were never discovered: {sorted(attempted_names - all_names)}"
            raise StateError(msg, phase="processing")
        if not self.failed <= attempted_names:
            msg = f"failed contexts were never attempted: {sorted(self.failed - attempted_names)}"
            raise StateError(msg, phase="processing")


class ContextProcessor:
    """Drives the resolver over every context of a sealed registry.

    A failing context is recorded and reported, and processing continues
    with the next one; the overall result reports failure at the end.

    Example:
        >>> processor = ContextProcessor(FakeResolver(), RunOptions())
        >>> state = processor.run(registry.ordered_names(), registry, LoadPolicy.DEFAULT)
        >>> len(state.all_contexts) == len(registry)
        True
    """

    def __init__(self, resolver: Resolver, options: RunOptions) -> None:
        self.resolver = resolver
        self.options = options

    def run(
        self,
        ordered_names: list[str],
        registry: ContextRegistry,
        policy: LoadPolicy,
    ) -> RunState:
        """Process contexts in the given order.

        Args:
            ordered_names: Context names to visit.
            registry: Sealed registry owning the contexts.
            policy: Pack loading policy handed to the resolver.

        Returns:
            The aggregate RunState.
        """
        state = RunState()
        for name in ordered_names:
            context = registry.get(name)
            state.all_contexts.append(context)

            if not registry.is_selected(name):
                context.outcome = ProcessOutcome.SKIPPED
                state.result.skipped.append(name)
                continue

            state.attempted.append(context)
            if self._process(context, policy):
                state.result.succeeded.append(name)
            else:
                state.failed.add(name)
                state.result.failed.append(name)

        state.check_invariants()
        state.toolchain = self.resolver.resolve_toolchain(state.attempted)

        for pattern in registry.missing_filters:
            logger.warning("Context selection matched no context", filter=pattern)

        if self.options.verbose:
            for entry in self.resolver.list_config_files(state.attempted):
                logger.info("Config files", entry=entry)

        logger.info(
            "Processed contexts",
            total=len(state.all_contexts),
            attempted=len(state.attempted),
            failed=len(state.failed),
        )
        return state

    def _process(self, context: Context, policy: LoadPolicy) -> bool:
        log = logger.bind(context=context.name)
        try:
            ok = self.resolver.process_context(context, policy)
        except ResolutionError as e:
            log.error("Context processing failed", error=str(e), missing=e.missing)
            context.outcome = ProcessOutcome.FAILED
            return False

        if not ok:
            log.error("Context processing failed", errors=context.errors)
            context.outcome = ProcessOutcome.FAILED
            return False
        return True
