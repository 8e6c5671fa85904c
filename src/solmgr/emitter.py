"""Artifact emission: sequences every output file of a run."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from solmgr.config import RunOptions
from solmgr.exceptions import FrozenPacksError
from solmgr.models import Context, SolutionDescriptor
from solmgr.processor import RunState
from solmgr.writers import (
    ArtifactWriter,
    PackSnapshot,
    build_record_data,
    build_record_path,
    collect_snapshot,
    context_set_data,
    cprj_path,
    index_data,
    read_pack_snapshot,
    snapshot_document,
)

logger = structlog.get_logger()


@dataclass
class EmitResult:
    """Paths produced by one emission (or that would be, in dry-run mode)."""

    pack_snapshot: Path | None = None
    config_files: list[Path] = field(default_factory=list)
    index: Path | None = None
    context_set: Path | None = None
    build_records: list[Path] = field(default_factory=list)
    cprj_files: list[Path] = field(default_factory=list)
    dry_run: bool = False

    @property
    def written(self) -> list[Path]:
        """Every artifact path in emission order."""
        paths = [self.pack_snapshot, *self.config_files, self.index, self.context_set]
        return [p for p in paths if p is not None] + self.build_records + self.cprj_files


def index_path(solution: SolutionDescriptor, options: RunOptions) -> Path:
    """Location of the <solution>.cbuild-idx.yml file."""
    directory = options.output_dir or solution.directory
    return directory / f"{solution.name}.cbuild-idx.yml"


class ArtifactEmitter:
    """Writes the artifacts of a processed run in a fixed order.

    Order: pack snapshot, config-file sync, full index, selection set,
    per-context build records, then (convert only) legacy project files.
    Any EmissionError stops the remaining steps.

    Example:
        >>> emitter = ArtifactEmitter(RunOptions(solution=path))
        >>> result = emitter.emit(solution, state, export_legacy=True)
        >>> result.index.name
        'demo.cbuild-idx.yml'
    """

    def __init__(self, options: RunOptions, writer: ArtifactWriter | None = None) -> None:
        """Initialize the emitter.

        Args:
            options: Run options.
            writer: Artifact writer; defaults to one honoring options.dry_run.
        """
        self.options = options
        self.writer = writer or ArtifactWriter(dry_run=options.dry_run)

    def emit(
        self,
        solution: SolutionDescriptor,
        state: RunState,
        *,
        update_rte_always: bool = False,
        export_legacy: bool = False,
    ) -> EmitResult:
        """Emit every artifact of the run.

        Args:
            solution: Parsed solution.
            state: Result of the processing pass.
            update_rte_always: Sync config files even if update_rte is off.
            export_legacy: Also write legacy .cprj files.

        Returns:
            The produced paths.

        Raises:
            FrozenPacksError: If the pack snapshot would change in frozen mode.
            EmissionError: If a file cannot be written.
        """
        result = EmitResult(dry_run=self.options.dry_run)

        result.pack_snapshot = self.emit_pack_snapshot(solution, state)
        if self.options.update_rte or update_rte_always:
            result.config_files = self.sync_config_files(state)

        if state.all_contexts:
            result.index = self.writer.write_yaml(
                index_path(solution, self.options),
                index_data(
                    solution,
                    state.all_contexts,
                    index_path(solution, self.options).parent,
                    state.failed,
                ),
                step="index",
            )

        if self.options.context_set:
            result.context_set = self.emit_context_set(solution, state)

        for context in state.attempted:
            result.build_records.append(
                self.writer.write_yaml(
                    build_record_path(context),
                    build_record_data(solution, context, context.name in state.failed),
                    step="build_record",
                )
            )

        if export_legacy:
            result.cprj_files = self.export_cprj(state.attempted)

        logger.info("Artifacts emitted", files=len(result.written), dry_run=result.dry_run)
        return result

    def emit_pack_snapshot(self, solution: SolutionDescriptor, state: RunState) -> Path | None:
        """Write the pack snapshot, or verify it against the committed one.

        Raises:
            FrozenPacksError: If frozen and the snapshot is missing or differs.
        """
        path = solution.pack_snapshot_path
        restricted = self.options.uses_selection
        scope = state.attempted if restricted else state.all_contexts
        fresh = collect_snapshot([p for c in scope for p in c.packs])
        existing = read_pack_snapshot(path) if path.exists() else None

        if restricted and existing is not None:
            fresh = _merge_snapshots(existing, fresh)

        if self.options.frozen_packs or solution.frozen_packs:
            self._check_frozen(path, existing, fresh)
            logger.debug("Pack snapshot unchanged", path=str(path))
            return None

        return self.writer.write_yaml(path, snapshot_document(fresh), step="pack_snapshot")

    def sync_config_files(self, state: RunState) -> list[Path]:
        """Synchronize generated config files of every attempted context."""
        written: list[Path] = []
        for context in state.attempted:
            if context.active_project is None:
                continue
            written.extend(context.active_project.sync_config_files(dry_run=self.options.dry_run))
        return written

    def emit_context_set(self, solution: SolutionDescriptor, state: RunState) -> Path | None:
        """Persist the attempted selection and the run-wide toolchain."""
        path = solution.context_set_path
        if not self.options.contexts and not path.exists():
            logger.warning("Unable to locate context set file", path=str(path))
            return None
        if not state.attempted:
            return None
        names = [c.name for c in state.attempted]
        return self.writer.write_yaml(
            path, context_set_data(names, state.toolchain), step="context_set"
        )

    def export_cprj(self, contexts: list[Context]) -> list[Path]:
        """Write the locked legacy project and the optional unlocked variant."""
        written = []
        suffix = self.options.export_suffix
        for context in contexts:
            path = self.writer.write_cprj(context, cprj_path(context), locked=True)
            logger.info("File generated successfully", path=str(path))
            written.append(path)
            if suffix:
                path = self.writer.write_cprj(context, cprj_path(context, suffix), locked=False)
                logger.info("Export file generated successfully", path=str(path))
                written.append(path)
        return written

    @staticmethod
    def _check_frozen(path: Path, existing: PackSnapshot | None, fresh: PackSnapshot) -> None:
        if existing is None:
            msg = "frozen packs requested but no pack snapshot exists"
            raise FrozenPacksError(msg, path=path)
        added = sorted(set(fresh.packs) - set(existing.packs))
        removed = sorted(set(existing.packs) - set(fresh.packs))
        changed = sorted(
            pack_id
            for pack_id in set(fresh.packs) & set(existing.packs)
            if sorted(fresh.packs[pack_id]) != sorted(existing.packs[pack_id])
        )
        if added or removed or changed:
            msg = "file is frozen and the resolved packs changed"
            raise FrozenPacksError(
                msg, path=path, added=added, removed=removed, changed=changed
            )


def _merge_snapshots(existing: PackSnapshot, fresh: PackSnapshot) -> PackSnapshot:
    """Keep pins of packs outside the restricted scope."""
    fresh_keys = {pack_id.partition("@")[0] for pack_id in fresh.packs}
    packs = {
        pack_id: selected_by
        for pack_id, selected_by in existing.packs.items()
        if pack_id.partition("@")[0] not in fresh_keys
    }
    packs.update(fresh.packs)
    return PackSnapshot(packs=packs)
