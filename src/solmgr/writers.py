"""Serialization of build-configuration artifacts.

Turns resolved contexts into the YAML documents consumed by downstream
build tooling (pack snapshot, index, selection set, build records) and
renders legacy single-file projects (.cprj) from a Jinja2 template.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from solmgr import __version__
from solmgr.exceptions import DescriptorError, EmissionError
from solmgr.packs import PackRef, split_component, version_key
from solmgr.renderer import TemplateRenderer

if TYPE_CHECKING:
    from solmgr.models import Context, SolutionDescriptor, ToolchainSelection
    from solmgr.packs import ResolvedPack

logger = structlog.get_logger()

TOOL_NAME = "solmgr"
GENERATED_BY = f"{TOOL_NAME} version {__version__}"


def relative_path(path: Path, base: Path) -> str:
    """Path relative to base, with forward slashes."""
    return Path(os.path.relpath(path, base)).as_posix()


@dataclass
class PackSnapshot:
    """Contents of a <solution>.cbuild-pack.yml file.

    Attributes:
        packs: Pinned pack id (vendor::name@version) -> requirements that selected it.
    """

    packs: dict[str, list[str]] = field(default_factory=dict)

    @property
    def pinned(self) -> dict[str, str]:
        """vendor::name -> pinned version."""
        pins = {}
        for pack_id in self.packs:
            key, _, version = pack_id.partition("@")
            pins[key] = version
        return pins


@dataclass
class ContextSet:
    """Contents of a <solution>.cbuild-set.yml file."""

    contexts: list[str] = field(default_factory=list)
    compiler: str = ""


def _read_yaml(path: Path, root: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 1 if mark is not None else None
        raise DescriptorError(f"invalid YAML: {e}", path=path, line=line) from e
    if not isinstance(data, dict) or not isinstance(data.get(root), dict):
        msg = f"'{root}' node is missing"
        raise DescriptorError(msg, path=path, field=root)
    return data[root]


def read_pack_snapshot(path: Path) -> PackSnapshot:
    """Load a pack snapshot file.

    Raises:
        DescriptorError: If the file is malformed.
    """
    node = _read_yaml(path, "cbuild-pack")
    packs: dict[str, list[str]] = {}
    for entry in node.get("resolved-packs") or []:
        if isinstance(entry, dict) and entry.get("resolved-pack"):
            packs[str(entry["resolved-pack"])] = [str(s) for s in entry.get("selected-by") or []]
    return PackSnapshot(packs=packs)


def read_context_set(path: Path) -> ContextSet:
    """Load a selection-set file.

    Raises:
        DescriptorError: If the file is malformed.
    """
    node = _read_yaml(path, "cbuild-set")
    contexts = [
        str(entry["context"])
        for entry in node.get("contexts") or []
        if isinstance(entry, dict) and entry.get("context")
    ]
    return ContextSet(contexts=contexts, compiler=str(node.get("compiler") or ""))


def collect_snapshot(packs: list[ResolvedPack]) -> PackSnapshot:
    """Merge resolved packs into a snapshot, keeping every selecting requirement."""
    merged: dict[str, list[str]] = {}
    for pack in packs:
        selected_by = merged.setdefault(pack.id, [])
        for requirement in pack.selected_by:
            if requirement not in selected_by:
                selected_by.append(requirement)
    return PackSnapshot(packs=merged)


def snapshot_document(snapshot: PackSnapshot) -> dict[str, Any]:
    """Build the cbuild-pack document from a snapshot."""
    return {
        "cbuild-pack": {
            "resolved-packs": [
                {"resolved-pack": pack_id, "selected-by": sorted(selected_by)}
                for pack_id, selected_by in sorted(snapshot.packs.items())
            ]
        }
    }


def index_data(
    solution: SolutionDescriptor,
    contexts: list[Context],
    base_dir: Path,
    failed: set[str],
) -> dict[str, Any]:
    """Build the cbuild-idx document listing every context."""
    projects = []
    for context in contexts:
        entry = {"cproject": relative_path(context.project_file, base_dir)}
        if entry not in projects:
            projects.append(entry)

    builds = []
    for context in contexts:
        build: dict[str, Any] = {
            "cbuild": relative_path(build_record_path(context), base_dir),
            "project": context.project_name,
            "configuration": context.name[len(context.project_name) :],
        }
        if context.name in failed:
            build["errors"] = True
        builds.append(build)

    return {
        "build-idx": {
            "generated-by": GENERATED_BY,
            "csolution": relative_path(solution.path, base_dir),
            "cprojects": projects,
            "cbuilds": builds,
        }
    }


def context_set_data(names: list[str], toolchain: ToolchainSelection | None) -> dict[str, Any]:
    """Build the cbuild-set document."""
    node: dict[str, Any] = {
        "generated-by": GENERATED_BY,
        "contexts": [{"context": name} for name in names],
    }
    if toolchain is not None:
        node["compiler"] = str(toolchain)
    return {"cbuild-set": node}


def build_record_path(context: Context) -> Path:
    """Location of a context's <name>.cbuild.yml file."""
    cprj_dir = context.directories.cprj if context.directories else context.project.directory
    return cprj_dir / f"{context.name}.cbuild.yml"


def cprj_path(context: Context, suffix: str = "") -> Path:
    """Location of a context's legacy project file."""
    cprj_dir = context.directories.cprj if context.directories else context.project.directory
    return cprj_dir / f"{context.name}{suffix}.cprj"


def build_record_data(
    solution: SolutionDescriptor,
    context: Context,
    conversion_error: bool,
) -> dict[str, Any]:
    """Build the per-context cbuild document."""
    base_dir = build_record_path(context).parent
    node: dict[str, Any] = {
        "generated-by": GENERATED_BY,
        "solution": relative_path(solution.path, base_dir),
        "project": relative_path(context.project_file, base_dir),
        "context": context.name,
    }
    if context.toolchain is not None:
        node["compiler"] = str(context.toolchain)
    if context.project.device:
        node["device"] = context.project.device
    if context.project.board:
        node["board"] = context.project.board
    if context.directories is not None:
        node["output-dirs"] = {
            "intdir": relative_path(context.directories.intdir, base_dir),
            "outdir": relative_path(context.directories.outdir, base_dir),
        }
    node["packs"] = [
        {"pack": pack.id, "path": pack.path.as_posix() if pack.path else ""}
        for pack in context.packs
    ]
    node["components"] = [
        {
            "component": component,
            "config-files": [relative_path(p, base_dir) for p in context.config_files.get(component, [])],
        }
        for component in context.components
    ]
    if context.layers:
        node["layers"] = [{"layer": relative_path(p, base_dir)} for p in context.layers]
    if conversion_error:
        node["conversion-error"] = True
        node["errors"] = list(context.errors)
    return {"build": node}


class ArtifactWriter:
    """Writes artifact documents to disk.

    In dry-run mode nothing is written; the target path is still returned
    so that callers can report what would have been produced.
    """

    def __init__(self, dry_run: bool = False, renderer: TemplateRenderer | None = None) -> None:
        self.dry_run = dry_run
        self.renderer = renderer or TemplateRenderer()

    def write_yaml(self, path: Path, data: dict[str, Any], *, step: str = "") -> Path:
        """Serialize data as YAML to path.

        Raises:
            EmissionError: If the file cannot be written.
        """
        content = yaml.dump(data, default_flow_style=False, sort_keys=False)
        return self._write(path, content, step=step)

    def write_cprj(self, context: Context, path: Path, *, locked: bool = True) -> Path:
        """Render and write a legacy project file.

        Args:
            context: Resolved context.
            path: Destination file.
            locked: Pin exact resolved pack versions; when False only the
                user's version requirement is kept.

        Raises:
            EmissionError: If the file cannot be written.
        """
        content = self.render_cprj(context, path.parent, locked=locked)
        return self._write(path, content, step="cprj")

    def render_cprj(self, context: Context, base_dir: Path, *, locked: bool = True) -> str:
        """Render a legacy project document."""
        packages = []
        for pack in context.packs:
            if locked:
                version = f"{pack.version}:{pack.version}"
            else:
                # Keep the lowest version any requirement asked for
                required = [PackRef.parse(r).version for r in pack.selected_by]
                required = sorted((v for v in required if v), key=version_key)
                version = required[0] if required else ""
            packages.append({"vendor": pack.vendor, "name": pack.name, "version": version})

        directories = context.directories
        return self.renderer.render(
            "cprj.xml",
            tool=TOOL_NAME,
            version=__version__,
            name=context.name,
            packages=packages,
            compiler=context.toolchain,
            device=context.project.device,
            board=context.project.board,
            intdir=relative_path(directories.intdir, base_dir) if directories else "",
            outdir=relative_path(directories.outdir, base_dir) if directories else "",
            components=[split_component(c) for c in context.components],
        )

    def _write(self, path: Path, content: str, *, step: str) -> Path:
        log = logger.bind(path=str(path), step=step)
        if self.dry_run:
            log.info("Dry run - skipping write")
            return path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        except OSError as e:
            msg = f"file cannot be written: {e}"
            raise EmissionError(msg, path=path, step=step) from e
        log.debug("Wrote artifact")
        return path
