"""Pytest fixtures for solmgr tests."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

import pytest
import yaml

from solmgr.config import RunOptions
from solmgr.models import Context, ContextDescriptor, ProjectDescriptor, SolutionDescriptor
from solmgr.parser import DescriptorParser
from solmgr.registry import ContextRegistry

DEFAULT_PROJECT: dict[str, Any] = {
    "device": "ARMCM3",
    "components": [{"component": "ARM::CMSIS:CORE"}],
}


def write_yaml(path: Path, data: dict[str, Any]) -> Path:
    """Write a YAML document, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path


def add_pack(
    root: Path,
    pack: str,
    version: str,
    components: list[dict[str, Any]] | None = None,
    files: dict[str, str] | None = None,
) -> Path:
    """Install a fake pack version under root/<vendor>/<name>/<version>."""
    vendor, name = pack.split("::")
    pack_dir = root / vendor / name / version
    write_yaml(pack_dir / "pack.yml", {"components": components or []})
    for file_name, content in (files or {}).items():
        (pack_dir / file_name).parent.mkdir(parents=True, exist_ok=True)
        (pack_dir / file_name).write_text(content)
    return pack_dir


@pytest.fixture
def pack_root(tmp_path: Path) -> Path:
    """Create a pack repository.

    Contains:
    - ARM::CMSIS 5.9.0 and 6.0.0 providing ARM::CMSIS:CORE
    - Keil::Device_DFP 1.0.0 providing Keil::Device:Startup with two config files
    """
    root = tmp_path / "packs"
    for version in ("5.9.0", "6.0.0"):
        add_pack(root, "ARM::CMSIS", version, [{"id": "ARM::CMSIS:CORE"}])
    add_pack(
        root,
        "Keil::Device_DFP",
        "1.0.0",
        [{"id": "Keil::Device:Startup", "config-files": ["config/startup.c", "config/system.c"]}],
        files={"config/startup.c": "/* startup */\n", "config/system.c": "/* system */\n"},
    )
    return root


@pytest.fixture
def make_solution(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a solution tree into tmp_path/solution.

    Returns the path of the <name>.csolution.yml file.
    """

    def _make(
        *,
        name: str = "demo",
        projects: dict[str, dict[str, Any]] | None = None,
        build_types: tuple[str, ...] = ("Debug", "Release"),
        target_types: tuple[str, ...] = ("Board",),
        packs: tuple[str, ...] = ("ARM::CMSIS@5.9.0",),
        compiler: str = "AC6@6.20.0",
        extra: dict[str, Any] | None = None,
    ) -> Path:
        root = tmp_path / "solution"
        projects = projects if projects is not None else {"app/App.cproject.yml": DEFAULT_PROJECT}
        for project_file, node in projects.items():
            write_yaml(root / project_file, {"project": node})

        solution: dict[str, Any] = {}
        if compiler:
            solution["compiler"] = compiler
        if packs:
            solution["packs"] = [{"pack": p} for p in packs]
        if build_types:
            solution["build-types"] = [{"type": b} for b in build_types]
        if target_types:
            solution["target-types"] = [{"type": t, "device": "ARMCM3"} for t in target_types]
        solution["projects"] = [{"project": p} for p in projects]
        solution.update(extra or {})
        return write_yaml(root / f"{name}.csolution.yml", {"solution": solution})

    return _make


@pytest.fixture
def solution_file(make_solution: Callable[..., Path]) -> Path:
    """Default solution: App with Debug/Release on Board."""
    return make_solution()


@pytest.fixture
def options_for(pack_root: Path) -> Callable[..., RunOptions]:
    """Factory for RunOptions bound to the fixture pack repository."""

    def _options(solution: Path, **kwargs: Any) -> RunOptions:
        return RunOptions(solution=solution, pack_root=pack_root, compiler_root=None, **kwargs)

    return _options


def _make_context(tmp_path: Path, project: str, build: str = "", target: str = "") -> Context:
    project_file = tmp_path / project / f"{project}.cproject.yml"
    return Context(
        descriptor=ContextDescriptor(
            project_file=f"{project}/{project}.cproject.yml",
            build_type=build,
            target_type=target,
        ),
        project=ProjectDescriptor(path=project_file, name=project),
        project_file=project_file,
    )


@pytest.fixture
def make_context(tmp_path: Path) -> Callable[..., Context]:
    """Factory building an unresolved context without touching descriptor files."""

    def _make(project: str, build: str = "", target: str = "") -> Context:
        return _make_context(tmp_path, project, build, target)

    return _make


@pytest.fixture
def make_registry(tmp_path: Path) -> Callable[..., ContextRegistry]:
    """Factory for a sealed registry holding (project, build, target) contexts."""

    def _make(names: list[tuple[str, str, str]]) -> ContextRegistry:
        registry = ContextRegistry()
        for project, build, target in names:
            registry.add(_make_context(tmp_path, project, build, target))
        registry.seal()
        registry.retrieve_context_types()
        return registry

    return _make


@pytest.fixture
def parsed_solution(solution_file: Path) -> tuple[SolutionDescriptor, DescriptorParser]:
    """The default solution parsed, with the parser that parsed it."""
    parser = DescriptorParser()
    return parser.parse_solution(solution_file), parser


@pytest.fixture
def install_pack(pack_root: Path) -> Callable[..., Path]:
    """Factory installing an extra pack version into the fixture repository."""

    def _install(
        pack: str,
        version: str,
        components: list[dict[str, Any]] | None = None,
        files: dict[str, str] | None = None,
    ) -> Path:
        return add_pack(pack_root, pack, version, components, files)

    return _install


@pytest.fixture
def write_descriptor() -> Callable[[Path, dict[str, Any]], Path]:
    """Write an arbitrary YAML document."""
    return write_yaml
