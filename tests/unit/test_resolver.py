"""Unit tests for the pack resolver."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from solmgr.config import RunOptions
from solmgr.exceptions import ResolutionError
from solmgr.models import ProcessOutcome, ToolchainSelection
from solmgr.packs import PackRepository
from solmgr.parser import DescriptorParser
from solmgr.policy import LoadPolicy
from solmgr.registry import ContextRegistry
from solmgr.resolver import PackResolver, Resolver, component_define, expand_variables
from solmgr.writers import PackSnapshot


@pytest.fixture
def resolve(pack_root: Path) -> Callable[..., tuple[ContextRegistry, PackResolver]]:
    """Parse a solution file and build a PackResolver for it."""

    def _resolve(
        solution_file: Path,
        snapshot: PackSnapshot | None = None,
        **options: Any,
    ) -> tuple[ContextRegistry, PackResolver]:
        parser = DescriptorParser()
        solution = parser.parse_solution(solution_file)
        registry = ContextRegistry()
        registry.materialize(solution, parser.parse_project)
        run_options = RunOptions(solution=solution_file, pack_root=pack_root, **options)
        resolver = PackResolver(solution, run_options, PackRepository(pack_root), snapshot=snapshot)
        return registry, resolver

    return _resolve


def test_expand_variables() -> None:
    """Defined names are replaced, undefined ones reported once."""
    text, undefined = expand_variables("$A$/$B$/$B$/$SolutionDir()$", {"A": "x", "SolutionDir": "/s"})

    assert text == "x/$B$/$B$//s"
    assert undefined == ["B"]


def test_component_define() -> None:
    """Component macros use class, group and sub."""
    assert component_define("Keil::Device:Startup") == "RTE_DEVICE_STARTUP"


def test_pack_resolver_is_a_resolver(solution_file: Path, resolve: Callable[..., Any]) -> None:
    """PackResolver satisfies the Resolver protocol."""
    _, resolver = resolve(solution_file)

    assert isinstance(resolver, Resolver)


class TestProcessContext:
    """Tests for PackResolver.process_context."""

    def test_resolves_default_context(self, solution_file: Path, resolve: Callable[..., Any]) -> None:
        """Packs, components, toolchain and directories are filled in."""
        registry, resolver = resolve(solution_file)
        context = registry.get("App.Debug+Board")

        assert resolver.process_context(context, LoadPolicy.DEFAULT)

        assert context.outcome is ProcessOutcome.RESOLVED
        assert [p.id for p in context.packs] == ["ARM::CMSIS@5.9.0"]
        assert context.packs[0].selected_by == ["ARM::CMSIS@5.9.0"]
        assert context.components == ["ARM::CMSIS:CORE"]
        assert context.toolchain == ToolchainSelection(name="AC6", version="6.20.0")
        solution_dir = solution_file.parent.resolve()
        assert context.directories is not None
        assert context.directories.cprj == context.project.directory
        assert context.directories.outdir == solution_dir / "out" / "App" / "Board" / "Debug"
        assert context.directories.intdir == solution_dir / "tmp" / "App" / "Board" / "Debug"
        assert context.active_project is not None

    def test_missing_pack_fails(
        self, make_solution: Callable[..., Path], resolve: Callable[..., Any]
    ) -> None:
        """A requirement with no installed match raises ResolutionError."""
        registry, resolver = resolve(make_solution(packs=("ARM::CMSIS@7.0.0",)))
        context = registry.get("App.Debug+Board")

        with pytest.raises(ResolutionError) as exc_info:
            resolver.process_context(context, LoadPolicy.DEFAULT)

        assert exc_info.value.context == "App.Debug+Board"
        assert exc_info.value.missing == ["ARM::CMSIS@7.0.0"]
        assert context.missing_packs == ["ARM::CMSIS@7.0.0"]
        assert context.outcome is ProcessOutcome.FAILED

    def test_unknown_component_fails(
        self, make_solution: Callable[..., Path], resolve: Callable[..., Any]
    ) -> None:
        """Components must be provided by a resolved pack."""
        path = make_solution(
            projects={"app/App.cproject.yml": {"components": [{"component": "ARM::Nope:X"}]}}
        )
        registry, resolver = resolve(path)
        context = registry.get("App.Debug+Board")

        with pytest.raises(ResolutionError):
            resolver.process_context(context, LoadPolicy.DEFAULT)

        assert any("ARM::Nope:X" in e for e in context.errors)

    def test_missing_compiler_fails(
        self, make_solution: Callable[..., Path], resolve: Callable[..., Any]
    ) -> None:
        """A context without any toolchain cannot be resolved."""
        registry, resolver = resolve(make_solution(compiler=""))

        with pytest.raises(ResolutionError, match="compiler undefined"):
            resolver.process_context(registry.get("App.Debug+Board"), LoadPolicy.DEFAULT)

    def test_explicit_toolchain_wins(self, solution_file: Path, resolve: Callable[..., Any]) -> None:
        """--toolchain overrides the solution compiler."""
        registry, resolver = resolve(solution_file, toolchain="GCC@12.2.0")
        context = registry.get("App.Debug+Board")

        resolver.process_context(context, LoadPolicy.DEFAULT)

        assert str(context.toolchain) == "GCC@12.2.0"
        assert str(resolver.resolve_toolchain([context])) == "GCC@12.2.0"

    def test_undefined_variable(
        self, make_solution: Callable[..., Path], resolve: Callable[..., Any]
    ) -> None:
        """An undefined $variable$ fails the context and sets the flag."""
        path = make_solution(
            projects={
                "app/App.cproject.yml": {
                    "components": [{"component": "ARM::CMSIS:CORE"}],
                    "layers": [{"layer": "$Board-Layer$/board.clayer.yml"}],
                }
            }
        )
        registry, resolver = resolve(path)
        context = registry.get("App.Debug+Board")

        with pytest.raises(ResolutionError):
            resolver.process_context(context, LoadPolicy.DEFAULT)

        assert context.undefined_variables == ["Board-Layer"]
        assert resolver.has_undefined_variables

    def test_layer_from_variable(
        self,
        make_solution: Callable[..., Path],
        resolve: Callable[..., Any],
        write_descriptor: Callable[..., Path],
    ) -> None:
        """Target-type variables expand in layer paths."""
        path = make_solution(
            target_types=(),
            projects={
                "app/App.cproject.yml": {
                    "components": [{"component": "CMSIS:CORE"}],
                    "layers": [{"layer": "$Board-Layer$/board.clayer.yml"}],
                }
            },
            extra={
                "target-types": [
                    {"type": "Board", "variables": [{"Board-Layer": "../layers"}]}
                ]
            },
        )
        layer = write_descriptor(path.parent / "layers" / "board.clayer.yml", {"layer": {}})
        registry, resolver = resolve(path)
        context = registry.get("App.Debug+Board")

        assert resolver.process_context(context, LoadPolicy.DEFAULT)
        assert context.layers == [layer.resolve()]
        assert context.components == ["ARM::CMSIS:CORE"]


class TestPackVersions:
    """Tests for version selection under each load policy."""

    @pytest.mark.parametrize(
        ("policy", "expected"),
        [
            (LoadPolicy.DEFAULT, "6.0.0"),
            (LoadPolicy.LATEST, "6.0.0"),
            (LoadPolicy.ALL, "6.0.0"),
            (LoadPolicy.REQUIRED, "5.9.0"),
        ],
    )
    def test_minimum_requirement(
        self,
        make_solution: Callable[..., Path],
        resolve: Callable[..., Any],
        policy: LoadPolicy,
        expected: str,
    ) -> None:
        """@>= picks the highest match, except REQUIRED which keeps the lowest."""
        registry, resolver = resolve(make_solution(packs=("ARM::CMSIS@>=5.9.0",)))
        context = registry.get("App.Debug+Board")

        resolver.process_context(context, policy)

        assert context.packs[0].version == expected

    @pytest.mark.parametrize(
        ("policy", "expected"),
        [
            (LoadPolicy.DEFAULT, "5.9.0"),
            (LoadPolicy.REQUIRED, "5.9.0"),
            (LoadPolicy.LATEST, "6.0.0"),
        ],
    )
    def test_snapshot_pin(
        self,
        make_solution: Callable[..., Path],
        resolve: Callable[..., Any],
        policy: LoadPolicy,
        expected: str,
    ) -> None:
        """An unversioned requirement keeps the snapshot pin unless LATEST."""
        snapshot = PackSnapshot(packs={"ARM::CMSIS@5.9.0": ["ARM::CMSIS"]})
        registry, resolver = resolve(make_solution(packs=("ARM::CMSIS",)), snapshot=snapshot)
        context = registry.get("App.Debug+Board")

        resolver.process_context(context, policy)

        assert context.packs[0].version == expected


class TestConfigFiles:
    """Tests for config file bookkeeping and RTE synchronization."""

    @pytest.fixture
    def device_solution(self, make_solution: Callable[..., Path]) -> Path:
        return make_solution(
            packs=("ARM::CMSIS@5.9.0", "Keil::Device_DFP"),
            projects={
                "app/App.cproject.yml": {
                    "components": [
                        {"component": "ARM::CMSIS:CORE"},
                        {"component": "Keil::Device:Startup"},
                    ]
                }
            },
        )

    def test_config_files_listed(self, device_solution: Path, resolve: Callable[..., Any]) -> None:
        """Config files land in RTE/<Cclass>/ of the project."""
        registry, resolver = resolve(device_solution)
        context = registry.get("App.Debug+Board")
        resolver.process_context(context, LoadPolicy.DEFAULT)

        rte = context.project.directory / "RTE" / "Device"
        assert context.config_files["Keil::Device:Startup"] == [rte / "startup.c", rte / "system.c"]
        assert context.config_files["ARM::CMSIS:CORE"] == []
        listing = resolver.list_config_files([context])
        assert len(listing) == 1
        assert listing[0].startswith("App.Debug+Board Keil::Device:Startup:")

    def test_sync_copies_missing_files_only(
        self, device_solution: Path, resolve: Callable[..., Any]
    ) -> None:
        """Existing config files are kept, missing ones copied, header regenerated."""
        registry, resolver = resolve(device_solution)
        context = registry.get("App.Debug+Board")
        resolver.process_context(context, LoadPolicy.DEFAULT)
        rte = context.project.directory / "RTE" / "Device"
        rte.mkdir(parents=True)
        (rte / "startup.c").write_text("/* edited */\n")

        written = context.active_project.sync_config_files()

        assert (rte / "startup.c").read_text() == "/* edited */\n"
        assert (rte / "system.c").read_text() == "/* system */\n"
        header = context.project.directory / "RTE" / "_Debug_Board" / "RTE_Components.h"
        assert header in written
        assert "#define RTE_DEVICE_STARTUP" in header.read_text()

    def test_sync_dry_run_writes_nothing(
        self, device_solution: Path, resolve: Callable[..., Any]
    ) -> None:
        """Dry-run sync reports paths without creating them."""
        registry, resolver = resolve(device_solution)
        context = registry.get("App.Debug+Board")
        resolver.process_context(context, LoadPolicy.DEFAULT)

        written = context.active_project.sync_config_files(dry_run=True)

        assert written
        assert not (context.project.directory / "RTE").exists()


def test_run_wide_toolchain(make_solution: Callable[..., Path], resolve: Callable[..., Any]) -> None:
    """A toolchain shared by every context is the run-wide one; mixed ones give None."""
    path = make_solution(
        compiler="",
        build_types=(),
        extra={"build-types": [{"type": "Debug", "compiler": "AC6"}, {"type": "Release", "compiler": "GCC"}]},
    )
    registry, resolver = resolve(path)
    debug = registry.get("App.Debug+Board")
    release = registry.get("App.Release+Board")
    resolver.process_context(debug, LoadPolicy.DEFAULT)
    resolver.process_context(release, LoadPolicy.DEFAULT)

    assert resolver.resolve_toolchain([debug]) == ToolchainSelection(name="AC6")
    assert resolver.resolve_toolchain([debug, release]) is None
