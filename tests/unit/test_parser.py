"""Unit tests for descriptor parsing."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from solmgr.exceptions import DescriptorError
from solmgr.parser import DescriptorParser, solution_name


def test_solution_name() -> None:
    """The solution name strips the .csolution.yml suffix."""
    assert solution_name(Path("/x/demo.csolution.yaml")) == "demo"


class TestParseSolution:
    """Tests for DescriptorParser.parse_solution."""

    def test_contexts_expand_in_declaration_order(self, make_solution: Callable[..., Path]) -> None:
        """Contexts are project x target-type x build-type, in file order."""
        path = make_solution(
            projects={
                "app/App.cproject.yml": {},
                "boot/Boot.cproject.yml": {},
            },
            build_types=("Debug", "Release"),
            target_types=("Board", "Sim"),
        )

        solution = DescriptorParser().parse_solution(path)

        assert [c.name for c in solution.contexts] == [
            "App.Debug+Board",
            "App.Release+Board",
            "App.Debug+Sim",
            "App.Release+Sim",
            "Boot.Debug+Board",
            "Boot.Release+Board",
            "Boot.Debug+Sim",
            "Boot.Release+Sim",
        ]
        assert solution.name == "demo"
        assert solution.directory == path.parent.resolve()

    def test_no_types(self, make_solution: Callable[..., Path]) -> None:
        """Without build or target types the context is the project name."""
        path = make_solution(build_types=(), target_types=())

        solution = DescriptorParser().parse_solution(path)

        assert [c.name for c in solution.contexts] == ["App"]

    def test_flags(self, make_solution: Callable[..., Path]) -> None:
        """cdefault enables defaults; frozen packs is passed through."""
        path = make_solution(extra={"cdefault": None})

        solution = DescriptorParser().parse_solution(path, frozen_packs=True)

        assert solution.enable_defaults
        assert solution.frozen_packs
        assert [str(p) for p in solution.packs] == ["ARM::CMSIS@5.9.0"]

    def test_variables(self, make_solution: Callable[..., Path]) -> None:
        """Target-type variables are merged into a mapping."""
        path = make_solution(
            target_types=(),
            extra={
                "target-types": [
                    {"type": "Board", "variables": [{"Board-Layer": "layers/board"}, {"X": 1}]}
                ]
            },
        )

        target = DescriptorParser().parse_solution(path).target_type("Board")

        assert target is not None
        assert target.variables == {"Board-Layer": "layers/board", "X": "1"}

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing solution file is a descriptor error naming the file."""
        with pytest.raises(DescriptorError) as exc_info:
            DescriptorParser().parse_solution(tmp_path / "none.csolution.yml")

        assert "none.csolution.yml" in str(exc_info.value)

    def test_invalid_yaml_reports_line(self, tmp_path: Path) -> None:
        """YAML syntax errors carry the line number."""
        path = tmp_path / "bad.csolution.yml"
        path.write_text("solution:\n  projects:\n    - project: [a\n")

        with pytest.raises(DescriptorError) as exc_info:
            DescriptorParser().parse_solution(path)

        assert exc_info.value.line is not None

    def test_unknown_key_rejected_with_schema_check(self, make_solution: Callable[..., Path]) -> None:
        """Unexpected keys fail only when the schema is checked."""
        path = make_solution(extra={"bogus": 1})

        with pytest.raises(DescriptorError) as exc_info:
            DescriptorParser().parse_solution(path)
        assert exc_info.value.field == "solution.bogus"

        assert DescriptorParser().parse_solution(path, check_schema=False).name == "demo"

    def test_invalid_pack_reference(self, make_solution: Callable[..., Path]) -> None:
        """Malformed pack requirements point at their list entry."""
        path = make_solution(packs=("CMSIS",))

        with pytest.raises(DescriptorError) as exc_info:
            DescriptorParser().parse_solution(path)

        assert exc_info.value.field == "packs[0]"


class TestParseProject:
    """Tests for DescriptorParser.parse_project and parse_defaults."""

    def test_project(
        self,
        tmp_path: Path,
        write_descriptor: Callable[[Path, dict[str, Any]], Path],
    ) -> None:
        """Project fields are read and the result is cached."""
        path = write_descriptor(
            tmp_path / "app" / "App.cproject.yml",
            {
                "project": {
                    "device": "ARMCM3",
                    "compiler": "GCC",
                    "packs": [{"pack": "Keil::Device_DFP"}],
                    "components": [{"component": "Keil::Device:Startup"}],
                    "layers": [{"layer": "$Board-Layer$/board.clayer.yml"}],
                    "output-dirs": {"outdir": "build/$BuildType$"},
                }
            },
        )
        parser = DescriptorParser()

        project = parser.parse_project(path)

        assert project.name == "App"
        assert project.compiler == "GCC"
        assert project.components == ["Keil::Device:Startup"]
        assert project.layers == ["$Board-Layer$/board.clayer.yml"]
        assert project.output_dirs.outdir == "build/$BuildType$"
        assert parser.parse_project(path) is project

    def test_component_entry_requires_key(
        self,
        tmp_path: Path,
        write_descriptor: Callable[[Path, dict[str, Any]], Path],
    ) -> None:
        """List entries without their key are rejected."""
        path = write_descriptor(
            tmp_path / "App.cproject.yml", {"project": {"components": [{"name": "x"}]}}
        )

        with pytest.raises(DescriptorError) as exc_info:
            DescriptorParser().parse_project(path)

        assert exc_info.value.field == "components[0]"

    def test_defaults(
        self,
        tmp_path: Path,
        write_descriptor: Callable[[Path, dict[str, Any]], Path],
    ) -> None:
        """cdefault.yml provides a fallback compiler."""
        path = write_descriptor(tmp_path / "cdefault.yml", {"default": {"compiler": "AC6"}})

        assert DescriptorParser().parse_defaults(path).compiler == "AC6"

    def test_defaults_missing_root(
        self,
        tmp_path: Path,
        write_descriptor: Callable[[Path, dict[str, Any]], Path],
    ) -> None:
        """The 'default' root node is required."""
        path = write_descriptor(tmp_path / "cdefault.yml", {"compiler": "AC6"})

        with pytest.raises(DescriptorError):
            DescriptorParser().parse_defaults(path)
