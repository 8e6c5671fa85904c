"""YAML descriptor parsing for solution, defaults and project files."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from solmgr.exceptions import DescriptorError
from solmgr.models import (
    BuildType,
    ContextDescriptor,
    DefaultsDescriptor,
    OutputDirs,
    ProjectDescriptor,
    SolutionDescriptor,
    TargetType,
    project_name,
)
from solmgr.packs import PackRef

logger = structlog.get_logger()

SOLUTION_FILE_PATTERN = re.compile(r".*\.csolution\.(yml|yaml)$")

SOLUTION_KEYS = {
    "created-by",
    "created-for",
    "description",
    "cdefault",
    "compiler",
    "packs",
    "build-types",
    "target-types",
    "projects",
    "output-dirs",
    "misc",
    "define",
    "undefine",
    "add-path",
    "del-path",
    "optimize",
    "debug",
    "warnings",
}

PROJECT_KEYS = {
    "description",
    "device",
    "board",
    "compiler",
    "packs",
    "components",
    "layers",
    "groups",
    "output-dirs",
    "output-type",
    "misc",
    "define",
    "undefine",
    "add-path",
    "del-path",
    "optimize",
    "debug",
    "warnings",
}

DEFAULTS_KEYS = {"compiler", "misc"}

BUILD_TYPE_KEYS = {"type", "compiler", "debug", "optimize", "variables", "misc", "define"}
TARGET_TYPE_KEYS = {"type", "device", "board", "compiler", "variables", "misc", "define"}


def solution_name(path: Path) -> str:
    """Solution name from its file name.

    Example:
        >>> solution_name(Path("demo.csolution.yml"))
        'demo'
    """
    return re.sub(r"\.csolution\.(yml|yaml)$", "", path.name)


def _load_yaml(path: Path) -> Any:
    if not path.exists():
        msg = "file was not found"
        raise DescriptorError(msg, path=path)
    try:
        return yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 1 if mark is not None else None
        problem = getattr(e, "problem", None) or str(e)
        raise DescriptorError(f"invalid YAML: {problem}", path=path, line=line) from e


def _section(data: Any, key: str, path: Path) -> dict[str, Any]:
    if not isinstance(data, dict) or not isinstance(data.get(key), dict):
        msg = f"'{key}' node is missing"
        raise DescriptorError(msg, path=path, field=key)
    return data[key]


def _check_keys(node: dict[str, Any], allowed: set[str], path: Path, where: str) -> None:
    for key in node:
        if key not in allowed:
            msg = f"unexpected key '{key}'"
            raise DescriptorError(msg, path=path, field=f"{where}.{key}")


def _list_of(node: dict[str, Any], key: str, item_key: str, path: Path) -> list[str]:
    """Extract [{item_key: value}, ...] as a list of strings."""
    values = []
    for index, entry in enumerate(node.get(key) or []):
        if not isinstance(entry, dict) or item_key not in entry:
            msg = f"'{item_key}' is required"
            raise DescriptorError(msg, path=path, field=f"{key}[{index}]")
        values.append(str(entry[item_key]))
    return values


def _packs(node: dict[str, Any], path: Path) -> list[PackRef]:
    refs = []
    for index, text in enumerate(_list_of(node, "packs", "pack", path)):
        try:
            refs.append(PackRef.parse(text))
        except ValueError as e:
            raise DescriptorError(str(e), path=path, field=f"packs[{index}]") from e
    return refs


def _variables(entry: dict[str, Any]) -> dict[str, str]:
    merged: dict[str, str] = {}
    for item in entry.get("variables") or []:
        if isinstance(item, dict):
            merged.update({str(k): str(v) for k, v in item.items()})
    return merged


class DescriptorParser:
    """Parses descriptor files into immutable descriptor models.

    Parsed projects are cached by canonical path so that many contexts
    referring to one project share a single descriptor.

    Example:
        >>> parser = DescriptorParser()
        >>> solution = parser.parse_solution(Path("demo.csolution.yml"))
        >>> [c.name for c in solution.contexts]
        ['App.Debug+Board', 'App.Release+Board']
    """

    def __init__(self) -> None:
        self.solution: SolutionDescriptor | None = None
        self.defaults: DefaultsDescriptor | None = None
        self.projects: dict[Path, ProjectDescriptor] = {}

    def parse_solution(
        self,
        path: Path,
        check_schema: bool = True,
        frozen_packs: bool = False,
    ) -> SolutionDescriptor:
        """Parse a <name>.csolution.yml file.

        Raises:
            DescriptorError: If the file is missing or malformed.
        """
        path = path.resolve()
        log = logger.bind(path=str(path))
        log.debug("Parsing solution")

        node = _section(_load_yaml(path), "solution", path)
        if check_schema:
            _check_keys(node, SOLUTION_KEYS, path, "solution")

        build_types = [
            self._model(BuildType, entry, path, f"build-types[{i}]", BUILD_TYPE_KEYS, check_schema)
            for i, entry in enumerate(node.get("build-types") or [])
        ]
        target_types = [
            self._model(TargetType, entry, path, f"target-types[{i}]", TARGET_TYPE_KEYS, check_schema)
            for i, entry in enumerate(node.get("target-types") or [])
        ]
        projects = _list_of(node, "projects", "project", path)

        contexts = [
            ContextDescriptor(
                project_file=project,
                build_type=build.type if build else "",
                target_type=target.type if target else "",
            )
            for project in projects
            for target in (target_types or [None])
            for build in (build_types or [None])
        ]

        try:
            self.solution = SolutionDescriptor(
                path=path,
                directory=path.parent,
                name=solution_name(path),
                projects=projects,
                contexts=contexts,
                build_types=build_types,
                target_types=target_types,
                packs=_packs(node, path),
                compiler=str(node.get("compiler") or ""),
                output_dirs=OutputDirs.model_validate(node.get("output-dirs") or {}),
                enable_defaults="cdefault" in node,
                frozen_packs=frozen_packs,
            )
        except ValidationError as e:
            raise self._validation_error(e, path, "solution") from e

        log.debug("Parsed solution", projects=len(projects), contexts=len(contexts))
        return self.solution

    def parse_defaults(self, path: Path, check_schema: bool = True) -> DefaultsDescriptor:
        """Parse a cdefault.yml file.

        Raises:
            DescriptorError: If the file is missing or malformed.
        """
        path = path.resolve()
        node = _section(_load_yaml(path), "default", path)
        if check_schema:
            _check_keys(node, DEFAULTS_KEYS, path, "default")
        self.defaults = DefaultsDescriptor(path=path, compiler=str(node.get("compiler") or ""))
        logger.debug("Parsed defaults", path=str(path))
        return self.defaults

    def parse_project(self, path: Path, check_schema: bool = True) -> ProjectDescriptor:
        """Parse a <name>.cproject.yml file.

        Raises:
            DescriptorError: If the file is missing or malformed.
        """
        path = path.resolve()
        if path in self.projects:
            return self.projects[path]

        node = _section(_load_yaml(path), "project", path)
        if check_schema:
            _check_keys(node, PROJECT_KEYS, path, "project")

        try:
            project = ProjectDescriptor(
                path=path,
                name=project_name(path),
                device=str(node.get("device") or ""),
                board=str(node.get("board") or ""),
                compiler=str(node.get("compiler") or ""),
                packs=_packs(node, path),
                components=_list_of(node, "components", "component", path),
                layers=_list_of(node, "layers", "layer", path),
                output_dirs=OutputDirs.model_validate(node.get("output-dirs") or {}),
            )
        except ValidationError as e:
            raise self._validation_error(e, path, "project") from e

        self.projects[path] = project
        logger.debug("Parsed project", path=str(path), components=len(project.components))
        return project

    def _model(
        self,
        model: type[BuildType] | type[TargetType],
        entry: Any,
        path: Path,
        where: str,
        allowed: set[str],
        check_schema: bool,
    ) -> Any:
        if not isinstance(entry, dict) or "type" not in entry:
            msg = "'type' is required"
            raise DescriptorError(msg, path=path, field=where)
        if check_schema:
            _check_keys(entry, allowed, path, where)
        data: dict[str, Any] = {
            k: str(v) for k, v in entry.items() if k in model.model_fields and k != "variables"
        }
        data["variables"] = _variables(entry)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise self._validation_error(e, path, where) from e

    @staticmethod
    def _validation_error(error: ValidationError, path: Path, where: str) -> DescriptorError:
        first = error.errors()[0]
        field = ".".join([where, *(str(p) for p in first["loc"])])
        return DescriptorError(first["msg"], path=path, field=field)
