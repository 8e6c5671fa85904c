"""Pack references and the local pack repository."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger()

PACK_REF_PATTERN = re.compile(
    r"^(?P<vendor>[\w\-]+)::(?P<name>[\w\-.]+?)(?:@(?P<op>>=)?(?P<version>\d[\w.\-+]*))?$"
)

# Description file inside an installed pack version directory
PACK_DESCRIPTION_FILE = "pack.yml"


def version_key(version: str) -> tuple[int, ...]:
    """Turn a version string into a sortable tuple of integers.

    Non-numeric parts are ignored.

    Example:
        >>> version_key("5.10.1")
        (5, 10, 1)
        >>> version_key("1.2.0-rc1") < version_key("1.10.0")
        True
    """
    core = version.split("-", 1)[0].split("+", 1)[0]
    return tuple(int(part) for part in re.findall(r"\d+", core))


@dataclass(frozen=True)
class PackRef:
    """A pack requirement: vendor::name[@[>=]version].

    Attributes:
        vendor: Pack vendor.
        name: Pack name.
        version: Required version, empty when any version is acceptable.
        minimum: Whether version is a lower bound instead of an exact match.

    Example:
        >>> ref = PackRef.parse("ARM::CMSIS@>=5.9.0")
        >>> ref.matches("6.0.0")
        True
    """

    vendor: str
    name: str
    version: str = ""
    minimum: bool = False

    @classmethod
    def parse(cls, text: str) -> PackRef:
        """Parse a pack requirement.

        Raises:
            ValueError: If the text is not a valid pack reference.
        """
        match = PACK_REF_PATTERN.match(text.strip())
        if not match:
            msg = f"Invalid pack reference: '{text}'"
            raise ValueError(msg)
        return cls(
            vendor=match["vendor"],
            name=match["name"],
            version=match["version"] or "",
            minimum=bool(match["op"]),
        )

    @property
    def key(self) -> str:
        """vendor::name without version."""
        return f"{self.vendor}::{self.name}"

    def matches(self, version: str) -> bool:
        """Check if an installed version satisfies this requirement."""
        if not self.version:
            return True
        if self.minimum:
            return version_key(version) >= version_key(self.version)
        return version_key(version) == version_key(self.version)

    def __str__(self) -> str:
        if not self.version:
            return self.key
        return f"{self.key}@{'>=' if self.minimum else ''}{self.version}"


@dataclass
class ResolvedPack:
    """A pack version chosen for a context.

    Attributes:
        vendor: Pack vendor.
        name: Pack name.
        version: Pinned version.
        path: Installation directory.
        selected_by: Requirements that selected this pack.
    """

    vendor: str
    name: str
    version: str
    path: Path | None = None
    selected_by: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        """vendor::name without version."""
        return f"{self.vendor}::{self.name}"

    @property
    def id(self) -> str:
        """vendor::name@version."""
        return f"{self.key}@{self.version}"


class PackRepository:
    """Read-only view of installed packs under <root>/<vendor>/<name>/<version>/.

    Example:
        >>> repo = PackRepository(Path("/opt/packs"))
        >>> repo.installed_versions("ARM", "CMSIS")
        ['5.9.0', '6.0.0']
    """

    def __init__(self, root: Path | None) -> None:
        """Initialize the repository.

        Args:
            root: Pack root directory (CMSIS_PACK_ROOT), may be None.
        """
        self.root = root
        self._descriptions: dict[Path, dict[str, Any]] = {}

    def installed_versions(self, vendor: str, name: str) -> list[str]:
        """List installed versions of a pack, lowest first."""
        if self.root is None:
            return []
        pack_dir = self.root / vendor / name
        if not pack_dir.is_dir():
            return []
        versions = [
            p.name for p in pack_dir.iterdir() if p.is_dir() and version_key(p.name)
        ]
        return sorted(versions, key=version_key)

    def pack_path(self, vendor: str, name: str, version: str) -> Path | None:
        """Installation directory of a pack version."""
        if self.root is None:
            return None
        path = self.root / vendor / name / version
        return path if path.is_dir() else None

    def installed_packs(self) -> list[ResolvedPack]:
        """Every installed pack version, sorted by id."""
        if self.root is None or not self.root.is_dir():
            return []
        packs = []
        for vendor_dir in sorted(p for p in self.root.iterdir() if p.is_dir()):
            if vendor_dir.name.startswith("."):
                continue
            for name_dir in sorted(p for p in vendor_dir.iterdir() if p.is_dir()):
                for version in self.installed_versions(vendor_dir.name, name_dir.name):
                    packs.append(
                        ResolvedPack(
                            vendor=vendor_dir.name,
                            name=name_dir.name,
                            version=version,
                            path=name_dir / version,
                        )
                    )
        return packs

    def description(self, pack: ResolvedPack) -> dict[str, Any]:
        """Load the pack.yml description of an installed pack.

        Returns:
            Parsed description, empty if the pack has none or it is unreadable.
        """
        if pack.path is None:
            return {}
        path = pack.path / PACK_DESCRIPTION_FILE
        if path in self._descriptions:
            return self._descriptions[path]

        data: dict[str, Any] = {}
        if path.exists():
            try:
                loaded = yaml.safe_load(path.read_text())
                if isinstance(loaded, dict):
                    data = loaded
            except yaml.YAMLError as e:
                logger.warning("Failed to load pack description", path=str(path), error=str(e))
        self._descriptions[path] = data
        return data

    def components(self, pack: ResolvedPack) -> dict[str, list[str]]:
        """Components provided by a pack, mapped to their config file names."""
        result: dict[str, list[str]] = {}
        for entry in self.description(pack).get("components", []) or []:
            if isinstance(entry, dict) and entry.get("id"):
                result[str(entry["id"])] = [str(f) for f in entry.get("config-files", []) or []]
        return result


def split_component(component_id: str) -> dict[str, str]:
    """Split [Cvendor::]Cclass:Cgroup[:Csub][&Cvariant] into its attributes.

    Example:
        >>> split_component("ARM::CMSIS:CORE")
        {'Cvendor': 'ARM', 'Cclass': 'CMSIS', 'Cgroup': 'CORE'}
    """
    attributes: dict[str, str] = {}
    text = component_id
    if "::" in text:
        attributes["Cvendor"], text = text.split("::", 1)
    if "&" in text:
        text, variant = text.split("&", 1)
    else:
        variant = ""
    for key, value in zip(("Cclass", "Cgroup", "Csub"), text.split(":"), strict=False):
        if value:
            attributes[key] = value
    if variant:
        attributes["Cvariant"] = variant
    return attributes
