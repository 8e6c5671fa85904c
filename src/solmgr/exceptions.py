"""Custom exceptions for solmgr."""

from pathlib import Path


class SolmgrError(Exception):
    """Base exception for all solmgr errors."""

    pass


class ConfigError(SolmgrError):
    """Raised when run options are invalid."""

    def __init__(
        self,
        message: str,
        *,
        config_path: Path | None = None,
        field: str = "",
    ) -> None:
        super().__init__(message)
        self.config_path = config_path
        self.field = field


class DescriptorError(SolmgrError):
    """Raised when a solution, defaults or project file cannot be used."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        field: str = "",
        line: int | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.field = field
        self.line = line

    def __str__(self) -> str:
        location = str(self.path) if self.path else ""
        if location and self.line is not None:
            location = f"{location}:{self.line}"
        if self.field:
            location = f"{location} [{self.field}]" if location else self.field
        message = super().__str__()
        return f"{location} - {message}" if location else message


class StructureError(SolmgrError):
    """Raised when the solution layout is inconsistent."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class SelectionError(SolmgrError):
    """Raised when a context selection cannot be evaluated."""

    def __init__(self, message: str, *, patterns: list[str] | None = None) -> None:
        super().__init__(message)
        self.patterns = patterns or []


class StateError(SolmgrError):
    """Raised when the context registry is used in the wrong phase."""

    def __init__(self, message: str, *, phase: str = "") -> None:
        super().__init__(message)
        self.phase = phase


class ResolutionError(SolmgrError):
    """Raised when a context cannot be resolved."""

    def __init__(
        self,
        message: str,
        *,
        context: str = "",
        missing: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.context = context
        self.missing = missing or []


class EmissionError(SolmgrError):
    """Raised when an artifact cannot be produced."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        step: str = "",
    ) -> None:
        super().__init__(message)
        self.path = path
        self.step = step


class FrozenPacksError(EmissionError):
    """Raised when the resolved packs drift from a frozen pack snapshot."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        added: list[str] | None = None,
        removed: list[str] | None = None,
        changed: list[str] | None = None,
    ) -> None:
        super().__init__(message, path=path, step="pack_snapshot")
        self.added = added or []
        self.removed = removed or []
        self.changed = changed or []
