"""Pack loading policy."""

from __future__ import annotations

from enum import Enum

from solmgr.exceptions import ConfigError


class LoadPolicy(str, Enum):
    """How version ambiguity in pack requirements is resolved.

    Attributes:
        DEFAULT: Snapshot pin if it still satisfies, else the highest satisfying version.
        LATEST: Highest satisfying version, ignoring the snapshot.
        ALL: Pinned like DEFAULT; listings show every installed version.
        REQUIRED: Snapshot pin if it still satisfies, else the lowest satisfying version.
    """

    DEFAULT = "default"
    LATEST = "latest"
    ALL = "all"
    REQUIRED = "required"

    @classmethod
    def from_token(cls, token: str | None) -> LoadPolicy:
        """Map a user-supplied token to a policy.

        Args:
            token: Value of the --load option, may be empty.

        Returns:
            The matching LoadPolicy.

        Raises:
            ConfigError: If the token is not recognized.

        Example:
            >>> LoadPolicy.from_token("latest")
            <LoadPolicy.LATEST: 'latest'>
            >>> LoadPolicy.from_token("")
            <LoadPolicy.DEFAULT: 'default'>
        """
        if not token:
            return cls.DEFAULT
        if isinstance(token, LoadPolicy):
            return token
        choices = {
            "default": cls.DEFAULT,
            "latest": cls.LATEST,
            "all": cls.ALL,
            "required": cls.REQUIRED,
        }
        policy = choices.get(token)
        if policy is None:
            msg = f"unknown load option: '{token}', it must be 'latest', 'all' or 'required'"
            raise ConfigError(msg, field="load")
        return policy
